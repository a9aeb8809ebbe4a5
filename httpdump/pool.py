# httpdump/pool.py
from __future__ import annotations

import logging
import queue
import socket
import threading
from dataclasses import dataclass
from typing import Optional

from .config import Config
from .engine import Engine, format_addr

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Connection:
    sock: socket.socket
    addr: tuple

    @property
    def peer(self) -> str:
        return format_addr(self.addr)

    def drop(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass


class WorkerPool:
    """
    Fixed set of threads handing accepted connections to the engine.
    A None in the queue tells one worker to exit.
    """

    def __init__(self, config: Config, engine: Engine) -> None:
        self.config = config
        self.engine = engine
        self._pending: queue.Queue[Optional[Connection]] = queue.Queue(maxsize=config.queue_size or 0)
        self._workers: list[threading.Thread] = []
        self._closing = threading.Event()
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._workers:
                return
            self._closing.clear()
            self._workers = [
                threading.Thread(target=self._serve_connections, name=f"dump-worker-{i}", daemon=True)
                for i in range(self.config.workers)
            ]
            for worker in self._workers:
                worker.start()

    def submit(self, sock: socket.socket, addr: tuple) -> None:
        connection = Connection(sock, addr)
        if self._closing.is_set():
            connection.drop()
            return

        try:
            self._pending.put_nowait(connection)
        except queue.Full:
            logger.warning("%d connections pending; dropping %s", self._pending.qsize(), connection.peer)
            connection.drop()

    def stop(self) -> None:
        self._closing.set()

        with self._lock:
            workers, self._workers = self._workers, []

        # Anything still queued would never be answered.
        while True:
            try:
                connection = self._pending.get_nowait()
            except queue.Empty:
                break
            if connection is not None:
                connection.drop()

        for _ in workers:
            self._pending.put(None)
        for worker in workers:
            worker.join(timeout=5)

    def _serve_connections(self) -> None:
        while True:
            connection = self._pending.get()
            if connection is None:
                return
            if self.config.debug:
                logger.debug("Serving %s on %s", connection.peer, threading.current_thread().name)
            try:
                self.engine.handle_connection(connection.sock, connection.addr)
            except Exception:
                logger.exception("Unhandled exception while serving %s", connection.peer)
