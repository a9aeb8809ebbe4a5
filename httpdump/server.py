import logging
import socket
import ssl
import threading
from typing import Optional, Tuple

from .config import Config
from .engine import HTTPEngine, format_addr
from .handler import DumpHandler
from .pool import WorkerPool

logger = logging.getLogger(__name__)


def create_ssl_context(cert_path: str, key_path: str) -> ssl.SSLContext:
    """
    Load a PEM certificate/key pair into a server-side TLS context.
    Raises OSError for unreadable files and ssl.SSLError for invalid material.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile=cert_path, keyfile=key_path)
    return context


class ThreadedHTTPServer:
    def __init__(self, config: Config, handler: DumpHandler, ssl_context: Optional[ssl.SSLContext] = None) -> None:
        self.config = config
        self.handler = handler
        self.ssl_context = ssl_context

        # Created on bind()/serve()
        self._listen_sock: Optional[socket.socket] = None
        self._pool: Optional[WorkerPool] = None

        self._stop_event = threading.Event()

    @property
    def server_address(self) -> Tuple[str, int]:
        assert self._listen_sock is not None, "server is not bound"
        return self._listen_sock.getsockname()[:2]

    def run(self) -> None:
        self.bind()
        self.serve()

    def bind(self) -> None:
        """
        Create/bind/listen.
        Uses SO_REUSEADDR to make restarts easier during development.
        """
        self._stop_event.clear()
        family, _, _, _, address = socket.getaddrinfo(
            self.config.host, self.config.port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
        )[0]
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(address)
            sock.listen(self.config.backlog)
        except OSError:
            sock.close()
            raise

        sock.settimeout(self.config.accept_timeout)
        self._listen_sock = sock

    def serve(self) -> None:
        if self._listen_sock is None:
            self.bind()

        engine = HTTPEngine(self.config, self.handler.routes(), ssl_context=self.ssl_context)
        self._pool = WorkerPool(self.config, engine)
        self._pool.start()

        scheme = "https" if self.ssl_context is not None else "http"
        host, port = self.server_address
        logger.info("Listening on %s://%s", scheme, format_addr((host, port)))
        if self.config.debug:
            logger.debug(
                "Answering with status %d, %d byte body, %d workers",
                self.config.response_code, len(self.config.response), self.config.workers,
            )

        # Run the accept-loop in the current thread (blocking) until stopped
        try:
            self._accept_loop()
        finally:
            self._cleanup()

    def stop(self) -> None:
        self._stop_event.set()

        # unblock accept() immediately
        if self._listen_sock is not None:
            try:
                self._listen_sock.close()
            except OSError:
                pass

    def _cleanup(self) -> None:
        if self._listen_sock is not None:
            try:
                self._listen_sock.close()
            except OSError:
                pass

        if self._pool is not None:
            self._pool.stop()

        self._listen_sock = None
        self._pool = None

    def _accept_loop(self) -> None:
        """
        Accept connections and submit to worker pool.
        Exits when stop_event is set or listen socket is closed.
        """
        assert self._listen_sock is not None
        assert self._pool is not None

        while not self._stop_event.is_set():
            try:
                conn, addr = self._listen_sock.accept()
            except socket.timeout:
                continue
            except OSError:
                # socket was likely closed during stop()
                break

            try:
                conn.settimeout(self.config.recv_timeout)
                conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                try:
                    conn.close()
                except OSError:
                    pass
                continue

            # Pool closes conn after handling.
            self._pool.submit(conn, addr)
