import logging
import socket
import ssl
from dataclasses import replace
from datetime import datetime, timezone
from http import HTTPStatus
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional
from urllib.parse import parse_qs, unquote, urlsplit

from .models import Request, ResponseSpec, canonical_header_key

logger = logging.getLogger(__name__)

Route = Callable[[Request], ResponseSpec]

NO_BODY_STATUSES = (204, 304)

# Largest unread body drained before replying; bigger ones are left to the close.
DISCARD_LIMIT = 256 * 1024

# Route key used for methods without a route of their own.
ANY_METHOD = "*"


class RequestBody:
    """
    Lazily reads a request body framed by Content-Length or chunked encoding.
    Reads happen in chunk_size pieces so memory follows the bytes actually received,
    not the length the client announced.
    """

    def __init__(self, rfile: BinaryIO, length: int = 0, chunked: bool = False,
                 chunk_size: int = 64 * 1024, max_line: int = 65536) -> None:
        self.length = length
        self.chunked = chunked
        self._rfile = rfile
        self._chunk_size = chunk_size
        self._max_line = max_line
        self._consumed = False

    def read(self) -> bytes:
        if self._consumed:
            return b""
        self._consumed = True
        if self.chunked:
            return self._read_chunked()
        return self._read_exact(self.length)

    def discard(self, limit: int) -> bool:
        """
        Drop up to limit bytes of an unread body without keeping them.
        Returns False when the body is longer than limit.
        """
        if self._consumed:
            return True
        self._consumed = True
        if self.chunked:
            return self._skip_chunked(limit)
        self._skip(min(self.length, limit))
        return self.length <= limit

    def _pieces(self, n: int) -> Iterator[bytes]:
        remaining = n
        while remaining > 0:
            piece = self._rfile.read(min(remaining, self._chunk_size))
            if not piece:
                raise ConnectionError(f"body truncated: expected {n} bytes, got {n - remaining}")
            remaining -= len(piece)
            yield piece

    def _read_exact(self, n: int) -> bytes:
        return b"".join(self._pieces(n))

    def _skip(self, n: int) -> None:
        for _ in self._pieces(n):
            pass

    def _read_line(self) -> bytes:
        line = self._rfile.readline(self._max_line + 1)
        if not line:
            raise ConnectionError("body truncated in chunked encoding")
        if len(line) > self._max_line:
            raise ValueError("chunk line too long")
        return line

    def _chunk_sizes(self) -> Iterator[int]:
        while True:
            size_field = self._read_line().split(b";", 1)[0].strip()
            size = int(size_field.decode("ascii"), 16)
            if size < 0:
                raise ValueError(f"bad chunk size {size}")
            if size == 0:
                break
            yield size

        # trailers
        while self._read_line() not in (b"\r\n", b"\n"):
            pass

    def _read_chunked(self) -> bytes:
        chunks = []
        for size in self._chunk_sizes():
            chunks.append(self._read_exact(size))
            self._read_line()
        return b"".join(chunks)

    def _skip_chunked(self, limit: int) -> bool:
        total = 0
        for size in self._chunk_sizes():
            total += size
            if total > limit:
                return False
            self._skip(size)
            self._read_line()
        return True


def format_addr(addr) -> str:
    if isinstance(addr, tuple) and len(addr) >= 2:
        host, port = addr[0], addr[1]
        if ":" in host:
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(addr)


class Engine:
    def __init__(self, ssl_context: Optional[ssl.SSLContext] = None) -> None:
        self.ssl_context = ssl_context

    def handle_connection(self, conn: socket.socket, addr) -> None:
        try:
            if self.ssl_context is not None:
                conn = self.ssl_context.wrap_socket(conn, server_side=True)
            self.process(conn, addr)
        except OSError as e:
            logger.debug("Connection from %s dropped: %s", format_addr(addr), e)
        finally:
            try:
                conn.close()
            except OSError:
                pass

    def process(self, conn: socket.socket, addr) -> None:
        raise NotImplementedError


class HTTPEngine(Engine):
    def __init__(self, config, routes: Dict[str, Route], ssl_context=None, server_name=None) -> None:
        super().__init__(ssl_context)
        self.config = config
        self.routes = {method.upper(): route for method, route in routes.items()}
        if server_name is None:
            server_name = f"httpdump/{socket.gethostname()}"
        self.server_name = server_name

    def process(self, conn: socket.socket, addr) -> None:
        rfile = conn.makefile("rb")
        try:
            head = self._read_head(rfile)
            if head is None:
                return

            req = self._parse_request(head, addr, rfile)
            route = self.routes.get(req.method.upper(), self.routes.get(ANY_METHOD))
            if route is None:
                resp = self._method_not_allowed()
            else:
                resp = route(req)

            self._discard_body(req)
            self._send(conn, req.method, resp)

        except OSError:
            # timeouts, resets and TLS errors end the connection quietly
            return
        except ValueError as e:
            logger.debug("Bad request from %s: %s", format_addr(addr), e)
            self._send(conn, "GET", self._simple_response(400))
            return
        except Exception:
            logger.exception("Unhandled error serving %s", format_addr(addr))
            self._send(conn, "GET", self._simple_response(500))
            return
        finally:
            rfile.close()

    def _read_head(self, rfile: BinaryIO) -> Optional[List[bytes]]:
        lines: List[bytes] = []
        total = 0
        limit = self.config.max_header_bytes
        while True:
            line = rfile.readline(limit + 1)
            if not line:
                if not lines:
                    return None
                raise ValueError("connection closed inside request head")
            total += len(line)
            if total > limit:
                raise ValueError("request head too large")
            if line in (b"\r\n", b"\n"):
                # Leading empty lines before the request line are ignored.
                if not lines:
                    continue
                return lines
            lines.append(line.rstrip(b"\r\n"))

    def _parse_request(self, head: List[bytes], addr, rfile: BinaryIO) -> Request:
        request_line = head[0].decode("iso-8859-1")
        parts = request_line.split()
        if len(parts) != 3:
            raise ValueError("bad request line")

        method, target, version = parts
        if not version.startswith("HTTP/"):
            raise ValueError("bad http version")

        headers: Dict[str, List[str]] = {}
        for bline in head[1:]:
            line = bline.decode("iso-8859-1", errors="ignore")
            if ":" not in line:
                continue
            k, v = line.split(":", 1)
            headers.setdefault(canonical_header_key(k.strip()), []).append(v.strip())

        url = urlsplit(target)
        params = {k: v[0] for k, v in parse_qs(url.query, keep_blank_values=True).items()}

        req = Request(
            method=method,
            target=target,
            path=unquote(url.path),
            version=version,
            remote_addr=format_addr(addr),
            headers=headers,
            params=params,
        )
        return replace(req, body=self._body_reader(rfile, req))

    def _body_reader(self, rfile: BinaryIO, req: Request) -> RequestBody:
        options = dict(chunk_size=self.config.chunk_size, max_line=self.config.max_header_bytes)

        encodings = req.headers.get("Transfer-Encoding")
        if encodings and encodings[-1].lower().endswith("chunked"):
            return RequestBody(rfile, chunked=True, **options)

        length = 0
        content_length = req.header("Content-Length")
        if content_length is not None:
            try:
                length = int(content_length)
            except ValueError:
                raise ValueError(f"bad content-length {content_length!r}") from None
            if length < 0:
                raise ValueError(f"bad content-length {length}")
        return RequestBody(rfile, length=length, **options)

    def _discard_body(self, req: Request) -> None:
        # Unread request bytes would make close() reset the connection under the response.
        try:
            if not req.body.discard(DISCARD_LIMIT):
                logger.debug("Body from %s too large to drain", req.remote_addr)
        except (OSError, ValueError) as e:
            logger.debug("Discarding body from %s failed: %s", req.remote_addr, e)

    def _send(self, conn: socket.socket, method: str, resp: ResponseSpec) -> None:
        method = method.upper()
        bodiless = resp.status in NO_BODY_STATUSES or 100 <= resp.status < 200
        head_only = (method == "HEAD") or bodiless

        headers = dict(resp.headers)
        headers.setdefault("Date", self._http_date())
        headers.setdefault("Server", self.server_name)
        headers.setdefault("Connection", "close")
        if not bodiless:
            headers.setdefault("Content-Length", str(len(resp.body)))

        status_line = f"HTTP/1.1 {resp.status} {resp.reason}\r\n"
        header_block = status_line + "".join(f"{k}: {v}\r\n" for k, v in headers.items()) + "\r\n"
        conn.sendall(header_block.encode("utf-8"))

        if head_only or not resp.body:
            return

        conn.sendall(resp.body)

    def _method_not_allowed(self) -> ResponseSpec:
        resp = self._simple_response(405)
        resp.headers["Allow"] = ", ".join(m for m in self.routes if m != ANY_METHOD)
        return resp

    def _simple_response(self, status: int) -> ResponseSpec:
        reason = HTTPStatus(status).phrase
        return ResponseSpec(status=status, headers={"Content-Type": "text/plain; charset=utf-8"}, body=reason.encode("utf-8"))

    @staticmethod
    def _http_date() -> str:
        dt = datetime.now(timezone.utc)
        return dt.strftime("%a, %d %b %Y %H:%M:%S GMT")
