import logging
import sys
from typing import Callable, Dict, List, Mapping, Optional, TextIO

from .config import Config
from .models import Request, ResponseSpec

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "text/html; charset=utf-8"
BODY_CONTENT_TYPE = "application/json;charset=utf-8"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, GET, PUT, DELETE, OPTIONS",
    "Access-Control-Max-Age": "86400",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Headers": "*",
}


def format_params(params: Mapping[str, str]) -> str:
    return "&".join(f"{key}={value}" for key, value in params.items())


def format_headers(headers: Mapping[str, List[str]]) -> str:
    return "".join(f"{name}: [{' '.join(values)}]\n" for name, values in headers.items())


def _redirect(config: Config, headers: Dict[str, str]) -> ResponseSpec:
    headers["Location"] = config.redirect
    body = f"Redirecting to: {config.redirect}".encode("utf-8")
    return ResponseSpec(config.response_code, headers, body)


def _not_modified(config: Config, headers: Dict[str, str]) -> ResponseSpec:
    return ResponseSpec(304, headers)


def _unauthorized(config: Config, headers: Dict[str, str]) -> ResponseSpec:
    return ResponseSpec(401, headers)


def _forbidden(config: Config, headers: Dict[str, str]) -> ResponseSpec:
    return ResponseSpec(403, headers)


def _not_found(config: Config, headers: Dict[str, str]) -> ResponseSpec:
    return ResponseSpec(404, headers, config.response)


def _abort(config: Config, headers: Dict[str, str]) -> ResponseSpec:
    return ResponseSpec(config.response_code, headers, config.response)


# Responses for every code other than 200; anything unlisted falls back to _abort.
STATUS_RESPONSES: Dict[int, Callable[[Config, Dict[str, str]], ResponseSpec]] = {
    301: _redirect,
    302: _redirect,
    304: _not_modified,
    401: _unauthorized,
    403: _forbidden,
    404: _not_found,
}


class DumpHandler:
    """
    Dumps every request to an output stream and answers with the canned response.
    """

    def __init__(self, config: Config, out: Optional[TextIO] = None) -> None:
        self.config = config
        self._out = out

    def routes(self) -> Dict[str, Callable[[Request], ResponseSpec]]:
        return {
            "GET": self.handle_get,
            "HEAD": self.handle_get,
            "POST": self.handle_body,
            "PUT": self.handle_body,
            "DELETE": self.handle_body,
            "PATCH": self.handle_body,
            "OPTIONS": self.handle_cors,
            # any other verb is dumped like a GET
            "*": self.handle_get,
        }

    def handle_get(self, req: Request) -> ResponseSpec:
        self._dump(req)
        return self._respond({"Content-Type": DEFAULT_CONTENT_TYPE})

    def handle_body(self, req: Request) -> ResponseSpec:
        self._dump(req)
        body = self._read_body(req)
        self._write(body.decode("utf-8", errors="replace"))
        return self._respond({"Content-Type": BODY_CONTENT_TYPE})

    def handle_cors(self, req: Request) -> ResponseSpec:
        return ResponseSpec(200, dict(CORS_HEADERS))

    def _dump(self, req: Request) -> None:
        params = format_params(req.params)
        if params:
            params = "?" + params
        self._write(f"{req.remote_addr} - {req.target}{params}")
        self._write(format_headers(req.headers))

    def _read_body(self, req: Request) -> bytes:
        if req.body is None:
            return b""
        try:
            return req.body.read()
        except (OSError, ValueError) as e:
            logger.error("Error reading body: %s", e)
            return b""

    def _respond(self, headers: Dict[str, str]) -> ResponseSpec:
        if self.config.response_code == 200:
            return ResponseSpec(200, headers, self.config.response)
        build = STATUS_RESPONSES.get(self.config.response_code, _abort)
        return build(self.config, headers)

    def _write(self, text: str) -> None:
        out = self._out if self._out is not None else sys.stdout
        print(text, file=out, flush=True)
