from dataclasses import dataclass, field
from http import HTTPStatus
from typing import BinaryIO, Dict, List, Optional


def canonical_header_key(name: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


@dataclass(frozen=True)
class Request:
    method: str
    target: str
    path: str
    version: str
    remote_addr: str = ""
    headers: Dict[str, List[str]] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)
    body: Optional[BinaryIO] = None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.headers.get(canonical_header_key(name))
        if not values:
            return default
        return values[0]


@dataclass(frozen=True)
class ResponseSpec:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def reason(self) -> str:
        try:
            return HTTPStatus(self.status).phrase
        except ValueError:
            return ""
