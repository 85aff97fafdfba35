from dataclasses import dataclass
from http import HTTPStatus
from typing import Callable, Iterable, List, Optional, Tuple

from arrgate.config.models import ServiceConfig


@dataclass
class ProxyResponse:
    """Proxy response."""
    status_code: int
    headers: List[Tuple[str, str]]
    body: Iterable[bytes]
    close: Optional[Callable[[], None]] = None


@dataclass(frozen=True)
class GuardRejection:
    """A request refused before reaching the upstream."""
    status_code: int
    reason: str

    @property
    def message(self) -> str:
        return f"{self.status_code} {HTTPStatus(self.status_code).phrase}"


@dataclass
class GuardedRequest:
    """A request that passed every guard check, ready to be forwarded.

    `path` is the decoded path with the service prefix removed and `raw_path`
    the same path as it appeared on the wire.
    """
    service: ServiceConfig
    method: str
    path: str
    raw_path: str
    query_string: str
    headers: List[Tuple[str, str]]
    body: bytes = b""
    remote_addr: Optional[str] = None


@dataclass
class RequestContext:
    """Per-request bookkeeping for audit logging."""
    request_id: str
    method: str
    path: str
    client_cn: str = "unknown"
    service: Optional[ServiceConfig] = None
    status_code: Optional[int] = None
    reason: Optional[str] = None
