"""Proxy service for forwarding requests to the protected services."""

from http.cookiejar import DefaultCookiePolicy
from typing import Iterator, List, Tuple
from urllib.parse import SplitResult, unquote, urlunsplit

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from urllib3.util import SKIP_HEADER

from arrgate.config.models import UpstreamConfig
from arrgate.services.models import GuardedRequest, ProxyResponse
from arrgate.utils.logger import get_logger

logger = get_logger(__name__)

UPSTREAM_KEY_HEADER = "X-Api-Key"
STREAM_CHUNK_SIZE = 64 * 1024


class ProxyError(Exception):
    """Raised when the upstream cannot be reached."""

    def __init__(self, message: str, upstream_host: str):
        super().__init__(message)
        self.upstream_host = upstream_host


def single_joining_slash(a: str, b: str) -> str:
    """Join two path segments with exactly one slash between them."""
    a_slash = a.endswith("/")
    b_slash = b.startswith("/")
    if a_slash and b_slash:
        return a + b[1:]
    if not a_slash and not b_slash:
        return a + "/" + b
    return a + b


def join_url_path(base: SplitResult, path: str, raw_path: str) -> Tuple[str, str]:
    """Join the upstream base path with a request path.

    `base.path` is in wire encoding, as `urlsplit` leaves it. The decoded and
    raw forms of the request path are joined separately so percent-encoded
    segments survive.

    Returns:
        `Tuple`: (decoded path, raw path).
    """
    decoded = single_joining_slash(unquote(base.path), path)
    raw = single_joining_slash(base.path, raw_path)
    return decoded, raw


def merge_query(upstream_query: str, request_query: str) -> str:
    """Upstream parameters first, then the caller's, joined by '&'."""
    if upstream_query and request_query:
        return upstream_query + "&" + request_query
    return upstream_query + request_query


class ProxyService:
    """Service for proxying requests to the protected services."""

    _HOP_BY_HOP_HEADERS = {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }

    def __init__(self, config: UpstreamConfig, session: requests.Session = None):
        self._timeout = (config.connect_timeout, config.read_timeout)
        self._session = session or self._build_session(config)

    @staticmethod
    def _build_session(config: UpstreamConfig) -> requests.Session:
        """Initialise a pooled HTTP session for upstream calls."""
        session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=config.pool_connections,
            pool_maxsize=config.pool_maxsize,
            max_retries=0,
            pool_block=False,
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        # Upstream cookies go back to the caller, never into a shared jar
        session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        return session

    def forward_request(self, guarded: GuardedRequest) -> ProxyResponse:
        """Forward a validated request to its upstream service.

        Args:
            guarded: Request that passed the request guard.

        Returns:
            `ProxyResponse`: The upstream response, body streamed verbatim.

        Raises:
            ProxyError: If the upstream cannot be reached.
        """
        target = guarded.service.parsed_url
        target_url = self.build_target_url(target, guarded)
        headers = self.build_upstream_headers(guarded)

        prepared = requests.Request(
            method=guarded.method,
            url=target_url,
            headers=headers,
            data=guarded.body or None,
        ).prepare()
        # Keep the path bytes exactly as built
        prepared.url = target_url

        upstream_path, _ = join_url_path(target, guarded.path, guarded.raw_path)
        logger.debug(
            "Forwarding %s request to %s%s", guarded.method, target.netloc, upstream_path,
            extra={"service": guarded.service.name, "upstream_host": target.netloc},
        )
        try:
            response = self._session.send(
                prepared,
                timeout=self._timeout,
                allow_redirects=False,  # Relay redirects to the caller
                stream=True,
            )
        except requests.exceptions.RequestException as e:
            logger.error(
                "Proxy error for %s: %s", target.netloc, e,
                extra={"upstream_host": target.netloc, "path": guarded.path},
            )
            raise ProxyError(f"Upstream {target.netloc} unreachable", target.netloc) from e

        return ProxyResponse(
            status_code=response.status_code,
            headers=self._prepare_headers(response.raw.headers.items()),
            body=self._iter_body(response),
            close=response.close,
        )

    @staticmethod
    def build_target_url(target: SplitResult, guarded: GuardedRequest) -> str:
        """Build the upstream URL of a request.

        Scheme and host come from the upstream, the path is the upstream base
        path joined with the request path, and the query string is the
        upstream's followed by the caller's.
        """
        _, raw_path = join_url_path(target, guarded.path, guarded.raw_path)
        query = merge_query(target.query, guarded.query_string)
        return urlunsplit((target.scheme, target.netloc, raw_path, query, ""))

    @classmethod
    def build_upstream_headers(cls, guarded: GuardedRequest) -> CaseInsensitiveDict:
        headers = CaseInsensitiveDict()
        for key, value in cls._prepare_headers(guarded.headers):
            if key.lower() in ("host", "content-length"):
                continue
            headers.setdefault(key, value)

        if "User-Agent" not in headers:
            # Suppress the HTTP library's default User-Agent
            headers["User-Agent"] = SKIP_HEADER

        # Overwrites whatever credential the caller sent
        headers[UPSTREAM_KEY_HEADER] = guarded.service.api_key
        headers["Host"] = guarded.service.parsed_url.netloc

        if guarded.remote_addr:
            prior = headers.get("X-Forwarded-For")
            headers["X-Forwarded-For"] = (
                f"{prior}, {guarded.remote_addr}" if prior else guarded.remote_addr
            )
        return headers

    @staticmethod
    def _iter_body(response: requests.Response) -> Iterator[bytes]:
        # Content-Encoding is relayed, so the body must not be decoded
        for chunk in response.raw.stream(STREAM_CHUNK_SIZE, decode_content=False):
            if chunk:
                yield chunk

    @classmethod
    def _prepare_headers(cls, headers) -> List[Tuple[str, str]]:
        """Prepare headers by removing hop-by-hop headers.

        Args:
            headers: Original header pairs.

        Returns:
            List[Tuple[str, str]]: Cleaned headers for forwarding.
        """
        forwarded_headers = []
        for key, value in headers:
            if key.lower() not in cls._HOP_BY_HOP_HEADERS:
                forwarded_headers.append((key, value))

        return forwarded_headers
