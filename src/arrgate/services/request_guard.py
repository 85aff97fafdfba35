"""Per-request checks run before anything is sent upstream."""

import json
from typing import Dict, Optional, Tuple, Union
from urllib.parse import quote, unquote, urlsplit

from werkzeug.exceptions import ClientDisconnected
from werkzeug.wrappers import Request

from arrgate.config.models import GatewayConfig, ServiceConfig
from arrgate.services.models import GuardedRequest, GuardRejection

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
READ_CHUNK_SIZE = 64 * 1024
# Characters left unescaped when re-encoding a decoded path.
_PATH_SAFE = "/:@!$&'()*+,;=-._~"


class RequestGuard:
    """Resolves the target service of a request and validates it.

    Each step either passes the request on or yields a `GuardRejection`; the
    first rejection ends the pipeline:

    1. route prefix resolution (404)
    2. service availability (503)
    3. whitelist authorization (403)
    4. declared Content-Length against the maximum body size (413)
    5. bounded body read for body methods, declared lengths and chunked
       bodies (400 on read failure, 413 when too large)
    6. JSON payload validation for JSON media types (400)
    """

    def __init__(self, config: GatewayConfig, prefixes: Dict[str, Optional[ServiceConfig]] = None):
        self._max_body_size = config.server.max_body_size
        if prefixes is None:
            prefixes = {"/sonarr": config.sonarr, "/radarr": config.radarr}
        self._prefixes = prefixes

    def check(self, request: Request) -> Union[GuardedRequest, GuardRejection]:
        resolved = self.resolve_route(request.path)
        if resolved is None:
            return GuardRejection(404, "no matching route")
        prefix, path = resolved

        service = self._prefixes[prefix]
        if service is None:
            return GuardRejection(503, "service not configured")

        method = request.method
        if not service.is_whitelisted(method, path):
            return GuardRejection(403, "method/endpoint not whitelisted")

        declared_length = request.content_length
        if declared_length is not None and declared_length > self._max_body_size:
            return GuardRejection(413, "payload too large")

        body = b""
        # Chunked bodies carry no Content-Length but are still relayed
        chunked = bool(request.environ.get("wsgi.input_terminated"))
        if method in BODY_METHODS or declared_length or chunked:
            try:
                body = read_limited(request.stream, self._max_body_size + 1)
            except (OSError, ClientDisconnected):
                return GuardRejection(400, "failed to read payload")
            # Content-Length may be missing or wrong
            if len(body) > self._max_body_size:
                return GuardRejection(413, "payload too large")

        if body and request.is_json:
            try:
                json.loads(body)
            except ValueError:
                return GuardRejection(400, "invalid JSON payload")

        return GuardedRequest(
            service=service,
            method=method,
            path=path,
            raw_path=self._raw_remainder(request, prefix, path),
            query_string=request.query_string.decode("latin-1"),
            headers=list(request.headers.items()),
            body=body,
            remote_addr=request.remote_addr,
        )

    def resolve_route(self, path: str) -> Optional[Tuple[str, str]]:
        """Match `path` against the service prefixes.

        Returns:
            `Tuple`: (prefix, remaining path defaulting to "/"), or None if
            no prefix applies.
        """
        for prefix in self._prefixes:
            if path == prefix or path.startswith(prefix + "/"):
                return prefix, path[len(prefix):] or "/"
        return None

    @staticmethod
    def _raw_remainder(request: Request, prefix: str, path: str) -> str:
        """Return the wire encoding of the remaining path.

        The raw form is kept only when it still decodes to `path`; otherwise
        the decoded path is re-encoded.
        """
        raw_uri = request.environ.get("RAW_URI") or request.environ.get("REQUEST_URI")
        if raw_uri:
            raw_path = urlsplit(raw_uri).path if "://" in raw_uri else raw_uri.split("?", 1)[0]
            if raw_path.startswith(prefix):
                raw = raw_path[len(prefix):] or "/"
                if unquote(raw) == path:
                    return raw
        return quote(path, safe=_PATH_SAFE)


def read_limited(stream, limit: int) -> bytes:
    """Read from `stream` until EOF or until `limit` bytes were read."""
    chunks = []
    remaining = limit
    while remaining > 0:
        chunk = stream.read(min(READ_CHUNK_SIZE, remaining))
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)
