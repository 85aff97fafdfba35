"""Handler for proxied requests."""

from flask import Response, g, request

from arrgate.services.models import GuardRejection
from arrgate.services.proxy_service import ProxyError, ProxyService
from arrgate.services.request_guard import RequestGuard
from arrgate.utils.responses import error_response


class ProxyHandler:
    """Runs a request through the guard and relays it upstream.

    Outcomes are recorded on the request context; audit logging happens in
    the application's response hook.
    """

    def __init__(self, guard: RequestGuard, proxy_service: ProxyService):
        self._guard = guard
        self._proxy_service = proxy_service

    def __call__(self, rest: str = "") -> Response:
        context = g.context
        result = self._guard.check(request)
        if isinstance(result, GuardRejection):
            context.reason = result.reason
            return error_response(result.status_code, result.message)

        context.service = result.service
        context.path = result.path
        try:
            proxy_response = self._proxy_service.forward_request(result)
        except ProxyError:
            return error_response(502, "502 Bad Gateway")

        response = Response(
            proxy_response.body,
            status=proxy_response.status_code,
            headers=proxy_response.headers,
        )
        if not any(key.lower() == "content-type" for key, _ in proxy_response.headers):
            # Do not invent a content type the upstream did not send
            del response.headers["Content-Type"]
        if proxy_response.close is not None:
            response.call_on_close(proxy_response.close)
        return response
