"""Flask application factory for the arrgate."""

import time

from flask import Flask, Response, g, request
from werkzeug.exceptions import InternalServerError

from arrgate.config.models import GatewayConfig
from arrgate.handlers.info_handler import InfoHandler
from arrgate.handlers.proxy_handler import ProxyHandler
from arrgate.server.gateway_server import CLIENT_CN_ENVIRON_KEY
from arrgate.services.auth_service import Authenticator, build_authenticator
from arrgate.services.models import RequestContext
from arrgate.services.proxy_service import ProxyService
from arrgate.services.request_guard import RequestGuard
from arrgate.utils.logger import get_logger, log_rejection, log_request, log_response
from arrgate.utils.request_id import REQUEST_ID_HEADER, resolve_request_id
from arrgate.utils.responses import error_response
from arrgate.utils.security_headers import apply_security_headers

logger = get_logger(__name__)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "CONNECT", "TRACE"]


def create_app(config: GatewayConfig,
               proxy_service: ProxyService = None,
               authenticator: Authenticator = None) -> Flask:
    """Build the gateway application.

    Args:
        config: Validated gateway configuration.
        proxy_service: Forwarding engine, built from `config.upstream` when
            omitted.
        authenticator: Authentication strategy, built from `config.auth`
            when omitted.

    Returns:
        Flask: The WSGI application.
    """
    app = Flask(__name__)
    # Paths are forwarded as received, never redirected to a normalized form
    app.url_map.merge_slashes = False

    authenticator = authenticator or build_authenticator(config.auth)
    proxy_service = proxy_service or ProxyService(config.upstream)
    app.extensions["arrgate"] = {
        "config": config,
        "authenticator": authenticator,
        "proxy_service": proxy_service,
    }

    _configure_request_context(app)
    _configure_authentication(app, authenticator)
    _configure_response_hooks(app)

    info_handler = InfoHandler(config)
    proxy_handler = ProxyHandler(RequestGuard(config), proxy_service)
    app.add_url_rule("/info", "info", info_handler, methods=["GET"],
                     provide_automatic_options=False)
    app.add_url_rule("/", "proxy_root", proxy_handler, methods=PROXY_METHODS,
                     defaults={"rest": ""}, provide_automatic_options=False)
    app.add_url_rule("/<path:rest>", "proxy", proxy_handler, methods=PROXY_METHODS,
                     provide_automatic_options=False)
    return app


def _configure_request_context(app: Flask) -> None:

    @app.before_request
    def _start_request():
        g.started = time.monotonic()
        g.request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        g.context = RequestContext(
            request_id=g.request_id,
            method=request.method,
            path=request.path,
            client_cn=request.environ.get(CLIENT_CN_ENVIRON_KEY) or "unknown",
        )
        log_request(logger, request.method, request.path,
                    request.remote_addr, g.context.client_cn)


def _configure_authentication(app: Flask, authenticator: Authenticator) -> None:

    @app.before_request
    def _authenticate():
        result = authenticator.verify(request)
        if result:
            return None
        # Never log the presented secret
        logger.warning(
            "Authentication failed for %s %s from %s: %s",
            request.method, request.path, request.remote_addr, result.reason,
            extra={
                "auth_mode": str(authenticator.mode),
                "method": request.method,
                "path": request.path,
                "remote_addr": request.remote_addr,
                "reason": result.reason,
            },
        )
        return error_response(401, "Unauthorized", authenticator.challenge_headers())


def _configure_response_hooks(app: Flask) -> None:

    @app.after_request
    def _finish_request(response: Response) -> Response:
        request_id = g.get("request_id")
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id
        apply_security_headers(response.headers)

        context = g.get("context")
        if context is not None:
            context.status_code = response.status_code
            _audit(context)
        return response

    @app.errorhandler(InternalServerError)
    def _internal_error(error: InternalServerError):
        original = getattr(error, "original_exception", None) or error
        logger.error("Unhandled error: %s", original, exc_info=original)
        return error_response(500, "500 Internal Server Error")


def _audit(context: RequestContext) -> None:
    if context.reason:
        log_rejection(logger, context.method, context.path, context.status_code,
                      context.reason, context.client_cn)
    elif context.service is not None:
        log_response(logger, context.method, context.path, context.status_code,
                     time.monotonic() - g.started, context.client_cn)
