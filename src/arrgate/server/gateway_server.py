"""Threaded HTTP(S) server hosting the gateway application."""

import ssl
import threading
import time
from typing import Optional

from werkzeug.serving import WSGIRequestHandler, make_server
from werkzeug.wsgi import ClosingIterator

from arrgate.config.models import GatewayConfig, ServerConfig
from arrgate.server.tls import build_ssl_context
from arrgate.utils.logger import get_logger

logger = get_logger(__name__)

CLIENT_CN_ENVIRON_KEY = "arrgate.client_cn"


def peer_common_name(cert: Optional[dict]) -> Optional[str]:
    """Extract the subject CN from a certificate as returned by getpeercert()."""
    for rdn in (cert or {}).get("subject", ()):
        for key, value in rdn:
            if key == "commonName":
                return value
    return None


def _request_handler(server_config: ServerConfig):
    """Build a request handler class applying the server timeouts."""

    class GatewayRequestHandler(WSGIRequestHandler):
        protocol_version = "HTTP/1.1"
        handshake_failed = False

        def setup(self):
            super().setup()
            if isinstance(self.connection, ssl.SSLSocket):
                # The listener defers the handshake to this connection thread
                self.connection.settimeout(server_config.read_timeout)
                try:
                    self.connection.do_handshake()
                except OSError as e:
                    self.handshake_failed = True
                    logger.warning(
                        "TLS handshake failed from %s: %s", self.client_address[0], e
                    )

        def handle(self):
            if self.handshake_failed:
                return
            super().handle()

        def handle_one_request(self):
            # Waiting for the next request on a kept-alive connection
            self.connection.settimeout(server_config.idle_timeout)
            return super().handle_one_request()

        def parse_request(self):
            # Request line received, headers and body follow
            self.connection.settimeout(server_config.read_timeout)
            return super().parse_request()

        def send_response(self, code, message=None):
            self.connection.settimeout(server_config.write_timeout)
            return super().send_response(code, message)

        def make_environ(self):
            environ = super().make_environ()
            getpeercert = getattr(self.connection, "getpeercert", None)
            if getpeercert is not None:
                common_name = peer_common_name(getpeercert())
                if common_name:
                    environ[CLIENT_CN_ENVIRON_KEY] = common_name
            return environ

    return GatewayRequestHandler


class GatewayServer:
    """Serves the gateway application, one thread per connection.

    Requests are counted while in flight so that `stop` can give them a
    bounded grace period.
    """

    def __init__(self, config: GatewayConfig, app, ssl_context=None):
        """Create the listener.

        Args:
            config: Gateway configuration.
            app: WSGI application.
            ssl_context: SSL context for HTTPS; built from the configuration
                when TLS is enabled and none is given.

        Raises:
            ConfigurationError: If TLS key material cannot be loaded.
        """
        self._config = config
        self._in_flight = 0
        self._idle = threading.Condition()

        if ssl_context is None and config.tls.enabled:
            ssl_context = build_ssl_context(
                config.tls, config.server.tls_min_version, config.auth.mode
            )
        self.tls_enabled = ssl_context is not None
        self._server = make_server(
            config.server.host,
            config.server.port,
            self._track_requests(app),
            threaded=True,
            request_handler=_request_handler(config.server),
        )
        if ssl_context is not None:
            # Handshakes run on the connection threads, see GatewayRequestHandler.setup
            self._server.socket = ssl_context.wrap_socket(
                self._server.socket, server_side=True, do_handshake_on_connect=False
            )
            self._server.ssl_context = ssl_context

    @property
    def port(self) -> int:
        return self._server.server_port

    @property
    def in_flight(self) -> int:
        with self._idle:
            return self._in_flight

    def _track_requests(self, app):
        def tracked_app(environ, start_response):
            with self._idle:
                self._in_flight += 1
            try:
                app_iter = app(environ, start_response)
            except BaseException:
                self._request_done()
                raise
            return ClosingIterator(app_iter, self._request_done)

        return tracked_app

    def _request_done(self) -> None:
        with self._idle:
            self._in_flight -= 1
            self._idle.notify_all()

    def serve_forever(self) -> None:
        scheme = "HTTPS" if self.tls_enabled else "HTTP"
        logger.info("Starting %s server on %s:%s", scheme, self._config.server.host, self.port)
        self._server.serve_forever()

    def stop(self, grace_period: float = None) -> None:
        """Stop accepting connections and wait for in-flight requests.

        Must be called from a thread other than the one running
        `serve_forever`. Requests still running after `grace_period` seconds
        are abandoned.
        """
        if grace_period is None:
            grace_period = self._config.server.shutdown_grace_period
        started = time.monotonic()
        self._server.shutdown()

        remaining = max(0.0, grace_period - (time.monotonic() - started))
        with self._idle:
            drained = self._idle.wait_for(lambda: self._in_flight == 0, timeout=remaining)
            in_flight = self._in_flight
        if not drained:
            logger.warning(
                "Shutdown grace period expired with %d requests in flight", in_flight
            )
        self._server.server_close()
        logger.info("Server stopped")
