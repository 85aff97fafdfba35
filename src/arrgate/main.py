"""Entry point of the arrgate."""

import signal
import sys
import threading

from arrgate.config.config_loader import ConfigLoader, ConfigurationError
from arrgate.handlers.app import create_app
from arrgate.server.gateway_server import GatewayServer
from arrgate.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def main() -> int:
    """Load the configuration and serve until SIGINT or SIGTERM.

    Returns:
        int: Process exit status.
    """
    try:
        config = ConfigLoader().load_config()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 1
    configure_logging(config.server.log_level)

    try:
        server = GatewayServer(config, create_app(config))
    except (ConfigurationError, OSError) as e:
        logger.error("Application startup error: %s", e)
        return 1

    stop_requested = threading.Event()

    def _request_stop(signum, frame):
        stop_requested.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    server_thread = threading.Thread(
        target=server.serve_forever, name="arrgate-server", daemon=True
    )
    server_thread.start()

    while not stop_requested.wait(timeout=1.0):
        if not server_thread.is_alive():
            logger.error("HTTP server stopped unexpectedly")
            return 1

    logger.info("Shutting down server...")
    server.stop(config.server.shutdown_grace_period)
    server_thread.join(timeout=5)
    return 0


if __name__ == "__main__":
    sys.exit(main())
