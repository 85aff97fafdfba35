"""Handler for the /info endpoint."""

from flask import jsonify

from arrgate.config.models import GatewayConfig


class InfoHandler:
    """Describes the configured services and their whitelists."""

    def __init__(self, config: GatewayConfig):
        self._config = config

    def __call__(self):
        payload = {
            service.name: {
                "url": service.url,
                "whitelist": list(service.whitelist),
            }
            for service in self._config.configured_services()
        }
        return jsonify(payload)
