"""Unit tests for configuration models."""

import dataclasses

import pytest

from arrgate.config.models import (
    AuthConfig,
    AuthMode,
    BasicAuthConfig,
    GatewayConfig,
    ServerConfig,
    TLSConfig,
    UpstreamConfig,
)


class TestAuthMode:
    """Test cases for AuthMode enum."""

    def test_values(self):
        assert AuthMode("mtls") is AuthMode.MTLS
        assert AuthMode("basic") is AuthMode.BASIC
        assert AuthMode("apikey") is AuthMode.API_KEY

    def test_str(self):
        assert str(AuthMode.API_KEY) == "apikey"

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            AuthMode("oauth")


class TestAuthConfig:
    """Test cases for AuthConfig defaults and secrecy."""

    def test_defaults(self):
        auth_config = AuthConfig()

        assert auth_config.mode == AuthMode.API_KEY
        assert auth_config.api_key == ""
        assert auth_config.basic_auth == BasicAuthConfig()

    def test_secrets_not_in_repr(self):
        auth_config = AuthConfig(
            mode=AuthMode.BASIC,
            basic_auth=BasicAuthConfig(user="admin", password="hunter2"),
            api_key="top-secret",
        )

        assert "hunter2" not in repr(auth_config)
        assert "top-secret" not in repr(auth_config)
        assert "admin" in repr(auth_config)

    def test_immutable(self):
        auth_config = AuthConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            auth_config.api_key = "changed"


class TestServiceConfig:
    """Test cases for ServiceConfig."""

    def test_api_key_not_in_repr(self, make_service):
        service = make_service(api_key="upstream-secret")
        assert "upstream-secret" not in repr(service)

    def test_keeps_whitelist_sources(self, make_service):
        service = make_service(whitelist=["GET:^/a$", "^/b$"])

        assert service.whitelist == ("GET:^/a$", "^/b$")
        assert len(service.rules) == 2
        assert service.rules[0].methods == frozenset({"GET"})
        assert service.rules[1].methods is None


class TestTLSConfig:
    """Test cases for TLSConfig."""

    def test_enabled_requires_cert_and_key(self):
        assert TLSConfig().enabled is False
        assert TLSConfig(cert="c.pem").enabled is False
        assert TLSConfig(key="k.pem").enabled is False
        assert TLSConfig(cert="c.pem", key="k.pem").enabled is True


class TestServerConfig:
    """Test cases for ServerConfig defaults."""

    def test_defaults(self):
        server_config = ServerConfig()

        assert server_config.port == 8443
        assert server_config.read_timeout == 30.0
        assert server_config.write_timeout == 30.0
        assert server_config.idle_timeout == 120.0
        assert server_config.max_body_size == 10 * 1024 * 1024
        assert server_config.tls_min_version == "1.2"
        assert server_config.log_level == "info"
        assert server_config.shutdown_grace_period == 30.0

    def test_upstream_defaults(self):
        upstream_config = UpstreamConfig()

        assert upstream_config.connect_timeout == 30.0
        assert upstream_config.pool_maxsize == 100


class TestGatewayConfig:
    """Test cases for GatewayConfig."""

    def test_configured_services(self, make_service):
        sonarr = make_service(name="sonarr")
        config = GatewayConfig(sonarr=sonarr, radarr=None, auth=AuthConfig())

        assert config.configured_services() == [sonarr]

    def test_configured_services_order(self, make_service):
        sonarr = make_service(name="sonarr")
        radarr = make_service(name="radarr", url="http://radarr:7878")
        config = GatewayConfig(sonarr=sonarr, radarr=radarr, auth=AuthConfig())

        assert [s.name for s in config.configured_services()] == ["sonarr", "radarr"]
