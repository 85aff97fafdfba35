"""Unit tests for the listener SSL context."""

import logging
import ssl

import pytest

from arrgate.config.config_loader import ConfigurationError
from arrgate.config.models import AuthMode, TLSConfig
from arrgate.server.tls import build_ssl_context


@pytest.fixture
def tls_config(certs_dir):
    return TLSConfig(
        cert=str(certs_dir / "server.pem"),
        key=str(certs_dir / "server.key"),
        ca_cert=str(certs_dir / "ca.pem"),
    )


class TestBuildSSLContext:
    """Test cases for build_ssl_context."""

    def test_mtls_requires_client_certificate(self, tls_config):
        context = build_ssl_context(tls_config, "1.2", AuthMode.MTLS)

        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2

    @pytest.mark.parametrize("mode", [AuthMode.API_KEY, AuthMode.BASIC])
    def test_other_modes_do_not_request_certificates(self, tls_config, mode):
        context = build_ssl_context(tls_config, "1.2", mode)

        assert context.verify_mode == ssl.CERT_NONE

    def test_minimum_version_13(self, tls_config):
        context = build_ssl_context(tls_config, "1.3", AuthMode.API_KEY)

        assert context.minimum_version == ssl.TLSVersion.TLSv1_3

    def test_unknown_minimum_version_falls_back(self, tls_config, caplog):
        with caplog.at_level(logging.WARNING):
            context = build_ssl_context(tls_config, "1.0", AuthMode.API_KEY)

        assert context.minimum_version == ssl.TLSVersion.TLSv1_2
        assert "Invalid TLS minimum version" in caplog.text

    def test_without_ca_bundle(self, tls_config):
        config = TLSConfig(cert=tls_config.cert, key=tls_config.key)

        context = build_ssl_context(config, "1.2", AuthMode.API_KEY)

        assert context.verify_mode == ssl.CERT_NONE

    def test_missing_certificate(self, tls_config, tmp_path):
        config = TLSConfig(cert=str(tmp_path / "missing.pem"), key=tls_config.key)

        with pytest.raises(ConfigurationError, match="failed to load TLS certificate or key"):
            build_ssl_context(config, "1.2", AuthMode.API_KEY)

    def test_mismatched_key(self, tls_config, certs_dir):
        config = TLSConfig(cert=tls_config.cert, key=str(certs_dir / "client.key"))

        with pytest.raises(ConfigurationError, match="failed to load TLS certificate or key"):
            build_ssl_context(config, "1.2", AuthMode.API_KEY)

    def test_invalid_ca_bundle(self, tls_config, tmp_path):
        bad_ca = tmp_path / "ca.pem"
        bad_ca.write_text("not a certificate", encoding="utf-8")
        config = TLSConfig(cert=tls_config.cert, key=tls_config.key, ca_cert=str(bad_ca))

        with pytest.raises(ConfigurationError, match="failed to load CA certificate"):
            build_ssl_context(config, "1.2", AuthMode.MTLS)
