"""Pytest configuration and fixtures for arrgate tests."""

import json
import logging
import os
from pathlib import Path
from unittest.mock import Mock, patch
from urllib.parse import urlsplit

import pytest

from arrgate.config.models import (
    AuthConfig,
    AuthMode,
    BasicAuthConfig,
    GatewayConfig,
    ServerConfig,
    ServiceConfig,
    UpstreamConfig,
)
from arrgate.config.whitelist import compile_whitelist
from arrgate.handlers.app import create_app
from arrgate.services.proxy_service import ProxyService

CERTS_DIR = Path(__file__).parent / "fixtures" / "certs"

SONARR_URL = "http://sonarr.local:8989"
SONARR_KEY = "sonarr-upstream-key"
PROXY_API_KEY = "k1"


@pytest.fixture
def make_service():
    """Factory for ServiceConfig objects."""

    def _make(name="sonarr", url=SONARR_URL, whitelist=(), api_key=SONARR_KEY):
        return ServiceConfig(
            name=name,
            url=url,
            parsed_url=urlsplit(url),
            api_key=api_key,
            whitelist=tuple(whitelist),
            rules=tuple(compile_whitelist(whitelist)),
        )

    return _make


@pytest.fixture
def make_config(make_service):
    """Factory for GatewayConfig objects with Sonarr configured."""

    def _make(whitelist=("GET:^/ro$", "^/any$"), auth=None, max_body_size=1024,
              radarr=None, sonarr_url=SONARR_URL):
        return GatewayConfig(
            sonarr=make_service(url=sonarr_url, whitelist=whitelist),
            radarr=radarr,
            auth=auth or AuthConfig(mode=AuthMode.API_KEY, api_key=PROXY_API_KEY),
            server=ServerConfig(max_body_size=max_body_size),
        )

    return _make


@pytest.fixture
def gateway_config(make_config):
    """Sonarr configured, Radarr not, API key auth."""
    return make_config()


@pytest.fixture
def basic_auth_config():
    return AuthConfig(
        mode=AuthMode.BASIC,
        basic_auth=BasicAuthConfig(user="testuser", password="testpass"),
    )


@pytest.fixture
def sample_config_data_dict():
    """Sample configuration document as dictionary."""
    return {
        "services": {
            "sonarr": {
                "url": "http://sonarr:8989",
                "apiKey": "sonarr-key",
                "whitelist": ["GET:^/api/v3/series$", "^/api/v3/system/status$"],
            },
            "radarr": {
                "url": "https://radarr:7878/radarr?tenant=1",
                "apiKey": "radarr-key",
                "whitelist": ["GET,POST:^/api/v3/movie$"],
            },
        },
        "auth": {"mode": "apikey", "apiKey": "proxy-key"},
        "server": {"port": 9443, "maxBodySize": 2048, "tlsMinVersion": "1.3"},
    }


@pytest.fixture
def sample_config_json(sample_config_data_dict):
    """Sample configuration as JSON string."""
    return json.dumps(sample_config_data_dict)


@pytest.fixture
def mock_ssm_client():
    """Mock SSM client for testing."""
    with patch("boto3.client") as mock_client:
        mock_ssm = Mock()
        mock_ssm.get_parameter.return_value = {
            "Parameter": {"Value": "secret-from-ssm"}
        }
        mock_client.return_value = mock_ssm
        yield mock_ssm


@pytest.fixture
def upstream_response():
    """Factory for mocked streaming upstream responses."""

    def _make(status_code=200, headers=None, body=b'{"success": true}'):
        response = Mock()
        response.status_code = status_code
        response.raw.headers.items.return_value = list(
            (headers if headers is not None else {"Content-Type": "application/json"}).items()
        )
        response.raw.stream.return_value = iter([body] if body else [])
        return response

    return _make


@pytest.fixture
def mock_session(upstream_response):
    """Mock requests session returning a JSON 200."""
    session = Mock()
    session.send.return_value = upstream_response()
    return session


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment variables and let caplog see package logs."""
    os.environ["LOG_LEVEL"] = "DEBUG"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"
    package_logger = logging.getLogger("arrgate")
    package_logger.propagate = True
    yield
    package_logger.propagate = False
    # Cleanup
    if "LOG_LEVEL" in os.environ:
        del os.environ["LOG_LEVEL"]
    if "AWS_DEFAULT_REGION" in os.environ:
        del os.environ["AWS_DEFAULT_REGION"]


@pytest.fixture
def make_client(mock_session):
    """Factory for Flask test clients backed by a mocked upstream session."""

    def _make(config):
        proxy_service = ProxyService(UpstreamConfig(), session=mock_session)
        return create_app(config, proxy_service=proxy_service).test_client()

    return _make


@pytest.fixture
def client(make_client, gateway_config):
    return make_client(gateway_config)


@pytest.fixture
def certs_dir():
    """Directory of the test CA, server and client certificates."""
    return CERTS_DIR
