"""Configuration loader for the arrgate."""

import json
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import boto3

from arrgate.config.models import (
    AuthConfig,
    AuthMode,
    BasicAuthConfig,
    GatewayConfig,
    ServerConfig,
    ServiceConfig,
    TLSConfig,
    UpstreamConfig,
)
from arrgate.config.whitelist import compile_whitelist
from arrgate.services.secret_resolver import SecretResolutionError, SecretResolver
from arrgate.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "/config/arrgate.json"
SERVICE_NAMES = ("sonarr", "radarr")
TLS_VERSIONS = ("1.2", "1.3")
LOG_LEVELS = ("debug", "info", "warn", "error")

# Environment variables overriding values of the configuration document.
_ENV_OVERRIDES = {
    "ARRGATE_AUTH_MODE": ("auth", "mode"),
    "ARRGATE_API_KEY": ("auth", "apiKey"),
    "ARRGATE_BASIC_AUTH_USER": ("auth", "basicAuth", "user"),
    "ARRGATE_BASIC_AUTH_PASS": ("auth", "basicAuth", "password"),
    "ARRGATE_TLS_CERT": ("tls", "cert"),
    "ARRGATE_TLS_KEY": ("tls", "key"),
    "ARRGATE_CA_CERT": ("tls", "caCert"),
    "ARRGATE_PORT": ("server", "port"),
    "SONARR_URL": ("services", "sonarr", "url"),
    "SONARR_API_KEY": ("services", "sonarr", "apiKey"),
    "RADARR_URL": ("services", "radarr", "url"),
    "RADARR_API_KEY": ("services", "radarr", "apiKey"),
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""


def _section(data: Dict[str, Any], key: str, label: str, errors: List[str]) -> Dict[str, Any]:
    """Return the object stored under `key`, or an empty one if absent or invalid."""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        errors.append(f"'{label}' must be a JSON object")
        return {}
    return value


class ConfigLoader:
    """Loads and validates gateway configuration from S3 or local file."""

    def __init__(
        self,
        s3_bucket: str = None,
        s3_key: str = None,
        config_path: str = None,
        secret_resolver: SecretResolver = None,
        environ: Dict[str, str] = None,
    ) -> None:
        """
        Initialize the config loader.

        Args:
            s3_bucket: S3 bucket name for configuration.
            s3_key: S3 key for configuration file.
            config_path: Path to the local configuration file (fallback).
            secret_resolver: Resolver for `ssm:` secret references.
            environ: Environment used for overrides, `os.environ` by default.
        """
        self._environ = os.environ if environ is None else environ
        # S3 configuration (priority)
        self._s3_bucket = s3_bucket or self._environ.get("ARRGATE_CONFIG_S3_BUCKET")
        self._s3_key = s3_key or self._environ.get("ARRGATE_CONFIG_S3_KEY")
        self._s3_client = None
        # Local file configuration (fallback)
        self.config_path = config_path or self._environ.get(
            "ARRGATE_CONFIG_PATH", DEFAULT_CONFIG_PATH
        )
        self._secret_resolver = secret_resolver or SecretResolver()
        if self._check_s3_config():
            self._initialize_s3_client()

    def _initialize_s3_client(self) -> None:
        try:
            self._s3_client = boto3.client("s3")
        except Exception as e:
            # Log warning but don't fail - will fall back to local file
            logger.warning("Failed to initialize S3 client: %s", e)

    def _check_s3_config(self) -> bool:
        return bool(self._s3_bucket and self._s3_key)

    def load_config(self) -> GatewayConfig:
        """
        Load and validate the gateway configuration.

        Tries to load from S3 first (if configured), then falls back to local
        file. Environment overrides are applied before validation.

        Returns:
            `GatewayConfig`: The validated configuration object.

        Raises:
            `ConfigurationError`: If configuration is invalid or cannot be
            loaded.
        """
        config_data = None

        # Try S3 first if configured
        if self._s3_client and self._check_s3_config():
            try:
                config_data = self._load_from_s3()
            except ConfigurationError as e:
                logger.warning(
                    "Failed to load config from S3 (bucket=%s, key=%s), "
                    "falling back to local file. Reason: %s",
                    self._s3_bucket, self._s3_key, str(e.__cause__ or e)
                )

        # Fall back to local file if S3 not configured or failed
        if config_data is None:
            config_data = self._load_from_file()
        if not isinstance(config_data, dict):
            raise ConfigurationError("Configuration document must be a JSON object")
        self._apply_env_overrides(config_data)
        return self._parse_config(config_data)

    def _load_from_s3(self) -> Dict[str, Any]:
        """Load configuration from S3.

        Returns:
            `Dict`: Configuration data.

        Raises:
            `ConfigurationError`: If S3 load fails.
        """
        try:
            response = self._s3_client.get_object(
                Bucket=self._s3_bucket, Key=self._s3_key
            )
            config_content = response["Body"].read().decode("utf-8")
            return json.loads(config_content)
        except Exception as e:
            raise ConfigurationError("Unexpected error loading from S3") from e

    def _load_from_file(self) -> Dict[str, Any]:
        """Load configuration from local file.

        Returns:
            `Dict`: Configuration data.

        Raises:
            `ConfigurationError`: If file load fails.
        """
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise ConfigurationError(
                f"Configuration file not found: {self.config_path}"
            )
        except json.JSONDecodeError as e:
            raise ConfigurationError("Invalid JSON in configuration file") from e

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> None:
        for variable, keys in _ENV_OVERRIDES.items():
            value = self._environ.get(variable)
            if not value:
                continue
            section = config_data
            for key in keys[:-1]:
                if not isinstance(section.get(key), dict):
                    section[key] = {}
                section = section[key]
            section[keys[-1]] = value

    def _parse_config(self, config_data: Dict[str, Any]) -> GatewayConfig:
        """Parse configuration data into structured objects.

        Every problem found is collected so that a single error reports all
        of them.

        Args:
            config_data: Raw configuration dictionary.

        Returns:
            `GatewayConfig`: Parsed configuration object.

        Raises:
            `ConfigurationError`: If configuration is invalid.
        """
        errors: List[str] = []
        services_data = _section(config_data, "services", "services", errors)
        services_by_name = {
            name: _section(services_data, name, f"services.{name}", errors)
            for name in SERVICE_NAMES
        }
        services = {
            name: self._parse_service_config(name, services_by_name[name], errors)
            for name in SERVICE_NAMES
        }
        auth_config = self._auth_config(_section(config_data, "auth", "auth", errors), errors)
        tls_config = self._tls_config(_section(config_data, "tls", "tls", errors))
        server_config = self._server_config(_section(config_data, "server", "server", errors))
        upstream_config = self._upstream_config(
            _section(config_data, "upstream", "upstream", errors)
        )

        requested = [
            name for name in SERVICE_NAMES
            if services_by_name[name].get("url")
        ]
        if not requested:
            errors.append(
                "at least one service must be configured "
                "(set SONARR_URL or RADARR_URL)"
            )
        self._validate_auth_config(auth_config, tls_config, errors)
        self._validate_tls_config(tls_config, errors)

        if errors:
            raise ConfigurationError(
                "configuration validation failed: " + "; ".join(errors)
            )

        for service in services.values():
            if service is not None:
                logger.info("%s configured: %s", service.name.capitalize(), service.url)

        return GatewayConfig(
            sonarr=services["sonarr"],
            radarr=services["radarr"],
            auth=auth_config,
            tls=tls_config,
            server=server_config,
            upstream=upstream_config,
        )

    def _parse_service_config(self,
                              name: str,
                              service_data: Dict[str, Any],
                              errors: List[str]) -> Optional[ServiceConfig]:
        """Parse a single service configuration.

        Args:
            name: Service name, also its route prefix.
            service_data: Raw service configuration dictionary.
            errors: Collected validation errors.

        Returns:
            `ServiceConfig`: Parsed service, or None if it is not configured
            or invalid.
        """
        url = service_data.get("url") or ""
        if not url:
            return None
        if not isinstance(url, str):
            errors.append(f"invalid {name} URL: must be a string")
            return None

        parsed_url = urlsplit(url)
        if parsed_url.scheme not in ("http", "https"):
            errors.append(
                f"invalid {name} URL scheme '{parsed_url.scheme}' "
                "(must be http or https)"
            )
            return None
        if not parsed_url.hostname:
            errors.append(f"invalid {name} URL: missing host")
            return None

        whitelist = service_data.get("whitelist") or []
        if isinstance(whitelist, str):
            whitelist = [whitelist]
        if not isinstance(whitelist, list) or not all(isinstance(p, str) for p in whitelist):
            errors.append(f"'services.{name}.whitelist' must be a list of strings")
            return None
        rules = compile_whitelist(whitelist)
        if whitelist and not rules:
            errors.append(f"all {name} whitelist patterns failed to compile")
            return None

        api_key = self._resolve_secret(
            service_data.get("apiKey") or "", f"{name} apiKey", errors
        )
        return ServiceConfig(
            name=name,
            url=url,
            parsed_url=parsed_url,
            api_key=api_key,
            whitelist=tuple(whitelist),
            rules=tuple(rules),
        )

    def _resolve_secret(self, value: str, label: str, errors: List[str]) -> str:
        try:
            return self._secret_resolver.resolve(value)
        except SecretResolutionError as e:
            errors.append(f"cannot resolve {label}: {e}")
            return ""

    def _auth_config(self, auth_data: Dict[str, Any], errors: List[str]) -> AuthConfig:
        """Parse an authentication configuration.

        Args:
            auth_data: Raw authentication configuration dictionary.
            errors: Collected validation errors.

        Returns:
            `AuthConfig`: Parsed authentication configuration object.
        """
        raw_mode = auth_data.get("mode") or AuthMode.API_KEY.value
        try:
            mode = AuthMode(raw_mode)
        except ValueError:
            errors.append(
                f"invalid auth mode '{raw_mode}' (valid modes: "
                + ", ".join(str(m) for m in AuthMode) + ")"
            )
            mode = None

        basic_data = _section(auth_data, "basicAuth", "auth.basicAuth", errors)
        return AuthConfig(
            mode=mode,
            basic_auth=BasicAuthConfig(
                user=basic_data.get("user") or "",
                password=self._resolve_secret(
                    basic_data.get("password") or "", "basic auth password", errors
                ),
            ),
            api_key=self._resolve_secret(
                auth_data.get("apiKey") or "", "auth apiKey", errors
            ),
        )

    @staticmethod
    def _validate_auth_config(auth_config: AuthConfig,
                              tls_config: TLSConfig,
                              errors: List[str]) -> None:
        if auth_config.mode == AuthMode.BASIC:
            if not auth_config.basic_auth.user:
                errors.append("ARRGATE_BASIC_AUTH_USER required for basic auth mode")
            if not auth_config.basic_auth.password:
                errors.append("ARRGATE_BASIC_AUTH_PASS required for basic auth mode")
        elif auth_config.mode == AuthMode.API_KEY:
            if not auth_config.api_key:
                errors.append("ARRGATE_API_KEY required for apikey auth mode")
        elif auth_config.mode == AuthMode.MTLS:
            if not tls_config.cert:
                errors.append("ARRGATE_TLS_CERT required for mTLS mode")
            if not tls_config.key:
                errors.append("ARRGATE_TLS_KEY required for mTLS mode")
            if not tls_config.ca_cert:
                errors.append(
                    "ARRGATE_CA_CERT required for mTLS mode "
                    "(CA to verify client certs)"
                )

    @staticmethod
    def _tls_config(tls_data: Dict[str, Any]) -> TLSConfig:
        return TLSConfig(
            cert=tls_data.get("cert") or "",
            key=tls_data.get("key") or "",
            ca_cert=tls_data.get("caCert") or "",
        )

    @staticmethod
    def _validate_tls_config(tls_config: TLSConfig, errors: List[str]) -> None:
        if bool(tls_config.cert) != bool(tls_config.key):
            errors.append(
                "ARRGATE_TLS_CERT and ARRGATE_TLS_KEY must both be set for HTTPS"
            )

    def _server_config(self, server_data: Dict[str, Any]) -> ServerConfig:
        """Parse a server configuration.

        Invalid values are replaced by their defaults with a warning.

        Args:
            server_data: Raw server configuration dictionary.

        Returns:
            `ServerConfig`: Parsed server configuration object.
        """
        defaults = ServerConfig()

        tls_min_version = str(server_data.get("tlsMinVersion", defaults.tls_min_version))
        if tls_min_version not in TLS_VERSIONS:
            logger.warning(
                "Invalid tlsMinVersion %r, using default 1.2", tls_min_version
            )
            tls_min_version = "1.2"

        log_level = str(server_data.get("logLevel", defaults.log_level)).lower()
        if log_level not in LOG_LEVELS:
            logger.warning("Invalid logLevel %r, using default 'info'", log_level)
            log_level = "info"

        return ServerConfig(
            host=server_data.get("host") or defaults.host,
            port=int(self._positive(server_data, "port", defaults.port)),
            read_timeout=self._positive(server_data, "readTimeout", defaults.read_timeout),
            write_timeout=self._positive(server_data, "writeTimeout", defaults.write_timeout),
            idle_timeout=self._positive(server_data, "idleTimeout", defaults.idle_timeout),
            max_body_size=int(
                self._positive(server_data, "maxBodySize", defaults.max_body_size)
            ),
            tls_min_version=tls_min_version,
            log_level=log_level,
            shutdown_grace_period=self._positive(
                server_data, "shutdownGracePeriod", defaults.shutdown_grace_period
            ),
        )

    def _upstream_config(self, upstream_data: Dict[str, Any]) -> UpstreamConfig:
        defaults = UpstreamConfig()
        return UpstreamConfig(
            connect_timeout=self._positive(
                upstream_data, "connectTimeout", defaults.connect_timeout
            ),
            read_timeout=self._positive(
                upstream_data, "readTimeout", defaults.read_timeout
            ),
            pool_connections=int(self._positive(
                upstream_data, "poolConnections", defaults.pool_connections
            )),
            pool_maxsize=int(self._positive(
                upstream_data, "poolMaxsize", defaults.pool_maxsize
            )),
        )

    @staticmethod
    def _positive(data: Dict[str, Any], key: str, default):
        if key not in data:
            return default
        value = data[key]
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = 0
        if number <= 0:
            logger.warning("Invalid %s %r, using default %s", key, value, default)
            return default
        return number
