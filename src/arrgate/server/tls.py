"""TLS settings of the inbound listener."""

import ssl

from arrgate.config.config_loader import ConfigurationError
from arrgate.config.models import AuthMode, TLSConfig
from arrgate.utils.logger import get_logger

logger = get_logger(__name__)

TLS_MIN_VERSIONS = {
    "1.2": ssl.TLSVersion.TLSv1_2,
    "1.3": ssl.TLSVersion.TLSv1_3,
}


def build_ssl_context(tls_config: TLSConfig, min_version: str, auth_mode: AuthMode) -> ssl.SSLContext:
    """Build the server SSL context.

    Client certificates are requested and verified against the CA bundle only
    in mTLS mode; a handshake without a valid one then fails before any
    request is read.

    Args:
        tls_config: Certificate, key and CA bundle paths.
        min_version: Minimum protocol version, "1.2" or "1.3".
        auth_mode: Active authentication mode.

    Returns:
        ssl.SSLContext: Context for wrapping the listening socket.

    Raises:
        ConfigurationError: If key material cannot be read or parsed.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)

    version = TLS_MIN_VERSIONS.get(min_version)
    if version is None:
        logger.warning("Invalid TLS minimum version %r, using 1.2", min_version)
        version = ssl.TLSVersion.TLSv1_2
    context.minimum_version = version

    try:
        context.load_cert_chain(certfile=tls_config.cert, keyfile=tls_config.key)
    except OSError as e:
        raise ConfigurationError(f"failed to load TLS certificate or key: {e}") from e

    if tls_config.ca_cert:
        try:
            context.load_verify_locations(cafile=tls_config.ca_cert)
        except OSError as e:
            raise ConfigurationError(f"failed to load CA certificate: {e}") from e

    if auth_mode == AuthMode.MTLS:
        context.verify_mode = ssl.CERT_REQUIRED
    else:
        context.verify_mode = ssl.CERT_NONE
    return context
