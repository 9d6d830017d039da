"""
Exception hierarchy shared by the gateway and the upstream API.

Protocol-specific errors (signature rejections, path guard failures,
upstream transport failures) live in libs.bff_auth.exceptions and derive
from PlatformError so a single catch-all remains possible.
"""


class PlatformError(Exception):
    """
    Base exception for all gateway platform errors.

    Example:
        >>> try:
        ...     # gateway code
        ...     pass
        ... except PlatformError as e:
        ...     logger.error(f"Platform error: {e}")
    """

    pass


class ConfigurationError(PlatformError):
    """
    Raised when required configuration or secrets are missing.

    A missing BFF_HMAC_SECRET is a startup-class failure: services raise this
    from their lifespan hook so they never start serving unsigned traffic.

    Example:
        >>> if not secret:
        ...     raise ConfigurationError("BFF_HMAC_SECRET environment variable is not set")
    """

    pass
