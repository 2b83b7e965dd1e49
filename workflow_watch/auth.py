"""Authentication for the workflow source API.

n8n accepts an API key header (``X-N8N-API-KEY`` by default) and, behind
some reverse proxies, HTTP basic auth as well. Both can be configured at the
same time; each is applied when its credentials are present.

Credential values may use environment variable references (${VAR_NAME})
which are expanded when headers are built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from workflow_watch.env import expand_env_vars
from workflow_watch.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_API_KEY_HEADER",
    "AuthConfig",
    "auth_config_from_dict",
    "build_auth_headers",
]

DEFAULT_API_KEY_HEADER = "X-N8N-API-KEY"


@dataclass
class AuthConfig:
    """Credentials used by the transport.

    Examples:
        # API key header
        auth = AuthConfig(api_key="${N8N_API_KEY}")

        # Basic auth in front of the instance, plus the API key
        auth = AuthConfig(
            username="${PROXY_USER}",
            password="${PROXY_PASSWORD}",
            api_key="${N8N_API_KEY}",
        )
    """

    # Basic authentication
    username: Optional[str] = None
    password: Optional[str] = None

    # Header authentication
    api_key: Optional[str] = None
    api_key_header: str = DEFAULT_API_KEY_HEADER

    def __post_init__(self) -> None:
        if self.password and not self.username:
            raise ConfigurationError(
                "Basic authentication requires 'username' when 'password' is set",
                field="auth.username",
            )
        if not self.api_key_header:
            self.api_key_header = DEFAULT_API_KEY_HEADER

    @property
    def has_basic(self) -> bool:
        return bool(self.username)

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


def auth_config_from_dict(options: Optional[Mapping[str, Any]]) -> Optional[AuthConfig]:
    """Build an AuthConfig from the ``auth`` section of a config mapping.

    Returns None when no credentials are configured.
    """
    if not options:
        return None

    known = {"username", "password", "api_key", "api_key_header"}
    unknown = sorted(set(options) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown auth option(s): {', '.join(unknown)}",
            field="auth",
        )

    config = AuthConfig(
        username=options.get("username"),
        password=options.get("password"),
        api_key=options.get("api_key"),
        api_key_header=options.get("api_key_header") or DEFAULT_API_KEY_HEADER,
    )
    if not (config.has_basic or config.has_api_key):
        return None
    return config


def build_auth_headers(
    config: Optional[AuthConfig],
    *,
    extra_headers: Optional[Dict[str, str]] = None,
) -> Tuple[Dict[str, str], Optional[Tuple[str, str]]]:
    """Build HTTP headers and basic auth tuple from an AuthConfig.

    Args:
        config: Credentials (None = anonymous)
        extra_headers: Additional headers to include

    Returns:
        Tuple of (headers dict, optional basic auth tuple)

    Raises:
        KeyError: If a referenced environment variable is not set
    """
    headers: Dict[str, str] = {"Accept": "application/json"}
    auth_tuple: Optional[Tuple[str, str]] = None

    if config is None:
        logger.debug("No authentication configured")
    else:
        if config.has_basic:
            username = expand_env_vars(config.username or "", strict=True)
            password = expand_env_vars(config.password or "", strict=True)
            auth_tuple = (username, password)
            logger.debug("Prepared basic authentication for user '%s'", username)

        if config.has_api_key:
            api_key = expand_env_vars(config.api_key or "", strict=True)
            # An empty key after expansion sends nothing rather than an empty header
            if api_key:
                headers[config.api_key_header] = api_key
                logger.debug("Added API key authentication in header '%s'", config.api_key_header)

    if extra_headers:
        for key, value in extra_headers.items():
            headers[key] = expand_env_vars(value, strict=False)

    return headers, auth_tuple
