"""Trigger configuration.

Configuration can be built in Python, from a dict, or from a YAML file.

Example YAML (watch.yaml):
    watch:
      base_url: http://localhost:5678
      interval_seconds: 30
      exclude_regex: "^(_|Backup)"
      emit_full_workflow: true
      request_timeout_ms: 10000
      max_per_cycle: 500
      auth:
        api_key: ${N8N_API_KEY}

Usage:
    from workflow_watch.config import load_config
    config = load_config("./watch.yaml")
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Union

import yaml

from workflow_watch.auth import AuthConfig, auth_config_from_dict
from workflow_watch.client import DEFAULT_MAX_PAGES
from workflow_watch.env import expand_options
from workflow_watch.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_EXCLUDE_REGEX",
    "DEFAULT_TRIGGER_ID",
    "WatchConfig",
    "load_config",
    "watch_config_from_dict",
]

DEFAULT_BASE_URL = "http://localhost:5678"
DEFAULT_EXCLUDE_REGEX = "^(_|Backup|Global Workflow Updated Trigger)"
DEFAULT_TRIGGER_ID = "global-workflow-updated-trigger"

INTERVAL_BOUNDS = (2, 3600)
TIMEOUT_MS_BOUNDS = (1000, 60000)
MAX_PER_CYCLE_LIMIT = 10000


@dataclass
class WatchConfig:
    """Settings for one workflow trigger instance.

    Example:
        config = WatchConfig(
            base_url="http://n8n:5678",
            interval_seconds=30,
            auth=AuthConfig(api_key="${N8N_API_KEY}"),
        )
    """

    base_url: str = DEFAULT_BASE_URL
    interval_seconds: float = 10
    exclude_regex: str = DEFAULT_EXCLUDE_REGEX
    emit_full_workflow: bool = True
    request_timeout_ms: int = 10000
    max_per_cycle: int = 1000  # 0 = unlimited

    trigger_id: str = DEFAULT_TRIGGER_ID
    auth: Optional[AuthConfig] = None

    # Transport tuning
    max_retries: int = 1
    page_limit: Optional[int] = None
    max_pages: int = DEFAULT_MAX_PAGES
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.base_url = (self.base_url or "").rstrip("/")
        self._exclude_pattern: Optional[Pattern[str]] = None

        errors = self._validate()
        if errors:
            raise ConfigurationError("Invalid trigger configuration", issues=errors)

    def _validate(self) -> List[str]:
        errors: List[str] = []

        if not self.base_url:
            errors.append("base_url is required (e.g., 'http://localhost:5678')")
        elif not self.base_url.startswith(("http://", "https://")):
            errors.append(f"base_url must start with http:// or https:// (got '{self.base_url}')")

        low, high = INTERVAL_BOUNDS
        if not low <= self.interval_seconds <= high:
            errors.append(f"interval_seconds must be between {low} and {high}")

        low, high = TIMEOUT_MS_BOUNDS
        if not low <= self.request_timeout_ms <= high:
            errors.append(f"request_timeout_ms must be between {low} and {high}")

        if self.max_per_cycle > MAX_PER_CYCLE_LIMIT:
            errors.append(f"max_per_cycle must be at most {MAX_PER_CYCLE_LIMIT} (0 = unlimited)")

        if self.max_retries < 1:
            errors.append("max_retries must be at least 1")

        if self.page_limit is not None and self.page_limit < 1:
            errors.append("page_limit must be positive when set")

        if self.max_pages < 1:
            errors.append("max_pages must be at least 1")

        if not self.trigger_id:
            errors.append("trigger_id is required")

        if self.exclude_regex:
            try:
                self._exclude_pattern = re.compile(self.exclude_regex, re.IGNORECASE)
            except re.error as exc:
                errors.append(f"exclude_regex is not a valid regular expression: {exc}")

        return errors

    @property
    def exclude_pattern(self) -> Optional[Pattern[str]]:
        """Compiled exclusion regex, or None when exclusion is disabled."""
        return self._exclude_pattern

    @property
    def request_timeout(self) -> float:
        """Per-request timeout in seconds."""
        return self.request_timeout_ms / 1000.0

    @property
    def unlimited(self) -> bool:
        return self.max_per_cycle <= 0


_NUMERIC_OPTIONS: Dict[str, Callable[[Any], Any]] = {
    "interval_seconds": float,
    "request_timeout_ms": int,
    "max_per_cycle": int,
    "max_retries": int,
    "page_limit": int,
    "max_pages": int,
}
# Options where a blank value means "use nothing"
_NULLABLE_OPTIONS = {"page_limit"}


def _cast_number(key: str, value: Any, caster: Callable[[Any], Any]) -> Any:
    """Coerce a YAML or env-expanded value; blanks and non-numbers are config errors."""
    if value is None and key in _NULLABLE_OPTIONS:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigurationError(f"{key} must be a number", field=key, value=value)
    try:
        return caster(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number", field=key, value=value)


def _cast_flag(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    raise ConfigurationError(f"{key} must be true or false", field=key, value=value)


def watch_config_from_dict(options: Mapping[str, Any]) -> WatchConfig:
    """Create a WatchConfig from a dictionary of options.

    Expected keys mirror the WatchConfig fields; ``auth`` is a nested mapping
    with ``username``, ``password``, ``api_key`` and ``api_key_header``.
    Environment references (${VAR}) in non-credential values are expanded
    here; credentials are expanded when request headers are built.
    """
    options = dict(options or {})
    auth_options = options.pop("auth", None)

    known = {f.name for f in fields(WatchConfig)} - {"auth"}
    unknown = sorted(set(options) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown option(s): {', '.join(unknown)}",
            suggestion=f"Valid options: {', '.join(sorted(known | {'auth'}))}",
        )

    options = expand_options(options)

    for key, caster in _NUMERIC_OPTIONS.items():
        if key in options:
            options[key] = _cast_number(key, options[key], caster)

    flag = options.get("emit_full_workflow")
    if "emit_full_workflow" in options:
        options["emit_full_workflow"] = _cast_flag("emit_full_workflow", flag)

    if auth_options is not None and not isinstance(auth_options, Mapping):
        raise ConfigurationError("auth must be a mapping", field="auth")

    return WatchConfig(auth=auth_config_from_dict(auth_options), **options)


def load_config(path: Union[str, Path]) -> WatchConfig:
    """Load a WatchConfig from a YAML file.

    The file may hold the options at the top level or under a ``watch`` key.

    Raises:
        ConfigurationError: If the file is missing, unparseable or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", field="config", value=path)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}", field="config") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping", field="config")

    if "watch" in data:
        data = data["watch"] or {}
        if not isinstance(data, dict):
            raise ConfigurationError("'watch' section must be a mapping", field="watch")

    logger.debug("Loaded config from %s", path)
    return watch_config_from_dict(data)
