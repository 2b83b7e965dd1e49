"""Environment references in watcher settings.

Config values and credentials may name environment variables as ``${NAME}``
or ``$NAME`` so secrets stay out of YAML files and shell history. A ``.env``
file can seed the environment first (python-dotenv).
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

__all__ = ["expand_env_vars", "expand_options", "load_env_file"]

_REFERENCE = re.compile(r"\$\{(?P<braced>[^}]+)\}|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(path: Optional[Union[str, Path]] = None, *, override: bool = False) -> bool:
    """Load ``path`` (or the nearest ``.env``); True if anything was loaded."""
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(value: str, *, strict: bool = False) -> str:
    """Replace environment references in ``value``.

    Unset variables are left as written, or raise KeyError when ``strict``.

    Example:
        >>> os.environ["N8N_API_KEY"] = "secret"
        >>> expand_env_vars("${N8N_API_KEY}")
        'secret'
    """

    def resolve(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        if name in os.environ:
            return os.environ[name]
        if strict:
            raise KeyError(f"Environment variable not set: {name}")
        return match.group(0)

    return _REFERENCE.sub(resolve, value)


def expand_options(options: Dict[str, Any], *, strict: bool = False) -> Dict[str, Any]:
    """Expand references in string values, descending into nested mappings
    such as ``headers``. Other values pass through untouched."""
    expanded: Dict[str, Any] = {}
    for key, value in options.items():
        if isinstance(value, str):
            value = expand_env_vars(value, strict=strict)
        elif isinstance(value, dict):
            value = expand_options(value, strict=strict)
        expanded[key] = value
    return expanded
