import os
import re
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

_PLACEHOLDER = re.compile(r"\$\(([^)]+)\)")


def _placeholders(value: Any) -> set[str]:
    match value:
        case str():
            return set(_PLACEHOLDER.findall(value))
        case dict():
            return set().union(*(_placeholders(item) for item in value.values()))
        case list():
            return set().union(*(_placeholders(item) for item in value))
        case _:
            return set()


def _substitute(value: Any) -> Any:
    match value:
        case str():
            return _PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), ""), value)
        case dict():
            return {key: _substitute(item) for key, item in value.items()}
        case list():
            return [_substitute(item) for item in value]
        case _:
            return value


def load_yaml_config(config_path: Path, required_vars: set[str] | None = None) -> dict[str, Any]:
    """Read the YAML mapping at *config_path* with ``$(VAR)`` placeholders filled in.

    Unset variables read as empty strings, except those named in
    *required_vars*, which raise :class:`ValueError` together in one message.
    A missing file raises :class:`FileNotFoundError`.
    """
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    missing = sorted(
        name for name in _placeholders(raw) & (required_vars or set()) if name not in os.environ
    )
    if missing:
        raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
    return _substitute(raw)
