"""YAML configuration loader.

Loads a single YAML file whose ``bridge`` section overrides the
environment-derived defaults. When no YAML is provided, env vars work
exactly as before.

Example YAML:
    bridge:
      cli_command: /usr/local/bin/claude
      cwd: ~/src/my-project
      request_timeout_seconds: 300
      use_direct: false
      permission_mode: acceptEdits
      allowed_tools: [Read, Grep, Glob, Write]
      system_prompt: |
        You are pairing with a developer inside their editor.
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

import yaml

from .config import BridgeConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_FLOAT_FIELDS = {
    "request_timeout_seconds",
    "probe_timeout_seconds",
    "terminate_grace_seconds",
}
_BOOL_FIELDS = {"use_direct", "prompt_via_stdin"}


def _coerce(name: str, value: Any) -> Any:
    if name in _FLOAT_FIELDS:
        return float(value)
    if name in _BOOL_FIELDS:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if name == "max_turns":
        return int(value) if value is not None else None
    if name == "allowed_tools":
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return [str(item) for item in value or []]
    if value is None:
        return None
    return str(value)


def apply_overrides(config: BridgeConfig, section: dict[str, Any]) -> BridgeConfig:
    """Return a copy of *config* with values from a ``bridge`` mapping."""
    known = {f.name for f in dataclasses.fields(BridgeConfig)}
    overrides: dict[str, Any] = {}
    for key, value in section.items():
        if key not in known:
            logger.warning("apply_overrides: ignoring unknown bridge key %r", key)
            continue
        try:
            overrides[key] = _coerce(key, value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"bridge.{key}", f"bad value {value!r}: {exc}") from exc
    for key in ("cwd", "claude_home"):
        if overrides.get(key):
            overrides[key] = str(Path(overrides[key]).expanduser())
    return dataclasses.replace(config, **overrides)


def load_yaml_config(
    path: str | Path,
    base: BridgeConfig | None = None,
) -> BridgeConfig:
    """Load and parse a YAML config file.

    Values from the ``bridge`` section win over *base* (which defaults to
    ``BridgeConfig.from_env()``).
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise ConfigError(str(path), "file not found")
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    section = raw.get("bridge") or {}
    if not isinstance(section, dict):
        raise ConfigError(str(path), "'bridge' must be a mapping")

    logger.info(
        "Parsed YAML config %s: bridge keys: %s",
        path.name, ", ".join(sorted(section)) if section else "(empty)",
    )
    return apply_overrides(base or BridgeConfig.from_env(), section)
