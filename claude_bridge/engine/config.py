"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via CLAUDE_BRIDGE_* env vars
or a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_PREFIX = "CLAUDE_BRIDGE_"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _default_claude_home() -> str:
    return str(Path.home() / ".claude")


@dataclass
class BridgeConfig:
    """Claude bridge configuration."""

    # Backend CLI executable (name on PATH or absolute path)
    cli_command: str = "claude"
    # Project root; used as the subprocess cwd and transcript project key
    cwd: str = "."
    # Root of the backend's local state (transcripts live in projects/)
    claude_home: str = field(default_factory=_default_claude_home)

    # Per-request wall-clock limit for the subprocess transport.
    # Set to 0 (or a negative value) to disable timeout.
    request_timeout_seconds: float = 120.0
    # Bounded availability probe for the direct transport
    probe_timeout_seconds: float = 10.0
    # SIGTERM -> SIGKILL escalation delay when stopping the CLI
    terminate_grace_seconds: float = 5.0

    # Try the in-process SDK before falling back to the CLI
    use_direct: bool = True
    # Write the prompt to stdin instead of passing it as the last argv
    prompt_via_stdin: bool = True

    # Backend request options (shared by both transports)
    model: str | None = None
    permission_mode: str = "default"
    allowed_tools: list[str] = field(default_factory=list)
    system_prompt: str | None = None
    max_turns: int | None = None

    # Logging
    log_level: str = "INFO"

    @property
    def resolved_cwd(self) -> Path:
        return Path(self.cwd).expanduser().resolve()

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from CLAUDE_BRIDGE_* environment variables."""
        bridge_vars = {
            k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)
        }
        if bridge_vars:
            logger.info(
                "BridgeConfig.from_env: %s* env overrides: %s",
                ENV_PREFIX,
                ", ".join(f"{k}={v}" for k, v in sorted(bridge_vars.items())),
            )
        else:
            logger.debug("BridgeConfig.from_env: no %s* env vars set, using defaults", ENV_PREFIX)

        max_turns_raw = os.getenv(f"{ENV_PREFIX}MAX_TURNS", "").strip()
        config = cls(
            cli_command=os.getenv(f"{ENV_PREFIX}COMMAND", cls.cli_command),
            cwd=os.getenv(f"{ENV_PREFIX}CWD", cls.cwd),
            claude_home=os.getenv(f"{ENV_PREFIX}HOME") or _default_claude_home(),
            request_timeout_seconds=float(os.getenv(
                f"{ENV_PREFIX}TIMEOUT", str(cls.request_timeout_seconds)
            )),
            probe_timeout_seconds=float(os.getenv(
                f"{ENV_PREFIX}PROBE_TIMEOUT", str(cls.probe_timeout_seconds)
            )),
            terminate_grace_seconds=float(os.getenv(
                f"{ENV_PREFIX}TERMINATE_GRACE",
                str(cls.terminate_grace_seconds),
            )),
            use_direct=_env_bool(f"{ENV_PREFIX}USE_DIRECT", cls.use_direct),
            prompt_via_stdin=_env_bool(
                f"{ENV_PREFIX}PROMPT_VIA_STDIN", cls.prompt_via_stdin
            ),
            model=os.getenv(f"{ENV_PREFIX}MODEL") or None,
            permission_mode=os.getenv(
                f"{ENV_PREFIX}PERMISSION_MODE", cls.permission_mode
            ),
            allowed_tools=_env_list(f"{ENV_PREFIX}ALLOWED_TOOLS"),
            system_prompt=os.getenv(f"{ENV_PREFIX}SYSTEM_PROMPT") or None,
            max_turns=int(max_turns_raw) if max_turns_raw else None,
            log_level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "BridgeConfig.from_env: command=%s cwd=%s direct=%s timeout=%.0fs log_level=%s",
            config.cli_command, config.cwd, config.use_direct,
            config.request_timeout_seconds, config.log_level,
        )
        return config
