"""Configuration for turnloop.

Sources, later wins:
  1. Built-in defaults
  2. YAML file: ``--config`` flag, ``./turnloop.yaml`` or
     ``~/.config/turnloop/config.yaml`` (first match wins)
  3. ``TURNLOOP_<FIELD>`` environment variables
  4. CLI flags (applied by the caller via :func:`apply_overrides`)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

_logger = logging.getLogger(__name__)

_ENV_PREFIX = "TURNLOOP_"


class ConfigError(Exception):
    """Raised when a config file exists but cannot be parsed."""


@dataclass
class AgentConfig:
    """Opaque runtime configuration consumed by the agent components."""

    host: str = "localhost"
    port: int = 1234
    model: str = "gpt-oss-20b"
    temperature: float = 0.7
    max_tokens: int = -1  # -1 = let the server decide
    max_history: int = -1  # -1 = unlimited message count
    context_window: int = 128000
    tool_timeout: int = 30000  # milliseconds, per tool call
    save_path: str | None = None

    # Transport
    retry_count: int = 3
    retry_backoff: float = 0.5  # seconds, multiplied by the attempt number

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}/v1"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./turnloop.yaml"),
    Path.home() / ".config" / "turnloop" / "config.yaml",
]


def _coerce(value: Any, current: Any) -> Any:
    """Coerce a raw (usually string) value to the type of the default."""
    if value is None:
        return None
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return str(value)


def apply_overrides(config: AgentConfig, overrides: Mapping[str, Any]) -> AgentConfig:
    """Overlay non-``None`` values onto *config* in place and return it.

    Unknown keys are ignored with a warning.
    """
    known = {f.name for f in fields(AgentConfig)}
    defaults = AgentConfig()
    for key, value in overrides.items():
        if value is None:
            continue
        if key not in known:
            _logger.warning("Ignoring unknown config key: %s", key)
            continue
        try:
            setattr(config, key, _coerce(value, getattr(defaults, key)))
        except (TypeError, ValueError):
            _logger.warning("Invalid value for %s: %r — keeping %r",
                            key, value, getattr(config, key))
    return config


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith(_ENV_PREFIX):
            overrides[key[len(_ENV_PREFIX):].lower()] = value
    return overrides


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AgentConfig:
    """Load configuration from YAML and the environment.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.
    environ:
        Environment mapping (defaults to ``os.environ``).

    Returns
    -------
    AgentConfig
    """
    config = AgentConfig()
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s — using defaults", path)
            config_path = None
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is not None:
        _logger.info("Loading config from %s", config_path)
        try:
            with open(config_path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Config root must be a mapping: {config_path}")
        apply_overrides(config, raw)
    else:
        _logger.info("No config file found — using defaults")

    apply_overrides(config, _env_overrides(os.environ if environ is None else environ))
    return config
