"""
LOR Ledger — Configuration Loader

Three-tier configuration loading:
  1. Base YAML file (lor_config.yaml, or LOR_CONFIG_PATH)
  2. Per-environment overlay files (config/{LOR_ENV}.yaml merged over base)
  3. Environment variable overrides (LOR_ prefixed)

Usage:
    from connector.config import load_config, load_settings

    cfg = load_config(env="prod")
    settings = load_settings(cfg)
    settings.ledger_address   # None → connection fails as Unconfigured

Environment variables:
    LOR_ENV            — active profile (dev, staging, prod)
    LOR_CONFIG_DIR     — directory for overlay files (default: config/)
    LOR_CONFIG_PATH    — base config file
    LOR_*              — nested overrides (LOR_LEDGER_ADDRESS=0x... →
                         ledger.address)

Example lor_config.yaml:
    ledger:
      address: "0xCf7Ed3AccA5a467e9e704C703E8D87F634fB0Fc9"
      approvers: ["0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"]
    connection:
      max_attempts: 3
      pending_timeout: 5.0
      retry_delay: 1.0
      expected_network_id: "0x7a69"
    logging:
      level: INFO
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("lor_ledger.config")

DEFAULT_CONFIG_FILE = "lor_config.yaml"
ENV_PREFIX = "LOR_"


# ═══════════════════════════════════════════════════════════════════
# Deep Merge
# ═══════════════════════════════════════════════════════════════════

def deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep-merge overlay into base. Overlay values win.
    Lists are replaced (not appended). Dicts are recursed.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _set_nested(d: dict, keys: list[str], value: Any):
    """Set a nested dict value from a list of keys."""
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


# ═══════════════════════════════════════════════════════════════════
# Overlay Files
# ═══════════════════════════════════════════════════════════════════

def _load_overlay_file(
    base_path: str,
    env: str = "",
    config_dir: str = "",
) -> dict[str, Any]:
    """
    Load per-environment overlay file.
    Looks for config/{env}.yaml or {config_dir}/{env}.yaml.
    Returns empty dict if not found.
    """
    env = env or os.environ.get("LOR_ENV", "")
    if not env:
        return {}

    config_dir = config_dir or os.environ.get("LOR_CONFIG_DIR", "config")

    candidates = [
        Path(config_dir) / f"{env}.yaml",
        Path(config_dir) / f"{env}.yml",
        Path(os.path.dirname(base_path)) / "config" / f"{env}.yaml",
    ]

    for path in candidates:
        if path.exists():
            try:
                with open(path) as f:
                    overlay = yaml.safe_load(f) or {}
                logger.info("Loaded config overlay: %s (%d keys)", path, len(overlay))
                return overlay
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load overlay %s: %s", path, e)

    logger.debug("No config overlay found for env=%s", env)
    return {}


# ═══════════════════════════════════════════════════════════════════
# Environment Variable Overrides
# ═══════════════════════════════════════════════════════════════════

# Env var → config path. Keys with underscores of their own cannot be
# derived from the flat LOR_SECTION_KEY convention, so they are listed.
_ENV_ALIASES: dict[str, list[str]] = {
    "LOR_MAX_ATTEMPTS": ["connection", "max_attempts"],
    "LOR_PENDING_TIMEOUT": ["connection", "pending_timeout"],
    "LOR_RETRY_DELAY": ["connection", "retry_delay"],
    "LOR_EXPECTED_NETWORK_ID": ["connection", "expected_network_id"],
    "LOR_AGENT_URL": ["agent", "url"],
    "LOR_LOG_LEVEL": ["logging", "level"],
}


def _load_env_overrides(prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """
    Load LOR_ prefixed environment variables as config overrides.

    Naming convention:
      LOR_SECTION_KEY=value → {"section": {"key": value}}
      plus the aliases in _ENV_ALIASES for multi-word keys.

    Values are parsed with yaml.safe_load (numbers, booleans, lists).
    LOR_ENV, LOR_CONFIG_DIR and LOR_CONFIG_PATH are meta config and skipped.
    """
    excluded = {"LOR_ENV", "LOR_CONFIG_DIR", "LOR_CONFIG_PATH"}
    overrides: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key in excluded:
            continue

        path = _ENV_ALIASES.get(key) or key[len(prefix):].lower().split("_")

        try:
            parsed = yaml.safe_load(value)
        except yaml.YAMLError:
            parsed = value
        # Addresses like 0xCf7E... are hex ints to YAML
        if isinstance(parsed, int) and value.lower().startswith("0x"):
            parsed = value

        _set_nested(overrides, path, parsed)

    if overrides:
        logger.debug("Loaded %d env var overrides", len(overrides))
    return overrides


# ═══════════════════════════════════════════════════════════════════
# Main Loader
# ═══════════════════════════════════════════════════════════════════

def load_config(
    base_path: str = "",
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """
    Load configuration with three-tier merging.

    Priority (highest wins):
      1. Environment variable overrides (LOR_*)
      2. Per-environment overlay file (config/{env}.yaml)
      3. Base config file (lor_config.yaml)
    """
    base_path = base_path or os.environ.get("LOR_CONFIG_PATH", DEFAULT_CONFIG_FILE)

    config: dict[str, Any] = {}
    if os.path.exists(base_path):
        with open(base_path) as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded base config: %s", base_path)

    overlay = _load_overlay_file(base_path, env=env, config_dir=config_dir)
    if overlay:
        config = deep_merge(config, overlay)

    if include_env_vars:
        env_overrides = _load_env_overrides()
        if env_overrides:
            config = deep_merge(config, env_overrides)

    config["_active_env"] = env or os.environ.get("LOR_ENV", "default")
    config["_config_source"] = base_path

    return config


def get_config_value(
    path: str,
    config: dict[str, Any] | None = None,
    default: Any = None,
) -> Any:
    """
    Get a nested config value by dotted path.

    Example:
        get_config_value("connection.max_attempts", cfg, 3)
    """
    if config is None:
        config = load_config()

    current: Any = config
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current


# ═══════════════════════════════════════════════════════════════════
# Typed Settings
# ═══════════════════════════════════════════════════════════════════

@dataclass
class Settings:
    """Typed view over the merged config dict."""
    ledger_address: str | None = None
    approvers: list[str] = field(default_factory=list)
    max_attempts: int = 3
    pending_timeout: float = 5.0
    pending_poll_interval: float = 1.0
    retry_delay: float = 1.0
    expected_network_id: str | None = None
    agent_url: str | None = None
    log_level: str = "INFO"

    def validate(self) -> list[str]:
        """Return list of validation errors (empty = valid)."""
        errors = []
        if self.max_attempts < 1:
            errors.append("connection.max_attempts must be >= 1")
        if self.pending_timeout <= 0:
            errors.append("connection.pending_timeout must be positive")
        if self.pending_poll_interval <= 0:
            errors.append("connection.pending_poll_interval must be positive")
        if self.retry_delay < 0:
            errors.append("connection.retry_delay must not be negative")
        return errors


def _hex_field(value: Any, width: int = 0) -> str | None:
    """
    Normalize a hex-valued setting. Unquoted 0x... values in YAML arrive
    as ints; addresses are re-padded to their fixed width.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return f"0x{value:0{width}x}" if width else hex(value)
    text = str(value).strip()
    return text or None


def load_settings(config: dict[str, Any] | None = None) -> Settings:
    """Build Settings from a merged config dict (loads one if omitted)."""
    if config is None:
        config = load_config()

    d = Settings()
    network = get_config_value("connection.expected_network_id", config)
    settings = Settings(
        ledger_address=_hex_field(get_config_value("ledger.address", config), width=40),
        approvers=[
            _hex_field(a, width=40)
            for a in get_config_value("ledger.approvers", config, []) or []
            if _hex_field(a, width=40)
        ],
        max_attempts=int(get_config_value("connection.max_attempts", config, d.max_attempts)),
        pending_timeout=float(get_config_value(
            "connection.pending_timeout", config, d.pending_timeout)),
        pending_poll_interval=float(get_config_value(
            "connection.pending_poll_interval", config, d.pending_poll_interval)),
        retry_delay=float(get_config_value("connection.retry_delay", config, d.retry_delay)),
        expected_network_id=_hex_field(network),
        agent_url=get_config_value("agent.url", config),
        log_level=str(get_config_value("logging.level", config, d.log_level)),
    )

    errors = settings.validate()
    if errors:
        raise ValueError("Invalid configuration: " + "; ".join(errors))
    return settings
