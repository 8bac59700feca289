"""Engine and CLI configuration (``sheetcalc.yaml``)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "sheetcalc.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "max_depth": 100,
    "memoize": True,
    "log_dir": None,  # relative paths resolve against the config directory
    "logging_fsync": False,
    "display_precision": 10,
}


def _flatten_logging_block(user_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten a nested ``logging:`` block into flat config keys.

    Supports::

        logging:
          dir: logs
          fsync: true

    Maps to ``log_dir`` and ``logging_fsync``.
    """
    block = user_config.pop("logging", None)
    if not isinstance(block, dict):
        return user_config
    if "dir" in block:
        user_config["log_dir"] = block["dir"]
    if "fsync" in block:
        user_config["logging_fsync"] = block["fsync"]
    return user_config


def _validate(config: dict[str, Any]) -> None:
    depth = config["max_depth"]
    if not isinstance(depth, int) or isinstance(depth, bool) or depth < 1:
        raise ValueError(f"max_depth must be a positive integer, got {depth!r}")
    precision = config["display_precision"]
    if not isinstance(precision, int) or isinstance(precision, bool) or not 1 <= precision <= 17:
        raise ValueError(f"display_precision must be an integer in 1..17, got {precision!r}")


def load_config(config_dir: Path | None = None) -> dict[str, Any]:
    """Load configuration from ``sheetcalc.yaml``, with defaults.

    Unknown keys are kept so callers can carry their own settings.

    Args:
        config_dir: Directory to look in. ``None`` returns the defaults.

    Returns:
        Merged configuration dict.

    Raises:
        ValueError: If the file is not a mapping or a numeric setting is invalid.
    """
    config = dict(DEFAULT_CONFIG)
    if config_dir is not None:
        config_path = Path(config_dir) / CONFIG_FILENAME
        if config_path.exists():
            user_config = yaml.safe_load(config_path.read_text()) or {}
            if not isinstance(user_config, dict):
                raise ValueError(f"{config_path} must contain a mapping")
            config.update(_flatten_logging_block(user_config))
            if config.get("log_dir") is not None:
                log_dir = Path(config["log_dir"])
                if not log_dir.is_absolute():
                    config["log_dir"] = str(Path(config_dir) / log_dir)
    _validate(config)
    return config
