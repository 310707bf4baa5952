from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

DEFAULTS: Dict[str, Any] = {
    "host": "0.0.0.0",
    "port": 3000,
    "sweep_interval_secs": 60,
    "liveness_timeout_secs": 300,
    "message_ttl_secs": 86400,
    "stats_interval_secs": 300,
    "log_level": "INFO",
}


class ConfigError(ValueError):
    pass


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Defaults, then the YAML file, then ``PORT``/``ORION_HOST``, then overrides."""

    env = os.environ if environ is None else environ
    cfg = dict(DEFAULTS)

    if path is not None:
        try:
            data = yaml.safe_load(Path(path).read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must be a mapping")
        cfg.update(data)

    if env.get("PORT"):
        cfg["port"] = env["PORT"]
    if env.get("ORION_HOST"):
        cfg["host"] = env["ORION_HOST"]

    for key, value in (overrides or {}).items():
        if value is not None:
            cfg[key] = value

    return validate(cfg)


def validate(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(cfg)
    try:
        out["port"] = int(out["port"])
    except (TypeError, ValueError):
        raise ConfigError(f"invalid port: {cfg.get('port')!r}") from None
    if not 0 <= out["port"] <= 65535:
        raise ConfigError(f"port out of range: {out['port']}")

    for key in ("sweep_interval_secs", "liveness_timeout_secs", "message_ttl_secs", "stats_interval_secs"):
        try:
            out[key] = float(out[key])
        except (TypeError, ValueError):
            raise ConfigError(f"invalid {key}: {cfg.get(key)!r}") from None
        if out[key] < 0:
            raise ConfigError(f"{key} must not be negative")
    if out["sweep_interval_secs"] == 0:
        raise ConfigError("sweep_interval_secs must be positive")

    out["host"] = str(out["host"])
    out["log_level"] = str(out["log_level"]).upper()
    if not isinstance(logging.getLevelName(out["log_level"]), int):
        raise ConfigError(f"unknown log_level: {cfg.get('log_level')!r}")
    return out


__all__ = ["ConfigError", "DEFAULTS", "load_config", "validate"]
