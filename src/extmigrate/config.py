from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from extmigrate.constants import (
    CONFIG_FILE,
    DATA_DIR_ENV,
    DEFAULT_DATA_DIR_NAME,
    DEFAULT_LOG_FILE,
    DEFAULT_READINESS_DELAY_SECONDS,
    DEFAULT_READINESS_MODE,
    DEFAULT_READINESS_POLL_INTERVAL_SECONDS,
    DEFAULT_READINESS_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    READINESS_MODES,
    XDG_DATA_HOME_ENV,
)
from extmigrate.models import (
    MigrateConfig,
    ReadinessConfig,
    _coerce_float,
    _coerce_positive_float,
)


def resolve_data_dir(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    explicit = str(env.get(DATA_DIR_ENV, "")).strip()
    if explicit:
        return Path(explicit).expanduser()
    xdg = str(env.get(XDG_DATA_HOME_ENV, "")).strip()
    if xdg:
        return Path(xdg).expanduser() / DEFAULT_DATA_DIR_NAME
    return Path("~/.local/share").expanduser() / DEFAULT_DATA_DIR_NAME


def _load_migrate_policy(data_dir: Path) -> dict[str, Any]:
    policy_path = data_dir / CONFIG_FILE
    if not policy_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except Exception:
        return {}
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _load_readiness_config(policy: dict[str, Any]) -> ReadinessConfig:
    readiness = policy.get("readiness")
    if not isinstance(readiness, dict):
        readiness = {}
    mode = str(readiness.get("mode", DEFAULT_READINESS_MODE)).strip().lower()
    if mode not in READINESS_MODES:
        mode = DEFAULT_READINESS_MODE
    delay = _coerce_float(
        readiness.get("delay_seconds", DEFAULT_READINESS_DELAY_SECONDS),
        default=DEFAULT_READINESS_DELAY_SECONDS,
    )
    if delay < 0:
        delay = DEFAULT_READINESS_DELAY_SECONDS
    return ReadinessConfig(
        mode=mode,
        timeout_seconds=_coerce_positive_float(
            readiness.get("timeout_seconds"),
            default=DEFAULT_READINESS_TIMEOUT_SECONDS,
        ),
        poll_interval_seconds=_coerce_positive_float(
            readiness.get("poll_interval_seconds"),
            default=DEFAULT_READINESS_POLL_INTERVAL_SECONDS,
        ),
        delay_seconds=delay,
    )


def _resolve_log_path(data_dir: Path, config: MigrateConfig) -> Path | None:
    if not config.log_file:
        return None
    log_path = Path(config.log_file).expanduser()
    if not log_path.is_absolute():
        log_path = data_dir / log_path
    return log_path


def load_migrate_config(data_dir: Path) -> MigrateConfig:
    policy = _load_migrate_policy(data_dir)
    raw_log_file = policy.get("log_file", DEFAULT_LOG_FILE)
    log_file = "" if raw_log_file is None else str(raw_log_file).strip()
    return MigrateConfig(
        request_timeout_seconds=_coerce_positive_float(
            policy.get("request_timeout_seconds"),
            default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        ),
        readiness=_load_readiness_config(policy),
        log_file=log_file,
    )
