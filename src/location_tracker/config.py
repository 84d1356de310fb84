"""应用配置加载。"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_AUTO_OFF_HOURS = 2.0
DEFAULT_GEOCODE_INTERVAL_SECONDS = 0.5
DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org/reverse"
DEFAULT_USER_AGENT = "location-tracker/0.1.0 (reverse-geocode; please set your own UA)"
DEFAULT_ACCEPT_LANGUAGE = "en"
DEFAULT_LOG_LEVEL = "WARNING"


class ConfigError(ValueError):
    """配置相关错误。"""


@dataclass(frozen=True, slots=True)
class AppConfig:
    """应用运行配置。"""

    db_path: Path
    auto_off_hours: float
    geocode_interval_seconds: float
    nominatim_url: str
    user_agent: str
    accept_language: str
    log_level: int


def load_app_config(
    db_path: str | None = None,
    auto_off_hours: float | None = None,
) -> AppConfig:
    """加载应用配置，优先级：参数 > 环境变量 > 默认值。"""

    load_dotenv(override=False)
    return AppConfig(
        db_path=resolve_db_path(db_path),
        auto_off_hours=resolve_auto_off_hours(auto_off_hours),
        geocode_interval_seconds=_positive_float_env(
            "LOCATION_TRACKER_GEOCODE_INTERVAL",
            DEFAULT_GEOCODE_INTERVAL_SECONDS,
        ),
        nominatim_url=os.getenv("LOCATION_TRACKER_NOMINATIM_URL") or DEFAULT_NOMINATIM_URL,
        user_agent=os.getenv("LOCATION_TRACKER_USER_AGENT") or DEFAULT_USER_AGENT,
        accept_language=os.getenv("LOCATION_TRACKER_ACCEPT_LANGUAGE") or DEFAULT_ACCEPT_LANGUAGE,
        log_level=resolve_log_level(os.getenv("LOCATION_TRACKER_LOG_LEVEL")),
    )


def resolve_db_path(db_path: str | None = None) -> Path:
    """解析数据库路径，父目录不存在时创建。"""

    raw_path = db_path or os.getenv("LOCATION_TRACKER_DB_PATH")
    if raw_path:
        candidate = _normalize_path(raw_path)
    else:
        candidate = Path.home() / ".location_tracker" / "history.sqlite"

    try:
        candidate.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigError(f"Unable to create database directory: {candidate.parent}") from exc
    return candidate


def resolve_auto_off_hours(value: float | None = None) -> float:
    """解析连续追踪自动关闭时长（小时，0 表示永不）。"""

    if value is None:
        raw = os.getenv("LOCATION_TRACKER_AUTO_OFF_HOURS")
        if raw is None or not raw.strip():
            return DEFAULT_AUTO_OFF_HOURS
        value = _parse_float(raw, "LOCATION_TRACKER_AUTO_OFF_HOURS")

    return validate_auto_off_hours(value)


def validate_auto_off_hours(value: float) -> float:
    """校验自动关闭时长。"""

    hours = float(value)
    if not math.isfinite(hours) or hours < 0:
        raise ConfigError(f"Auto-off hours must be a finite number >= 0, got {value}.")
    return hours


def resolve_log_level(raw: str | None) -> int:
    """解析日志级别名称。"""

    name = (raw or DEFAULT_LOG_LEVEL).strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level: {raw}")
    return level


def _positive_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = _parse_float(raw, name)
    if not math.isfinite(value) or value <= 0:
        raise ConfigError(f"{name} must be a positive number, got {raw}.")
    return value


def _parse_float(raw: str, name: str) -> float:
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} is not a number: {raw}") from exc


def _normalize_path(raw_path: str) -> Path:
    """标准化路径。"""

    return Path(raw_path).expanduser().resolve()
