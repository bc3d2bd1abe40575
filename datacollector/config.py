"""Application configuration loaded from a ``.env`` file."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

DEFAULT_ENV_FILE = ".env"

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_LEGACY_OCTAL = re.compile(r"0[0-7_]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class ConfigError(ValueError):
    """Raised when the configuration cannot be read or converted."""


def _to_bool(key: str, raw: str) -> bool:
    if raw == "":
        return False
    if raw in _TRUE_WORDS:
        return True
    if raw in _FALSE_WORDS:
        return False
    raise ConfigError(f"Error unmarshalling config: {key}: cannot parse {raw!r} as bool")


def _to_int(key: str, raw: str) -> int:
    if raw == "":
        return 0
    sign, digits = ("", raw)
    if digits[:1] in ("+", "-"):
        sign, digits = digits[0], digits[1:]
    try:
        if _LEGACY_OCTAL.fullmatch(digits):
            value = int(digits.replace("_", ""), 8)
        else:
            value = int(digits, 0)
    except ValueError:
        raise ConfigError(
            f"Error unmarshalling config: {key}: cannot parse {raw!r} as int"
        ) from None
    if sign == "-":
        value = -value
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ConfigError(f"Error unmarshalling config: {key}: value {raw!r} out of range")
    return value


def _text() -> Any:
    return field(default="")


def _setting(default: Any, convert: Callable[[str, str], Any]) -> Any:
    return field(default=default, metadata={"convert": convert})


@dataclass
class AppConfig:
    """Settings for the collector service.

    Each field is read from the environment key of the same name in upper case.
    """

    log_level: str = _text()

    db_name: str = _text()
    db_user: str = _text()
    db_password: str = _text()
    db_host: str = _text()
    db_port: str = _text()

    avtech_url: str = _text()

    mqtt_broker: str = _text()
    mqtt_port: int = _setting(0, _to_int)

    ambient_api_key: str = _text()
    ambient_app_key: str = _text()
    ambient_url_full: str = _text()

    enable_avtech_collector: bool = _setting(False, _to_bool)
    enable_mqtt_collector: bool = _setting(False, _to_bool)
    enable_ambient_collector: bool = _setting(False, _to_bool)


def parse_config(values: Mapping[str, str | None]) -> AppConfig:
    """Build an :class:`AppConfig` from raw key/value strings.

    Keys are matched case-insensitively; missing keys keep their zero value.
    """
    lowered = {key.lower(): value for key, value in values.items()}
    settings: dict[str, Any] = {}
    for spec in fields(AppConfig):
        if spec.name not in lowered:
            continue
        raw = lowered[spec.name]
        text = raw if raw is not None else ""
        convert = spec.metadata.get("convert")
        settings[spec.name] = text if convert is None else convert(spec.name.upper(), text)
    return AppConfig(**settings)


def load_config(path: str | Path = DEFAULT_ENV_FILE) -> AppConfig:
    """Read a ``.env`` file (or the ``.env`` inside a directory) into an AppConfig."""
    env_path = Path(path)
    if env_path.is_dir():
        env_path = env_path / DEFAULT_ENV_FILE
    if not env_path.is_file():
        raise ConfigError(f"Error reading .env file: {env_path} not found")
    try:
        values = dotenv_values(env_path)
    except OSError as exc:
        raise ConfigError(f"Error reading .env file: {exc}") from exc
    return parse_config(values)