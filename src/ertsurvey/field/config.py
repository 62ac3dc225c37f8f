from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from ..classification import Thresholds

LOCATOR_KINDS = {"none", "fixed", "nmea"}


@dataclass
class LinkSettings:
    port: str = "/dev/rfcomm0"
    baudrate: int = 115200
    timeout: float = 1.0


@dataclass
class LocatorSettings:
    kind: str = "none"  # none | fixed | nmea
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    port: Optional[str] = None
    baudrate: int = 9600
    timeout_ms: int = 10000
    high_accuracy: bool = True


@dataclass
class HostRuntime:
    queue_maxsize: int = 256
    reconnect_initial_sec: float = 0.5
    reconnect_max_sec: float = 5.0
    stats_log_interval: float = 60.0


@dataclass
class SurveyConfig:
    spacing: float = 5.0
    void_threshold: float = 800.0
    water_threshold: float = 50.0
    geotag: bool = True
    stability_window_ms: int = 2000
    output_dir: Path = Path(".")
    link: LinkSettings = field(default_factory=LinkSettings)
    locator: LocatorSettings = field(default_factory=LocatorSettings)
    host: HostRuntime = field(default_factory=HostRuntime)

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds(void=self.void_threshold, water=self.water_threshold)

    def validate(self) -> "SurveyConfig":
        if not math.isfinite(self.spacing) or self.spacing <= 0:
            raise ValueError(f"spacing must be positive, got {self.spacing}")
        if self.stability_window_ms <= 0:
            raise ValueError("stability_window_ms must be positive")
        if self.locator.kind not in LOCATOR_KINDS:
            raise ValueError(f"Unsupported locator.kind '{self.locator.kind}'")
        if self.locator.kind == "fixed" and (
            self.locator.latitude is None or self.locator.longitude is None
        ):
            raise ValueError("locator.kind=fixed requires locator.latitude and locator.longitude")
        if self.locator.kind == "nmea" and not self.locator.port:
            raise ValueError("locator.kind=nmea requires locator.port")
        if self.locator.timeout_ms <= 0:
            raise ValueError("locator.timeout_ms must be positive")
        if self.water_threshold >= self.void_threshold:
            raise ValueError("water_threshold must be below void_threshold")
        return self


_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0"}
_NUMBER = re.compile(r"^[+-]?(\d+([.,]\d*)?|[.,]\d+)([eE][+-]?\d+)?$")


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object at the top level")
    return data


def _layer(base: Dict[str, Any], top: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay *top* on *base*; sections (``link``, ``locator``, ``host``) merge key by key."""
    result = dict(base)
    for key, value in top.items():
        below = result.get(key)
        result[key] = _layer(below, value) if isinstance(below, dict) and isinstance(value, dict) else value
    return result


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> SurveyConfig:
    """
    Load a survey configuration from JSON and apply CLI-style overrides.

    Overrides are dotted `key=value` pairs, e.g.:
        ["spacing=2,5", "locator.kind=fixed", "locator.latitude=48.85"]
    Without *path* the defaults are used as the base.
    """
    data: Dict[str, Any] = _read_config_file(Path(path)) if path is not None else {}
    from_cli: Dict[str, Any] = {}
    for override in overrides or []:
        key, value = _split_override(override)
        _set_dotted(from_cli, key, value)
    merged = _layer(data, from_cli)
    link_data = merged.get("link") or {}
    locator_data = merged.get("locator") or {}
    host_data = merged.get("host") or {}
    return SurveyConfig(
        spacing=_as_float(merged.get("spacing", 5.0)),
        void_threshold=_as_float(merged.get("void_threshold", 800.0)),
        water_threshold=_as_float(merged.get("water_threshold", 50.0)),
        geotag=_as_bool(merged.get("geotag", True), "geotag"),
        stability_window_ms=int(merged.get("stability_window_ms", 2000)),
        output_dir=Path(merged.get("output_dir", ".")),
        link=LinkSettings(
            port=str(link_data.get("port", "/dev/rfcomm0")),
            baudrate=int(link_data.get("baudrate", 115200)),
            timeout=_as_float(link_data.get("timeout", 1.0)),
        ),
        locator=LocatorSettings(
            kind=str(locator_data.get("kind", "none")).lower(),
            latitude=_optional_float(locator_data.get("latitude")),
            longitude=_optional_float(locator_data.get("longitude")),
            port=locator_data.get("port"),
            baudrate=int(locator_data.get("baudrate", 9600)),
            timeout_ms=int(locator_data.get("timeout_ms", 10000)),
            high_accuracy=_as_bool(locator_data.get("high_accuracy", True), "locator.high_accuracy"),
        ),
        host=HostRuntime(
            queue_maxsize=int(host_data.get("queue_maxsize", 256)),
            reconnect_initial_sec=_as_float(host_data.get("reconnect_initial_sec", 0.5)),
            reconnect_max_sec=_as_float(host_data.get("reconnect_max_sec", 5.0)),
            stats_log_interval=_as_float(host_data.get("stats_log_interval", 60.0)),
        ),
    ).validate()


def _as_float(value: Any) -> float:
    # field crews type comma decimals
    if isinstance(value, str):
        value = value.strip().replace(",", ".", 1)
    return float(value)


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else _as_float(value)


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"{name} must be true or false, got {value!r}")


def _split_override(item: str) -> Tuple[str, Any]:
    key, sep, raw = item.partition("=")
    key = key.strip().lower()
    if not sep:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    if not key or any(not part for part in key.split(".")):
        raise ValueError(f"Override '{item}' has an empty key")
    return key, _parse_scalar(raw.strip())


def _parse_scalar(raw: str) -> Any:
    """Turn an override value into bool, number, None or a plain string."""
    word = raw.lower()
    if word in {"true", "false"}:
        return word == "true"
    if word == "null":
        return None
    if _NUMBER.match(raw):
        number = raw.replace(",", ".", 1)
        if any(char in number for char in ".eE"):
            return float(number)
        return int(number)
    return raw


def _set_dotted(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    *sections, leaf = dotted_key.split(".")
    cursor = target
    for section in sections:
        cursor = cursor.setdefault(section, {})
        if not isinstance(cursor, dict):
            raise ValueError(f"'{section}' in override '{dotted_key}' is not a section")
    cursor[leaf] = value
