from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import ConfigurationError
from .table import CalibrationPoint, CalibrationTable, load_table_csv

# Knock frequencies measured on a reference tire, highest pressure first.
DEFAULT_TABLE: List[Dict[str, float]] = [
    {"psi": 105, "freq": 98.0},
    {"psi": 100, "freq": 95.2},
    {"psi": 95, "freq": 92.2},
    {"psi": 90, "freq": 88.0},
    {"psi": 85, "freq": 85.0},
    {"psi": 80, "freq": 84.2},
    {"psi": 75, "freq": 82.8},
    {"psi": 70, "freq": 82.2},
    {"psi": 65, "freq": 82.0},
    {"psi": 60, "freq": 79.8},
    {"psi": 55, "freq": 77.2},
    {"psi": 50, "freq": 73.0},
    {"psi": 45, "freq": 70.0},
    {"psi": 40, "freq": 67.6},
    {"psi": 35, "freq": 65.4},
    {"psi": 30, "freq": 64.0},
    {"psi": 25, "freq": 64.0},
    {"psi": 20, "freq": 64.0},
]


@dataclass
class AudioConfig:
    sample_rate: int = 48000
    fft_size: int = 4096
    smoothing: float = 0.1
    min_decibels: float = -100.0
    max_decibels: float = -30.0
    device: Optional[str] = None

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2


@dataclass
class CalibrationConfig:
    duration_sec: float = 1.0
    interval_sec: float = 0.1
    multiplier: float = 1.5
    margin: float = 25.0


@dataclass
class ListeningConfig:
    tick_interval_sec: float = 1.0 / 60.0


@dataclass
class SpectrumConfig:
    harmonics: int = 5
    band_min_hz: float = 60.0
    band_max_hz: float = 200.0


@dataclass
class ClassifierConfig:
    max_freq_limit: float = 125.0
    overinflated_freq: float = 95.2
    min_normal_psi: int = 80
    max_normal_psi: int = 100
    round_frequency: bool = False


@dataclass
class KnockConfig:
    audio: AudioConfig = field(default_factory=AudioConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    listening: ListeningConfig = field(default_factory=ListeningConfig)
    spectrum: SpectrumConfig = field(default_factory=SpectrumConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    table: List[CalibrationPoint] = field(
        default_factory=lambda: [CalibrationPoint.from_mapping(item) for item in DEFAULT_TABLE]
    )

    def calibration_table(self) -> CalibrationTable:
        return CalibrationTable(self.table)

    def validate(self) -> None:
        fft_size = self.audio.fft_size
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ConfigurationError(f"audio.fft_size must be a power of two >= 32, got {fft_size}")
        if self.audio.sample_rate <= 0:
            raise ConfigurationError("audio.sample_rate must be positive")
        if not 0.0 <= self.audio.smoothing < 1.0:
            raise ConfigurationError("audio.smoothing must be in [0, 1)")
        if self.audio.max_decibels <= self.audio.min_decibels:
            raise ConfigurationError("audio.max_decibels must exceed audio.min_decibels")
        if self.calibration.duration_sec <= 0 or self.calibration.interval_sec <= 0:
            raise ConfigurationError("calibration duration and interval must be positive")
        if self.listening.tick_interval_sec <= 0:
            raise ConfigurationError("listening.tick_interval_sec must be positive")
        if self.spectrum.harmonics < 1:
            raise ConfigurationError("spectrum.harmonics must be at least 1")
        if self.spectrum.band_max_hz <= self.spectrum.band_min_hz:
            raise ConfigurationError("spectrum.band_max_hz must exceed spectrum.band_min_hz")
        if self.classifier.max_normal_psi < self.classifier.min_normal_psi:
            raise ConfigurationError("classifier.max_normal_psi must be >= classifier.min_normal_psi")


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> KnockConfig:
    """
    Load a knock measurement configuration from JSON and apply CLI-style overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["calibration.margin=30", "classifier.round_frequency=true"]

    With no path, overrides are applied to the built-in defaults.
    """
    data: Dict[str, Any] = {}
    base_dir = Path.cwd()
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            data = _load_json(config_path)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {config_path}: {exc}") from exc
        base_dir = config_path.resolve().parent
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)

    audio = merged.get("audio") or {}
    calibration = merged.get("calibration") or {}
    listening = merged.get("listening") or {}
    spectrum = merged.get("spectrum") or {}
    classifier = merged.get("classifier") or {}
    try:
        config = KnockConfig(
            audio=AudioConfig(
                sample_rate=int(audio.get("sample_rate", 48000)),
                fft_size=int(audio.get("fft_size", 4096)),
                smoothing=float(audio.get("smoothing", 0.1)),
                min_decibels=float(audio.get("min_decibels", -100.0)),
                max_decibels=float(audio.get("max_decibels", -30.0)),
                device=str(audio["device"]) if audio.get("device") is not None else None,
            ),
            calibration=CalibrationConfig(
                duration_sec=float(calibration.get("duration_sec", 1.0)),
                interval_sec=float(calibration.get("interval_sec", 0.1)),
                multiplier=float(calibration.get("multiplier", 1.5)),
                margin=float(calibration.get("margin", 25.0)),
            ),
            listening=ListeningConfig(
                tick_interval_sec=float(listening.get("tick_interval_sec", 1.0 / 60.0)),
            ),
            spectrum=SpectrumConfig(
                harmonics=int(spectrum.get("harmonics", 5)),
                band_min_hz=float(spectrum.get("band_min_hz", 60.0)),
                band_max_hz=float(spectrum.get("band_max_hz", 200.0)),
            ),
            classifier=ClassifierConfig(
                max_freq_limit=float(classifier.get("max_freq_limit", 125.0)),
                overinflated_freq=float(classifier.get("overinflated_freq", 95.2)),
                min_normal_psi=int(classifier.get("min_normal_psi", 80)),
                max_normal_psi=int(classifier.get("max_normal_psi", 100)),
                round_frequency=bool(classifier.get("round_frequency", False)),
            ),
            table=_load_table(merged, base_dir),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration value: {exc}") from exc
    config.validate()
    return config


def _load_table(merged: Dict[str, Any], base_dir: Path) -> List[CalibrationPoint]:
    if merged.get("table_csv"):
        csv_path = Path(merged["table_csv"])
        if not csv_path.is_absolute():
            csv_path = base_dir / csv_path
        return list(load_table_csv(csv_path))
    records = merged.get("table", DEFAULT_TABLE)
    if not isinstance(records, list):
        raise ConfigurationError("table must be a list of {psi, freq} objects")
    return [CalibrationPoint.from_mapping(record) for record in records]


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ConfigurationError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ConfigurationError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    if raw.lower() in {"null", "none"}:
        return None
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
