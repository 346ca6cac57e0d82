from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import ClassifierConfig
from .table import CalibrationTable

logger = logging.getLogger(__name__)


class Classification(str, enum.Enum):
    OUT_OF_RANGE = "out_of_range"
    OVERINFLATED = "overinflated"
    NORMAL = "normal"
    UNDERINFLATED = "underinflated"


@dataclass(frozen=True)
class PressureResult:
    """Outcome of one measurement cycle."""

    frequency_hz: Optional[float]
    psi: Optional[int]
    classification: Classification
    max_normal_psi: int = 100

    @property
    def psi_label(self) -> str:
        if self.classification is Classification.OUT_OF_RANGE:
            return "-"
        if self.classification is Classification.OVERINFLATED:
            return f"> {self.max_normal_psi} PSI"
        return f"{self.psi} PSI"

    @property
    def frequency_label(self) -> str:
        if self.frequency_hz is None:
            return "-"
        return f"{self.frequency_hz:.0f} Hz"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "frequency_hz": self.frequency_hz,
            "psi": self.psi,
            "classification": self.classification.value,
            "psi_label": self.psi_label,
        }


class PressureEstimator:
    """Map a knock frequency to a pressure reading using the calibration table."""

    def __init__(self, table: CalibrationTable, config: ClassifierConfig):
        self.table = table
        self.config = config

    def classify(self, frequency_hz: float) -> PressureResult:
        cfg = self.config
        freq = float(frequency_hz)
        if cfg.round_frequency:
            freq = float(math.floor(freq + 0.5))

        if freq > cfg.max_freq_limit:
            logger.info("Frequency %.2f Hz above %.1f Hz limit, remeasure", freq, cfg.max_freq_limit)
            return self._result(freq, None, Classification.OUT_OF_RANGE)

        psi = self.table.nearest_psi(freq)
        if freq > cfg.overinflated_freq or psi > cfg.max_normal_psi:
            return self._result(freq, None, Classification.OVERINFLATED)
        if cfg.min_normal_psi <= psi <= cfg.max_normal_psi:
            return self._result(freq, psi, Classification.NORMAL)
        return self._result(freq, psi, Classification.UNDERINFLATED)

    def no_signal(self) -> PressureResult:
        return self._result(None, None, Classification.OUT_OF_RANGE)

    def _result(self, freq: Optional[float], psi: Optional[int], classification: Classification) -> PressureResult:
        return PressureResult(
            frequency_hz=freq,
            psi=psi,
            classification=classification,
            max_normal_psi=self.config.max_normal_psi,
        )
