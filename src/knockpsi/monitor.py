from __future__ import annotations

from typing import List, Optional

import numpy as np

FULL_SCALE = 255.0


class AmplitudeMonitor:
    """
    Peak amplitude tracker for 8-bit time-domain buffers.

    Buffers are read, never modified. During calibration each sampled peak is
    appended to an ordered list from which the ambient level is derived.
    """

    def __init__(self) -> None:
        self._samples: List[float] = []

    @staticmethod
    def sample_peak(buffer: np.ndarray) -> float:
        values = np.asarray(buffer)
        if values.size == 0:
            raise ValueError("Sample buffer is empty")
        return float(values.max())

    @staticmethod
    def level_ratio(peak: float) -> float:
        return float(min(max(peak / FULL_SCALE, 0.0), 1.0))

    def record(self, buffer: np.ndarray) -> float:
        peak = self.sample_peak(buffer)
        self._samples.append(peak)
        return peak

    @property
    def samples(self) -> tuple[float, ...]:
        return tuple(self._samples)

    @property
    def ambient_level(self) -> Optional[float]:
        if not self._samples:
            return None
        return sum(self._samples) / len(self._samples)

    def reset(self) -> None:
        self._samples.clear()
