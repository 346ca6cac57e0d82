"""Harmonic Product Spectrum pitch estimation for knock recordings."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from .config import SpectrumConfig
from .errors import NoSignalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpectrumResult:
    """Dominant fundamental found in one captured spectrum."""

    peak_frequency_hz: float
    peak_bin: int
    peak_value: float


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SpectrumAnalyzer:
    """
    Multiply downsampled copies of a magnitude spectrum into its lower bins so
    that a fundamental backed by its harmonics outscores isolated peaks, then
    pick the strongest bin inside the plausible knock-resonance band.
    """

    def __init__(self, config: SpectrumConfig):
        self.config = config

    def harmonic_product(self, buffer: np.ndarray) -> np.ndarray:
        spectrum = np.asarray(buffer, dtype=float)
        if spectrum.ndim != 1:
            raise ValueError("spectrum buffer must be 1-D")
        hps = spectrum.copy()
        for harmonic in range(2, self.config.harmonics + 1):
            # bins i in [0, N/h) take the value at i*h
            decimated = spectrum[::harmonic]
            hps[: decimated.size] *= decimated
        return hps

    def band_indices(self, bin_count: int, sample_rate: float) -> tuple[int, int]:
        """Return the half-open bin range ``[lo, hi)`` covering the search band."""

        nyquist = sample_rate / 2.0
        lo = _round_half_up(self.config.band_min_hz / nyquist * bin_count)
        hi = _round_half_up(self.config.band_max_hz / nyquist * bin_count)
        lo = min(max(lo, 0), bin_count)
        hi = min(max(hi, 0), bin_count)
        return lo, hi

    def analyze(self, buffer: np.ndarray, sample_rate: float, fft_size: int) -> SpectrumResult:
        hps = self.harmonic_product(buffer)
        lo, hi = self.band_indices(hps.size, sample_rate)
        if hi <= lo:
            raise NoSignalError(
                f"Search band {self.config.band_min_hz:g}-{self.config.band_max_hz:g} Hz "
                f"maps to no bins (N={hps.size}, sample_rate={sample_rate:g})"
            )
        band = hps[lo:hi]
        offset = int(np.argmax(band))
        peak_value = float(band[offset])
        if not np.isfinite(peak_value) or peak_value <= 0.0:
            raise NoSignalError("No spectral energy in the knock band")
        peak_bin = lo + offset
        frequency = peak_bin * sample_rate / fft_size
        logger.debug(
            "HPS peak bin=%d (%.2f Hz) value=%.3g band=[%d, %d)", peak_bin, frequency, peak_value, lo, hi
        )
        return SpectrumResult(peak_frequency_hz=frequency, peak_bin=peak_bin, peak_value=peak_value)
