"""
Byte-valued time and frequency views of a live audio signal.

Mirrors the analyser node of a browser audio graph: the most recent
``fft_size`` samples are kept, the time-domain view holds the newest
``fft_size / 2`` of them centred on 128, and the
frequency view is a Blackman-windowed, smoothed magnitude spectrum mapped
from a decibel range onto 0-255.
"""
from __future__ import annotations

import numpy as np


class ByteAnalyser:
    def __init__(
        self,
        fft_size: int = 4096,
        *,
        smoothing: float = 0.1,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self._window = np.zeros(fft_size, dtype=float)
        self._blackman = np.blackman(fft_size)
        self._smoothed = np.zeros(fft_size // 2, dtype=float)
        self._received = 0

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    @property
    def has_data(self) -> bool:
        return self._received > 0

    def push(self, samples: np.ndarray) -> None:
        block = np.asarray(samples, dtype=float).reshape(-1)
        if block.size == 0:
            return
        self._received += block.size
        if block.size >= self.fft_size:
            self._window = block[-self.fft_size :].copy()
            return
        self._window = np.concatenate([self._window[block.size :], block])

    def reset(self) -> None:
        self._window = np.zeros(self.fft_size, dtype=float)
        self._smoothed = np.zeros(self.bin_count, dtype=float)
        self._received = 0

    def time_domain_bytes(self) -> np.ndarray:
        """The most recent ``bin_count`` samples as bytes centred on 128."""

        scaled = np.floor(128.0 * (1.0 + self._window[-self.bin_count :]))
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def frequency_bytes(self) -> np.ndarray:
        spectrum = np.fft.rfft(self._window * self._blackman)[: self.bin_count]
        magnitude = np.abs(spectrum) / self.fft_size
        tau = self.smoothing
        self._smoothed = tau * self._smoothed + (1.0 - tau) * magnitude
        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(self._smoothed)
        span = self.max_decibels - self.min_decibels
        scaled = np.floor(255.0 / span * (decibels - self.min_decibels))
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0, 255).astype(np.uint8)
