"""Drives one measurement cycle from calibration to a classified pressure."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from .config import KnockConfig
from .detector import DetectorState, KnockDetector, KnockEvent
from .errors import NoSignalError
from .estimator import PressureEstimator, PressureResult
from .sources import Clock, SampleSource
from .spectrum import SpectrumAnalyzer
from .table import CalibrationTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnockCapture:
    """Frequency-domain buffer captured at the knock instant."""

    event: KnockEvent
    spectrum: np.ndarray
    sample_rate: float
    fft_size: int


class MeasurementSession:
    """
    Glue that feeds source buffers into the detector, analyses the spectrum
    captured on a knock and classifies the resulting frequency.

    At most one cycle is active at a time; ``start`` while a cycle runs raises
    :class:`~knockpsi.errors.CycleActiveError`.
    """

    def __init__(self, config: KnockConfig, table: Optional[CalibrationTable] = None):
        self.config = config
        self.table = table if table is not None else config.calibration_table()
        self.detector = KnockDetector(
            config.calibration,
            on_state=self._emit_state,
            on_level=self._emit_level,
        )
        self.analyzer = SpectrumAnalyzer(config.spectrum)
        self.estimator = PressureEstimator(self.table, config.classifier)
        self._state_callbacks: List[Callable[[DetectorState], None]] = []
        self._level_callbacks: List[Callable[[float], None]] = []
        self._knock_callbacks: List[Callable[[KnockCapture], None]] = []
        self._result_callbacks: List[Callable[[PressureResult], None]] = []

    @property
    def state(self) -> DetectorState:
        return self.detector.state

    def on_state(self, callback: Callable[[DetectorState], None]) -> None:
        self._state_callbacks.append(callback)

    def on_level(self, callback: Callable[[float], None]) -> None:
        self._level_callbacks.append(callback)

    def on_knock(self, callback: Callable[[KnockCapture], None]) -> None:
        self._knock_callbacks.append(callback)

    def on_result(self, callback: Callable[[PressureResult], None]) -> None:
        self._result_callbacks.append(callback)

    def start(self, now: float) -> None:
        self.table.validate()
        self.detector.start(now)

    def cancel(self) -> bool:
        cancelled = self.detector.cancel()
        if cancelled:
            logger.info("Measurement cancelled")
        return cancelled

    def tick(self, now: float, source: SampleSource) -> Optional[PressureResult]:
        event = self.detector.tick(now, source.time_domain_data())
        if event is None:
            return None
        spectrum = np.array(source.frequency_data(), copy=True)
        capture = KnockCapture(
            event=event,
            spectrum=spectrum,
            sample_rate=source.sample_rate,
            fft_size=source.fft_size,
        )
        try:
            for callback in self._knock_callbacks:
                callback(capture)
            result = self.analyse(capture)
        finally:
            self.detector.complete()
        for callback in self._result_callbacks:
            callback(result)
        return result

    def analyse(self, capture: KnockCapture) -> PressureResult:
        try:
            spectrum = self.analyzer.analyze(capture.spectrum, capture.sample_rate, capture.fft_size)
        except NoSignalError as exc:
            logger.warning("Spectrum analysis inconclusive: %s", exc)
            return self.estimator.no_signal()
        result = self.estimator.classify(spectrum.peak_frequency_hz)
        logger.info(
            "Knock at %.2f Hz -> %s (%s)",
            spectrum.peak_frequency_hz,
            result.psi_label,
            result.classification.value,
        )
        return result

    def run(self, source: SampleSource, clock: Clock) -> Optional[PressureResult]:
        """
        Run one full cycle; returns None when cancelled or the source runs dry.

        Any exception escaping the loop (including ``KeyboardInterrupt``)
        aborts the cycle, so the session is always idle afterwards.
        """

        interval = self.config.listening.tick_interval_sec
        self.start(clock.now())
        try:
            while self.detector.active:
                now = clock.now()
                source.poll(now)
                result = self.tick(now, source)
                if result is not None:
                    return result
                if source.exhausted:
                    logger.info("Source exhausted before a knock was detected")
                    return None
                clock.sleep(interval)
        finally:
            if self.detector.active:
                self.cancel()
        return None

    def _emit_state(self, state: DetectorState) -> None:
        logger.info("State: %s", state.value)
        for callback in self._state_callbacks:
            callback(state)

    def _emit_level(self, ratio: float) -> None:
        for callback in self._level_callbacks:
            callback(ratio)
