"""Knock onset detection against an ambient-noise derived threshold."""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

from .config import CalibrationConfig
from .errors import CalibrationError, CycleActiveError
from .monitor import AmplitudeMonitor

logger = logging.getLogger(__name__)

_EPS = 1e-9


class DetectorState(str, enum.Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"
    LISTENING = "listening"
    DETECTED = "detected"


@dataclass(frozen=True)
class CalibrationStats:
    ambient_level: float
    threshold: float
    sample_count: int


@dataclass(frozen=True)
class KnockEvent:
    tick: int
    timestamp: float
    amplitude: float


def compute_threshold(
    samples: Sequence[float],
    *,
    multiplier: float = 1.5,
    margin: float = 25.0,
) -> CalibrationStats:
    """Return ambient level and knock threshold for calibration *samples*."""

    if len(samples) == 0:
        raise CalibrationError("No ambient samples were collected during calibration")
    ambient = sum(samples) / len(samples)
    return CalibrationStats(
        ambient_level=ambient,
        threshold=ambient * multiplier + margin,
        sample_count=len(samples),
    )


@dataclass
class MeasurementCycle:
    """Mutable state owned by the one active measurement."""

    started_at: float
    monitor: AmplitudeMonitor = field(default_factory=AmplitudeMonitor)
    slots_sampled: int = 0
    stats: Optional[CalibrationStats] = None
    ticks: int = 0


StateCallback = Callable[[DetectorState], None]
LevelCallback = Callable[[float], None]


class KnockDetector:
    """
    Idle -> Calibrating -> Listening -> Detected -> Idle.

    The detector never reads a clock or sleeps: callers pass the current time
    and the latest time-domain buffer to :meth:`tick`.
    """

    def __init__(
        self,
        config: CalibrationConfig,
        *,
        on_state: Optional[StateCallback] = None,
        on_level: Optional[LevelCallback] = None,
    ) -> None:
        self.config = config
        self._on_state = on_state
        self._on_level = on_level
        self._state = DetectorState.IDLE
        self._cycle: Optional[MeasurementCycle] = None
        self._slot_count = max(int(math.floor(config.duration_sec / config.interval_sec + _EPS)), 1)

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is not DetectorState.IDLE

    @property
    def stats(self) -> Optional[CalibrationStats]:
        return self._cycle.stats if self._cycle is not None else None

    @property
    def threshold(self) -> Optional[float]:
        stats = self.stats
        return stats.threshold if stats is not None else None

    @property
    def ambient_level(self) -> Optional[float]:
        if self._cycle is None:
            return None
        return self._cycle.monitor.ambient_level

    def start(self, now: float) -> None:
        if self.active:
            raise CycleActiveError(f"Measurement already running ({self._state.value})")
        self._cycle = MeasurementCycle(started_at=now)
        self._set_state(DetectorState.CALIBRATING)

    def cancel(self) -> bool:
        """Abort the active cycle, discarding calibration state. Returns False when idle."""

        if not self.active:
            return False
        self._cycle = None
        self._set_state(DetectorState.IDLE)
        return True

    def complete(self) -> None:
        """Finish a detected cycle once its spectrum has been analysed."""

        if self._state is not DetectorState.DETECTED:
            raise RuntimeError(f"Cannot complete cycle from state {self._state.value}")
        self._cycle = None
        self._set_state(DetectorState.IDLE)

    def tick(self, now: float, buffer: Optional[np.ndarray]) -> Optional[KnockEvent]:
        cycle = self._cycle
        if cycle is None:
            return None
        cycle.ticks += 1
        if self._state is DetectorState.CALIBRATING:
            self._calibration_tick(cycle, now, buffer)
            return None
        if self._state is DetectorState.LISTENING:
            return self._listening_tick(cycle, now, buffer)
        return None

    def _calibration_tick(self, cycle: MeasurementCycle, now: float, buffer: Optional[np.ndarray]) -> None:
        elapsed = now - cycle.started_at
        due = min(int(math.floor(elapsed / self.config.interval_sec + _EPS)), self._slot_count)
        if buffer is not None and due > cycle.slots_sampled:
            peak = cycle.monitor.record(buffer)
            cycle.slots_sampled = due
            logger.debug("Calibration sample %d: peak=%.1f", len(cycle.monitor.samples), peak)
        if elapsed + _EPS < self.config.duration_sec:
            return
        samples = cycle.monitor.samples
        if not samples:
            self._cycle = None
            self._set_state(DetectorState.IDLE)
            raise CalibrationError(
                f"No ambient samples collected in {self.config.duration_sec:.2f}s calibration window"
            )
        stats = compute_threshold(
            samples,
            multiplier=self.config.multiplier,
            margin=self.config.margin,
        )
        cycle.stats = stats
        logger.info(
            "Calibrated: ambient=%.2f threshold=%.2f (%d samples)",
            stats.ambient_level,
            stats.threshold,
            stats.sample_count,
        )
        self._set_state(DetectorState.LISTENING)

    def _listening_tick(
        self, cycle: MeasurementCycle, now: float, buffer: Optional[np.ndarray]
    ) -> Optional[KnockEvent]:
        if buffer is None:
            return None
        assert cycle.stats is not None
        peak = AmplitudeMonitor.sample_peak(buffer)
        if self._on_level is not None:
            self._on_level(AmplitudeMonitor.level_ratio(peak))
        if peak > cycle.stats.threshold:
            event = KnockEvent(tick=cycle.ticks, timestamp=now, amplitude=peak)
            logger.info("Knock detected: peak=%.1f threshold=%.2f", peak, cycle.stats.threshold)
            self._set_state(DetectorState.DETECTED)
            return event
        return None

    def _set_state(self, state: DetectorState) -> None:
        if state is self._state:
            return
        logger.debug("Detector %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state is not None:
            self._on_state(state)
