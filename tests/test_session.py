from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import pytest

from knockpsi.config import KnockConfig, load_config
from knockpsi.demo import create_demo_recording, run_demo
from knockpsi.detector import DetectorState
from knockpsi.errors import CalibrationError, ConfigurationError, CycleActiveError
from knockpsi.estimator import Classification
from knockpsi.session import MeasurementSession
from knockpsi.sources import SimulatedClock, WaveFileSource, read_wave, write_wave

SAMPLE_RATE = 48000.0
FFT_SIZE = 4096


def engineered_spectrum(fundamental_bin: int) -> np.ndarray:
    spectrum = np.ones(FFT_SIZE // 2, dtype=np.uint8)
    for order in range(1, 6):
        spectrum[fundamental_bin * order] = 200
    return spectrum


class ScriptedSource:
    """Ambient level until ``knock_at``, then a loud buffer and a fixed spectrum."""

    sample_rate = SAMPLE_RATE
    fft_size = FFT_SIZE

    def __init__(
        self,
        *,
        ambient: int = 50,
        knock_level: int = 200,
        knock_at: Optional[float] = 1.5,
        spectrum: Optional[np.ndarray] = None,
        deliver: bool = True,
        duration: Optional[float] = None,
    ):
        self.ambient = ambient
        self.knock_level = knock_level
        self.knock_at = knock_at
        self.spectrum = spectrum if spectrum is not None else engineered_spectrum(7)
        self.deliver = deliver
        self.duration = duration
        self.now = 0.0
        self.spectrum_reads = 0

    @property
    def exhausted(self) -> bool:
        return self.duration is not None and self.now >= self.duration

    def poll(self, now: float) -> None:
        self.now = now

    def time_domain_data(self) -> Optional[np.ndarray]:
        if not self.deliver:
            return None
        level = self.ambient
        if self.knock_at is not None and self.now >= self.knock_at:
            level = self.knock_level
        return np.full(64, level, dtype=np.uint8)

    def frequency_data(self) -> np.ndarray:
        self.spectrum_reads += 1
        return self.spectrum

    def close(self) -> None:
        pass


def test_run_end_to_end_with_engineered_spectrum() -> None:
    session = MeasurementSession(KnockConfig())
    states = []
    levels = []
    results = []
    session.on_state(states.append)
    session.on_level(levels.append)
    session.on_result(results.append)
    source = ScriptedSource()

    result = session.run(source, SimulatedClock())

    assert result is not None
    assert result.frequency_hz == pytest.approx(82.03125)
    assert result.psi == 65
    assert result.classification is Classification.UNDERINFLATED
    assert results == [result]
    assert source.spectrum_reads == 1
    assert states == [
        DetectorState.CALIBRATING,
        DetectorState.LISTENING,
        DetectorState.DETECTED,
        DetectorState.IDLE,
    ]
    assert levels and all(0.0 <= level <= 1.0 for level in levels)
    assert session.state is DetectorState.IDLE


def test_knock_capture_carries_spectrum() -> None:
    session = MeasurementSession(KnockConfig())
    captures = []
    session.on_knock(captures.append)
    session.run(ScriptedSource(), SimulatedClock())
    assert len(captures) == 1
    capture = captures[0]
    assert capture.event.amplitude == 200.0
    assert capture.event.timestamp >= 1.5
    assert capture.sample_rate == SAMPLE_RATE
    assert capture.fft_size == FFT_SIZE
    np.testing.assert_array_equal(capture.spectrum, engineered_spectrum(7))


def test_tick_threshold_boundary() -> None:
    session = MeasurementSession(KnockConfig())
    source = ScriptedSource(knock_at=None)
    session.start(0.0)
    for i in range(11):
        source.poll(i * 0.1)
        assert session.tick(i * 0.1, source) is None
    assert session.detector.threshold == 100.0

    source.ambient = 100
    assert session.tick(1.1, source) is None
    source.ambient = 101
    result = session.tick(1.2, source)
    assert result is not None
    assert session.state is DetectorState.IDLE


def test_no_signal_becomes_out_of_range() -> None:
    session = MeasurementSession(KnockConfig())
    source = ScriptedSource(spectrum=np.zeros(FFT_SIZE // 2, dtype=np.uint8))
    result = session.run(source, SimulatedClock())
    assert result is not None
    assert result.classification is Classification.OUT_OF_RANGE
    assert result.frequency_hz is None
    assert session.state is DetectorState.IDLE


def test_calibration_error_when_no_data_delivered() -> None:
    session = MeasurementSession(KnockConfig())
    with pytest.raises(CalibrationError):
        session.run(ScriptedSource(deliver=False), SimulatedClock())
    assert session.state is DetectorState.IDLE


def test_source_exhausted_before_knock() -> None:
    session = MeasurementSession(KnockConfig())
    result = session.run(ScriptedSource(knock_at=None, duration=3.0), SimulatedClock())
    assert result is None
    assert session.state is DetectorState.IDLE


def test_cancel_discards_cycle() -> None:
    session = MeasurementSession(KnockConfig())
    knocks = []
    session.on_knock(knocks.append)
    source = ScriptedSource(knock_at=0.5)
    session.start(0.0)
    for i in range(5):
        session.tick(i * 0.1, source)
    assert session.cancel() is True
    assert session.detector.threshold is None
    assert session.tick(2.0, source) is None
    assert knocks == []
    assert session.cancel() is False


def test_second_cycle_requires_cancel() -> None:
    session = MeasurementSession(KnockConfig())
    session.start(0.0)
    with pytest.raises(CycleActiveError):
        session.start(0.1)
    session.cancel()
    session.start(0.2)
    assert session.state is DetectorState.CALIBRATING


def test_empty_table_fails_before_cycle_starts() -> None:
    session = MeasurementSession(load_config(None, overrides=["table=[]"]))
    with pytest.raises(ConfigurationError):
        session.run(ScriptedSource(), SimulatedClock())
    assert session.state is DetectorState.IDLE


def test_wave_replay_detects_knock(tmp_path: Path) -> None:
    wav_path = tmp_path / "knock.wav"
    write_wave(wav_path, create_demo_recording(sample_rate=48000), 48000)

    samples, rate = read_wave(wav_path)
    assert rate == 48000.0
    assert samples.size == int(2.5 * 48000)

    session = MeasurementSession(KnockConfig())
    captures = []
    session.on_knock(captures.append)
    source = WaveFileSource(wav_path, KnockConfig().audio)
    result = session.run(source, SimulatedClock())

    assert result is not None
    assert result.frequency_hz == pytest.approx(93.75)
    assert len(captures) == 1
    assert captures[0].event.timestamp >= 1.5
    assert captures[0].spectrum.size == 2048
    assert session.analyzer.analyze(captures[0].spectrum, 48000.0, 4096).peak_bin == 8


def test_wave_source_paces_samples_by_clock(tmp_path: Path) -> None:
    wav_path = tmp_path / "silence.wav"
    write_wave(wav_path, np.zeros(4800), 48000)
    source = WaveFileSource(wav_path, KnockConfig().audio)
    assert source.time_domain_data() is None
    source.poll(0.0)
    assert source.time_domain_data() is not None
    assert not source.exhausted
    source.poll(0.05)
    assert not source.exhausted
    source.poll(0.2)
    assert source.exhausted


def test_run_demo_recovers_knock_pitch(tmp_path: Path) -> None:
    result, capture, wav_path = run_demo(tmp_path)
    assert wav_path.exists()
    assert capture is not None
    assert capture.event.timestamp > 1.5 + 4096 / 48000
    assert result is not None
    assert result.frequency_hz == pytest.approx(93.75)
    assert result.psi == 100
    assert result.classification is Classification.NORMAL


def test_failing_listener_aborts_cycle() -> None:
    session = MeasurementSession(KnockConfig())
    failures = []

    def flaky_meter(ratio: float) -> None:
        if not failures:
            failures.append(ratio)
            raise RuntimeError("meter failed")

    session.on_level(flaky_meter)
    with pytest.raises(RuntimeError, match="meter failed"):
        session.run(ScriptedSource(), SimulatedClock())
    assert session.state is DetectorState.IDLE
    assert session.detector.threshold is None

    result = session.run(ScriptedSource(), SimulatedClock())
    assert result is not None
    assert result.psi == 65


def test_empty_buffer_aborts_cycle() -> None:
    session = MeasurementSession(KnockConfig())
    source = ScriptedSource(ambient=50)
    source.time_domain_data = lambda: np.array([], dtype=np.uint8)
    with pytest.raises(ValueError):
        session.run(source, SimulatedClock())
    assert session.state is DetectorState.IDLE
    session.start(0.0)
    assert session.state is DetectorState.CALIBRATING
