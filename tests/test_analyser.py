from __future__ import annotations

import numpy as np
import pytest

from knockpsi.analyser import ByteAnalyser


def test_time_domain_bytes_centre_on_128() -> None:
    analyser = ByteAnalyser(1024)
    assert not analyser.has_data
    analyser.push(np.zeros(256))
    assert analyser.has_data
    data = analyser.time_domain_bytes()
    assert data.dtype == np.uint8
    assert data.size == analyser.bin_count == 512
    assert np.all(data == 128)


def test_time_domain_bytes_clip_full_scale() -> None:
    analyser = ByteAnalyser(64)
    analyser.push(np.array([-2.0, -1.0, 0.5, 0.999, 1.5]))
    tail = analyser.time_domain_bytes()[-5:]
    assert tail.tolist() == [0, 0, 192, 255, 255]


def test_push_keeps_latest_window() -> None:
    analyser = ByteAnalyser(32)
    analyser.push(np.linspace(-1.0, 0.0, 100))
    analyser.push(np.full(8, 0.5))
    data = analyser.time_domain_bytes()
    assert data.size == 16
    assert np.all(data[-8:] == 192)
    assert data[0] < 128


def test_frequency_bytes_peak_at_tone_bin() -> None:
    fft_size = 4096
    sample_rate = 48000.0
    analyser = ByteAnalyser(fft_size)
    t = np.arange(fft_size) / sample_rate
    tone_hz = 8 * sample_rate / fft_size
    analyser.push(0.001 * np.sin(2 * np.pi * tone_hz * t))
    spectrum = analyser.frequency_bytes()
    assert spectrum.size == fft_size // 2
    assert int(np.argmax(spectrum)) == 8
    assert spectrum[8] > spectrum[7] > 0


def test_frequency_bytes_silence_is_zero() -> None:
    analyser = ByteAnalyser(256)
    analyser.push(np.zeros(256))
    assert np.all(analyser.frequency_bytes() == 0)


def test_reset_clears_history() -> None:
    analyser = ByteAnalyser(64)
    analyser.push(np.ones(64) * 0.5)
    analyser.reset()
    assert not analyser.has_data
    assert np.all(analyser.time_domain_bytes() == 128)


def test_rejects_non_power_of_two() -> None:
    with pytest.raises(ValueError):
        ByteAnalyser(1000)


def test_time_domain_bytes_hold_newest_half_window() -> None:
    analyser = ByteAnalyser(64)
    analyser.push(np.full(32, -0.5))
    analyser.push(np.full(32, 0.5))
    data = analyser.time_domain_bytes()
    assert data.size == 32
    assert np.all(data == 192)
