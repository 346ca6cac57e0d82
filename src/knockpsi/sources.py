from __future__ import annotations

import logging
import threading
import time
import wave
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

try:
    import sounddevice as sd  # type: ignore[import]
except ImportError:  # pragma: no cover - handled when the source is opened
    sd = None  # type: ignore[assignment]

from .analyser import ByteAnalyser
from .config import AudioConfig
from .errors import AcquisitionUnavailable, DeviceError, PermissionDenied

logger = logging.getLogger(__name__)

_PERMISSION_HINTS = ("permission", "not authorized", "not authorised", "access denied", "not allowed")


class Clock(Protocol):
    def now(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class SimulatedClock:
    """Virtual time that only moves when :meth:`sleep` is called."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        self._now += max(seconds, 0.0)


class SampleSource(Protocol):
    sample_rate: float
    fft_size: int

    @property
    def exhausted(self) -> bool: ...

    def poll(self, now: float) -> None: ...

    def time_domain_data(self) -> Optional[np.ndarray]: ...

    def frequency_data(self) -> np.ndarray: ...

    def close(self) -> None: ...


class AnalyserSource:
    """Shared plumbing for sources that feed a :class:`ByteAnalyser`."""

    def __init__(self, sample_rate: float, audio: AudioConfig):
        self.sample_rate = float(sample_rate)
        self.fft_size = audio.fft_size
        self.analyser = ByteAnalyser(
            audio.fft_size,
            smoothing=audio.smoothing,
            min_decibels=audio.min_decibels,
            max_decibels=audio.max_decibels,
        )
        self._lock = threading.Lock()

    @property
    def exhausted(self) -> bool:
        return False

    def poll(self, now: float) -> None:
        return None

    def time_domain_data(self) -> Optional[np.ndarray]:
        with self._lock:
            if not self.analyser.has_data:
                return None
            return self.analyser.time_domain_bytes()

    def frequency_data(self) -> np.ndarray:
        with self._lock:
            return self.analyser.frequency_bytes()

    def _push(self, samples: np.ndarray) -> None:
        with self._lock:
            self.analyser.push(samples)

    def close(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class SoundDeviceSource(AnalyserSource):
    """Live microphone input through PortAudio."""

    def __init__(self, audio: AudioConfig):
        super().__init__(audio.sample_rate, audio)
        self.device = _device_arg(audio.device)
        self._stream = None

    def open(self) -> "SoundDeviceSource":
        if sd is None:
            raise AcquisitionUnavailable(
                "sounddevice is required for live measurement. Install extra 'audio'."
            )
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=self.device,
                callback=self._callback,
            )
            self._stream.start()
        except sd.PortAudioError as exc:
            raise _device_error(exc) from exc
        except ValueError as exc:
            raise AcquisitionUnavailable(f"No usable input device: {exc}") from exc
        logger.info("Microphone open (device=%s, %.0f Hz)", self.device, self.sample_rate)
        return self

    def __enter__(self):
        return self.open()

    def _callback(self, indata, frames, time_info, status) -> None:  # pragma: no cover - audio thread
        if status:
            logger.warning("Audio input status: %s", status)
        self._push(indata[:, 0])

    def close(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._stream = None


class WaveFileSource(AnalyserSource):
    """
    Replays a PCM WAV recording in step with a (usually simulated) clock.
    Every sample whose timestamp is <= ``now`` is pushed on :meth:`poll`.
    """

    def __init__(self, path: Path | str, audio: AudioConfig):
        self.path = Path(path)
        samples, sample_rate = read_wave(self.path)
        super().__init__(sample_rate, audio)
        self._samples = samples
        self._cursor = 0
        self._t0: Optional[float] = None

    @property
    def duration_sec(self) -> float:
        return self._samples.size / self.sample_rate

    @property
    def exhausted(self) -> bool:
        return self._cursor >= self._samples.size

    def poll(self, now: float) -> None:
        if self._t0 is None:
            self._t0 = now
        target = min(int((now - self._t0) * self.sample_rate) + 1, self._samples.size)
        if target > self._cursor:
            self._push(self._samples[self._cursor : target])
            self._cursor = target


def read_wave(path: Path) -> tuple[np.ndarray, float]:
    """Return mono float samples in [-1, 1] and the sample rate of a PCM WAV file."""

    if not path.exists():
        raise FileNotFoundError(path)
    try:
        with wave.open(str(path), "rb") as wf:
            channels = wf.getnchannels()
            width = wf.getsampwidth()
            rate = wf.getframerate()
            raw = wf.readframes(wf.getnframes())
    except wave.Error as exc:
        raise ValueError(f"{path} is not a PCM WAV file: {exc}") from exc

    if width == 1:
        data = (np.frombuffer(raw, dtype=np.uint8).astype(float) - 128.0) / 128.0
    elif width == 2:
        data = np.frombuffer(raw, dtype="<i2").astype(float) / 32768.0
    elif width == 4:
        data = np.frombuffer(raw, dtype="<i4").astype(float) / 2147483648.0
    else:
        raise ValueError(f"Unsupported sample width {width * 8} bits in {path}")
    if channels > 1:
        data = data.reshape(-1, channels).mean(axis=1)
    return data, float(rate)


def write_wave(path: Path, samples: np.ndarray, sample_rate: int) -> None:
    """Write mono float samples in [-1, 1] as 16-bit PCM."""

    path.parent.mkdir(parents=True, exist_ok=True)
    pcm = np.clip(np.asarray(samples, dtype=float), -1.0, 1.0 - 1.0 / 32768.0)
    frames = (pcm * 32768.0).astype("<i2").tobytes()
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(frames)


def _device_arg(device: Optional[str]):
    if device is None:
        return None
    return int(device) if device.isdigit() else device


def _device_error(exc: Exception) -> DeviceError:
    message = str(exc)
    if any(hint in message.lower() for hint in _PERMISSION_HINTS):
        return PermissionDenied(f"Microphone access was denied: {message}")
    return AcquisitionUnavailable(f"Microphone unavailable: {message}")
