"""Plotting helpers for captured knock spectra."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import numpy as np

from .estimator import PressureResult
from .session import KnockCapture
from .spectrum import SpectrumAnalyzer


def generate_spectrum_plot(
    capture: KnockCapture,
    analyzer: SpectrumAnalyzer,
    output_dir: Path,
    *,
    result: Optional[PressureResult] = None,
) -> Path:
    plt = _require_matplotlib()
    output_dir.mkdir(parents=True, exist_ok=True)
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))

    _plot_spectrum(capture, analyzer, axes[0])
    _plot_hps(capture, analyzer, axes[1], result)

    fig.tight_layout()
    out_path = output_dir / "spectrum.png"
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    return out_path


def _bin_frequencies(capture: KnockCapture) -> np.ndarray:
    return np.arange(capture.spectrum.size) * capture.sample_rate / capture.fft_size


def _plot_spectrum(capture: KnockCapture, analyzer: SpectrumAnalyzer, ax) -> None:
    freqs = _bin_frequencies(capture)
    limit = min(capture.spectrum.size, int(np.searchsorted(freqs, 1000.0)) + 1)
    ax.plot(freqs[:limit], capture.spectrum[:limit], color="tab:blue")
    ax.axvspan(analyzer.config.band_min_hz, analyzer.config.band_max_hz, color="tab:orange", alpha=0.15)
    ax.set_title("Captured spectrum")
    ax.set_xlabel("Frequency [Hz]")
    ax.set_ylabel("Magnitude [byte]")


def _plot_hps(
    capture: KnockCapture,
    analyzer: SpectrumAnalyzer,
    ax,
    result: Optional[PressureResult],
) -> None:
    hps = analyzer.harmonic_product(capture.spectrum)
    _, hi = analyzer.band_indices(hps.size, capture.sample_rate)
    freqs = _bin_frequencies(capture)
    upper = min(hps.size, 2 * hi)
    ax.semilogy(freqs[:upper], np.maximum(hps[:upper], 1.0), marker="o", color="black")
    ax.axvspan(analyzer.config.band_min_hz, analyzer.config.band_max_hz, color="tab:orange", alpha=0.15,
               label="search band")
    if result is not None and result.frequency_hz is not None:
        ax.axvline(result.frequency_hz, color="tab:red", linestyle="--",
                   label=f"{result.frequency_label} / {result.psi_label}")
    ax.set_title("Harmonic product spectrum")
    ax.set_xlabel("Frequency [Hz]")
    ax.set_ylabel("HPS")
    ax.legend(loc="best")


def _require_matplotlib() -> Any:
    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install knockpsi[plot]") from exc
    except Exception as exc:  # pragma: no cover - environment issues
        raise RuntimeError(f"matplotlib initialisation failed: {exc}") from exc
    return plt
