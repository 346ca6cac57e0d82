"""Command line interface for the knockpsi package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from .config import KnockConfig, load_config
from .demo import run_demo
from .detector import DetectorState
from .errors import AnalysisError, ConfigurationError, DeviceError, PermissionDenied
from .estimator import Classification, PressureEstimator, PressureResult
from .session import KnockCapture, MeasurementSession
from .sources import MonotonicClock, SimulatedClock, SoundDeviceSource, WaveFileSource

logger = logging.getLogger(__name__)

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Estimate tire pressure from the sound of a knock.",
)

STATUS_TEXT = {
    Classification.OUT_OF_RANGE: "Remeasure",
    Classification.OVERINFLATED: "Overinflated",
    Classification.NORMAL: "Normal",
    Classification.UNDERINFLATED: "Underinflated",
}

STATE_TEXT = {
    DetectorState.CALIBRATING: "Calibrating ambient noise...",
    DetectorState.LISTENING: "Waiting for a knock...",
}

ConfigOption = typer.Option(None, "--config", "-c", help="JSON config (defaults are built in).")
OverrideOption = typer.Option(
    None,
    "--set",
    help="Override config keys, e.g. --set calibration.margin=30 --set audio.fft_size=8192",
)


@app.callback()
def main(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Log INFO (-v) or DEBUG (-vv)."),
) -> None:
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(log_level(verbose))


def log_level(verbose: int) -> int:
    """WARNING by default, INFO for ``-v`` and DEBUG for ``-vv``."""

    if verbose <= 0:
        return logging.WARNING
    if verbose == 1:
        return logging.INFO
    return logging.DEBUG


class LevelMeter:
    """Single-line amplitude meter redrawn in place while listening."""

    def __init__(self, width: int = 30):
        self.width = width
        self.drawn = False

    def render(self, ratio: float) -> str:
        ratio = min(max(ratio, 0.0), 1.0)
        filled = int(round(ratio * self.width))
        return f"Level [{'#' * filled}{'.' * (self.width - filled)}] {ratio:4.0%}"

    def update(self, ratio: float) -> None:
        typer.echo("\r" + self.render(ratio), nl=False)
        self.drawn = True

    def finish(self, state: Optional[DetectorState] = None) -> None:
        if self.drawn:
            typer.echo()
            self.drawn = False


@app.command()
def measure(
    config_path: Optional[Path] = ConfigOption,
    override: Optional[List[str]] = OverrideOption,
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Input device index or name."),
    meter: bool = typer.Option(True, "--meter/--no-meter", help="Show the input level while listening."),
) -> None:
    """Calibrate against ambient noise, wait for a knock and report the pressure."""

    cfg = _load(config_path, override)
    if device is not None:
        cfg.audio.device = device
    level_meter = LevelMeter() if meter else None
    session = _session(cfg, level_meter)
    source = SoundDeviceSource(cfg.audio)
    try:
        with source:
            result = _run_cycle(session, source, MonotonicClock())
    except PermissionDenied as exc:
        typer.echo(f"Microphone permission denied: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    except DeviceError as exc:
        typer.echo(f"Microphone unavailable: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    except KeyboardInterrupt:
        typer.echo("Measurement cancelled")
        raise typer.Exit(code=130)
    _report(result)


@app.command()
def replay(
    input_path: Path = typer.Option(..., "--in", help="WAV recording of a knock.", exists=True, readable=True),
    config_path: Optional[Path] = ConfigOption,
    override: Optional[List[str]] = OverrideOption,
    plot_dir: Optional[Path] = typer.Option(None, "--plot", help="Write spectrum.png to this directory."),
) -> None:
    """Run one measurement cycle over a recording."""

    cfg = _load(config_path, override)
    session = _session(cfg)
    captures: List[KnockCapture] = []
    session.on_knock(captures.append)
    try:
        source = WaveFileSource(input_path, cfg.audio)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--in") from exc
    result = _run_cycle(session, source, SimulatedClock())
    _report(result)
    if plot_dir is not None and captures:
        _plot(captures[0], session, plot_dir, result)


@app.command()
def classify(
    frequency: float = typer.Argument(..., help="Knock frequency in Hz."),
    config_path: Optional[Path] = ConfigOption,
    override: Optional[List[str]] = OverrideOption,
) -> None:
    """Classify a knock frequency without recording."""

    cfg = _load(config_path, override)
    estimator = PressureEstimator(cfg.calibration_table(), cfg.classifier)
    try:
        result = estimator.classify(frequency)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc
    _report(result)


@app.command()
def table(
    config_path: Optional[Path] = ConfigOption,
    override: Optional[List[str]] = OverrideOption,
) -> None:
    """Print the active calibration table."""

    cfg = _load(config_path, override)
    df = cfg.calibration_table().to_dataframe()
    if df.empty:
        typer.echo("Calibration table is empty")
        return
    typer.echo(df.to_string(index=False))


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for the demo recording."),
    plot: bool = typer.Option(False, "--plot", help="Also write spectrum.png."),
) -> None:
    """Synthesize a knock recording and measure it."""

    cfg = KnockConfig()
    result, capture, wav_path = run_demo(out_dir, cfg)
    typer.echo(f"Demo recording written to {wav_path}")
    _report(result)
    if plot and capture is not None:
        _plot(capture, _session(cfg), out_dir, result)


def _load(config_path: Optional[Path], override: Optional[List[str]]) -> KnockConfig:
    try:
        return load_config(config_path, override or None)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config/--set") from exc


def _session(cfg: KnockConfig, meter: Optional[LevelMeter] = None) -> MeasurementSession:
    session = MeasurementSession(cfg)
    if meter is not None:
        session.on_level(meter.update)
        session.on_state(meter.finish)
    session.on_state(_echo_state)
    return session


def _echo_state(state: DetectorState) -> None:
    text = STATE_TEXT.get(state)
    if text:
        typer.echo(text)


def _run_cycle(session: MeasurementSession, source, clock) -> Optional[PressureResult]:
    try:
        return session.run(source, clock)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc
    except AnalysisError as exc:
        typer.echo(f"Analysis inconclusive, please retry: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _report(result: Optional[PressureResult]) -> None:
    if result is None:
        typer.echo("No knock detected, please retry.")
        raise typer.Exit(code=1)
    typer.echo(f"Frequency: {result.frequency_label}")
    typer.echo(f"Pressure: {result.psi_label}")
    typer.echo(f"Status: {STATUS_TEXT[result.classification]}")


def _plot(capture: KnockCapture, session: MeasurementSession, out_dir: Path, result) -> None:
    from .plotting import generate_spectrum_plot

    try:
        figure_path = generate_spectrum_plot(capture, session.analyzer, out_dir, result=result)
    except RuntimeError as exc:
        typer.echo(f"[warning] plotting skipped: {exc}")
        return
    typer.echo(f"Spectrum plot written to {figure_path}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
