"""Empirical frequency-to-PSI calibration table."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

import pandas as pd

from .errors import ConfigurationError

REQUIRED_COLUMNS = {"psi", "freq"}


@dataclass(frozen=True)
class CalibrationPoint:
    """A measured knock frequency for a known tire pressure."""

    psi: int
    freq: float

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "CalibrationPoint":
        if "psi" not in data or "freq" not in data:
            raise ConfigurationError("calibration points require fields 'psi' and 'freq'")
        try:
            return CalibrationPoint(psi=int(data["psi"]), freq=float(data["freq"]))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid calibration point {dict(data)!r}: {exc}") from exc


class CalibrationTable:
    """
    Ordered set of calibration points with exhaustive nearest-match lookup.
    Points are kept in the order given; frequencies need not be sorted.
    """

    def __init__(self, points: Iterable[CalibrationPoint]):
        self._points: tuple[CalibrationPoint, ...] = tuple(points)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[CalibrationPoint]:
        return iter(self._points)

    @property
    def points(self) -> tuple[CalibrationPoint, ...]:
        return self._points

    def validate(self) -> None:
        if not self._points:
            raise ConfigurationError("Calibration table is empty")

    def nearest(self, freq: float) -> CalibrationPoint:
        """Return the point closest to *freq*; the first one wins on ties."""

        self.validate()
        best = self._points[0]
        best_distance = abs(best.freq - freq)
        for point in self._points[1:]:
            distance = abs(point.freq - freq)
            if distance < best_distance:
                best = point
                best_distance = distance
        return best

    def nearest_psi(self, freq: float) -> int:
        return self.nearest(freq).psi

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [{"psi": point.psi, "freq": point.freq} for point in self._points],
            columns=["psi", "freq"],
        )

    @classmethod
    def from_records(cls, records: Sequence[Mapping[str, Any]]) -> "CalibrationTable":
        return cls(CalibrationPoint.from_mapping(record) for record in records)


def load_table_csv(path: str | Path) -> CalibrationTable:
    """Load a calibration table from a CSV file with `psi` and `freq` columns.

    Row order is preserved since it decides ties in :meth:`CalibrationTable.nearest`.
    """

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Calibration table not found: {path}")

    df = pd.read_csv(path)
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ConfigurationError(f"Missing required columns: {sorted(missing)}")
    if df[["psi", "freq"]].isna().any().any():
        raise ConfigurationError(f"Calibration table {path} contains empty cells")

    return CalibrationTable.from_records(df[["psi", "freq"]].to_dict("records"))
