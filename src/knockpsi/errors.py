"""Exception hierarchy for knock measurements.

Every error is local to one measurement cycle: raising it aborts the cycle and
leaves the session idle, ready for the operator to start again.
"""
from __future__ import annotations


class KnockPsiError(Exception):
    """Base class for all knockpsi errors."""


class ConfigurationError(KnockPsiError, ValueError):
    """Invalid or incomplete configuration (e.g. an empty calibration table)."""


class CycleActiveError(KnockPsiError, RuntimeError):
    """A measurement cycle is already running."""


class DeviceError(KnockPsiError):
    """The audio input could not be used."""


class AcquisitionUnavailable(DeviceError):
    """No audio input device or stream could be obtained."""


class PermissionDenied(DeviceError):
    """Access to the audio input was refused."""


class AnalysisError(KnockPsiError):
    """The measurement was inconclusive and should be retried."""


class CalibrationError(AnalysisError):
    """No ambient samples were collected during calibration."""


class NoSignalError(AnalysisError):
    """The spectrum contained no usable peak in the search band."""
