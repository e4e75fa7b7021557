from __future__ import annotations


class QaError(Exception):
    """Base class for all errors raised by :mod:`sts_qa`."""


class DataInconsistencyError(QaError, ValueError):
    r"""
    Upstream producers delivered inconsistent event data.

    Raised for out-of-range hit→point or track→hit references, mismatched
    collection sizes and broken match bookkeeping. Processing of the event is
    aborted; the run is not expected to continue.

    Parameters
    ----------
    message : str
        Human-readable description.
    event : int, optional
        Number of the event in which the inconsistency was detected.
    """

    def __init__(self, message: str, *, event: int | None = None) -> None:
        self.event = event
        if event is not None:
            message = f"event {event}: {message}"
        super().__init__(message)


class MissingInputError(QaError, KeyError):
    """A required input collection or table is absent."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class ConfigurationError(QaError, ValueError):
    """Invalid configuration value (e.g. quota outside ``(0, 1]``)."""


class HistogramBinningError(QaError, ValueError):
    """Numerator, denominator and result histograms do not share a binning."""


class ConfigurationWarning(UserWarning):
    """Non-fatal configuration issue; processing continues with the given value."""
