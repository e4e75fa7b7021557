from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import numpy as np

from sts_qa.errors import HistogramBinningError


@dataclass(frozen=True, slots=True)
class Binning:
    r"""
    Uniform binning of ``n_bins`` bins over :math:`[lo, hi)`.

    A value :math:`x` falls into bin :math:`i=\lfloor (x-lo)/w \rfloor` with
    :math:`w=(hi-lo)/n`; :math:`x<lo` is underflow, :math:`x\ge hi` overflow.
    """
    n_bins: int
    lo: float
    hi: float

    def __post_init__(self) -> None:
        if self.n_bins < 1 or not self.hi > self.lo:
            raise ValueError(f"invalid binning ({self.n_bins}, {self.lo}, {self.hi})")

    @property
    def width(self) -> float:
        return (self.hi - self.lo) / self.n_bins

    @property
    def edges(self) -> np.ndarray:
        return np.linspace(self.lo, self.hi, self.n_bins + 1)

    @property
    def centers(self) -> np.ndarray:
        e = self.edges
        return 0.5 * (e[:-1] + e[1:])

    def index(self, x: float) -> int:
        """Bin index, ``-1`` for underflow and ``n_bins`` for overflow (NaN counts as overflow)."""
        if not math.isfinite(x):
            return -1 if x == -math.inf else self.n_bins
        if x < self.lo:
            return -1
        if x >= self.hi:
            return self.n_bins
        return min(int((x - self.lo) / self.width), self.n_bins - 1)

    def to_dict(self) -> Dict[str, Any]:
        return {"n_bins": self.n_bins, "lo": self.lo, "hi": self.hi}


@dataclass
class Histogram1D:
    r"""
    Weighted one-dimensional histogram with under/overflow counters.

    Bin errors follow the usual sum-of-squared-weights rule,
    :math:`\sigma_i = \sqrt{\sum w^2}`, and scale linearly under
    :meth:`scale`. Divided (efficiency) histograms set both contents and
    errors explicitly via :meth:`set_content`.
    """
    name: str
    title: str
    binning: Binning
    contents: np.ndarray = field(init=False)
    sumw2: np.ndarray = field(init=False)
    underflow: float = field(init=False, default=0.0)
    overflow: float = field(init=False, default=0.0)
    entries: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self.contents = np.zeros(self.binning.n_bins, dtype=np.float64)
        self.sumw2 = np.zeros(self.binning.n_bins, dtype=np.float64)

    @property
    def n_bins(self) -> int:
        return self.binning.n_bins

    @property
    def errors(self) -> np.ndarray:
        return np.sqrt(self.sumw2)

    def fill(self, x: float, weight: float = 1.0) -> None:
        self.entries += 1
        i = self.binning.index(float(x))
        if i < 0:
            self.underflow += weight
        elif i >= self.n_bins:
            self.overflow += weight
        else:
            self.contents[i] += weight
            self.sumw2[i] += weight * weight

    def set_content(self, i: int, value: float, error: float) -> None:
        self.contents[i] = value
        self.sumw2[i] = error * error

    def integral(self) -> float:
        return float(self.contents.sum())

    def reset(self) -> None:
        self.contents[:] = 0.0
        self.sumw2[:] = 0.0
        self.underflow = self.overflow = 0.0
        self.entries = 0

    def scale(self, factor: float) -> None:
        self.contents *= factor
        self.sumw2 *= factor * factor
        self.underflow *= factor
        self.overflow *= factor

    def check_binning(self, other: "Histogram1D") -> None:
        if self.binning != other.binning:
            raise HistogramBinningError(
                f"different binning in {self.name} {self.binning} and {other.name} {other.binning}"
            )

    def add(self, other: "Histogram1D") -> None:
        """Bin-wise sum; used to merge partial accumulators."""
        self.check_binning(other)
        self.contents += other.contents
        self.sumw2 += other.sumw2
        self.underflow += other.underflow
        self.overflow += other.overflow
        self.entries += other.entries

    def copy(self, name: str | None = None, title: str | None = None) -> "Histogram1D":
        h = Histogram1D(name or self.name, self.title if title is None else title, self.binning)
        h.contents = self.contents.copy()
        h.sumw2 = self.sumw2.copy()
        h.underflow, h.overflow, h.entries = self.underflow, self.overflow, self.entries
        return h

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "binning": self.binning.to_dict(),
            "contents": self.contents.tolist(),
            "errors": self.errors.tolist(),
            "underflow": self.underflow,
            "overflow": self.overflow,
            "entries": self.entries,
        }


@dataclass
class Histogram2D:
    """Two-dimensional histogram; out-of-range fills are only counted in ``outside``."""
    name: str
    title: str
    x_binning: Binning
    y_binning: Binning
    contents: np.ndarray = field(init=False)
    outside: float = field(init=False, default=0.0)
    entries: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self.contents = np.zeros((self.x_binning.n_bins, self.y_binning.n_bins), dtype=np.float64)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.contents.shape

    def fill(self, x: float, y: float, weight: float = 1.0) -> None:
        self.entries += 1
        i = self.x_binning.index(float(x))
        j = self.y_binning.index(float(y))
        if 0 <= i < self.x_binning.n_bins and 0 <= j < self.y_binning.n_bins:
            self.contents[i, j] += weight
        else:
            self.outside += weight

    def integral(self) -> float:
        return float(self.contents.sum())

    def projection_y(self) -> np.ndarray:
        """Sum over x bins, i.e. the distribution of the y quantity."""
        return self.contents.sum(axis=0)

    def reset(self) -> None:
        self.contents[:] = 0.0
        self.outside = 0.0
        self.entries = 0

    def add(self, other: "Histogram2D") -> None:
        if (self.x_binning, self.y_binning) != (other.x_binning, other.y_binning):
            raise HistogramBinningError(f"different binning in {self.name} and {other.name}")
        self.contents += other.contents
        self.outside += other.outside
        self.entries += other.entries

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "x_binning": self.x_binning.to_dict(),
            "y_binning": self.y_binning.to_dict(),
            "contents": self.contents.tolist(),
            "outside": self.outside,
            "entries": self.entries,
        }
