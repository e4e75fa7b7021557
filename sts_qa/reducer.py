from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from sts_qa.accumulators import RunAccumulators, efficiency_pairs
from sts_qa.histograms import Histogram1D, Histogram2D

logger = logging.getLogger(__name__)


class ErrorPolicy(str, Enum):
    r"""
    Error formula for efficiency bins.

    ``BINOMIAL``
        :math:`\sigma = \sqrt{\varepsilon(1-\varepsilon)/N}`; a negative
        variance (only possible for :math:`\varepsilon > 1` or through
        rounding) is clamped to zero.
    ``OVER_UNITY``
        As ``BINOMIAL`` for :math:`\varepsilon \le 1`, and
        :math:`\sqrt{\varepsilon(1+\varepsilon)/N}` for bins above one, which
        arise when numerator and denominator are filled with different
        x-values.
    """
    BINOMIAL = "binomial"
    OVER_UNITY = "over-unity"


def divide_histograms(
    num: Histogram1D,
    den: Histogram1D,
    policy: ErrorPolicy | str = ErrorPolicy.BINOMIAL,
    *,
    name: Optional[str] = None,
    title: Optional[str] = None,
) -> Histogram1D:
    r"""
    Bin-by-bin efficiency :math:`\varepsilon_i = n_i / N_i` with binomial errors.

    Parameters
    ----------
    num : Histogram1D
        Numerator (reconstructed) distribution.
    den : Histogram1D
        Denominator (accepted) distribution; same binning as ``num``.
    policy : ErrorPolicy or str, optional
        Error formula, see :class:`ErrorPolicy`.
    name, title : str, optional
        Name and title of the result.

    Returns
    -------
    Histogram1D
        New histogram whose contents are :math:`\varepsilon_i` and errors
        :math:`\sigma_i`. Bins with :math:`N_i=0` get :math:`\varepsilon_i=\sigma_i=0`.
        Inputs are not modified.

    Raises
    ------
    HistogramBinningError
        If the two inputs differ in binning.
    """
    num.check_binning(den)
    policy = ErrorPolicy(policy)
    n = num.contents
    d = den.contents

    nz = d != 0.0
    eff = np.zeros_like(d)
    eff[nz] = n[nz] / d[nz]

    var = np.zeros_like(d)
    var[nz] = eff[nz] * (1.0 - eff[nz]) / d[nz]
    if policy is ErrorPolicy.OVER_UNITY:
        over = nz & (eff > 1.0)
        var[over] = eff[over] * (1.0 + eff[over]) / d[over]
    err = np.sqrt(np.clip(var, 0.0, None))

    out = Histogram1D(name or f"{num.name}_over_{den.name}", title or "", num.binning)
    out.contents = eff
    out.sumw2 = err * err
    out.entries = int(nz.sum())
    return out


def _ratio(num: float, den: float, empty: float) -> float:
    return float(num) / float(den) if den else empty


def resolution_moments(h2: Histogram2D) -> Tuple[float, float]:
    r"""
    Mean and RMS of the y-projection of a resolution scatter (bin centres).

    Returns ``(0.0, 0.0)`` for an empty histogram.
    """
    proj = h2.projection_y()
    total = proj.sum()
    if total <= 0.0:
        return 0.0, 0.0
    centers = h2.y_binning.centers
    mean = float((proj * centers).sum() / total)
    var = float((proj * (centers - mean) ** 2).sum() / total)
    return mean, float(np.sqrt(max(var, 0.0)))


@dataclass
class CategoryEfficiency:
    reconstructed: int
    accepted: int

    @property
    def efficiency(self) -> float:
        # no accepted tracks: vacuously efficient
        return _ratio(self.reconstructed, self.accepted, 1.0)


@dataclass
class RunSummary:
    r"""
    End-of-run QA result.

    Attributes
    ----------
    events, events_failed : int
    efficiencies : dict[str, CategoryEfficiency]
        Keys ``all``, ``vertex``, ``reference``, ``secondary``.
    ghost_rate, clone_rate : float
        Ghosts and clones per processed event (``0.0`` without events).
    reco_tracks_per_event, time_per_event : float
    hit_purity : float
        True-hit fraction of matched tracks, ``1.0`` if nothing matched.
    curves : dict[str, Histogram1D]
        Efficiency curves (vs momentum, points, vertex z, per species).
    hit_distributions : dict[str, Histogram1D]
        Ghost and clone hit-count distributions normalised to one event.
    resolution : dict[str, tuple of float]
        ``(mean, rms)`` of :math:`\delta p/p` in percent per category.
    """
    events: int
    events_failed: int
    efficiencies: Dict[str, CategoryEfficiency]
    ghost_rate: float
    clone_rate: float
    reco_tracks_per_event: float
    time_per_event: float
    hit_purity: float
    error_policy: ErrorPolicy = ErrorPolicy.BINOMIAL
    curves: Dict[str, Histogram1D] = field(default_factory=dict)
    hit_distributions: Dict[str, Histogram1D] = field(default_factory=dict)
    resolution: Dict[str, Tuple[float, float]] = field(default_factory=dict)

    def efficiency(self, category: str) -> float:
        return self.efficiencies[category].efficiency

    def to_frame(self) -> pd.DataFrame:
        """One row per efficiency category."""
        return pd.DataFrame(
            [
                {
                    "category": k,
                    "reconstructed": v.reconstructed,
                    "accepted": v.accepted,
                    "efficiency": v.efficiency,
                }
                for k, v in self.efficiencies.items()
            ]
        )

    def to_dict(self, *, with_histograms: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "events": self.events,
            "events_failed": self.events_failed,
            "efficiencies": {
                k: {"reconstructed": v.reconstructed, "accepted": v.accepted, "efficiency": v.efficiency}
                for k, v in self.efficiencies.items()
            },
            "ghost_rate": self.ghost_rate,
            "clone_rate": self.clone_rate,
            "reco_tracks_per_event": self.reco_tracks_per_event,
            "time_per_event": self.time_per_event,
            "hit_purity": self.hit_purity,
            "error_policy": self.error_policy.value,
            "resolution": {k: {"mean": m, "rms": r} for k, (m, r) in self.resolution.items()},
        }
        if with_histograms:
            d["curves"] = {k: h.to_dict() for k, h in self.curves.items()}
            d["hit_distributions"] = {k: h.to_dict() for k, h in self.hit_distributions.items()}
        return d


def efficiency_curves(
    acc: RunAccumulators, policy: ErrorPolicy | str = ErrorPolicy.BINOMIAL
) -> Dict[str, Histogram1D]:
    """Divide every numerator/denominator pair of ``acc``; one policy for all curves."""
    curves: Dict[str, Histogram1D] = {}
    for num, den, eff in efficiency_pairs(acc.species):
        h_num = acc.histograms[num]
        title = "efficiency " + h_num.title.replace("reconstructed ", "")
        curves[eff] = divide_histograms(h_num, acc.histograms[den], policy, name=eff, title=title)
    return curves


def summarize(acc: RunAccumulators, policy: ErrorPolicy | str = ErrorPolicy.BINOMIAL) -> RunSummary:
    r"""
    Reduce the run accumulators to a :class:`RunSummary`.

    Category efficiencies are :math:`N_\mathrm{rec}/N_\mathrm{acc}` with
    ``1.0`` for an empty category; rates are per processed event. The
    accumulators are only read, so repeated calls give identical results.
    """
    c = acc.counters
    n_events = c.events

    hit_distributions: Dict[str, Histogram1D] = {}
    for name in ("nh_ghosts", "nh_clones"):
        h = acc.histograms[name].copy()
        if n_events:
            h.scale(1.0 / n_events)
        hit_distributions[name] = h

    return RunSummary(
        events=n_events,
        events_failed=c.events_failed,
        efficiencies={
            "all": CategoryEfficiency(c.rec_all, c.acc_all),
            "vertex": CategoryEfficiency(c.rec_prim, c.acc_prim),
            "reference": CategoryEfficiency(c.rec_ref, c.acc_ref),
            "secondary": CategoryEfficiency(c.rec_sec, c.acc_sec),
        },
        ghost_rate=_ratio(c.ghosts, n_events, 0.0),
        clone_rate=_ratio(c.clones, n_events, 0.0),
        reco_tracks_per_event=_ratio(c.reco_tracks, n_events, 0.0),
        time_per_event=_ratio(c.time, n_events, 0.0),
        hit_purity=_ratio(c.matched_true_hits, c.matched_hits, 1.0),
        error_policy=ErrorPolicy(policy),
        curves=efficiency_curves(acc, policy),
        hit_distributions=hit_distributions,
        resolution={
            cat: resolution_moments(acc.histograms_2d[f"mom_res_{cat}"]) for cat in ("all", "prim", "sec")
        },
    )


def log_summary(summary: RunSummary, name: str = "StsTrackQa") -> None:
    """Run summary to the log, one quantity per line."""
    labels = {
        "all": "Eff. all tracks       ",
        "vertex": "Eff. vertex tracks    ",
        "reference": "Eff. reference tracks ",
        "secondary": "Eff. secondary tracks ",
    }
    logger.info("=====================================")
    logger.info("%s: Run summary", name)
    logger.info("Events processed      : %d (failed %d)", summary.events, summary.events_failed)
    for key, label in labels.items():
        e = summary.efficiencies[key]
        logger.info("%s: %.2f %% (%d/%d)", label, 100.0 * e.efficiency, e.reconstructed, e.accepted)
    logger.info("Ghost rate            : %.2f per event", summary.ghost_rate)
    logger.info("Clone rate            : %.2f per event", summary.clone_rate)
    logger.info("True hits (matched)   : %.2f %%", 100.0 * summary.hit_purity)
    logger.info("Time per event        : %.6f s", summary.time_per_event)
    logger.info("=====================================")
