from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from sts_qa.config import DEFAULT_SPECIES, HistogramConfig
from sts_qa.histograms import Histogram1D, Histogram2D

CATEGORIES: Tuple[str, ...] = ("all", "prim", "sec")


def species_key(pdg: int) -> str:
    """``211 -> "p211"``, ``-211 -> "m211"``."""
    return f"{'p' if pdg > 0 else 'm'}{abs(pdg)}"


def efficiency_pairs(species: Iterable[int] = DEFAULT_SPECIES) -> List[Tuple[str, str, str]]:
    r"""
    ``(numerator, denominator, efficiency)`` histogram names of all efficiency curves.

    Numerators are the *reconstructed* distributions, denominators the
    *accepted* (reconstructible) ones.
    """
    pairs = []
    for var in ("mom", "np"):
        for cat in CATEGORIES:
            pairs.append((f"{var}_rec_{cat}", f"{var}_acc_{cat}", f"{var}_eff_{cat}"))
    pairs.append(("z_rec_sec", "z_acc_sec", "z_eff_sec"))
    for pdg in species:
        k = species_key(pdg)
        pairs.append((f"mom_rec_{k}", f"mom_acc_{k}", f"mom_eff_{k}"))
    return pairs


def make_histograms(
    hcfg: HistogramConfig, species: Iterable[int] = DEFAULT_SPECIES
) -> Tuple[Dict[str, Histogram1D], Dict[str, Histogram2D]]:
    """Create the fixed set of run distributions (numerators, denominators and auxiliaries)."""
    labels = {"all": "all", "prim": "vertex", "sec": "non-vertex"}
    h1: Dict[str, Histogram1D] = {}
    for cat in CATEGORIES:
        h1[f"mom_acc_{cat}"] = Histogram1D(f"mom_acc_{cat}", f"reconstructible {labels[cat]} tracks", hcfg.momentum)
        h1[f"mom_rec_{cat}"] = Histogram1D(f"mom_rec_{cat}", f"reconstructed {labels[cat]} tracks", hcfg.momentum)
        h1[f"np_acc_{cat}"] = Histogram1D(f"np_acc_{cat}", f"reconstructible {labels[cat]} tracks", hcfg.n_points)
        h1[f"np_rec_{cat}"] = Histogram1D(f"np_rec_{cat}", f"reconstructed {labels[cat]} tracks", hcfg.n_points)
    h1["z_acc_sec"] = Histogram1D("z_acc_sec", "reconstructible non-vertex tracks", hcfg.vertex_z)
    h1["z_rec_sec"] = Histogram1D("z_rec_sec", "reconstructed non-vertex tracks", hcfg.vertex_z)

    h1["nh_ghosts"] = Histogram1D("nh_ghosts", "number of hits for ghosts", hcfg.n_points)
    h1["nh_clones"] = Histogram1D("nh_clones", "number of hits for clones", hcfg.n_points)
    h1["mom_ghosts"] = Histogram1D("mom_ghosts", "momenta of ghosts", hcfg.momentum)
    h1["mom_clones"] = Histogram1D("mom_clones", "momenta of clones", hcfg.momentum)
    h1["ref_tracks"] = Histogram1D("ref_tracks", "reconstructible reference tracks per event", hcfg.ref_tracks)
    h1["rec_ref_tracks"] = Histogram1D("rec_ref_tracks", "reconstructed reference tracks per event", hcfg.ref_tracks)

    for pdg in species:
        k = species_key(pdg)
        h1[f"mom_acc_{k}"] = Histogram1D(f"mom_acc_{k}", f"reconstructible tracks pdg {pdg}", hcfg.momentum)
        h1[f"mom_rec_{k}"] = Histogram1D(f"mom_rec_{k}", f"reconstructed tracks pdg {pdg}", hcfg.momentum)

    h2: Dict[str, Histogram2D] = {
        f"mom_res_{cat}": Histogram2D(
            f"mom_res_{cat}", f"momentum resolution vs p for {labels[cat]} tracks",
            hcfg.momentum, hcfg.resolution,
        )
        for cat in CATEGORIES
    }
    return h1, h2


@dataclass
class Counters:
    """Monotonic run counters. ``acc_*`` are denominators, ``rec_*`` numerators."""
    acc_all: int = 0
    acc_prim: int = 0
    acc_ref: int = 0
    acc_sec: int = 0
    rec_all: int = 0
    rec_prim: int = 0
    rec_ref: int = 0
    rec_sec: int = 0
    ghosts: int = 0
    clones: int = 0
    reco_tracks: int = 0
    truth_tracks: int = 0
    matched_true_hits: int = 0
    matched_hits: int = 0
    events: int = 0
    events_failed: int = 0
    time: float = 0.0

    def add(self, other: "Counters") -> None:
        for f in dataclasses.fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def to_dict(self) -> Dict[str, float]:
        return dataclasses.asdict(self)


@dataclass
class RunAccumulators:
    r"""
    Run state mutated once per event by the aggregator and read by the reducer.

    Owned by the caller and passed explicitly into
    :meth:`~sts_qa.qa.QaTask.process_event`; it is never reset implicitly.
    Partial accumulators (one per worker) combine with :meth:`merge`, which is
    associative and order-independent.

    Attributes
    ----------
    counters : Counters
    histograms : dict[str, Histogram1D]
    histograms_2d : dict[str, Histogram2D]
    species : tuple of int
        PDG codes with dedicated efficiency distributions.
    """
    hist_config: HistogramConfig = field(default_factory=HistogramConfig)
    species: Tuple[int, ...] = DEFAULT_SPECIES
    counters: Counters = field(init=False)
    histograms: Dict[str, Histogram1D] = field(init=False)
    histograms_2d: Dict[str, Histogram2D] = field(init=False)

    def __post_init__(self) -> None:
        self.species = tuple(self.species)
        self.counters = Counters()
        self.histograms, self.histograms_2d = make_histograms(self.hist_config, self.species)

    @classmethod
    def like(cls, other: "RunAccumulators") -> "RunAccumulators":
        """Empty accumulators with the same binning and species as ``other``."""
        return cls(hist_config=other.hist_config, species=other.species)

    def h(self, name: str) -> Histogram1D:
        return self.histograms[name]

    def reset(self) -> None:
        self.counters = Counters()
        for h in self.histograms.values():
            h.reset()
        for h2 in self.histograms_2d.values():
            h2.reset()

    def merge(self, other: "RunAccumulators") -> None:
        self.counters.add(other.counters)
        for name, h in other.histograms.items():
            self.histograms[name].add(h)
        for name, h2 in other.histograms_2d.items():
            self.histograms_2d[name].add(h2)


@dataclass
class EventStatistics:
    r"""
    Per-event tally returned by :meth:`~sts_qa.qa.QaTask.process_event`.

    Efficiencies use the vacuous convention: an empty category has
    efficiency ``1.0``.
    """
    event: int
    n_truth_tracks: int = 0
    n_acc: int = 0
    n_prim: int = 0
    n_ref: int = 0
    n_sec: int = 0
    n_rec_all: int = 0
    n_rec_prim: int = 0
    n_rec_ref: int = 0
    n_rec_sec: int = 0
    n_reco_tracks: int = 0
    n_matched: int = 0
    n_ghosts: int = 0
    n_clones: int = 0
    real_time: float = 0.0
    qualities: Dict[int, float] = field(default_factory=dict)

    @staticmethod
    def _ratio(num: int, den: int) -> float:
        return num / den if den else 1.0

    @property
    def eff_all(self) -> float:
        return self._ratio(self.n_rec_all, self.n_acc)

    @property
    def eff_prim(self) -> float:
        return self._ratio(self.n_rec_prim, self.n_prim)

    @property
    def eff_ref(self) -> float:
        return self._ratio(self.n_rec_ref, self.n_ref)

    @property
    def eff_sec(self) -> float:
        return self._ratio(self.n_rec_sec, self.n_sec)
