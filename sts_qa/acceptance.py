from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol

import numpy as np

from sts_qa.event import TruthTrack


@dataclass(frozen=True, slots=True)
class TrackCategory:
    r"""
    Efficiency categories of a truth track.

    The flags refine each other: ``reference`` implies ``vertex`` implies
    ``reconstructible``. A reconstructible track that is not a vertex track
    is a *secondary* (non-vertex) track.
    """
    reconstructible: bool = False
    vertex: bool = False
    reference: bool = False

    @property
    def secondary(self) -> bool:
        return self.reconstructible and not self.vertex


NOT_RECONSTRUCTIBLE = TrackCategory()


class ReconstructibilityCriterion(Protocol):
    """Decides from a truth track's station → hits map whether it is reconstructible."""

    def __call__(self, station_counts: Mapping[int, int]) -> bool: ...

    def n_points(self, station_counts: Mapping[int, int]) -> int: ...


@dataclass(frozen=True)
class StationCountCriterion:
    """At least ``min_stations`` distinct stations carry a hit of the track."""
    min_stations: int = 3

    def __call__(self, station_counts: Mapping[int, int]) -> bool:
        return self.n_points(station_counts) >= self.min_stations

    def n_points(self, station_counts: Mapping[int, int]) -> int:
        return sum(1 for n in station_counts.values() if n > 0)


@dataclass(frozen=True)
class HitCountCriterion:
    r"""
    Hit-count criterion with a multiplicity-dependent threshold.

    Starting from ``min_hits``, every station hit more than once raises the
    required number of hits by its multiplicity; a threshold above four is
    then lowered by one:

    .. math::

        m = m_0 + \sum_{s:\,n_s>1} n_s,\qquad
        m \leftarrow m - 1 \ \text{ if } m > 4,

    and the track is reconstructible iff :math:`\sum_s n_s \ge m`. Tracks
    crossing overlapping sensors of a station thus need an extra hit
    elsewhere.
    """
    min_hits: int = 4

    def threshold(self, station_counts: Mapping[int, int]) -> int:
        m = self.min_hits + sum(n for n in station_counts.values() if n > 1)
        if m > 4:
            m -= 1
        return m

    def __call__(self, station_counts: Mapping[int, int]) -> bool:
        return self.n_points(station_counts) >= self.threshold(station_counts)

    def n_points(self, station_counts: Mapping[int, int]) -> int:
        return int(sum(station_counts.values()))


def is_vertex_track(track: TruthTrack, target_position: np.ndarray, tolerance: float = 1.0) -> bool:
    """Production vertex closer than ``tolerance`` to the target."""
    return bool(np.linalg.norm(track.start_vertex - target_position) < tolerance)


def categorize(
    station_counts: Mapping[int, int],
    track: TruthTrack,
    *,
    criterion: ReconstructibilityCriterion,
    target_position: np.ndarray,
    reference_momentum: float = 1.0,
    vertex_tolerance: float = 1.0,
) -> TrackCategory:
    r"""
    Classify one truth track for the efficiency denominators.

    Pure function of the track's hit-map entry, its truth attributes and the
    thresholds.

    Parameters
    ----------
    station_counts : mapping
        ``station -> hits`` of this truth track (empty if it left no hit).
    track : TruthTrack
    criterion : ReconstructibilityCriterion
        Station- or hit-count rule.
    target_position : (3,) ndarray
        Nominal target centre.
    reference_momentum : float, optional
        Vertex tracks with :math:`|\vec p|` strictly above this are reference
        tracks.
    vertex_tolerance : float, optional
        Distance below which a track counts as coming from the target.

    Returns
    -------
    TrackCategory
    """
    if not station_counts or not criterion(station_counts):
        return NOT_RECONSTRUCTIBLE
    vertex = is_vertex_track(track, target_position, vertex_tolerance)
    reference = vertex and track.p > reference_momentum
    return TrackCategory(reconstructible=True, vertex=vertex, reference=reference)
