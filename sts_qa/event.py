from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from sts_qa.errors import DataInconsistencyError


def _vec3(v: Sequence[float] | np.ndarray) -> np.ndarray:
    a = np.asarray(v, dtype=np.float64).reshape(-1)
    if a.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {a.shape}")
    return a


@dataclass(slots=True)
class TruthTrack:
    r"""
    Simulated particle (Monte-Carlo track).

    Attributes
    ----------
    track_id : int
        Identifier, unique within the event.
    start_vertex : (3,) ndarray
        Production vertex :math:`(x,y,z)` in cm.
    momentum : (3,) ndarray
        Momentum :math:`(p_x,p_y,p_z)` at production in GeV/c.
    pdg_code : int
        Particle species (PDG code).
    """
    track_id: int
    start_vertex: np.ndarray
    momentum: np.ndarray
    pdg_code: int = 0

    def __post_init__(self) -> None:
        self.start_vertex = _vec3(self.start_vertex)
        self.momentum = _vec3(self.momentum)

    @property
    def p(self) -> float:
        """Momentum magnitude :math:`|\\vec p|`."""
        return float(np.linalg.norm(self.momentum))


@dataclass(slots=True)
class TruthPoint:
    """Crossing of a truth track through one station."""
    point_id: int
    track_id: int
    station: int


@dataclass(slots=True)
class ReconstructedHit:
    """
    Detector measurement. ``point_ref`` indexes the event's point collection;
    ``None`` marks a fake/background hit that cannot be traced to truth.
    """
    hit_id: int
    station: int
    point_ref: Optional[int] = None


@dataclass(slots=True)
class TrackParam:
    r"""
    Fitted track state at a reference plane.

    ``(x, y, z)`` position, slopes :math:`t_x = p_x/p_z`, :math:`t_y = p_y/p_z`
    and curvature parameter ``qp`` (charge over momentum, c/GeV).
    """
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    tx: float = 0.0
    ty: float = 0.0
    qp: float = 0.0

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    @property
    def direction(self) -> np.ndarray:
        """Unit direction vector built from the slopes."""
        d = np.array([self.tx, self.ty, 1.0], dtype=np.float64)
        return d / np.linalg.norm(d)

    @property
    def momentum(self) -> Optional[float]:
        """``1/|qp|``, or ``None`` for straight/undefined tracks (``qp == 0``)."""
        if self.qp == 0.0:
            return None
        return 1.0 / abs(self.qp)


@dataclass(slots=True)
class ReconstructedTrack:
    """Ordered chain of hit indices plus the fit result of the (external) fitter."""
    track_id: int
    hit_indices: List[int]
    param_first: TrackParam = field(default_factory=TrackParam)
    param_last: TrackParam = field(default_factory=TrackParam)
    chi2: float = 0.0
    ndf: int = 0

    @property
    def n_hits(self) -> int:
        return len(self.hit_indices)


@dataclass
class Event:
    r"""
    One event worth of truth and reconstruction data.

    The lookup helpers are the only way the QA core touches the collections;
    each one validates indices and raises
    :class:`~sts_qa.errors.DataInconsistencyError` on a dangling reference.

    Attributes
    ----------
    number : int
        Event number within the run.
    truth_tracks : list of TruthTrack
    points : list of TruthPoint
        Indexed by position; ``ReconstructedHit.point_ref`` refers into it.
    hits : list of ReconstructedHit
        Indexed by position; ``ReconstructedTrack.hit_indices`` refer into it.
    tracks : list of ReconstructedTrack
    """
    number: int
    truth_tracks: List[TruthTrack] = field(default_factory=list)
    points: List[TruthPoint] = field(default_factory=list)
    hits: List[ReconstructedHit] = field(default_factory=list)
    tracks: List[ReconstructedTrack] = field(default_factory=list)
    _truth_index: Optional[Dict[int, TruthTrack]] = field(default=None, repr=False, compare=False)

    def truth_track(self, track_id: int) -> TruthTrack:
        if self._truth_index is None:
            self._truth_index = {t.track_id: t for t in self.truth_tracks}
        try:
            return self._truth_index[track_id]
        except KeyError:
            raise DataInconsistencyError(
                f"truth track {track_id} is referenced but not present", event=self.number
            ) from None

    def hit(self, hit_index: int) -> ReconstructedHit:
        if not 0 <= hit_index < len(self.hits):
            raise DataInconsistencyError(
                f"hit index {hit_index} out of range (n_hits={len(self.hits)})", event=self.number
            )
        return self.hits[hit_index]

    def hit_truth_reference(self, hit_index: int) -> Optional[int]:
        """Index of the truth point behind a hit, or ``None`` for a fake hit."""
        ref = self.hit(hit_index).point_ref
        if ref is None:
            return None
        if not 0 <= ref < len(self.points):
            raise DataInconsistencyError(
                f"hit {hit_index} refers to point {ref} out of range (n_points={len(self.points)})",
                event=self.number,
            )
        return ref

    def hit_truth_track(self, hit_index: int) -> Optional[int]:
        """Truth track id behind a hit, resolved through its point."""
        ref = self.hit_truth_reference(hit_index)
        if ref is None:
            return None
        return self.points[ref].track_id

    def track_hits(self, track_index: int) -> List[int]:
        """Hit indices of a reconstructed track, validated against the hit collection."""
        if not 0 <= track_index < len(self.tracks):
            raise DataInconsistencyError(
                f"track index {track_index} out of range (n_tracks={len(self.tracks)})",
                event=self.number,
            )
        hit_indices = self.tracks[track_index].hit_indices
        n_hits = len(self.hits)
        for h in hit_indices:
            if not 0 <= h < n_hits:
                raise DataInconsistencyError(
                    f"track {track_index} refers to hit {h} out of range (n_hits={n_hits})",
                    event=self.number,
                )
        return hit_indices

    def fitted_momentum(self, track_index: int) -> Tuple[float, np.ndarray, np.ndarray]:
        """``(qp, position, direction)`` of the first fitted parameter set."""
        par = self.tracks[track_index].param_first
        return par.qp, par.position, par.direction


@dataclass
class DetectorSetup:
    r"""
    Station-lookup capability handed to the QA at construction.

    Parameters
    ----------
    n_stations : int
        Number of tracking stations; ``0`` disables the station range check.
    target_position : (3,) array_like
        Nominal target centre in cm, read once at initialisation.
    """
    n_stations: int = 8
    target_position: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.target_position = _vec3(self.target_position)

    def station_of(self, hit: ReconstructedHit, event: Optional[int] = None) -> int:
        st = int(hit.station)
        if st < 0 or (self.n_stations and st >= self.n_stations):
            raise DataInconsistencyError(
                f"hit {hit.hit_id} on station {st} outside setup with {self.n_stations} stations",
                event=event,
            )
        return st
