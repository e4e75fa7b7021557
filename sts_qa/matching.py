from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from sts_qa.correspondence import TrackMatch
from sts_qa.errors import DataInconsistencyError
from sts_qa.event import Event

logger = logging.getLogger(__name__)


class TrackLabel(Enum):
    """Final classification of a reconstructed track."""
    MATCHED = "matched"
    GHOST = "ghost"
    CLONE = "clone"


@dataclass
class Classification:
    r"""
    Outcome of the matching classifier for one event.

    Attributes
    ----------
    labels : list of TrackLabel
        One label per reconstructed track, in collection order.
    match_map : dict[int, int]
        ``truth id -> index of the reconstructed track holding the match``.
    quality_map : dict[int, float]
        ``truth id -> true hits / hits`` of the holding track; always
        :math:`\ge` quota.
    ghost_hits, clone_hits : list of int
        Hit counts of tracks classified as ghosts and clones (fill values of
        the hit-count distributions).
    ghost_momenta, clone_momenta : list of float
        Reconstructed momenta :math:`1/|q/p|` of ghosts and clones with a
        non-zero curvature parameter.
    """
    labels: List[TrackLabel] = field(default_factory=list)
    match_map: Dict[int, int] = field(default_factory=dict)
    quality_map: Dict[int, float] = field(default_factory=dict)
    ghost_hits: List[int] = field(default_factory=list)
    clone_hits: List[int] = field(default_factory=list)
    ghost_momenta: List[float] = field(default_factory=list)
    clone_momenta: List[float] = field(default_factory=list)

    @property
    def n_tracks(self) -> int:
        return len(self.labels)

    @property
    def n_matched(self) -> int:
        return len(self.match_map)

    @property
    def n_ghosts(self) -> int:
        return len(self.ghost_hits)

    @property
    def n_clones(self) -> int:
        return len(self.clone_hits)

    def count(self, label: TrackLabel) -> int:
        return sum(1 for lab in self.labels if lab is label)


def _check_matches(event: Event, matches: Sequence[TrackMatch]) -> None:
    if len(matches) != len(event.tracks):
        raise DataInconsistencyError(
            f"number of track matches ({len(matches)}) does not equal number of tracks ({len(event.tracks)})",
            event=event.number,
        )
    for i, (track, match) in enumerate(zip(event.tracks, matches)):
        if match.track_index != i:
            raise DataInconsistencyError(
                f"track match {i} belongs to track {match.track_index}", event=event.number
            )
        if track.n_hits == 0:
            raise DataInconsistencyError(f"track {i} has no hits", event=event.number)
        if match.total_hits != track.n_hits:
            raise DataInconsistencyError(
                f"track {i}: true {match.true_hits} + wrong {match.wrong_hits} + fake "
                f"{match.fake_hits} != {track.n_hits} hits",
                event=event.number,
            )


def classify_tracks(event: Event, matches: Sequence[TrackMatch], quota: float = 0.7) -> Classification:
    r"""
    Label every reconstructed track as matched, ghost or clone.

    For track :math:`k` with :math:`n_k` hits, :math:`t_k` of them from the
    elected truth track :math:`c_k`, the quality is :math:`q_k = t_k/n_k`.

    1. no traceable hit (:math:`c_k` undefined) → ghost;
    2. :math:`q_k < \text{quota}` → ghost (the quota is inclusive);
    3. :math:`c_k` unclaimed → the track holds the match;
    4. :math:`c_k` already claimed by track :math:`j` → the track with the
       strictly higher quality holds the match and the other becomes a clone;
       on equal quality the earlier track :math:`j` keeps it.

    Parameters
    ----------
    event : Event
    matches : sequence of TrackMatch
        Output of :func:`sts_qa.correspondence.match_tracks` for ``event``.
    quota : float, optional
        Minimum true-hit fraction.

    Returns
    -------
    Classification
        ``n_matched + n_ghosts + n_clones == len(event.tracks)``.

    Raises
    ------
    DataInconsistencyError
        On a mismatch between tracks and matches, a track without hits, or an
        elected truth id missing from the event's truth tracks.
    """
    _check_matches(event, matches)
    result = Classification(labels=[TrackLabel.GHOST] * len(matches))

    for i, match in enumerate(matches):
        track = event.tracks[i]
        n_hits = track.n_hits
        mc_track: Optional[int] = match.truth_id if match.true_hits > 0 else None

        if mc_track is None:
            logger.debug("Event %d: no truth match for track %d", event.number, i)
            _add_ghost(result, event, i)
            continue
        event.truth_track(mc_track)

        quality = match.true_hits / n_hits
        if quality < quota:
            logger.debug(
                "Event %d: track %d below matching criterion (%.3f)", event.number, i, quality
            )
            _add_ghost(result, event, i)
            continue

        previous = result.match_map.get(mc_track)
        if previous is None:
            result.match_map[mc_track] = i
            result.quality_map[mc_track] = quality
            result.labels[i] = TrackLabel.MATCHED
            continue

        logger.debug(
            "Event %d: truth track %d doubly matched, current %d, previous %d",
            event.number, mc_track, i, previous,
        )
        if result.quality_map[mc_track] < quality:
            _add_clone(result, event, previous)
            result.match_map[mc_track] = i
            result.quality_map[mc_track] = quality
            result.labels[i] = TrackLabel.MATCHED
        else:
            _add_clone(result, event, i)

    logger.debug(
        "Event %d: classified %d tracks, ghosts %d, clones %d",
        event.number, result.n_tracks, result.n_ghosts, result.n_clones,
    )
    return result


def _add_ghost(result: Classification, event: Event, i: int) -> None:
    track = event.tracks[i]
    result.labels[i] = TrackLabel.GHOST
    result.ghost_hits.append(track.n_hits)
    p = track.param_first.momentum
    if p is not None:
        result.ghost_momenta.append(p)


def _add_clone(result: Classification, event: Event, i: int) -> None:
    track = event.tracks[i]
    result.labels[i] = TrackLabel.CLONE
    result.clone_hits.append(track.n_hits)
    p = track.param_first.momentum
    if p is not None:
        result.clone_momenta.append(p)
