from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from sts_qa.errors import DataInconsistencyError
from sts_qa.event import DetectorSetup, Event

logger = logging.getLogger(__name__)


class HitMap(Mapping):
    r"""
    Sparse per-event map ``truth track id -> (station -> number of hits)``.

    Only hits that trace back to a truth point enter the map. The map is
    built fresh for every event and never carried across events.

    Notes
    -----
    For a truth track :math:`t` with per-station hit counts :math:`n_{t,s}`,

    .. math::

        N^{\mathrm{st}}_t = \#\{s : n_{t,s} > 0\},\qquad
        N^{\mathrm{hit}}_t = \sum_s n_{t,s}.

    :meth:`n_stations` returns :math:`N^{\mathrm{st}}_t`, :meth:`n_hits`
    returns :math:`N^{\mathrm{hit}}_t`; both are ``0`` for unknown tracks.
    """

    __slots__ = ("_counts",)

    def __init__(self) -> None:
        self._counts: Dict[int, Counter] = {}

    def add(self, track_id: int, station: int) -> None:
        self._counts.setdefault(int(track_id), Counter())[int(station)] += 1

    def __getitem__(self, track_id: int) -> Mapping[int, int]:
        return self._counts[track_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def n_stations(self, track_id: int) -> int:
        c = self._counts.get(track_id)
        return len(c) if c else 0

    def n_hits(self, track_id: int) -> int:
        c = self._counts.get(track_id)
        return sum(c.values()) if c else 0

    def station_counts(self, track_id: int) -> Dict[int, int]:
        return dict(self._counts.get(track_id, {}))


def build_hit_map(event: Event, setup: DetectorSetup) -> HitMap:
    r"""
    Fill the :class:`HitMap` of one event.

    Parameters
    ----------
    event : Event
        Event whose hit collection is scanned.
    setup : DetectorSetup
        Station lookup for each hit.

    Returns
    -------
    HitMap

    Raises
    ------
    DataInconsistencyError
        If a hit refers to a point outside the point collection or lies on
        a station outside the setup.
    """
    hit_map = HitMap()
    for i_hit, hit in enumerate(event.hits):
        mc_track = event.hit_truth_track(i_hit)
        if mc_track is None:
            continue
        hit_map.add(mc_track, setup.station_of(hit, event.number))
    logger.debug(
        "Event %d: filled hit map from %d hits for %d truth tracks",
        event.number, len(event.hits), len(hit_map),
    )
    return hit_map


@dataclass(slots=True)
class TrackTally:
    """Per reconstructed track: truth id -> hits attributed to it, plus fake hits."""
    counts: Dict[int, int] = field(default_factory=dict)
    n_fake: int = 0
    n_hits: int = 0

    @property
    def n_traceable(self) -> int:
        return self.n_hits - self.n_fake


def tally_track(event: Event, track_index: int) -> TrackTally:
    """Resolve every hit of a reconstructed track to its truth track."""
    tally = TrackTally()
    for hit_index in event.track_hits(track_index):
        tally.n_hits += 1
        mc_track = event.hit_truth_track(hit_index)
        if mc_track is None:
            tally.n_fake += 1
            continue
        tally.counts[mc_track] = tally.counts.get(mc_track, 0) + 1
    return tally


@dataclass(slots=True)
class TrackMatch:
    r"""
    Correspondence of one reconstructed track to the truth.

    Attributes
    ----------
    track_index : int
        Position of the reconstructed track in the event.
    truth_id : int or None
        Elected truth track (largest number of shared hits), ``None`` if the
        track has no traceable hit.
    true_hits, wrong_hits, fake_hits : int
        Hits from the elected truth track, from other truth tracks, and
        untraceable hits. Always ``true + wrong + fake == total_hits``.
    n_truth_tracks : int
        Number of distinct truth tracks contributing hits.
    """
    track_index: int
    truth_id: Optional[int]
    true_hits: int
    wrong_hits: int
    fake_hits: int
    n_truth_tracks: int = 0

    @property
    def total_hits(self) -> int:
        return self.true_hits + self.wrong_hits + self.fake_hits


def match_track(event: Event, track_index: int) -> TrackMatch:
    r"""
    Elect the best-matching truth track of one reconstructed track.

    The truth id with the largest tally wins; among equal tallies the lowest
    truth id is kept (candidates are visited in ascending id order and only a
    strictly larger count replaces the current one).
    """
    tally = tally_track(event, track_index)
    best: Optional[int] = None
    n_true = 0
    for mc_track in sorted(tally.counts):
        n = tally.counts[mc_track]
        if n > n_true:
            best, n_true = mc_track, n
    match = TrackMatch(
        track_index=track_index,
        truth_id=best,
        true_hits=n_true,
        wrong_hits=tally.n_traceable - n_true,
        fake_hits=tally.n_fake,
        n_truth_tracks=len(tally.counts),
    )
    if match.total_hits != tally.n_hits:
        raise DataInconsistencyError(
            f"track {track_index}: hit bookkeeping {match.total_hits} != {tally.n_hits}",
            event=event.number,
        )
    return match


def match_tracks(event: Event) -> List[TrackMatch]:
    """One :class:`TrackMatch` per reconstructed track, in collection order."""
    return [match_track(event, i) for i in range(len(event.tracks))]


@dataclass
class MatchingStatistics:
    r"""
    Hit-assignment quality of the matching step, accumulated over a run.

    Percentages are taken with respect to all hits on reconstructed tracks:

    .. math::

        q_\mathrm{true} = 100\,\frac{\sum n_\mathrm{true}}{\sum n_\mathrm{hits}}.

    An event that failed, in matching or in a later consistency check, is
    counted in ``n_events_failed`` and contributes nothing else.
    """
    n_events: int = 0
    n_events_failed: int = 0
    n_track_matches: int = 0
    n_all_hits: int = 0
    n_true_hits: int = 0
    n_wrong_hits: int = 0
    n_fake_hits: int = 0
    n_truth_links: int = 0
    time: float = 0.0

    def add_event(self, matches: List[TrackMatch], elapsed: float = 0.0) -> None:
        self.n_events += 1
        self.time += elapsed
        self.n_track_matches += len(matches)
        for m in matches:
            self.n_all_hits += m.total_hits
            self.n_true_hits += m.true_hits
            self.n_wrong_hits += m.wrong_hits
            self.n_fake_hits += m.fake_hits
            self.n_truth_links += m.n_truth_tracks

    def merge(self, other: "MatchingStatistics") -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def _pct(self, n: int) -> float:
        return 100.0 * n / self.n_all_hits if self.n_all_hits else 0.0

    @property
    def true_pct(self) -> float:
        return self._pct(self.n_true_hits)

    @property
    def wrong_pct(self) -> float:
        return self._pct(self.n_wrong_hits)

    @property
    def fake_pct(self) -> float:
        return self._pct(self.n_fake_hits)

    @property
    def truth_tracks_per_track(self) -> float:
        return self.n_truth_links / self.n_track_matches if self.n_track_matches else 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "events": self.n_events,
            "events_failed": self.n_events_failed,
            "track_matches": self.n_track_matches,
            "true_hits_pct": self.true_pct,
            "wrong_hits_pct": self.wrong_pct,
            "fake_hits_pct": self.fake_pct,
            "truth_tracks_per_track": self.truth_tracks_per_track,
        }


class TrackMatcher:
    """
    Produce the per-event :class:`TrackMatch` list and keep run statistics.

    :meth:`compute` does not touch the statistics; :meth:`record` and
    :meth:`record_failure` commit an event once its fate is known.
    :meth:`match` does both for callers that need nothing in between.
    """

    def __init__(self, statistics: Optional[MatchingStatistics] = None) -> None:
        self.statistics = statistics if statistics is not None else MatchingStatistics()

    def compute(self, event: Event) -> Tuple[List[TrackMatch], float]:
        """Matches of ``event`` and the time spent on them."""
        t0 = time.perf_counter()
        matches = match_tracks(event)
        return matches, time.perf_counter() - t0

    def record(self, event: Event, matches: List[TrackMatch], elapsed: float = 0.0) -> None:
        self.statistics.add_event(matches, elapsed)

        n_hits = sum(m.total_hits for m in matches)
        n_true = sum(m.true_hits for m in matches)
        logger.debug(
            "Event %d: %d track matches, hit quota %.2f %%",
            event.number, len(matches), 100.0 * n_true / n_hits if n_hits else 0.0,
        )

    def record_failure(self, event: Event) -> None:
        self.statistics.n_events_failed += 1
        logger.debug("Event %d: matching statistics skip failed event", event.number)

    def match(self, event: Event) -> List[TrackMatch]:
        try:
            matches, elapsed = self.compute(event)
        except DataInconsistencyError:
            self.record_failure(event)
            raise
        self.record(event, matches, elapsed)
        return matches
