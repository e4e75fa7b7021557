from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Protocol, Sequence

from sts_qa.acceptance import (
    HitCountCriterion,
    ReconstructibilityCriterion,
    StationCountCriterion,
    TrackCategory,
    categorize,
)
from sts_qa.accumulators import EventStatistics, RunAccumulators, species_key
from sts_qa.config import QaConfig
from sts_qa.correspondence import HitMap, TrackMatch, TrackMatcher, build_hit_map
from sts_qa.errors import DataInconsistencyError, MissingInputError
from sts_qa.event import DetectorSetup, Event, TruthTrack
from sts_qa.matching import Classification, classify_tracks
from sts_qa.reducer import RunSummary, log_summary, summarize

logger = logging.getLogger(__name__)

REQUIRED_INPUTS: FrozenSet[str] = frozenset({"mc_tracks", "sts_points", "sts_hits", "sts_tracks"})


@dataclass
class QaContext:
    """
    What the run harness hands to :meth:`QaTask.initialize`.

    ``inputs`` names the collections available in the run; ``None`` means
    the caller does not track them and all are assumed present.
    """
    setup: Optional[DetectorSetup] = None
    inputs: Optional[FrozenSet[str]] = None


class QaTask(Protocol):
    """Capability set of a QA step driven by an external event loop."""

    def initialize(self, context: Optional[QaContext] = None) -> None: ...

    def process_event(self, event: Event, accumulators: RunAccumulators) -> EventStatistics: ...

    def finish(self, accumulators: RunAccumulators) -> RunSummary: ...

    def reset(self, accumulators: RunAccumulators) -> None: ...


@dataclass
class _TruthRecord:
    track: TruthTrack
    category: TrackCategory
    n_points: int
    matched: bool = False
    n_rec_hits: int = 0
    true_hits: int = 0
    qp: float = 0.0


# variant name -> reconstructibility criterion built from the config
QA_VARIANTS: Dict[str, Callable[[QaConfig], ReconstructibilityCriterion]] = {
    "find-tracks": lambda cfg: StationCountCriterion(int(cfg.min_stations)),
    "reconstruction": lambda cfg: HitCountCriterion(int(cfg.min_hits)),
}


class TrackQa:
    r"""
    Track-finding QA: truth matching, efficiencies, ghost and clone rates.

    Per event the task

    1. elects the best truth track of every reconstructed track
       (:class:`~sts_qa.correspondence.TrackMatcher`),
    2. fills the hit map ``truth id -> station -> hits``,
    3. labels reconstructed tracks as matched, ghost or clone
       (:func:`~sts_qa.matching.classify_tracks`),
    4. categorises each truth track (reconstructible / vertex / reference),
    5. fills counters and distributions of the caller-owned
       :class:`~sts_qa.accumulators.RunAccumulators`.

    Steps 1 to 4 and all consistency checks run before the accumulators are
    touched, so an event raising :class:`~sts_qa.errors.DataInconsistencyError`
    leaves no partial contribution; only ``events_failed`` of the accumulators
    and ``n_events_failed`` of the matcher statistics are incremented.

    Parameters
    ----------
    config : QaConfig, optional
        Thresholds, binnings and the variant name.
    criterion : ReconstructibilityCriterion, optional
        Overrides the criterion implied by ``config.variant``.
    name : str, optional
        Label used in log lines.

    Notes
    -----
    The :math:`x`-value of the reconstructed per-points distributions is the
    number of hits on the matched reconstructed track, not the truth point
    count, so these curves measure what was actually reconstructed.
    """

    def __init__(
        self,
        config: Optional[QaConfig] = None,
        *,
        criterion: Optional[ReconstructibilityCriterion] = None,
        name: Optional[str] = None,
    ) -> None:
        self.config = (config or QaConfig()).validate()
        self.criterion = criterion if criterion is not None else QA_VARIANTS[self.config.variant](self.config)
        self.name = name or f"StsTrackQa[{self.config.variant}]"
        self.matcher = TrackMatcher()
        self.setup: Optional[DetectorSetup] = None

    def initialize(self, context: Optional[QaContext] = None) -> None:
        """
        Bind the detector setup and check the inputs.

        Raises
        ------
        MissingInputError
            If a required input collection is not available.
        """
        context = context or QaContext()
        if context.inputs is not None:
            missing = sorted(REQUIRED_INPUTS - set(context.inputs))
            if missing:
                logger.error("%s: missing input collections: %s", self.name, ", ".join(missing))
                raise MissingInputError(f"missing input collections: {', '.join(missing)}")
        self.setup = context.setup or self.config.detector_setup()
        self.config.check_against_setup(self.setup)

        tp = self.setup.target_position
        logger.info("%s: initialising", self.name)
        logger.info("   Number of STS stations : %d", self.setup.n_stations)
        logger.info("   Target position        : (%.3f, %.3f, %.3f) cm", tp[0], tp[1], tp[2])
        logger.info("   Criterion              : %s", self.criterion)
        logger.info("   Matching quota         : %.3f", self.config.quota)

    def spawn(self) -> "TrackQa":
        """Initialised copy with its own matcher statistics, for a worker thread."""
        setup = self._require_setup()
        other = TrackQa(self.config, criterion=self.criterion, name=self.name)
        other.setup = setup
        return other

    def _require_setup(self) -> DetectorSetup:
        if self.setup is None:
            raise MissingInputError(f"{self.name} used before initialize()")
        return self.setup

    def _truth_records(
        self,
        event: Event,
        matches: Sequence[TrackMatch],
        cls: Classification,
        hit_map: HitMap,
    ) -> List[_TruthRecord]:
        setup = self._require_setup()
        cfg = self.config
        records: List[_TruthRecord] = []
        for mc_track in event.truth_tracks:
            station_counts = hit_map.station_counts(mc_track.track_id)
            category = categorize(
                station_counts,
                mc_track,
                criterion=self.criterion,
                target_position=setup.target_position,
                reference_momentum=cfg.reference_momentum,
                vertex_tolerance=cfg.vertex_tolerance,
            )
            if not category.reconstructible:
                continue
            rec = _TruthRecord(mc_track, category, self.criterion.n_points(station_counts))

            i_rec = cls.match_map.get(mc_track.track_id)
            if i_rec is not None:
                quality = cls.quality_map[mc_track.track_id]
                if quality < cfg.quota:
                    raise DataInconsistencyError(
                        f"matched track {i_rec} below matching quota ({quality:.3f})", event=event.number
                    )
                track = event.tracks[i_rec]
                if matches[i_rec].total_hits != track.n_hits:
                    raise DataInconsistencyError(f"wrong number of hits on track {i_rec}", event=event.number)
                rec.matched = True
                rec.n_rec_hits = track.n_hits
                rec.true_hits = matches[i_rec].true_hits
                rec.qp = track.param_first.qp
                logger.debug(
                    "Event %d: truth track %d, points %d, track %d, hits %d, true hits %d",
                    event.number, mc_track.track_id, rec.n_points, i_rec, track.n_hits, rec.true_hits,
                )
            records.append(rec)
        return records

    def process_event(self, event: Event, accumulators: RunAccumulators) -> EventStatistics:
        r"""
        Match, classify and aggregate one event into ``accumulators``.

        Returns
        -------
        EventStatistics

        Raises
        ------
        DataInconsistencyError
            Upstream data is corrupt; the event is counted as failed and the
            error propagates.
        MissingInputError
            If called before :meth:`initialize`.
        """
        setup = self._require_setup()
        t0 = time.perf_counter()
        try:
            matches, match_time = self.matcher.compute(event)
            hit_map = build_hit_map(event, setup)
            cls = classify_tracks(event, matches, self.config.quota)
            records = self._truth_records(event, matches, cls, hit_map)
        except DataInconsistencyError:
            accumulators.counters.events_failed += 1
            self.matcher.record_failure(event)
            logger.error("%s: event %d failed consistency checks", self.name, event.number)
            raise
        self.matcher.record(event, matches, match_time)
        real_time = time.perf_counter() - t0

        stats = self._fill(event, accumulators, cls, records, real_time)
        self._log_event(stats)
        return stats

    def _fill(
        self,
        event: Event,
        acc: RunAccumulators,
        cls: Classification,
        records: List[_TruthRecord],
        real_time: float,
    ) -> EventStatistics:
        h = acc.histograms
        res = acc.histograms_2d
        species = {pdg: species_key(pdg) for pdg in acc.species}
        stats = EventStatistics(
            event=event.number,
            n_truth_tracks=len(event.truth_tracks),
            n_reco_tracks=cls.n_tracks,
            n_matched=cls.n_matched,
            n_ghosts=cls.n_ghosts,
            n_clones=cls.n_clones,
            real_time=real_time,
            qualities=dict(cls.quality_map),
        )

        for rec in records:
            p = rec.track.p
            cat = rec.category
            sub = "prim" if cat.vertex else "sec"
            z = float(rec.track.start_vertex[2])
            sp = species.get(rec.track.pdg_code)

            stats.n_acc += 1
            h["mom_acc_all"].fill(p)
            h["np_acc_all"].fill(rec.n_points)
            h[f"mom_acc_{sub}"].fill(p)
            h[f"np_acc_{sub}"].fill(rec.n_points)
            if cat.vertex:
                stats.n_prim += 1
                if cat.reference:
                    stats.n_ref += 1
            else:
                stats.n_sec += 1
                h["z_acc_sec"].fill(z)
            if sp is not None:
                h[f"mom_acc_{sp}"].fill(p)

            if not rec.matched:
                continue
            stats.n_rec_all += 1
            h["mom_rec_all"].fill(p)
            h["np_rec_all"].fill(rec.n_rec_hits)
            h[f"mom_rec_{sub}"].fill(p)
            h[f"np_rec_{sub}"].fill(rec.n_rec_hits)
            if cat.vertex:
                stats.n_rec_prim += 1
                if cat.reference:
                    stats.n_rec_ref += 1
            else:
                stats.n_rec_sec += 1
                h["z_rec_sec"].fill(z)
            if sp is not None:
                h[f"mom_rec_{sp}"].fill(p)

            acc.counters.matched_true_hits += rec.true_hits
            acc.counters.matched_hits += rec.n_rec_hits
            # undefined curvature: no resolution entry
            if rec.qp != 0.0 and p > 0.0:
                dp = 100.0 * (p - 1.0 / abs(rec.qp)) / p
                res["mom_res_all"].fill(p, dp)
                res[f"mom_res_{sub}"].fill(p, dp)

        for n in cls.ghost_hits:
            h["nh_ghosts"].fill(n)
        for n in cls.clone_hits:
            h["nh_clones"].fill(n)
        for pm in cls.ghost_momenta:
            h["mom_ghosts"].fill(pm)
        for pm in cls.clone_momenta:
            h["mom_clones"].fill(pm)
        h["ref_tracks"].fill(stats.n_ref)
        h["rec_ref_tracks"].fill(stats.n_rec_ref)

        c = acc.counters
        c.acc_all += stats.n_acc
        c.acc_prim += stats.n_prim
        c.acc_ref += stats.n_ref
        c.acc_sec += stats.n_sec
        c.rec_all += stats.n_rec_all
        c.rec_prim += stats.n_rec_prim
        c.rec_ref += stats.n_rec_ref
        c.rec_sec += stats.n_rec_sec
        c.ghosts += stats.n_ghosts
        c.clones += stats.n_clones
        c.reco_tracks += stats.n_reco_tracks
        c.truth_tracks += stats.n_truth_tracks
        c.events += 1
        c.time += real_time
        return stats

    def _log_event(self, s: EventStatistics) -> None:
        logger.info(
            "+ %s: Event %6d, real time %.6f s, MC tracks: all %d, acc. %d, rec. %d, eff. %.2f %%",
            self.name, s.event, s.real_time, s.n_truth_tracks, s.n_acc, s.n_rec_all, 100.0 * s.eff_all,
        )
        logger.debug(
            "Vertex     : reconstructible %d, reconstructed %d, efficiency %.2f %%",
            s.n_prim, s.n_rec_prim, 100.0 * s.eff_prim,
        )
        logger.debug(
            "Reference  : reconstructible %d, reconstructed %d, efficiency %.2f %%",
            s.n_ref, s.n_rec_ref, 100.0 * s.eff_ref,
        )
        logger.debug(
            "Non-vertex : reconstructible %d, reconstructed %d, efficiency %.2f %%",
            s.n_sec, s.n_rec_sec, 100.0 * s.eff_sec,
        )
        logger.debug("STS tracks %d, ghosts %d, clones %d", s.n_reco_tracks, s.n_ghosts, s.n_clones)

    def finish(self, accumulators: RunAccumulators) -> RunSummary:
        """Reduce the run state; the accumulators are only read."""
        summary = summarize(accumulators, self.config.error_policy)
        log_summary(summary, self.name)
        ms = self.matcher.statistics
        logger.info(
            "%s: matching, true hits %.2f %%, wrong %.2f %%, fake %.2f %%, MC tracks per track %.2f",
            self.name, ms.true_pct, ms.wrong_pct, ms.fake_pct, ms.truth_tracks_per_track,
        )
        return summary

    def reset(self, accumulators: RunAccumulators) -> None:
        accumulators.reset()
        self.matcher = TrackMatcher()

    def new_accumulators(self) -> RunAccumulators:
        return RunAccumulators(hist_config=self.config.histograms, species=self.config.species)


def make_qa(config: QaConfig, setup: Optional[DetectorSetup] = None) -> TrackQa:
    """Build and initialise the QA variant named by ``config.variant``."""
    qa = TrackQa(config)
    qa.initialize(QaContext(setup=setup))
    return qa
