__all__ = [
    "Event", "TruthTrack", "TruthPoint", "ReconstructedHit", "ReconstructedTrack",
    "TrackParam", "DetectorSetup",
    "HitMap", "build_hit_map", "tally_track", "match_track", "match_tracks",
    "TrackMatch", "TrackMatcher", "MatchingStatistics",
    "TrackLabel", "Classification", "classify_tracks",
    "TrackCategory", "StationCountCriterion", "HitCountCriterion", "categorize",
    "RunAccumulators", "EventStatistics",
    "ErrorPolicy", "divide_histograms", "summarize", "RunSummary",
    "QaTask", "QaContext", "TrackQa", "QA_VARIANTS", "make_qa",
    "QaConfig", "load_config",
    "load_events", "write_results",
    "run_events", "run_events_parallel",
    "QaError", "DataInconsistencyError", "MissingInputError",
    "ConfigurationError", "HistogramBinningError", "ConfigurationWarning",
]

# Data model
from .event import (
    DetectorSetup,
    Event,
    ReconstructedHit,
    ReconstructedTrack,
    TrackParam,
    TruthPoint,
    TruthTrack,
)

# Errors
from .errors import (
    ConfigurationError,
    ConfigurationWarning,
    DataInconsistencyError,
    HistogramBinningError,
    MissingInputError,
    QaError,
)

# Matching
from .correspondence import (
    HitMap,
    MatchingStatistics,
    TrackMatch,
    TrackMatcher,
    build_hit_map,
    match_track,
    match_tracks,
    tally_track,
)
from .matching import Classification, TrackLabel, classify_tracks

# Reconstructibility
from .acceptance import HitCountCriterion, StationCountCriterion, TrackCategory, categorize

# Aggregation & reduction
from .accumulators import EventStatistics, RunAccumulators
from .reducer import ErrorPolicy, RunSummary, divide_histograms, summarize

# QA task
from .config import QaConfig, load_config
from .qa import QA_VARIANTS, QaContext, QaTask, TrackQa, make_qa

# I/O & running
from .data import load_events, write_results
from .runner import run_events, run_events_parallel
