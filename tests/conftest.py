import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

from typing import Iterable, List, Optional

import pandas as pd
import pytest

from sts_qa.event import (
    DetectorSetup,
    Event,
    ReconstructedHit,
    ReconstructedTrack,
    TrackParam,
    TruthPoint,
    TruthTrack,
)


class EventBuilder:
    """Small helper to assemble consistent events hit by hit."""

    def __init__(self, number: int = 0):
        self.event = Event(number)

    def truth(self, track_id, vertex=(0.0, 0.0, 0.0), momentum=(0.0, 0.0, 2.0), pdg=211) -> int:
        self.event.truth_tracks.append(TruthTrack(track_id, vertex, momentum, pdg))
        return track_id

    def hit(self, track_id: Optional[int] = None, station: int = 0) -> int:
        ev = self.event
        point_ref = None
        if track_id is not None:
            point_ref = len(ev.points)
            ev.points.append(TruthPoint(point_ref, track_id, station))
        ev.hits.append(ReconstructedHit(len(ev.hits), station, point_ref))
        return len(ev.hits) - 1

    def hits(self, track_id: Optional[int], stations: Iterable[int]) -> List[int]:
        return [self.hit(track_id, st) for st in stations]

    def track(self, hit_indices: Iterable[int], qp: float = 0.5) -> int:
        ev = self.event
        ev.tracks.append(ReconstructedTrack(len(ev.tracks), list(hit_indices), TrackParam(qp=qp)))
        return len(ev.tracks) - 1

    def build(self) -> Event:
        return self.event


@pytest.fixture
def event_builder():
    return EventBuilder


@pytest.fixture
def detector():
    return DetectorSetup(n_stations=8, target_position=(0.0, 0.0, 0.0))


def write_run(directory):
    """Two small events as CSV tables: a clean track and one with a fake hit."""
    pd.DataFrame({
        "event": [0, 0, 1],
        "track_id": [1, 2, 1],
        "x": [0.0, 0.0, 0.0], "y": [0.0, 0.0, 0.0], "z": [0.0, 12.0, 0.0],
        "px": [0.0, 0.0, 0.1], "py": [0.0, 0.0, 0.0], "pz": [2.0, 1.0, 3.0],
        "pdg": [211, -11, 2212],
    }).to_csv(directory / "mc_tracks.csv", index=False)
    pd.DataFrame({
        "event": [0, 0, 0, 0, 1, 1, 1],
        # deliberately unsorted ids
        "point_id": [2, 0, 1, 3, 0, 1, 2],
        "track_id": [1, 1, 1, 2, 1, 1, 1],
        "station": [2, 0, 1, 0, 0, 1, 2],
    }).to_csv(directory / "sts_points.csv", index=False)
    pd.DataFrame({
        "event": [0, 0, 0, 0, 1, 1, 1],
        "hit_id": [0, 1, 2, 3, 0, 1, 2],
        "station": [0, 1, 2, 3, 0, 1, 2],
        "point_ref": [0, 1, 2, -1, 0, 1, 2],
    }).to_csv(directory / "sts_hits.csv", index=False)
    pd.DataFrame({
        "event": [0, 1],
        "track_id": [0, 0],
        "hits": ["0 1 2 3", "0 1 2"],
        "x": [0.0, 0.0], "y": [0.0, 0.0], "z": [0.0, 0.0],
        "tx": [0.0, 0.0], "ty": [0.0, 0.0], "qp": [0.5, -0.4],
        "chi2": [1.5, 2.0], "ndf": [3, 1],
    }).to_csv(directory / "sts_tracks.csv", index=False)


@pytest.fixture
def run_dir(tmp_path):
    write_run(tmp_path)
    return tmp_path
