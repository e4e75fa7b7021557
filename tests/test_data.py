import json

import pandas as pd
import pytest

from sts_qa.accumulators import RunAccumulators
from sts_qa.data import available_inputs, load_events, read_tables, write_results
from sts_qa.errors import MissingInputError
from sts_qa.reducer import summarize


def test_load_events_groups_by_event(run_dir):
    events = load_events(run_dir)

    assert [e.number for e in events] == [0, 1]
    ev0 = events[0]
    assert [t.track_id for t in ev0.truth_tracks] == [1, 2]
    assert ev0.truth_tracks[1].pdg_code == -11
    assert ev0.truth_tracks[1].start_vertex[2] == 12.0
    # points ordered by point_id
    assert [p.point_id for p in ev0.points] == [0, 1, 2, 3]
    assert [p.station for p in ev0.points] == [0, 1, 2, 0]
    assert ev0.hits[3].point_ref is None
    assert ev0.hit_truth_track(1) == 1
    assert ev0.tracks[0].hit_indices == [0, 1, 2, 3]
    assert ev0.tracks[0].param_first.qp == 0.5
    assert ev0.tracks[0].chi2 == 1.5
    assert events[1].tracks[0].ndf == 1


def test_empty_point_reference_is_fake_hit(run_dir):
    df = pd.read_csv(run_dir / "sts_hits.csv")
    df["point_ref"] = df["point_ref"].astype(float)
    df.loc[3, "point_ref"] = float("nan")
    df.to_csv(run_dir / "sts_hits.csv", index=False)

    ev0 = load_events(run_dir)[0]
    assert ev0.hits[3].point_ref is None
    assert ev0.hits[2].point_ref == 2


def test_missing_table_raises(run_dir):
    (run_dir / "sts_hits.csv").unlink()
    assert available_inputs(run_dir) == frozenset({"mc_tracks", "sts_points", "sts_tracks"})
    with pytest.raises(MissingInputError, match="sts_hits"):
        read_tables(run_dir)


def test_missing_column_raises(run_dir):
    df = pd.read_csv(run_dir / "sts_tracks.csv").drop(columns=["qp"])
    df.to_csv(run_dir / "sts_tracks.csv", index=False)
    with pytest.raises(MissingInputError, match="qp"):
        read_tables(run_dir)


def test_write_results(tmp_path):
    acc = RunAccumulators()
    acc.counters.events = 1
    acc.h("mom_acc_all").fill(1.0)
    out = write_results(tmp_path / "out" / "qa.json", summarize(acc), acc)

    data = json.loads(out.read_text())
    assert data["summary"]["events"] == 1
    assert data["summary"]["efficiencies"]["all"]["efficiency"] == 1.0
    assert "mom_eff_all" in data["summary"]["curves"]
    assert data["histograms"]["mom_acc_all"]["entries"] == 1
    assert data["counters"]["events"] == 1
