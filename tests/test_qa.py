import numpy as np
import pytest

from sts_qa.accumulators import RunAccumulators
from sts_qa.config import QaConfig
from sts_qa.errors import ConfigurationError, ConfigurationWarning, DataInconsistencyError, MissingInputError
from sts_qa.event import DetectorSetup
from sts_qa.qa import QA_VARIANTS, QaContext, TrackQa, make_qa


@pytest.fixture
def qa(detector):
    task = TrackQa(QaConfig())
    task.initialize(QaContext(setup=detector))
    return task


@pytest.fixture
def acc():
    return RunAccumulators()


def test_scenario_a_single_clean_track(qa, acc, event_builder):
    b = event_builder()
    b.truth(1)
    b.track(b.hits(1, [0, 1, 2, 3]))

    stats = qa.process_event(b.build(), acc)
    assert (stats.n_acc, stats.n_rec_all) == (1, 1)
    assert stats.qualities == {1: 1.0}
    assert (stats.n_ghosts, stats.n_clones) == (0, 0)
    assert stats.eff_all == 1.0
    c = acc.counters
    assert (c.acc_all, c.rec_all, c.ghosts, c.clones, c.events) == (1, 1, 0, 0, 1)


def test_scenario_b_short_truth_track_not_in_denominator(qa, acc, event_builder):
    b = event_builder()
    b.truth(1)
    b.track(b.hits(1, [0, 1]))

    stats = qa.process_event(b.build(), acc)
    assert stats.n_matched == 1
    assert (stats.n_acc, stats.n_rec_all) == (0, 0)
    assert acc.counters.acc_all == 0
    assert acc.counters.rec_all == 0
    assert acc.h("mom_acc_all").entries == 0
    assert stats.eff_all == 1.0


def test_scenario_c_low_quality_track_is_ghost(qa, acc, event_builder):
    b = event_builder()
    b.truth(1)
    b.track(b.hits(1, [0, 1, 2, 3]) + [b.hit(None, 4)])
    b.track(b.hits(1, [4, 5, 6]) + b.hits(None, [0, 1]))

    stats = qa.process_event(b.build(), acc)
    assert stats.qualities == {1: pytest.approx(0.8)}
    assert (stats.n_matched, stats.n_ghosts, stats.n_clones) == (1, 1, 0)
    assert acc.h("nh_ghosts").contents[5] == 1.0


def test_scenario_d_equal_quality_second_track_is_clone(qa, acc, event_builder):
    b = event_builder()
    b.truth(1)
    b.track(b.hits(1, [0, 1, 2, 3, 4, 5, 6, 7, 0]) + [b.hit(None, 1)])
    b.track(b.hits(1, [0, 1, 2, 3, 4, 5, 6, 7, 1]) + [b.hit(None, 2)])

    stats = qa.process_event(b.build(), acc)
    assert stats.qualities == {1: pytest.approx(0.9)}
    assert (stats.n_matched, stats.n_ghosts, stats.n_clones) == (1, 0, 1)
    assert acc.h("nh_clones").contents[10] == 1.0
    assert acc.h("nh_clones").entries == 1
    assert acc.counters.rec_all == 1


def test_categories_and_distributions(qa, acc, event_builder):
    b = event_builder()
    b.truth(1, momentum=(0.0, 0.0, 2.0), pdg=211)
    b.truth(2, vertex=(0.0, 0.0, 10.5), momentum=(0.0, 0.0, 3.0), pdg=-11)
    b.truth(3, momentum=(0.0, 0.0, 0.5), pdg=2212)
    b.track(b.hits(1, [0, 1, 2]), qp=0.5)
    b.hits(1, [3])
    b.track(b.hits(2, [3, 4, 5, 6]), qp=0.0)
    b.hits(3, [0, 1, 2])

    stats = qa.process_event(b.build(), acc)
    assert (stats.n_acc, stats.n_prim, stats.n_ref, stats.n_sec) == (3, 2, 1, 1)
    assert (stats.n_rec_all, stats.n_rec_prim, stats.n_rec_ref, stats.n_rec_sec) == (2, 1, 1, 1)
    assert stats.eff_prim == pytest.approx(0.5)

    # accepted x = truth stations, reconstructed x = hits on the track
    assert acc.h("np_acc_all").contents[4] == 2.0
    assert acc.h("np_rec_all").contents[3] == 1.0
    assert acc.h("np_rec_all").contents[4] == 1.0
    assert acc.h("z_acc_sec").contents[10] == 1.0
    assert acc.h("z_rec_sec").contents[10] == 1.0
    assert acc.h("mom_acc_p211").entries == 1
    assert acc.h("mom_rec_m11").entries == 1
    assert acc.h("mom_rec_p2212").entries == 0
    # one bin per reference-track count
    assert acc.h("ref_tracks").contents[1] == 1.0
    assert acc.h("rec_ref_tracks").contents[1] == 1.0
    assert acc.h("ref_tracks").entries == 1

    # qp == 0 leaves no resolution entry; p = 1/|qp| gives 0 %
    res = acc.histograms_2d["mom_res_all"]
    assert res.entries == 1
    assert acc.histograms_2d["mom_res_sec"].entries == 0
    j = res.y_binning.index(0.0)
    assert res.projection_y()[j] == 1.0
    assert acc.counters.matched_true_hits == acc.counters.matched_hits == 7


def test_reconstruction_variant_uses_hit_criterion(detector, event_builder):
    qa = make_qa(QaConfig(variant="reconstruction"), detector)
    acc = qa.new_accumulators()

    b = event_builder()
    b.truth(1)
    b.truth(2)
    b.track(b.hits(1, [0, 1, 2, 3]))
    b.hits(2, [0, 0, 1, 2])

    stats = qa.process_event(b.build(), acc)
    # truth track 2 needs 5 hits because of the doubly hit station
    assert stats.n_acc == 1
    assert stats.n_rec_all == 1
    assert set(QA_VARIANTS) == {"find-tracks", "reconstruction"}


def test_process_before_initialize_raises(acc, event_builder):
    with pytest.raises(MissingInputError, match="initialize"):
        TrackQa().process_event(event_builder().build(), acc)


def test_initialize_reports_missing_inputs():
    with pytest.raises(MissingInputError, match="sts_tracks"):
        TrackQa().initialize(QaContext(inputs=frozenset({"mc_tracks", "sts_points", "sts_hits"})))


def test_unknown_variant_is_rejected():
    with pytest.raises(ConfigurationError):
        TrackQa(QaConfig(variant="cluster"))


def test_station_threshold_above_setup_warns():
    qa = TrackQa(QaConfig(min_stations=10))
    with pytest.warns(ConfigurationWarning):
        qa.initialize(QaContext(setup=DetectorSetup(n_stations=8)))


def test_inconsistent_event_is_counted_and_leaves_no_trace(qa, acc, event_builder):
    good = event_builder(number=0)
    good.truth(1)
    good.track(good.hits(1, [0, 1, 2, 3]))
    qa.process_event(good.build(), acc)

    bad = event_builder(number=1)
    bad.truth(1)
    bad.hits(1, [0, 1, 2, 3])
    bad.track([0, 1, 99])
    with pytest.raises(DataInconsistencyError, match="event 1"):
        qa.process_event(bad.build(), acc)

    assert acc.counters.events == 1
    assert acc.counters.events_failed == 1
    assert acc.counters.acc_all == 1
    assert acc.h("mom_acc_all").entries == 1


def test_event_failing_after_matching_is_not_in_matching_statistics(qa, acc, event_builder):
    good = event_builder(number=0)
    good.truth(1)
    good.track(good.hits(1, [0, 1, 2]) + [good.hit(None, 3)])
    qa.process_event(good.build(), acc)

    # matching succeeds; the station lookup of the hit map fails
    bad = event_builder(number=1)
    bad.truth(3)
    bad.track(bad.hits(3, [0, 1, 9]))
    with pytest.raises(DataInconsistencyError, match="event 1"):
        qa.process_event(bad.build(), acc)

    ms = qa.matcher.statistics
    assert (ms.n_events, ms.n_events_failed) == (1, 1)
    assert ms.n_all_hits == 4
    assert ms.true_pct == pytest.approx(75.0)
    assert ms.fake_pct == pytest.approx(25.0)
    assert acc.counters.events_failed == 1


def test_finish_and_reset(qa, acc, event_builder):
    for n in range(3):
        b = event_builder(number=n)
        b.truth(1)
        b.truth(2)
        b.track(b.hits(1, [0, 1, 2]))
        b.track(b.hits(None, [0, 1, 2]))
        b.hits(2, [0, 1, 2])
        qa.process_event(b.build(), acc)

    summary = qa.finish(acc)
    assert summary.events == 3
    assert summary.efficiency("all") == pytest.approx(0.5)
    assert summary.ghost_rate == pytest.approx(1.0)
    assert summary.clone_rate == 0.0
    assert summary.hit_distributions["nh_ghosts"].contents[3] == pytest.approx(1.0)
    np.testing.assert_allclose(summary.curves["mom_eff_all"].contents[8], 0.5)
    assert qa.matcher.statistics.n_events == 3

    qa.reset(acc)
    assert acc.counters.events == 0
    assert qa.matcher.statistics.n_events == 0
    assert qa.finish(acc).efficiency("all") == 1.0
