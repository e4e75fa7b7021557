import numpy as np
import pytest

from sts_qa.accumulators import RunAccumulators
from sts_qa.errors import HistogramBinningError
from sts_qa.histograms import Binning, Histogram1D, Histogram2D


def test_binning_edges_and_index():
    b = Binning(16, -0.5, 15.5)
    assert b.width == 1.0
    assert b.index(0) == 0
    assert b.index(15) == 15
    assert b.index(-0.6) == -1
    assert b.index(15.5) == 16
    np.testing.assert_allclose(b.centers[:3], [0.0, 1.0, 2.0])


def test_invalid_binning():
    with pytest.raises(ValueError):
        Binning(0, 0.0, 1.0)
    with pytest.raises(ValueError):
        Binning(10, 1.0, 1.0)


def test_fill_underflow_overflow_and_scale():
    h = Histogram1D("h", "", Binning(4, 0.0, 4.0))
    for x in (-1.0, 0.5, 0.5, 3.9, 4.0, float("nan")):
        h.fill(x)
    assert h.entries == 6
    assert h.underflow == 1.0
    assert h.overflow == 2.0
    np.testing.assert_allclose(h.contents, [2, 0, 0, 1])

    h.scale(0.5)
    np.testing.assert_allclose(h.contents, [1, 0, 0, 0.5])
    np.testing.assert_allclose(h.errors, [np.sqrt(2) / 2, 0, 0, 0.5])


def test_add_requires_same_binning():
    a = Histogram1D("a", "", Binning(4, 0.0, 4.0))
    with pytest.raises(HistogramBinningError):
        a.add(Histogram1D("b", "", Binning(4, 0.0, 8.0)))


def test_2d_fill_and_projection():
    h = Histogram2D("r", "", Binning(2, 0.0, 2.0), Binning(4, -2.0, 2.0))
    h.fill(0.5, -1.5)
    h.fill(1.5, -1.5)
    h.fill(1.5, 1.5)
    h.fill(5.0, 0.0)
    assert h.outside == 1.0
    np.testing.assert_allclose(h.projection_y(), [2, 0, 0, 1])


def test_accumulator_merge_and_reset():
    a = RunAccumulators()
    b = RunAccumulators.like(a)
    a.counters.acc_all = 2
    b.counters.acc_all = 3
    a.h("mom_acc_all").fill(1.0)
    b.h("mom_acc_all").fill(1.0)
    b.histograms_2d["mom_res_all"].fill(1.0, 0.5)

    a.merge(b)
    assert a.counters.acc_all == 5
    assert a.h("mom_acc_all").integral() == 2.0
    assert a.histograms_2d["mom_res_all"].integral() == 1.0
    # b unchanged
    assert b.counters.acc_all == 3

    a.reset()
    assert a.counters.acc_all == 0
    assert a.h("mom_acc_all").integral() == 0.0
    assert a.histograms_2d["mom_res_all"].entries == 0


def test_accumulators_have_species_curves():
    acc = RunAccumulators(species=(211, -211))
    assert "mom_acc_p211" in acc.histograms
    assert "mom_rec_m211" in acc.histograms
    assert "mom_acc_p2212" not in acc.histograms
