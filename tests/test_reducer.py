import numpy as np
import pytest

from sts_qa.accumulators import RunAccumulators
from sts_qa.errors import HistogramBinningError
from sts_qa.histograms import Binning, Histogram1D
from sts_qa.reducer import ErrorPolicy, divide_histograms, summarize


def _hist(name, values, binning=Binning(4, 0.0, 4.0)):
    h = Histogram1D(name, name, binning)
    for x, n in enumerate(values):
        for _ in range(n):
            h.fill(x + 0.5)
    return h


def test_divide_binomial_errors_and_empty_bins():
    num = _hist("num", [1, 2, 0, 0])
    den = _hist("den", [2, 4, 0, 3])
    eff = divide_histograms(num, den)

    np.testing.assert_allclose(eff.contents, [0.5, 0.5, 0.0, 0.0])
    np.testing.assert_allclose(eff.errors, [np.sqrt(0.125), np.sqrt(0.0625), 0.0, 0.0])
    assert eff.binning == num.binning
    # inputs untouched
    np.testing.assert_allclose(num.contents, [1, 2, 0, 0])


def test_divide_full_efficiency_has_zero_error():
    eff = divide_histograms(_hist("n", [3, 0, 0, 0]), _hist("d", [3, 0, 0, 0]))
    assert eff.contents[0] == 1.0
    assert eff.errors[0] == 0.0


def test_over_unity_bins_per_policy():
    num = _hist("num", [3, 1, 0, 0])
    den = _hist("den", [2, 2, 0, 0])

    binomial = divide_histograms(num, den, ErrorPolicy.BINOMIAL)
    assert binomial.contents[0] == pytest.approx(1.5)
    # negative variance clamped
    assert binomial.errors[0] == 0.0

    over = divide_histograms(num, den, "over-unity")
    assert over.errors[0] == pytest.approx(np.sqrt(1.5 * 2.5 / 2))
    # bins at or below one are unaffected by the policy
    assert over.errors[1] == pytest.approx(binomial.errors[1])
    assert not np.isnan(over.errors).any()


def test_divide_rejects_mismatched_binning():
    num = _hist("num", [1, 1, 1, 1])
    den = _hist("den", [1, 1, 1, 1, 1], Binning(5, 0.0, 5.0))
    with pytest.raises(HistogramBinningError):
        divide_histograms(num, den)


def test_summary_of_empty_run_is_defined():
    summary = summarize(RunAccumulators())
    assert summary.events == 0
    for cat in ("all", "vertex", "reference", "secondary"):
        assert summary.efficiency(cat) == 1.0
    assert summary.ghost_rate == 0.0
    assert summary.clone_rate == 0.0
    assert summary.hit_purity == 1.0
    assert summary.resolution["all"] == (0.0, 0.0)
    for h in summary.curves.values():
        assert not np.isnan(h.contents).any()


def test_summary_rates_and_hit_normalisation():
    acc = RunAccumulators()
    c = acc.counters
    c.events, c.ghosts, c.clones = 4, 2, 1
    c.acc_all, c.rec_all = 10, 7
    c.acc_ref, c.rec_ref = 0, 0
    for _ in range(2):
        acc.h("nh_ghosts").fill(5)
    acc.h("nh_clones").fill(6)

    s = summarize(acc, ErrorPolicy.OVER_UNITY)
    assert s.efficiency("all") == pytest.approx(0.7)
    assert s.efficiency("reference") == 1.0
    assert s.ghost_rate == pytest.approx(0.5)
    assert s.clone_rate == pytest.approx(0.25)
    assert s.hit_distributions["nh_ghosts"].integral() == pytest.approx(0.5)
    assert s.hit_distributions["nh_clones"].integral() == pytest.approx(0.25)
    # raw accumulators keep unnormalised counts
    assert acc.h("nh_ghosts").integral() == 2.0
    assert s.error_policy is ErrorPolicy.OVER_UNITY


def test_summarize_is_idempotent():
    acc = RunAccumulators()
    acc.counters.events = 2
    acc.counters.acc_all, acc.counters.rec_all = 3, 2
    for p in (0.5, 1.5, 1.5):
        acc.h("mom_acc_all").fill(p)
    for p in (0.5, 1.5):
        acc.h("mom_rec_all").fill(p)
    acc.h("nh_ghosts").fill(4)

    first = summarize(acc).to_dict()
    second = summarize(acc).to_dict()
    assert first == second


def test_summary_frame_has_one_row_per_category():
    acc = RunAccumulators()
    acc.counters.acc_prim, acc.counters.rec_prim = 4, 3
    frame = summarize(acc).to_frame()
    assert list(frame["category"]) == ["all", "vertex", "reference", "secondary"]
    row = frame.set_index("category").loc["vertex"]
    assert row["efficiency"] == pytest.approx(0.75)
