import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from footy_rolling import (
    RollingWindow,
    WindowAverage,
    add_entry,
    weighted_average,
    weighted_outcome_rates,
)


def _window(entries_oldest_first, capacity=10):
    window = RollingWindow(capacity)
    for gf, ga in entries_oldest_first:
        window.add(gf, ga)
    return window


# ── RollingWindow ────────────────────────────────────────────────────────────

def test_window_is_most_recent_first_and_bounded():
    window = _window([(1, 0), (2, 0), (3, 0), (4, 0)], capacity=3)
    assert len(window) == 3
    assert list(window) == [(4, 0), (3, 0), (2, 0)]


def test_add_entry_with_new_capacity_resizes():
    window = _window([(i, 0) for i in range(5)], capacity=5)
    resized = add_entry(window, 9, 9, capacity=3)
    assert resized.capacity == 3
    assert list(resized) == [(9, 9), (4, 0), (3, 0)]


def test_add_entry_same_capacity_mutates_in_place():
    window = RollingWindow(4)
    assert add_entry(window, 1, 2, capacity=4) is window
    assert list(window) == [(1, 2)]


# ── weighted_average ─────────────────────────────────────────────────────────

def test_empty_window_is_zero():
    assert weighted_average([], 5, [1.0]) == WindowAverage(0.0, 0.0, 0)
    assert weighted_average(RollingWindow(10), 3, []) == WindowAverage(0.0, 0.0, 0)


def test_bucket_means_weighted_with_padding():
    # Most recent first: [(3,0),(1,1)] [(0,2),(2,2)] [(4,0)]
    window = _window([(4, 0), (2, 2), (0, 2), (1, 1), (3, 0)])
    avg = weighted_average(window, 2, [1.0, 0.5])
    # third bucket reuses the last weight (0.5)
    assert avg.gf == pytest.approx((2.0 * 1.0 + 1.0 * 0.5 + 4.0 * 0.5) / 2.0)
    assert avg.ga == pytest.approx((0.5 * 1.0 + 2.0 * 0.5 + 0.0 * 0.5) / 2.0)
    assert avg.n == 5


def test_no_weights_means_equal_bucket_weights():
    window = _window([(0, 0), (2, 2), (4, 4)])
    avg = weighted_average(window, 2, [])
    # buckets [(4,4),(2,2)] -> 3, [(0,0)] -> 0
    assert avg.gf == pytest.approx(1.5)
    assert avg.n == 3


def test_extra_weights_are_ignored():
    window = _window([(1, 1), (3, 3)])
    assert weighted_average(window, 2, [1.0, 0.1, 0.1]) == weighted_average(window, 2, [1.0])


def test_single_bucket_is_plain_mean():
    window = _window([(1, 0), (2, 1), (3, 2)])
    avg = weighted_average(window, 5, [0.7])
    assert avg.gf == pytest.approx(2.0)
    assert avg.ga == pytest.approx(1.0)


# ── weighted_outcome_rates ───────────────────────────────────────────────────

def test_outcome_rates_single_bucket():
    window = _window([(2, 1), (1, 1), (0, 1)])
    rates = weighted_outcome_rates(window, 3, [1.0])
    assert rates.win == pytest.approx(1 / 3)
    assert rates.draw == pytest.approx(1 / 3)
    assert rates.loss == pytest.approx(1 / 3)
    assert rates.n == 3


def test_outcome_rates_weight_recent_bucket():
    # recent bucket all wins, older bucket all losses
    window = _window([(0, 1), (0, 2), (2, 0), (1, 0)])
    rates = weighted_outcome_rates(window, 2, [3.0, 1.0])
    assert rates.win == pytest.approx(0.75)
    assert rates.loss == pytest.approx(0.25)
    assert rates.draw == 0.0


def test_outcome_rates_empty():
    assert weighted_outcome_rates([], 3, [1.0]).n == 0
