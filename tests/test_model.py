"""
Tests for footy_model.py — league averages, ratings, Poisson / empirical
outcome pricing, best-pick selection and settlement.
"""
import math
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from footy_config import BASELINE_AWAY, BASELINE_HOME, XG_MAX, XG_MIN, normalize_settings
from footy_model import (
    LeagueAverages,
    LeagueTally,
    Outcomes,
    PickCandidate,
    blend_outcomes,
    double_chance_probability,
    empirical_outcomes,
    market_candidates,
    poisson_cdf,
    poisson_outcomes,
    project_match,
    rate_matchup,
    select_best_pick,
    settle_pick,
    shrink,
)
from footy_rolling import RollingWindow, WindowAverage


def _window(entries, capacity=10):
    window = RollingWindow(capacity)
    for gf, ga in entries:
        window.add(gf, ga)
    return window


class TestPoissonCdf:
    def test_non_decreasing_in_k(self):
        values = [poisson_cdf(2.0, k) for k in range(25)]
        assert all(b >= a for a, b in zip(values, values[1:]))

    def test_converges_to_one(self):
        assert poisson_cdf(2.0, 50) > 0.999999
        assert poisson_cdf(2.0, 50) <= 1.0

    def test_k_zero(self):
        assert poisson_cdf(2.0, 0) == pytest.approx(math.exp(-2.0))

    def test_fractional_k_floors(self):
        assert poisson_cdf(1.5, 2.5) == poisson_cdf(1.5, 2)

    def test_negative_k_is_zero(self):
        assert poisson_cdf(2.0, -1) == 0.0

    @pytest.mark.parametrize("lam", [0.0, -1.0, float("nan"), float("inf")])
    def test_degenerate_lambda_never_raises(self, lam):
        assert poisson_cdf(lam, 2) == 1.0

    def test_infinite_k(self):
        assert poisson_cdf(3.0, float("inf")) == 1.0

    def test_large_lambda_no_overflow(self):
        assert 0.0 <= poisson_cdf(12.0, 200) <= 1.0


class TestLeague:
    def test_below_minimum_uses_baseline(self):
        tally = LeagueTally()
        tally.add(3, 0)
        avg = tally.averages(min_league_matches=5)
        assert (avg.home, avg.away) == (BASELINE_HOME, BASELINE_AWAY)
        assert avg.from_baseline

    def test_computed_means(self):
        tally = LeagueTally()
        for gh, ga in [(2, 1), (1, 1), (3, 0)]:
            tally.add(gh, ga)
        avg = tally.averages(min_league_matches=3)
        assert avg.home == pytest.approx(2.0)
        assert avg.away == pytest.approx(2 / 3)
        assert not avg.from_baseline

    def test_goalless_league_falls_back(self):
        tally = LeagueTally()
        for _ in range(10):
            tally.add(0, 0)
        assert tally.averages(5).from_baseline

    def test_shrink(self):
        assert shrink(2.0, 10, 1.0, 10) == pytest.approx(1.5)
        assert shrink(5.0, 0, 1.2, 10) == 1.2


class TestRatings:
    settings = normalize_settings(window_size=10, bucket_size=5, min_matches=5)
    league = LeagueAverages(1.5, 1.2, 100, False)

    def test_below_min_matches_abstains(self):
        home = WindowAverage(1.5, 1.0, 4)
        away = WindowAverage(1.0, 1.0, 10)
        assert rate_matchup(home, away, self.league, self.settings) is None

    def test_league_average_teams_reproduce_league(self):
        home = WindowAverage(1.5, 1.2, 10)
        away = WindowAverage(1.2, 1.5, 10)
        r = rate_matchup(home, away, self.league, self.settings)
        assert r.attack_home == pytest.approx(1.0)
        assert r.defense_away == pytest.approx(1.0)
        assert r.xg_home == pytest.approx(1.5)
        assert r.xg_away == pytest.approx(1.2)
        assert r.total_xg == pytest.approx(2.7)

    def test_xg_clamped_high(self):
        s = normalize_settings(window_size=60, min_matches=5)
        r = rate_matchup(WindowAverage(50, 50, 60), WindowAverage(50, 50, 60), self.league, s)
        assert r.xg_home == XG_MAX
        assert r.xg_away == XG_MAX

    def test_xg_clamped_low(self):
        s = normalize_settings(window_size=60, min_matches=5)
        tiny = LeagueAverages(0.05, 0.05, 100, False)
        r = rate_matchup(WindowAverage(0, 0, 60), WindowAverage(0, 0, 60), tiny, s)
        assert r.xg_home == XG_MIN
        assert r.xg_away == XG_MIN


class TestOutcomes:
    def test_poisson_outcomes_sum_to_one(self):
        o = poisson_outcomes(1.4, 1.1)
        assert o.home_win + o.draw + o.away_win == pytest.approx(1.0)
        assert o.home_win > o.away_win

    def test_equal_xg_is_symmetric(self):
        o = poisson_outcomes(1.3, 1.3)
        assert o.home_win == pytest.approx(o.away_win)

    def test_empirical_outcomes(self):
        home = _window([(2, 0), (1, 1)])     # 1 win, 1 draw
        away = _window([(0, 1), (0, 2)])     # 2 losses
        o = empirical_outcomes(home, away, 5, [1.0])
        assert o.home_win == pytest.approx(0.75)
        assert o.draw == pytest.approx(0.25)
        assert o.away_win == pytest.approx(0.0)

    def test_empirical_needs_both_sides(self):
        assert empirical_outcomes(_window([(1, 0)]), RollingWindow(5), 5, [1.0]) is None

    def test_blend_weights(self):
        p = Outcomes(0.5, 0.3, 0.2)
        e = Outcomes(0.0, 0.0, 1.0)
        b = blend_outcomes(p, e)
        assert b.home_win == pytest.approx(0.3)
        assert b.draw == pytest.approx(0.18)
        assert b.away_win == pytest.approx(0.52)

    def test_blend_with_missing_side(self):
        p = Outcomes(0.5, 0.3, 0.2)
        assert blend_outcomes(p, None) == p
        assert blend_outcomes(None, p) == p

    def test_double_chance(self):
        o = Outcomes(0.5, 0.3, 0.2)
        assert double_chance_probability(o, "1X") == pytest.approx(0.8)
        assert double_chance_probability(o, "X2") == pytest.approx(0.5)
        assert double_chance_probability(o, "12") == pytest.approx(0.7)
        assert double_chance_probability(o, "??") == 0.0


class TestPickSelection:
    def test_candidate_order_and_labels(self):
        cands = market_candidates(2.5, Outcomes(0.5, 0.3, 0.2), (2.5, 3.0, "1X"))
        assert [c.label for c in cands] == ["Over 2.5", "Under 2.5", "Over 3", "Under 3", "1X"]

    def test_over_under_are_complementary(self):
        over, under = market_candidates(2.7, None, (2.5,))
        assert over.probability + under.probability == pytest.approx(1.0)
        assert under.probability == pytest.approx(poisson_cdf(2.7, 2))

    def test_double_chance_skipped_without_outcomes(self):
        assert market_candidates(2.5, None, ("1X",)) == []

    def test_highest_probability_wins(self):
        cands = [PickCandidate("over", 2.5, 0.4), PickCandidate("dc", "1X", 0.7),
                 PickCandidate("under", 2.5, 0.6)]
        assert select_best_pick(cands).label == "1X"

    def test_tie_keeps_first(self):
        cands = [PickCandidate("over", 2.5, 0.5), PickCandidate("under", 2.5, 0.5)]
        assert select_best_pick(cands).label == "Over 2.5"

    def test_empty(self):
        assert select_best_pick([]) is None


class TestSettlement:
    @pytest.mark.parametrize("label,gh,ga,expected", [
        ("Over 2.5", 2, 1, True),
        ("Over 2.5", 1, 1, False),
        ("Under 2.5", 2, 1, False),
        ("Under 3", 2, 1, True),
        ("under 3.5", 0, 0, True),
        ("1X", 0, 0, True),
        ("1X", 2, 0, True),
        ("1X", 0, 1, False),
        ("X2", 2, 0, False),
        ("X2", 1, 1, True),
        ("12", 1, 1, False),
        ("12", 0, 3, True),
    ])
    def test_settle_pick(self, label, gh, ga, expected):
        assert settle_pick(label, gh, ga) is expected

    @pytest.mark.parametrize("label", ["Bogus", "", "Over", "Over x", "BTTS Yes"])
    def test_unknown_labels(self, label):
        assert settle_pick(label, 1, 1) is None


class TestProjectMatch:
    def test_insufficient_sample(self):
        s = normalize_settings(window_size=10, bucket_size=5, min_matches=5)
        home = _window([(1, 0)] * 4)
        away = _window([(1, 1)] * 10)
        assert project_match(home, away, LeagueAverages(1.4, 1.1, 50, False), s) is None

    def test_full_projection(self):
        s = normalize_settings(window_size=10, bucket_size=5, min_matches=5,
                               weights=[1, 0.5], lines=[2.5, "1X"])
        home = _window([(2, 1), (0, 3), (1, 1)] * 3)
        away = _window([(1, 2), (3, 0), (1, 1)] * 3)
        proj = project_match(home, away, LeagueAverages(1.4, 1.1, 50, False), s)
        assert proj is not None
        assert [c.label for c in proj.candidates] == ["Over 2.5", "Under 2.5", "1X"]
        assert proj.best.probability == max(c.probability for c in proj.candidates)
        assert 0.0 < proj.best.probability < 1.0
        total = proj.outcomes.home_win + proj.outcomes.draw + proj.outcomes.away_win
        assert total == pytest.approx(1.0)
