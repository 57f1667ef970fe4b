"""
Tests for footy_sweep.py — grid shape, seeded sampling, ranking rules,
cancellation / progress and best-settings selection.
"""
import sys
import threading
from pathlib import Path

import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from footy_backtester import BacktestStats
from footy_config import normalize_settings
from footy_output_schemas import validate_output
from footy_sweep import (
    SweepEvaluator,
    SweepRow,
    build_settings_grid,
    find_best_settings,
    line_sets_for,
    rank_rows,
    run_sweep,
    sample_settings,
    sweep_to_frame,
)

SCORE_CYCLE = [(2, 1), (0, 3), (1, 1)]


def _fixtures(n=25):
    rows = []
    for i in range(n):
        gh, ga = SCORE_CYCLE[i % 3]
        home, away = (1, 2) if i % 2 == 0 else (2, 1)
        rows.append({
            "id": i + 1,
            "date_utc": (pd.Timestamp("2024-01-01T15:00:00Z") + pd.Timedelta(days=i)).isoformat(),
            "home_team_id": home,
            "away_team_id": away,
            "goals_home": gh,
            "goals_away": ga,
            "competition_id": 1,
        })
    return rows


def _row(picks, hit_rate, coverage, window=10):
    stats = BacktestStats(threshold=0.6, evaluated=100, picks=picks,
                          hits=round(picks * hit_rate), hit_rate=hit_rate, coverage=coverage)
    return SweepRow(normalize_settings(window_size=window), stats)


# ── Grid ─────────────────────────────────────────────────────────────────────

class TestGrid:
    def test_default_grid_size(self):
        assert len(build_settings_grid()) == 8100

    def test_single_line_set(self):
        grid = build_settings_grid([[2.5]])
        assert len(grid) == 1350
        assert all(s.lines == (2.5,) for s in grid)

    def test_weights_follow_bucket_count(self):
        for s in build_settings_grid([[2.5]]):
            assert len(s.weights) == s.buckets
            assert s.weights[0] == 1.0

    def test_grid_order_is_fixed(self):
        assert build_settings_grid([[2.5]]) == build_settings_grid([[2.5]])


class TestLineSets:
    def test_no_selection_uses_every_preset(self):
        assert len(line_sets_for()) == 6

    def test_selection_keeps_subset_presets(self):
        assert line_sets_for([2.5, "1x", "X2"]) == [(2.5, "1X", "X2")]

    def test_selection_without_preset_is_its_own_set(self):
        assert line_sets_for([4]) == [(4.0,)]


class TestSampling:
    grid = build_settings_grid([[2.5]])

    def test_seeded_sample_is_reproducible(self):
        assert sample_settings(self.grid, 30, seed=7) == sample_settings(self.grid, 30, seed=7)

    def test_different_seeds_differ(self):
        assert sample_settings(self.grid, 30, seed=1) != sample_settings(self.grid, 30, seed=2)

    @pytest.mark.parametrize("count,expected", [(5, 20), (30, 30), (500, 50)])
    def test_count_is_clamped(self, count, expected):
        assert len(sample_settings(self.grid, count, seed=0)) == expected

    def test_no_duplicates(self):
        sample = sample_settings(self.grid, 50, seed=3)
        assert len(set(sample)) == 50


# ── Ranking ──────────────────────────────────────────────────────────────────

class TestRanking:
    rows = [
        _row(30, 0.85, 0.4, window=10),
        _row(50, 0.79, 0.6, window=11),   # below band
        _row(30, 0.90, 0.4, window=12),
        _row(40, 0.80, 0.5, window=13),
        _row(30, 0.90, 0.5, window=14),
    ]

    def test_filters_hit_rate_band(self):
        assert all(0.8 <= r.stats.hit_rate <= 1.0 for r in rank_rows(self.rows))

    def test_order(self):
        ranked = rank_rows(self.rows)
        assert [r.settings.window_size for r in ranked] == [13, 14, 12, 10]

    def test_larger_limit_extends_smaller(self):
        short = rank_rows(self.rows, 2)
        long = rank_rows(self.rows, 4)
        assert long[:2] == short

    def test_limit_floor_is_one(self):
        assert len(rank_rows(self.rows, 0)) == 1

    def test_empty(self):
        assert rank_rows([]) == []


# ── run_sweep ────────────────────────────────────────────────────────────────

class TestRunSweep:
    def test_quick_sweep_is_deterministic(self):
        a = run_sweep(_fixtures(), 1, "quick", line_sets=[[2.5]], count=20, seed=11)
        b = run_sweep(_fixtures(), 1, "quick", line_sets=[[2.5]], count=20, seed=11)
        assert a == b

    def test_rows_respect_band_and_limit(self):
        rows = run_sweep(_fixtures(), 1, "quick", line_sets=[[2.5]], count=20, seed=4, result_limit=3)
        assert len(rows) <= 3
        assert all(0.8 <= r.stats.hit_rate <= 1.0 for r in rows)

    def test_progress_reaches_total(self):
        calls = []
        run_sweep(_fixtures(), 1, "quick", line_sets=[[2.5]], count=20, seed=4,
                  chunk_size=8, progress=lambda done, total: calls.append((done, total)))
        assert calls == [(8, 20), (16, 20), (20, 20)]

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unknown sweep mode"):
            run_sweep(_fixtures(), 1, "turbo")

    def test_cancel_before_start(self):
        cancel = threading.Event()
        cancel.set()
        calls = []
        rows = run_sweep(_fixtures(), 1, "quick", line_sets=[[2.5]], count=20, seed=4,
                         cancel=cancel, progress=lambda d, t: calls.append((d, t)))
        assert rows == []
        assert calls == []

    def test_cancel_between_chunks(self):
        cancel = threading.Event()
        calls = []

        def progress(done, total):
            calls.append((done, total))
            cancel.set()

        run_sweep(_fixtures(), 1, "quick", line_sets=[[2.5]], count=20, seed=4,
                  chunk_size=5, cancel=cancel, progress=progress)
        assert calls == [(5, 20)]


class TestEvaluator:
    def test_threshold_variants_share_one_backtest(self):
        evaluator = SweepEvaluator(_fixtures(), 1)
        base = normalize_settings(window_size=10, bucket_size=5, min_matches=5,
                                  min_league_matches=5, lines=[2.5])
        rows = [evaluator.evaluate(normalize_settings(base, threshold=t)) for t in (0.55, 0.65, 0.75)]
        assert evaluator.cache_size == 1
        assert rows[0].stats.picks >= rows[1].stats.picks >= rows[2].stats.picks
        assert len({r.stats.evaluated for r in rows}) == 1

    def test_frame_matches_schema(self):
        evaluator = SweepEvaluator(_fixtures(), 1)
        rows = [evaluator.evaluate(s) for s in build_settings_grid([[2.5]])[:5]]
        df = sweep_to_frame(rows)
        assert len(df) == 5
        assert validate_output(df, "sweep_results") == []

    def test_empty_frame_keeps_columns(self):
        assert validate_output(sweep_to_frame([]), "sweep_results") == []


class TestFindBestSettings:
    base = {"windowSize": 10, "bucketSize": 5, "minMatches": 5, "minLeagueMatches": 5,
            "threshold": 0.6, "lines": [2.5]}

    def test_small_sample_misses_criteria(self):
        best = find_best_settings(_fixtures(), 1, self.base)
        # at most 15 priced fixtures, short of the 25-pick minimum
        assert best is not None
        assert best.meets_criteria is False
        assert best.row.stats.picks <= 15

    def test_duplicate_candidates_collapse(self):
        best = find_best_settings(_fixtures(), 1, self.base, candidates=[self.base, dict(self.base)])
        assert best.row.settings == normalize_settings(self.base)

    def test_picks_most_picks_among_candidates(self):
        loose = dict(self.base, threshold=0.5)
        best = find_best_settings(_fixtures(), 1, self.base, candidates=[loose])
        assert best.row.stats.picks == max(
            SweepEvaluator(_fixtures(), 1).evaluate(normalize_settings(s)).stats.picks
            for s in (self.base, loose)
        )
