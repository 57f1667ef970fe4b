#!/usr/bin/env python3
"""
footy_sweep.py — Parameter Sweep / Settings Optimizer

Searches the AlgoSettings grid for configurations that backtest well on a
team's fixtures.

GRID
─────────────────────────────────────────────────────────────────────────────
window_size         10, 15, 20, 25, 30
bucket_size         3, 5
threshold           0.55, 0.60, 0.65, 0.70, 0.75
min_matches         5, 7, 10
min_league_matches  5, 10, 15
lines               LINE_SETS presets (restricted to the caller's lines)
weights             soft / medium / hard linear profiles

The full grid is 1,350 cells per line set. "quick" evaluates a seeded random
sample of 20–50 cells, "full" evaluates all of them in chunks, checking a
cancel flag between cells and reporting progress after every chunk.

Thresholding happens at aggregation time, so one raw backtest serves every
threshold: raw runs are memoized on the settings with threshold factored out.

RANKING
─────────────────────────────────────────────────────────────────────────────
Keep hit_rate in [0.80, 1.00], sort by (picks, hit_rate, coverage) desc,
truncate to the result limit. Sorting is stable over grid order, so a
larger limit only ever extends a smaller one.

Usage:
    python footy_sweep.py --fixtures league.json --team-id 33 --mode quick --seed 7
    python footy_sweep.py --fixtures league.json --team-id 33 --mode full --lines 2.5,1X,X2 --save
"""

import argparse
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from itertools import product
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from footy_backtester import BacktestPick, BacktestEngine, BacktestStats, summarize_picks
from footy_config import (
    AlgoSettings, MarketLine, DATA_DIR, DEFAULT_SWEEP_SEED, SWEEP_CHUNK_SIZE,
    WEIGHT_PROFILE_FLOORS, bucket_count, normalize_lines, normalize_settings,
    parse_line_list, save_team_settings, weight_profile,
)
from footy_output_schemas import validate_output
from footy_parsers import Match, ensure_matches, load_fixtures

log = logging.getLogger(__name__)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# ── Grid ──────────────────────────────────────────────────────────────────────
WINDOWS            = [10, 15, 20, 25, 30]
BUCKETS            = [3, 5]
THRESHOLDS         = [0.55, 0.6, 0.65, 0.7, 0.75]
MIN_MATCHES        = [5, 7, 10]
MIN_LEAGUE_MATCHES = [5, 10, 15]
WEIGHT_MODES       = list(WEIGHT_PROFILE_FLOORS)     # soft, medium, hard

LINE_SETS: List[List[MarketLine]] = [
    [1.5, 2.5, 3.5],
    [2.5, 3.5, 4.5],
    [1.5, 2.5],
    ["1X", "X2", "12"],
    [1.5, "1X", "X2"],
    [2.5, "1X", "X2"],
]

# ── Ranking / selection ───────────────────────────────────────────────────────
HIT_RATE_BAND     = (0.8, 1.0)
QUICK_COUNT_RANGE = (20, 50)
DEFAULT_QUICK     = 30
DEFAULT_LIMIT     = 20

# Daily best-settings eligibility
BEST_HIT_MIN      = 0.8
BEST_COVERAGE_MIN = 0.33
BEST_PICKS_MIN    = 25

ProgressFn = Callable[[int, int], None]


# ═══════════════════════════════════════════════════════════════════════════════
# GRID CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════════════

def line_sets_for(selected: Optional[Sequence[Any]] = None) -> List[Tuple[MarketLine, ...]]:
    """
    Presets whose lines are all in `selected`; when none qualify, the
    selection itself becomes the only set. No selection means every preset.
    """
    presets = [normalize_lines(s) for s in LINE_SETS]
    if not selected:
        return presets
    chosen = set(normalize_lines(selected))
    usable = [s for s in presets if set(s) <= chosen]
    return usable or [normalize_lines(selected)]


def build_settings_grid(line_sets: Optional[Sequence[Sequence[Any]]] = None) -> List[AlgoSettings]:
    """Cartesian product in a fixed order; weights follow each cell's bucket count."""
    sets = [normalize_lines(s) for s in line_sets] if line_sets else line_sets_for()
    grid = []
    for window, bucket, threshold, min_m, min_l, lines, mode in product(
        WINDOWS, BUCKETS, THRESHOLDS, MIN_MATCHES, MIN_LEAGUE_MATCHES, sets, WEIGHT_MODES,
    ):
        grid.append(normalize_settings(
            window_size        = window,
            bucket_size        = bucket,
            threshold          = threshold,
            min_matches        = min_m,
            min_league_matches = min_l,
            lines              = lines,
            weights            = weight_profile(bucket_count(window, bucket), mode),
        ))
    return grid


def sample_settings(grid: Sequence[AlgoSettings], count: int,
                    seed: Optional[int] = None) -> List[AlgoSettings]:
    """Seeded random subset, clamped to the quick-sweep range."""
    count = max(QUICK_COUNT_RANGE[0], min(QUICK_COUNT_RANGE[1], int(count)))
    rng = np.random.default_rng(seed)
    order = rng.permutation(len(grid))[:count]
    return [grid[i] for i in order]


# ═══════════════════════════════════════════════════════════════════════════════
# EVALUATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SweepRow:
    settings: AlgoSettings
    stats:    BacktestStats

    def to_flat_dict(self) -> Dict[str, Any]:
        row = self.settings.to_flat_dict()
        row.update({
            "evaluated": self.stats.evaluated,
            "picks":     self.stats.picks,
            "hits":      self.stats.hits,
            "hit_rate":  self.stats.hit_rate,
            "coverage":  self.stats.coverage,
        })
        return row


class SweepEvaluator:
    """Backtests settings against one fixture list, memoizing raw runs."""

    def __init__(self, fixtures: Any, team_id: Optional[int]):
        self.matches: List[Match] = ensure_matches(fixtures)
        self.team_id = team_id
        self._raw: Dict[AlgoSettings, List[BacktestPick]] = {}

    def raw_picks(self, settings: AlgoSettings) -> List[BacktestPick]:
        key = replace(settings, threshold=0.5)
        picks = self._raw.get(key)
        if picks is None:
            picks = BacktestEngine(settings).run(self.matches, self.team_id).picks
            self._raw[key] = picks
        return picks

    def evaluate(self, settings: AlgoSettings) -> SweepRow:
        return SweepRow(settings, summarize_picks(self.raw_picks(settings), settings.threshold))

    @property
    def cache_size(self) -> int:
        return len(self._raw)


def rank_key(row: SweepRow) -> Tuple[int, float, float]:
    return (-row.stats.picks, -row.stats.hit_rate, -row.stats.coverage)


def rank_rows(rows: Sequence[SweepRow], limit: int = DEFAULT_LIMIT) -> List[SweepRow]:
    lo, hi = HIT_RATE_BAND
    kept = [r for r in rows if lo <= r.stats.hit_rate <= hi]
    return sorted(kept, key=rank_key)[:max(1, int(limit))]


def iter_sweep(evaluator: SweepEvaluator, cells: Sequence[AlgoSettings],
               chunk_size: int = SWEEP_CHUNK_SIZE,
               cancel: Any = None) -> Iterator[List[SweepRow]]:
    """Yield evaluated rows chunk by chunk; stops early once cancel.is_set()."""
    chunk_size = max(1, int(chunk_size))
    chunk: List[SweepRow] = []
    for settings in cells:
        if cancel is not None and cancel.is_set():
            break
        chunk.append(evaluator.evaluate(settings))
        if len(chunk) >= chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def run_sweep(fixtures: Any, team_id: Optional[int], mode: str = "quick",
              line_sets: Optional[Sequence[Sequence[Any]]] = None,
              result_limit: int = DEFAULT_LIMIT,
              count: int = DEFAULT_QUICK,
              seed: Optional[int] = DEFAULT_SWEEP_SEED,
              progress: Optional[ProgressFn] = None,
              cancel: Any = None,
              chunk_size: int = SWEEP_CHUNK_SIZE) -> List[SweepRow]:
    """
    Evaluate the grid ("full") or a seeded sample of it ("quick") and return
    the ranked rows. `cancel` is anything with is_set() (threading.Event);
    a cancelled sweep returns the ranking of the cells finished so far.
    """
    if mode not in ("quick", "full"):
        raise ValueError(f"Unknown sweep mode: {mode!r}")

    grid = build_settings_grid(line_sets)
    cells = sample_settings(grid, count, seed) if mode == "quick" else grid
    evaluator = SweepEvaluator(fixtures, team_id)
    total = len(cells)
    log.info(f"Sweep ({mode}): {total:,} settings over {len(evaluator.matches):,} fixtures")

    rows: List[SweepRow] = []
    for chunk in iter_sweep(evaluator, cells, chunk_size, cancel):
        rows.extend(chunk)
        if progress is not None:
            progress(len(rows), total)
        log.info(f"  Progress: {len(rows):,}/{total:,}  ({len(rows) / total * 100:.0f}%)")

    if len(rows) < total:
        log.warning(f"Sweep cancelled after {len(rows):,}/{total:,} settings")

    ranked = rank_rows(rows, result_limit)
    log.info(f"Sweep complete: {len(rows):,} evaluated, {evaluator.cache_size:,} raw backtests, "
             f"{len(ranked)} ranked")
    return ranked


@dataclass(frozen=True)
class BestSettings:
    row:            SweepRow
    meets_criteria: bool


def find_best_settings(fixtures: Any, team_id: int, base_settings: Any,
                       candidates: Sequence[Any] = ()) -> Optional[BestSettings]:
    """
    Pick the settings to run a team with: base settings plus unique
    candidates, best eligible by rank key, else best overall flagged as
    not meeting the criteria.
    """
    unique: List[AlgoSettings] = []
    for raw in [base_settings, *candidates]:
        settings = normalize_settings(raw)
        if settings not in unique:
            unique.append(settings)

    evaluator = SweepEvaluator(fixtures, team_id)
    evaluated = [evaluator.evaluate(s) for s in unique]
    if not evaluated:
        return None

    eligible = [
        r for r in evaluated
        if r.stats.hit_rate >= BEST_HIT_MIN
        and r.stats.coverage >= BEST_COVERAGE_MIN
        and r.stats.picks >= BEST_PICKS_MIN
    ]
    if eligible:
        return BestSettings(min(eligible, key=rank_key), True)
    return BestSettings(min(evaluated, key=rank_key), False)


def sweep_to_frame(rows: Sequence[SweepRow]) -> pd.DataFrame:
    df = pd.DataFrame([r.to_flat_dict() for r in rows])
    if df.empty:
        return pd.DataFrame(columns=["window_size", "bucket_size", "weights", "min_matches",
                                     "min_league_matches", "threshold", "lines",
                                     "evaluated", "picks", "hits", "hit_rate", "coverage"])
    return df


def print_sweep(rows: Sequence[SweepRow]) -> None:
    print()
    print("=" * 88)
    print(f"  {'#':>3} {'WIN':>4} {'BKT':>4} {'THR':>5} {'MINM':>5} {'MINL':>5} "
          f"{'LINES':<16} {'PICKS':>6} {'HIT%':>7} {'COVER%':>7}")
    print("  " + "-" * 84)
    for idx, row in enumerate(rows, 1):
        s, st = row.settings, row.stats
        lines = ",".join(str(line) for line in s.lines)
        print(f"  {idx:>3} {s.window_size:>4} {s.bucket_size:>4} {s.threshold:>5.2f} "
              f"{s.min_matches:>5} {s.min_league_matches:>5} {lines:<16} "
              f"{st.picks:>6} {st.hit_rate * 100:>6.1f}% {st.coverage * 100:>6.1f}%")
    if not rows:
        print("  (no settings reached an 80% hit rate)")
    print()


# ═══════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def main():
    parser = argparse.ArgumentParser(description="Football algo settings sweep")
    parser.add_argument("--fixtures",   type=Path, required=True)
    parser.add_argument("--team-id",    type=int,  required=True)
    parser.add_argument("--mode",       choices=["quick", "full"], default="quick")
    parser.add_argument("--count",      type=int,  default=DEFAULT_QUICK, help="quick sample size (20-50)")
    parser.add_argument("--limit",      type=int,  default=DEFAULT_LIMIT)
    parser.add_argument("--seed",       type=int,  default=DEFAULT_SWEEP_SEED)
    parser.add_argument("--lines",      type=str,  default=None, help="allowed lines, e.g. 2.5,1X,X2")
    parser.add_argument("--save",       action="store_true", help="save the top row as team settings")
    parser.add_argument("--settings-file", type=Path, default=None)
    parser.add_argument("--output-dir", type=Path, default=DATA_DIR)
    args = parser.parse_args()

    matches = load_fixtures(args.fixtures)
    if not matches:
        log.error("No usable fixtures found")
        return

    selected = parse_line_list(args.lines)
    rows = run_sweep(
        matches, args.team_id, args.mode,
        line_sets    = line_sets_for(selected) if selected else None,
        result_limit = args.limit,
        count        = args.count,
        seed         = args.seed,
    )
    print_sweep(rows)

    df = sweep_to_frame(rows)
    validate_output(df, "sweep_results")
    args.output_dir.mkdir(parents=True, exist_ok=True)
    out_path = args.output_dir / f"sweep_{args.mode}_{args.team_id}_{datetime.now().strftime('%Y%m%d')}.csv"
    df.to_csv(out_path, index=False)
    log.info(f"Sweep results → {out_path}  ({len(df):,} rows)")

    if args.save and rows:
        save_team_settings(rows[0].settings, args.team_id, args.settings_file)


if __name__ == "__main__":
    main()
