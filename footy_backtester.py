#!/usr/bin/env python3
"""
footy_backtester.py — Historical Pick Backtester

Replays every played fixture in chronological order as if it were priced
before kickoff, records the model's best pick for each one and grades it
against the final score.

THE LOOKAHEAD PROBLEM
─────────────────────────────────────────────────────────────────────────────
Rolling windows and league tallies are only fed AFTER a fixture has been
scored. Fixtures sharing a kickoff instant are scored as one batch before
any of them is ingested, so a same-time result never leaks into a sibling
fixture's pick. The pick for fixture k depends only on fixtures dated
strictly before k.

THRESHOLDING
─────────────────────────────────────────────────────────────────────────────
The simulator records every best pick it can price, whatever its
probability. Thresholds are applied afterwards by summarize_picks(), so one
raw run answers any number of threshold questions:

  selected  = picks with probability ≥ threshold   (inclusive)
  hit_rate  = hits / selected                       (0 when nothing selected)
  coverage  = selected / all picks                  (0 when no picks)

OUTPUTS
─────────────────────────────────────────────────────────────────────────────
data/backtest_picks_<team>_YYYYMMDD.csv        — per-fixture pick vs result
data/backtest_thresholds_<team>_YYYYMMDD.csv   — hit rate / coverage by threshold
data/backtest_markets_<team>_YYYYMMDD.csv      — hit rate by pick label
data/backtest_calibration_<team>_YYYYMMDD.csv  — probability bins vs observed rate
data/team_hitrate_ranking_YYYYMMDD.csv         — league-wide team ranking (--rank)

Usage:
    python footy_backtester.py --fixtures data/fixtures.csv --team-id 33
    python footy_backtester.py --fixtures league.json --team-id 33 --lines 2.5,1X --threshold 0.6
    python footy_backtester.py --fixtures league.json --rank --min-picks 20
"""

import argparse
import logging
import math
import warnings
from dataclasses import dataclass, field, asdict
from datetime import datetime
from itertools import groupby
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from footy_config import (
    AlgoSettings, DATA_DIR, normalize_settings, load_team_settings,
    parse_number_list, parse_line_list,
)
from footy_model import (
    LeagueTally, LeagueAverages, MatchProjection,
    project_match, is_pick_hit,
)
from footy_output_schemas import validate_output
from footy_parsers import Match, ensure_matches, load_fixtures, parse_timestamp, to_epoch_ms
from footy_rolling import RollingWindow, weighted_average

log = logging.getLogger(__name__)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

DEFAULT_REPORT_THRESHOLDS = [0.55, 0.6, 0.65, 0.7, 0.75]
DEFAULT_MIN_TEAM_PICKS    = 20

FixtureInput = Union[pd.DataFrame, Iterable[Any], None]


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BacktestPick:
    """One priced historical fixture. Never mutated after creation."""
    fixture_id:   Any
    date_utc:     pd.Timestamp
    pick:         str
    probability:  float
    hit:          bool
    score:        str
    home_team_id: int
    away_team_id: int
    total_goals:  int

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class BacktestResult:
    picks:   List[BacktestPick] = field(default_factory=list)
    skipped: Dict[str, int]     = field(default_factory=dict)


@dataclass(frozen=True)
class NextMatchInfo:
    """The upcoming fixture to price; date_utc=None means 'after every known fixture'."""
    home_team_id:   int
    away_team_id:   int
    date_utc:       Any = None
    competition_id: Optional[int] = None


@dataclass(frozen=True)
class PickDecision:
    status:      str                   # "pick" | "no-bet" | "no-data"
    pick:        Optional[str]   = None
    probability: Optional[float] = None
    reason:      Optional[str]   = None

    def to_dict(self) -> Dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class BacktestStats:
    """Aggregates for one threshold over one raw run."""
    threshold: float
    evaluated: int   = 0     # all recorded picks
    picks:     int   = 0     # picks at or above threshold
    hits:      int   = 0
    hit_rate:  float = 0.0
    coverage:  float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class _TeamWindows:
    home: RollingWindow
    away: RollingWindow


class BacktestEngine:
    """
    Walks fixtures forward in time, keeping per-team home/away windows and
    per-competition league tallies. State is rebuilt on every run().
    """

    def __init__(self, settings: Union[AlgoSettings, Dict, None] = None):
        self.settings = normalize_settings(settings)
        self.reset()

    def reset(self) -> None:
        self._teams:   Dict[int, _TeamWindows] = {}
        self._leagues: Dict[Optional[int], LeagueTally] = {}
        self._pooled = LeagueTally()

    def _windows(self, team_id: int) -> _TeamWindows:
        windows = self._teams.get(team_id)
        if windows is None:
            cap = self.settings.window_size
            windows = _TeamWindows(RollingWindow(cap), RollingWindow(cap))
            self._teams[team_id] = windows
        return windows

    def ingest(self, match: Match) -> None:
        """Feed one played match into the windows and tallies."""
        self._windows(match.home_team_id).home.add(match.goals_home, match.goals_away)
        self._windows(match.away_team_id).away.add(match.goals_away, match.goals_home)
        self._leagues.setdefault(match.competition_id, LeagueTally()).add(match.goals_home, match.goals_away)
        self._pooled.add(match.goals_home, match.goals_away)

    def league_averages(self, competition_id: Optional[int], pooled: bool = False) -> LeagueAverages:
        tally = self._pooled if pooled else self._leagues.get(competition_id, LeagueTally())
        return tally.averages(self.settings.min_league_matches)

    def sample_sizes(self, home_team_id: int, away_team_id: int) -> tuple:
        s = self.settings
        home_n = weighted_average(self._windows(home_team_id).home, s.bucket_size, s.weights).n
        away_n = weighted_average(self._windows(away_team_id).away, s.bucket_size, s.weights).n
        return home_n, away_n

    def project(self, home_team_id: int, away_team_id: int,
                league: LeagueAverages) -> Optional[MatchProjection]:
        return project_match(
            self._windows(home_team_id).home,
            self._windows(away_team_id).away,
            league,
            self.settings,
        )

    def run(self, fixtures: FixtureInput, team_id: Optional[int] = None) -> BacktestResult:
        """
        Main replay loop. team_id=None prices every fixture (league mode);
        otherwise only fixtures involving team_id produce picks, but every
        fixture still feeds the windows and league tallies.
        """
        self.reset()
        matches = ensure_matches(fixtures)
        picks: List[BacktestPick] = []
        skipped = {"insufficient_history": 0, "other_team": 0}

        for _, batch in groupby(matches, key=lambda m: m.date_value):
            batch = list(batch)

            # ── Score the batch on pre-kickoff state ─────────────────────────
            for match in batch:
                if team_id is not None and not match.involves(team_id):
                    skipped["other_team"] += 1
                    continue
                league = self.league_averages(match.competition_id)
                projection = self.project(match.home_team_id, match.away_team_id, league)
                if projection is None or projection.best is None:
                    skipped["insufficient_history"] += 1
                    continue
                best = projection.best
                picks.append(BacktestPick(
                    fixture_id   = match.id,
                    date_utc     = match.date_utc,
                    pick         = best.label,
                    probability  = best.probability,
                    hit          = is_pick_hit(best, match.goals_home, match.goals_away),
                    score        = match.score,
                    home_team_id = match.home_team_id,
                    away_team_id = match.away_team_id,
                    total_goals  = match.total_goals,
                ))

            # ── Then ingest it ───────────────────────────────────────────────
            for match in batch:
                self.ingest(match)

        log.debug(f"Backtest: {len(picks)} picks from {len(matches)} fixtures | "
                  f"insufficient history: {skipped['insufficient_history']}, "
                  f"other team: {skipped['other_team']}")
        return BacktestResult(picks=picks, skipped=skipped)


def run_backtest(fixtures: FixtureInput, team_id: Optional[int],
                 settings: Union[AlgoSettings, Dict, None] = None) -> BacktestResult:
    return BacktestEngine(settings).run(fixtures, team_id)


def compute_best_pick(fixtures: FixtureInput, next_match: NextMatchInfo,
                      settings: Union[AlgoSettings, Dict, None] = None) -> PickDecision:
    """
    Price an upcoming fixture from everything played strictly before it.

    League averages come from the next match's competition when it is given,
    otherwise from every prior fixture pooled together.
    """
    if next_match is None or next_match.home_team_id is None or next_match.away_team_id is None:
        return PickDecision("no-data", reason="next match has no teams")

    engine = BacktestEngine(settings)
    cutoff: Optional[int] = None
    if next_match.date_utc is not None:
        ts = parse_timestamp(next_match.date_utc)
        if ts is None:
            return PickDecision("no-data", reason="unparseable next match date")
        cutoff = to_epoch_ms(ts)

    for match in ensure_matches(fixtures):
        if cutoff is not None and match.date_value >= cutoff:
            break
        engine.ingest(match)

    home_id, away_id = next_match.home_team_id, next_match.away_team_id
    league = engine.league_averages(next_match.competition_id,
                                    pooled=next_match.competition_id is None)
    projection = engine.project(home_id, away_id, league)
    if projection is None or projection.best is None:
        home_n, away_n = engine.sample_sizes(home_id, away_id)
        return PickDecision(
            "no-data",
            reason=f"insufficient history: home side {home_n} home matches, "
                   f"away side {away_n} away matches (need {engine.settings.min_matches})",
        )

    best = projection.best
    if best.probability < engine.settings.threshold:
        return PickDecision(
            "no-bet",
            probability=best.probability,
            reason=f"best market {best.label} at {best.probability:.3f} "
                   f"below threshold {engine.settings.threshold:.2f}",
        )
    return PickDecision("pick", pick=best.label, probability=best.probability)


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATION & REPORTS
# ═══════════════════════════════════════════════════════════════════════════════

def _ratio(num: float, den: float) -> float:
    return num / den if den else 0.0


def select_picks(picks: Sequence[BacktestPick], threshold: float) -> List[BacktestPick]:
    return [p for p in picks if p.probability >= threshold]


def summarize_picks(picks: Sequence[BacktestPick], threshold: float) -> BacktestStats:
    selected = select_picks(picks, threshold)
    hits = sum(1 for p in selected if p.hit)
    return BacktestStats(
        threshold = threshold,
        evaluated = len(picks),
        picks     = len(selected),
        hits      = hits,
        hit_rate  = _ratio(hits, len(selected)),
        coverage  = _ratio(len(selected), len(picks)),
    )


def picks_to_frame(picks: Sequence[BacktestPick]) -> pd.DataFrame:
    cols = ["fixture_id", "date_utc", "pick", "probability", "hit", "score",
            "home_team_id", "away_team_id", "total_goals"]
    return pd.DataFrame([p.to_dict() for p in picks], columns=cols)


def threshold_table(picks: Sequence[BacktestPick],
                    thresholds: Optional[Sequence[float]] = None) -> pd.DataFrame:
    """One row per threshold from a single raw run."""
    thresholds = thresholds or DEFAULT_REPORT_THRESHOLDS
    rows = [summarize_picks(picks, t).to_dict() for t in thresholds]
    return pd.DataFrame(rows, columns=["threshold", "evaluated", "picks", "hits",
                                       "hit_rate", "coverage"])


def market_breakdown(picks: Sequence[BacktestPick], threshold: float) -> pd.DataFrame:
    """Picks / hits / hit rate per pick label among selected picks."""
    df = picks_to_frame(select_picks(picks, threshold))
    cols = ["pick", "picks", "hits", "hit_rate", "avg_probability"]
    if df.empty:
        return pd.DataFrame(columns=cols)
    grouped = df.groupby("pick").agg(
        picks=("hit", "size"),
        hits=("hit", "sum"),
        avg_probability=("probability", "mean"),
    ).reset_index()
    grouped["hits"]     = grouped["hits"].astype(int)
    grouped["hit_rate"] = grouped["hits"] / grouped["picks"]
    return grouped.sort_values(["picks", "hit_rate"], ascending=False)[cols].reset_index(drop=True)


def calibration_curve(picks: Sequence[BacktestPick], n_bins: int = 5) -> pd.DataFrame:
    """
    Bin picks by model probability and compare with the observed hit rate.
    A calibrated model has prob_mean ≈ hit_rate in every bin.
    """
    df = picks_to_frame(picks)
    if df.empty:
        return pd.DataFrame()

    df["prob_bin"] = pd.cut(df["probability"], bins=n_bins, labels=False)
    rows = []
    for bin_id in range(n_bins):
        bin_df = df[df["prob_bin"] == bin_id]
        if bin_df.empty:
            continue
        hits = int(bin_df["hit"].sum())
        rows.append({
            "prob_bin_lo": round(bin_df["probability"].min(), 3),
            "prob_bin_hi": round(bin_df["probability"].max(), 3),
            "prob_mean":   round(bin_df["probability"].mean(), 3),
            "n_picks":     len(bin_df),
            "hits":        hits,
            "hit_rate":    round(hits / len(bin_df), 3),
        })
    return pd.DataFrame(rows)


def probability_hit_correlation(picks: Sequence[BacktestPick]) -> float:
    """Point-biserial correlation between hit (0/1) and probability; 0.0 when undefined."""
    if len(picks) < 3:
        return 0.0
    hits  = np.array([1 if p.hit else 0 for p in picks])
    probs = np.array([p.probability for p in picks])
    if hits.min() == hits.max() or np.ptp(probs) == 0:
        return 0.0
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        corr, _ = scipy_stats.pointbiserialr(hits, probs)
    return float(corr) if not math.isnan(corr) else 0.0


def rank_teams_by_hit_rate(fixtures: FixtureInput,
                           settings: Union[AlgoSettings, Dict, None] = None,
                           threshold: Optional[float] = None,
                           min_picks: int = DEFAULT_MIN_TEAM_PICKS) -> pd.DataFrame:
    """
    League-mode run: every selected pick counts for both teams in the fixture.
    Teams with fewer than min_picks are dropped.
    """
    settings = normalize_settings(settings)
    threshold = settings.threshold if threshold is None else threshold
    result = BacktestEngine(settings).run(fixtures, team_id=None)

    tally: Dict[int, List[int]] = {}
    for pick in select_picks(result.picks, threshold):
        for team in (pick.home_team_id, pick.away_team_id):
            entry = tally.setdefault(team, [0, 0])
            entry[0] += 1
            entry[1] += int(pick.hit)

    rows = [{"team_id": team, "picks": n, "hits": h, "hit_rate": _ratio(h, n)}
            for team, (n, h) in tally.items() if n >= min_picks]
    df = pd.DataFrame(rows, columns=["team_id", "picks", "hits", "hit_rate"])
    if df.empty:
        return df
    return df.sort_values(["hit_rate", "picks"], ascending=False).reset_index(drop=True)


def print_summary(stats: BacktestStats, thresholds_df: pd.DataFrame,
                  markets_df: pd.DataFrame, correlation: float) -> None:
    """Print backtest summary to stdout."""
    print()
    print("=" * 72)
    print(f"  BACKTEST  |  {stats.evaluated:,} priced fixtures  |  threshold {stats.threshold:.2f}")
    print(f"  picks {stats.picks:,}  hits {stats.hits:,}  "
          f"hit rate {stats.hit_rate * 100:.1f}%  coverage {stats.coverage * 100:.1f}%")
    print(f"  probability/hit correlation: {correlation:+.3f}")
    print("=" * 72)
    print(f"  {'THRESH':>6} {'PICKS':>6} {'HITS':>6} {'HIT%':>7} {'COVER%':>7}")
    print("  " + "-" * 36)
    for _, row in thresholds_df.iterrows():
        print(f"  {row['threshold']:>6.2f} {int(row['picks']):>6} {int(row['hits']):>6} "
              f"{row['hit_rate'] * 100:>6.1f}% {row['coverage'] * 100:>6.1f}%")
    if not markets_df.empty:
        print()
        print(f"  {'MARKET':<12} {'PICKS':>6} {'HITS':>6} {'HIT%':>7}")
        print("  " + "-" * 34)
        for _, row in markets_df.iterrows():
            print(f"  {str(row['pick']):<12} {int(row['picks']):>6} {int(row['hits']):>6} "
                  f"{row['hit_rate'] * 100:>6.1f}%")
    print()


# ═══════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def add_settings_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--window-size",        type=int,   default=None)
    parser.add_argument("--bucket-size",        type=int,   default=None)
    parser.add_argument("--weights",            type=str,   default=None, help="CSV, recent bucket first")
    parser.add_argument("--min-matches",        type=int,   default=None)
    parser.add_argument("--min-league-matches", type=int,   default=None)
    parser.add_argument("--threshold",          type=float, default=None)
    parser.add_argument("--lines",              type=str,   default=None, help="e.g. 1.5,2.5,1X")
    parser.add_argument("--settings-file",      type=Path,  default=None)


def settings_from_args(args: argparse.Namespace, team_id: Optional[int]) -> AlgoSettings:
    """Saved settings (team → global → defaults) overridden by explicit flags."""
    base = load_team_settings(team_id, args.settings_file)
    overrides: Dict[str, Any] = {}
    for key in ("window_size", "bucket_size", "min_matches", "min_league_matches", "threshold"):
        if getattr(args, key) is not None:
            overrides[key] = getattr(args, key)
    if args.weights:
        overrides["weights"] = parse_number_list(args.weights)
    if args.lines:
        overrides["lines"] = parse_line_list(args.lines)
    return normalize_settings(base, **overrides)


def run(fixtures_path: Path, team_id: Optional[int], settings: AlgoSettings,
        thresholds: Optional[Sequence[float]] = None, rank: bool = False,
        min_picks: int = DEFAULT_MIN_TEAM_PICKS, output_dir: Path = DATA_DIR) -> Dict[str, Path]:
    """Full backtest pipeline. Returns paths to output files."""
    output_dir.mkdir(parents=True, exist_ok=True)
    today = datetime.now().strftime("%Y%m%d")
    matches = load_fixtures(fixtures_path)
    if not matches:
        log.error("No usable fixtures found")
        return {}

    outputs: Dict[str, Path] = {}

    if team_id is not None:
        result = run_backtest(matches, team_id, settings)
        log.info(f"Backtest complete: {len(result.picks):,} priced | "
                 f"skipped: insufficient history {result.skipped['insufficient_history']}, "
                 f"other team {result.skipped['other_team']}")

        stats       = summarize_picks(result.picks, settings.threshold)
        picks_df    = picks_to_frame(result.picks)
        thresh_df   = threshold_table(result.picks, thresholds)
        markets_df  = market_breakdown(result.picks, settings.threshold)
        calib_df    = calibration_curve(result.picks)
        print_summary(stats, thresh_df, markets_df, probability_hit_correlation(result.picks))

        for key, schema, df in (
            ("picks",      "backtest_picks",   picks_df),
            ("thresholds", "threshold_report", thresh_df),
            ("markets",    "market_report",    markets_df),
        ):
            validate_output(df, schema)
            path = output_dir / f"backtest_{key}_{team_id}_{today}.csv"
            df.to_csv(path, index=False)
            outputs[key] = path
            log.info(f"{key.capitalize():<10} → {path}  ({len(df):,} rows)")

        if not calib_df.empty:
            calib_path = output_dir / f"backtest_calibration_{team_id}_{today}.csv"
            calib_df.to_csv(calib_path, index=False)
            outputs["calibration"] = calib_path
            log.info(f"Calibration → {calib_path}")

    if rank:
        ranking = rank_teams_by_hit_rate(matches, settings, min_picks=min_picks)
        validate_output(ranking, "team_ranking")
        rank_path = output_dir / f"team_hitrate_ranking_{today}.csv"
        ranking.to_csv(rank_path, index=False)
        outputs["ranking"] = rank_path
        log.info(f"Ranking → {rank_path}  ({len(ranking):,} teams with ≥{min_picks} picks)")

    return outputs


def main():
    parser = argparse.ArgumentParser(description="Football over/under & double-chance backtester")
    parser.add_argument("--fixtures",   type=Path, required=True, help=".csv or .json fixtures")
    parser.add_argument("--team-id",    type=int,  default=None)
    parser.add_argument("--thresholds", type=str,  default=None, help="CSV of report thresholds")
    parser.add_argument("--rank",       action="store_true", help="Also rank every team by hit rate")
    parser.add_argument("--min-picks",  type=int,  default=DEFAULT_MIN_TEAM_PICKS)
    parser.add_argument("--output-dir", type=Path, default=DATA_DIR)
    add_settings_arguments(parser)
    args = parser.parse_args()

    if args.team_id is None and not args.rank:
        parser.error("--team-id is required unless --rank is given")

    settings = settings_from_args(args, args.team_id)
    run(
        fixtures_path = args.fixtures,
        team_id       = args.team_id,
        settings      = settings,
        thresholds    = parse_number_list(args.thresholds) or None,
        rank          = args.rank,
        min_picks     = args.min_picks,
        output_dir    = args.output_dir,
    )


if __name__ == "__main__":
    main()
