"""
Footy Algo — Confidence Badges
Seven historical-pattern indicators for a team's upcoming match, scored
from each side's history strictly before (match date − 1 day).

BADGES
─────────────────────────────────────────────────────────────────────────────
B1  team's last match: team goals > 2.5
B2  team goals trigger: last match > 1.5 and, historically, ≥ 70% of
    matches above 1.5 were followed by one below 1.5
B3  same as B2 on match total goals with 3.5
B4  team's last match total > 3.5
B5  opponent's last match total > 3.5
B6  team and opponent % of matches with total ≤ 3.5 both in [70, 99]
B7  host side's home % ≤ 3.5 and visiting side's away % ≤ 3.5 both in [70, 99]

GATES
─────────────────────────────────────────────────────────────────────────────
• Each side needs ≥ 20 matches before the cutoff, else "not-evaluable".
• At least one side's overall % ≤ 3.5 must fall in [68, 99]; otherwise the
  evaluation is returned with status "filtered" and zero badges.

Percentages are whole numbers, rounded half-up, before any band check.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from footy_config import (
    TOTAL_BADGES, BADGE_MIN_HISTORY, SCORED_THRESHOLD, TOTAL_THRESHOLD,
    LAST_SCORED_THRESHOLD, NEXT_BELOW_MIN_PCT, UNDER_BAND, UNDER_PREFILTER_BAND,
)
from footy_parsers import TeamMatchView, ensure_matches, histories_by_team, parse_timestamp, to_epoch_ms

log = logging.getLogger(__name__)

DAY_MS        = 24 * 60 * 60 * 1000
NOT_EVALUABLE = "not-evaluable"


@dataclass(frozen=True)
class BadgeEvaluation:
    badges:      Tuple[bool, ...]
    badge_count: int
    status:      str = "evaluated"     # "evaluated" | "filtered"

    def to_dict(self) -> Dict:
        return {"badgeCount": self.badge_count, "badges": list(self.badges), "status": self.status}


@dataclass(frozen=True)
class NextBelow:
    last_above: bool
    triggers:   int
    percent:    int


# ── Helpers ───────────────────────────────────────────────────────────────────

def _round_pct(part: int, whole: int) -> int:
    """Half-up integer percentage without float drift."""
    return (200 * part + whole) // (2 * whole)


def percent_under(values: Sequence[float], threshold: float = TOTAL_THRESHOLD) -> Optional[int]:
    if not len(values):
        return None
    under = sum(1 for v in values if v <= threshold)
    return _round_pct(under, len(values))


def in_band(value: Optional[int], band: Tuple[int, int]) -> bool:
    return value is not None and band[0] <= value <= band[1]


def next_match_below(values: Sequence[float], threshold: float) -> NextBelow:
    """
    Count 'triggers' (value > threshold) that have a following match and how
    many of those were followed by a value < threshold.
    values are oldest first.
    """
    if not len(values):
        return NextBelow(False, 0, 0)
    triggers = below_next = 0
    for current, following in zip(values[:-1], values[1:]):
        if current > threshold:
            triggers += 1
            if following < threshold:
                below_next += 1
    percent = _round_pct(below_next, triggers) if triggers else 0
    return NextBelow(values[-1] > threshold, triggers, percent)


def _fires(trigger: NextBelow) -> bool:
    return trigger.last_above and trigger.triggers > 0 and trigger.percent >= NEXT_BELOW_MIN_PCT


def _sorted_history(history: Iterable[TeamMatchView]) -> Tuple[List[TeamMatchView], np.ndarray]:
    views = sorted(history, key=lambda v: v.date_value)
    return views, np.array([v.date_value for v in views], dtype=np.int64)


def _slice(views: List[TeamMatchView], dates: np.ndarray, cutoff_ms: int,
           limit: Optional[int]) -> List[TeamMatchView]:
    end = int(np.searchsorted(dates, cutoff_ms, side="left"))
    start = max(0, end - max(1, int(limit))) if limit is not None else 0
    return views[start:end]


# ═══════════════════════════════════════════════════════════════════════════════
# EVALUATION
# ═══════════════════════════════════════════════════════════════════════════════

def _score(team_hist: List[TeamMatchView], opp_hist: List[TeamMatchView],
           team_is_home: bool) -> BadgeEvaluation:
    team_scored = [v.goals_for for v in team_hist]
    team_totals = [v.total_goals for v in team_hist]
    opp_totals  = [v.total_goals for v in opp_hist]

    team_under = percent_under(team_totals)
    opp_under  = percent_under(opp_totals)
    if not (in_band(team_under, UNDER_PREFILTER_BAND) or in_band(opp_under, UNDER_PREFILTER_BAND)):
        return BadgeEvaluation((False,) * TOTAL_BADGES, 0, "filtered")

    host, visitor = (team_hist, opp_hist) if team_is_home else (opp_hist, team_hist)
    host_home_pct    = percent_under([v.total_goals for v in host if v.is_home])
    visitor_away_pct = percent_under([v.total_goals for v in visitor if not v.is_home])

    badges = (
        team_scored[-1] > LAST_SCORED_THRESHOLD,
        _fires(next_match_below(team_scored, SCORED_THRESHOLD)),
        _fires(next_match_below(team_totals, TOTAL_THRESHOLD)),
        team_totals[-1] > TOTAL_THRESHOLD,
        opp_totals[-1] > TOTAL_THRESHOLD,
        in_band(team_under, UNDER_BAND) and in_band(opp_under, UNDER_BAND),
        in_band(host_home_pct, UNDER_BAND) and in_band(visitor_away_pct, UNDER_BAND),
    )
    return BadgeEvaluation(badges, sum(badges))


def evaluate_badges(team_history: Iterable[TeamMatchView],
                    opponent_history: Iterable[TeamMatchView],
                    as_of: Any,
                    team_is_home: bool = True,
                    limit: Optional[int] = None) -> Union[BadgeEvaluation, str]:
    """
    Badges for the team's match against the opponent on `as_of`.

    Histories are each side's own TeamMatchViews in any order. Only matches
    dated before (as_of − 1 day) count; `limit` keeps the last N of those.
    Returns NOT_EVALUABLE when either side has fewer than 20 such matches.
    """
    ts = parse_timestamp(as_of)
    if ts is None:
        return NOT_EVALUABLE
    team_views, team_dates = _sorted_history(team_history)
    opp_views, opp_dates   = _sorted_history(opponent_history)
    return _evaluate_sorted(team_views, team_dates, opp_views, opp_dates,
                            to_epoch_ms(ts) - DAY_MS, team_is_home, limit)


def _evaluate_sorted(team_views, team_dates, opp_views, opp_dates,
                     cutoff_ms: int, team_is_home: bool,
                     limit: Optional[int]) -> Union[BadgeEvaluation, str]:
    if int(np.searchsorted(team_dates, cutoff_ms)) < BADGE_MIN_HISTORY:
        return NOT_EVALUABLE
    if int(np.searchsorted(opp_dates, cutoff_ms)) < BADGE_MIN_HISTORY:
        return NOT_EVALUABLE
    team_hist = _slice(team_views, team_dates, cutoff_ms, limit)
    opp_hist  = _slice(opp_views, opp_dates, cutoff_ms, limit)
    return _score(team_hist, opp_hist, team_is_home)


# ═══════════════════════════════════════════════════════════════════════════════
# HISTORY REPORT
# ═══════════════════════════════════════════════════════════════════════════════

def badge_history(fixtures: Any, team_id: Optional[int] = None,
                  season: Optional[int] = None,
                  limit: Optional[int] = None) -> pd.DataFrame:
    """
    Replay every played match of the team (or of every team when team_id is
    None) and record its badge count next to whether it finished ≤ 3.5.
    Only evaluations with at least one badge are kept.
    """
    by_team = histories_by_team(ensure_matches(fixtures))
    sorted_by_team = {tid: _sorted_history(views) for tid, views in by_team.items()}
    scope = [team_id] if team_id is not None else sorted(by_team)

    rows = []
    for tid in scope:
        if tid not in sorted_by_team:
            continue
        team_views, team_dates = sorted_by_team[tid]
        for view in team_views:
            if season is not None and view.season != season:
                continue
            if view.opponent_id not in sorted_by_team:
                continue
            opp_views, opp_dates = sorted_by_team[view.opponent_id]
            result = _evaluate_sorted(team_views, team_dates, opp_views, opp_dates,
                                      view.date_value - DAY_MS, view.is_home, limit)
            if isinstance(result, str) or result.badge_count < 1:
                continue
            rows.append({
                "team_id":     tid,
                "fixture_id":  view.match_id,
                "date_utc":    view.date_utc,
                "opponent_id": view.opponent_id,
                "is_home":     view.is_home,
                "badge_count": result.badge_count,
                "total_goals": view.total_goals,
                "under":       view.total_goals <= TOTAL_THRESHOLD,
            })

    cols = ["team_id", "fixture_id", "date_utc", "opponent_id", "is_home",
            "badge_count", "total_goals", "under"]
    df = pd.DataFrame(rows, columns=cols)
    log.info(f"Badge history: {len(df):,} evaluations with ≥1 badge across {len(scope)} team(s)")
    return df


def badge_report(history: pd.DataFrame) -> pd.DataFrame:
    """Bucket a badge_history() frame by badge count 1..7."""
    rows = []
    for count in range(1, TOTAL_BADGES + 1):
        bucket = history[history["badge_count"] == count]
        total = len(bucket)
        successes = int(bucket["under"].sum()) if total else 0
        rows.append({
            "badge_count":  count,
            "total":        total,
            "successes":    successes,
            "success_rate": successes / total if total else 0.0,
        })
    return pd.DataFrame(rows)
