"""
Footy Algo — Rating & Outcome Model
footy_model.py

Turns rolling goal averages into a priced set of market candidates for one
matchup, and grades picks against final scores.

MODEL
─────────────────────────────────────────────────────────────────────────────
1. League averages     simple means over prior played matches in the
                       competition; BASELINE_HOME/AWAY until the league has
                       min_league_matches fixtures.
2. Shrinkage           adj = (raw·n + league·prior) / (n + prior),
                       prior = window_size.
3. Ratings             attack = adjGF / league side avg
                       defense = adjGA / league opposing side avg
4. Expected goals      xG_home = att_home · def_away · league_home
                       xG_away = att_away · def_home · league_away
                       each clamped to [XG_MIN, XG_MAX]; λ = xG_home + xG_away
5. Markets             Over/Under N.5  → Poisson on λ
                       1X / X2 / 12    → 0.6 · Poisson outcomes
                                         + 0.4 · empirical outcomes

A team sample below min_matches is a hard abstain: rate_matchup() returns
None and callers report "no-data". Nothing in here raises on degenerate
numbers.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from footy_config import (
    AlgoSettings, MarketLine,
    BASELINE_HOME, BASELINE_AWAY, XG_MIN, XG_MAX,
    POISSON_BLEND, EMPIRICAL_BLEND, MAX_GOALS, DOUBLE_CHANCE_LINES,
)
from footy_rolling import RollingWindow, WindowAverage, weighted_average, weighted_outcome_rates

log = logging.getLogger(__name__)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


# ═══════════════════════════════════════════════════════════════════════════════
# LEAGUE AVERAGES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LeagueAverages:
    home:          float
    away:          float
    matches:       int
    from_baseline: bool


BASELINE_AVERAGES = LeagueAverages(BASELINE_HOME, BASELINE_AWAY, 0, True)


@dataclass
class LeagueTally:
    """Running goal totals for one competition; fed after each match is scored."""
    home_goals: int = 0
    away_goals: int = 0
    matches:    int = 0

    def add(self, goals_home: int, goals_away: int) -> None:
        self.home_goals += goals_home
        self.away_goals += goals_away
        self.matches    += 1

    def averages(self, min_league_matches: int) -> LeagueAverages:
        if self.matches < min_league_matches:
            return LeagueAverages(BASELINE_HOME, BASELINE_AWAY, self.matches, True)
        home = self.home_goals / self.matches
        away = self.away_goals / self.matches
        # A goalless league would zero the rating denominators
        if home <= 0 or away <= 0:
            return LeagueAverages(BASELINE_HOME, BASELINE_AWAY, self.matches, True)
        return LeagueAverages(home, away, self.matches, False)


def shrink(avg: float, n: int, prior_avg: float, prior_n: float) -> float:
    if n <= 0:
        return prior_avg
    return (avg * n + prior_avg * prior_n) / (n + prior_n)


# ═══════════════════════════════════════════════════════════════════════════════
# RATINGS → EXPECTED GOALS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MatchupRatings:
    attack_home:  float
    defense_home: float
    attack_away:  float
    defense_away: float
    xg_home:      float
    xg_away:      float

    @property
    def total_xg(self) -> float:
        return self.xg_home + self.xg_away


def rate_matchup(home_avg: WindowAverage, away_avg: WindowAverage,
                 league: LeagueAverages, settings: AlgoSettings) -> Optional[MatchupRatings]:
    """
    Ratings for home side (its home window) vs away side (its away window).
    Returns None when either sample is below settings.min_matches.
    """
    if home_avg.n < settings.min_matches or away_avg.n < settings.min_matches:
        return None

    prior = settings.window_size
    adj_home_gf = shrink(home_avg.gf, home_avg.n, league.home, prior)
    adj_home_ga = shrink(home_avg.ga, home_avg.n, league.away, prior)
    adj_away_gf = shrink(away_avg.gf, away_avg.n, league.away, prior)
    adj_away_ga = shrink(away_avg.ga, away_avg.n, league.home, prior)

    attack_home  = adj_home_gf / league.home
    defense_home = adj_home_ga / league.away
    attack_away  = adj_away_gf / league.away
    defense_away = adj_away_ga / league.home

    xg_home = _clamp(attack_home * defense_away * league.home, XG_MIN, XG_MAX)
    xg_away = _clamp(attack_away * defense_home * league.away, XG_MIN, XG_MAX)

    return MatchupRatings(attack_home, defense_home, attack_away, defense_away, xg_home, xg_away)


# ═══════════════════════════════════════════════════════════════════════════════
# OUTCOME DISTRIBUTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def poisson_cdf(lam: float, k: float) -> float:
    """P(X ≤ k) for X ~ Poisson(lam), summed iteratively (no factorials)."""
    if k != k or k < 0:
        return 0.0
    if not math.isfinite(lam) or lam <= 0 or math.isinf(k):
        return 1.0
    k = int(math.floor(k))
    p = math.exp(-lam)
    total = p
    for i in range(1, k + 1):
        p = p * lam / i
        total += p
        if p == 0.0 and i > lam:
            break
    return min(1.0, total)


def poisson_series(lam: float, max_goals: int = MAX_GOALS) -> np.ndarray:
    """P(X = 0..max_goals); a degenerate λ puts all mass on 0."""
    if not math.isfinite(lam) or lam <= 0:
        return np.array([1.0])
    probs = np.empty(max_goals + 1)
    probs[0] = math.exp(-lam)
    for k in range(1, max_goals + 1):
        probs[k] = probs[k - 1] * lam / k
    return probs


@dataclass(frozen=True)
class Outcomes:
    home_win: float
    draw:     float
    away_win: float

    def normalized(self) -> "Outcomes":
        total = self.home_win + self.draw + self.away_win
        if total <= 0:
            return Outcomes(0.0, 0.0, 0.0)
        return Outcomes(self.home_win / total, self.draw / total, self.away_win / total)


def poisson_outcomes(xg_home: float, xg_away: float, max_goals: int = MAX_GOALS) -> Outcomes:
    """1X2 from independent home/away Poisson scorelines, capped at max_goals each."""
    grid = np.outer(poisson_series(xg_home, max_goals), poisson_series(xg_away, max_goals))
    return Outcomes(
        home_win = float(np.tril(grid, -1).sum()),
        draw     = float(np.trace(grid)),
        away_win = float(np.triu(grid, 1).sum()),
    ).normalized()


def empirical_outcomes(home_window: RollingWindow, away_window: RollingWindow,
                       bucket_size: int, weights: Sequence[float]) -> Optional[Outcomes]:
    """
    1X2 from the two windows' own result frequencies:
      home = (home side win rate + away side loss rate) / 2, and so on.
    None when either window is empty.
    """
    home_rates = weighted_outcome_rates(home_window, bucket_size, weights)
    away_rates = weighted_outcome_rates(away_window, bucket_size, weights)
    if not home_rates.n or not away_rates.n:
        return None
    return Outcomes(
        home_win = (home_rates.win + away_rates.loss) / 2,
        draw     = (home_rates.draw + away_rates.draw) / 2,
        away_win = (home_rates.loss + away_rates.win) / 2,
    ).normalized()


def blend_outcomes(poisson: Optional[Outcomes], empirical: Optional[Outcomes]) -> Optional[Outcomes]:
    if poisson is None or empirical is None:
        return poisson or empirical
    return Outcomes(
        home_win = POISSON_BLEND * poisson.home_win + EMPIRICAL_BLEND * empirical.home_win,
        draw     = POISSON_BLEND * poisson.draw     + EMPIRICAL_BLEND * empirical.draw,
        away_win = POISSON_BLEND * poisson.away_win + EMPIRICAL_BLEND * empirical.away_win,
    ).normalized()


def double_chance_probability(outcomes: Outcomes, code: str) -> float:
    if code == "1X":
        return outcomes.home_win + outcomes.draw
    if code == "X2":
        return outcomes.away_win + outcomes.draw
    if code == "12":
        return outcomes.home_win + outcomes.away_win
    return 0.0


# ═══════════════════════════════════════════════════════════════════════════════
# MARKET CANDIDATES & PICK SELECTION
# ═══════════════════════════════════════════════════════════════════════════════

def format_line(line: float) -> str:
    return f"{line:g}"


@dataclass(frozen=True)
class PickCandidate:
    market:      str            # "over" | "under" | "dc"
    line:        MarketLine
    probability: float

    @property
    def label(self) -> str:
        if self.market == "dc":
            return str(self.line)
        side = "Over" if self.market == "over" else "Under"
        return f"{side} {format_line(self.line)}"


def market_candidates(total_xg: float, outcomes: Optional[Outcomes],
                      lines: Sequence[MarketLine]) -> List[PickCandidate]:
    """One Over and one Under per numeric line, one candidate per double-chance code."""
    candidates: List[PickCandidate] = []
    for line in lines:
        if isinstance(line, str):
            if line in DOUBLE_CHANCE_LINES and outcomes is not None:
                candidates.append(PickCandidate("dc", line, double_chance_probability(outcomes, line)))
            continue
        p_under = poisson_cdf(total_xg, math.floor(line))
        candidates.append(PickCandidate("over", line, 1.0 - p_under))
        candidates.append(PickCandidate("under", line, p_under))
    return candidates


def select_best_pick(candidates: Sequence[PickCandidate]) -> Optional[PickCandidate]:
    """Highest probability; on a tie the first candidate in line order stays."""
    best: Optional[PickCandidate] = None
    for cand in candidates:
        if best is None or cand.probability > best.probability:
            best = cand
    return best


# ── Settlement ────────────────────────────────────────────────────────────────

def is_pick_hit(pick: PickCandidate, goals_home: int, goals_away: int) -> bool:
    total = goals_home + goals_away
    if pick.market == "over":
        return total > pick.line
    if pick.market == "under":
        return total <= pick.line
    if goals_home == goals_away:
        return pick.line != "12"
    if goals_home > goals_away:
        return pick.line != "X2"
    return pick.line != "1X"


def parse_pick_label(label: str) -> Optional[PickCandidate]:
    """'Over 2.5' / 'under 3.5' / '1X' → candidate with probability 0."""
    text = " ".join(str(label or "").split())
    upper = text.upper()
    if upper in DOUBLE_CHANCE_LINES:
        return PickCandidate("dc", upper, 0.0)
    parts = text.split(" ")
    if len(parts) != 2 or parts[0].lower() not in ("over", "under"):
        return None
    try:
        line = float(parts[1])
    except ValueError:
        return None
    if not math.isfinite(line):
        return None
    return PickCandidate(parts[0].lower(), line, 0.0)


def settle_pick(label: str, goals_home: int, goals_away: int) -> Optional[bool]:
    """Grade a stored pick label against a final score; None for unknown labels."""
    pick = parse_pick_label(label)
    if pick is None:
        return None
    return is_pick_hit(pick, goals_home, goals_away)


# ═══════════════════════════════════════════════════════════════════════════════
# MATCH PROJECTION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MatchProjection:
    ratings:    MatchupRatings
    outcomes:   Outcomes
    candidates: tuple
    best:       Optional[PickCandidate]


def project_match(home_window: RollingWindow, away_window: RollingWindow,
                  league: LeagueAverages, settings: AlgoSettings) -> Optional[MatchProjection]:
    """Full pricing of one matchup, or None when either side lacks min_matches."""
    home_avg = weighted_average(home_window, settings.bucket_size, settings.weights)
    away_avg = weighted_average(away_window, settings.bucket_size, settings.weights)
    ratings = rate_matchup(home_avg, away_avg, league, settings)
    if ratings is None:
        return None

    outcomes = poisson_outcomes(ratings.xg_home, ratings.xg_away)
    if any(isinstance(line, str) for line in settings.lines):
        empirical = empirical_outcomes(home_window, away_window, settings.bucket_size, settings.weights)
        outcomes = blend_outcomes(outcomes, empirical)

    candidates = tuple(market_candidates(ratings.total_xg, outcomes, settings.lines))
    return MatchProjection(ratings, outcomes, candidates, select_best_pick(candidates))
