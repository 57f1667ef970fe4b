"""
Footy Algo — Parsers
Turn raw fixture records (API rows, CSV rows, cached JSON) into canonical
Match objects. Unplayed or malformed fixtures are rejected, never raised.
One normalization boundary; nothing downstream handles optional fields.
"""

import json
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

log = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _safe_int(val: Any, default: Optional[int] = None) -> Optional[int]:
    """Integral, finite values only: 3, 3.0 and '3' parse; 2.5, NaN and '' do not."""
    if isinstance(val, bool):
        return default
    try:
        num = float(val)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(num) or num != int(num):
        return default
    return int(num)


def _pick(raw: Dict[str, Any], *paths: str) -> Any:
    """First non-null value among dotted paths ('goals.home', 'goals_home', ...)."""
    for path in paths:
        node: Any = raw
        for key in path.split("."):
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)
        if node is None:
            continue
        if isinstance(node, float) and math.isnan(node):
            continue
        return node
    return None


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """ISO strings, datetimes, pandas Timestamps or epoch milliseconds → UTC Timestamp."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    try:
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                return None
            ts = pd.to_datetime(value, unit="ms", utc=True)
        else:
            ts = pd.to_datetime(value, utc=True)
    except (TypeError, ValueError, OverflowError, AttributeError):
        return None
    # list-likes parse to a DatetimeIndex, not a single instant
    if not isinstance(ts, pd.Timestamp) or pd.isna(ts):
        return None
    return ts


def to_epoch_ms(ts: pd.Timestamp) -> int:
    return int(ts.value // 1_000_000)


# ═══════════════════════════════════════════════════════════════════════════════
# CANONICAL TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Match:
    """A played fixture. Both goal counts are always present."""
    id:             Any
    date_utc:       pd.Timestamp
    date_value:     int                 # epoch ms, ordering key
    season:         int
    competition_id: Optional[int]
    home_team_id:   int
    away_team_id:   int
    goals_home:     int
    goals_away:     int
    home_name:      Optional[str] = field(default=None, compare=False)
    away_name:      Optional[str] = field(default=None, compare=False)

    @property
    def total_goals(self) -> int:
        return self.goals_home + self.goals_away

    @property
    def score(self) -> str:
        return f"{self.goals_home}-{self.goals_away}"

    def involves(self, team_id: int) -> bool:
        return team_id in (self.home_team_id, self.away_team_id)


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class TeamMatchView:
    """A Match seen from one side. Home and away views are swapped mirrors."""
    match_id:       Any
    date_value:     int
    date_utc:       pd.Timestamp
    season:         int
    competition_id: Optional[int]
    team_id:        int
    opponent_id:    int
    is_home:        bool
    goals_for:      int
    goals_against:  int

    @property
    def total_goals(self) -> int:
        return self.goals_for + self.goals_against


@dataclass
class NormalizeReport:
    matches:  List[Match]
    fetched:  int
    rejected: Counter = field(default_factory=Counter)

    @property
    def usable(self) -> int:
        return len(self.matches)


# ── Fixture parser ────────────────────────────────────────────────────────────

ParseResult = Union[Match, Rejected]


def parse_fixture(raw: Any) -> ParseResult:
    """
    Parse one raw fixture into a Match.

    Accepts the flat storage shape (date_utc, home_team_id, goals_home, ...),
    camelCase keys, and the provider's nested shape
    (fixture.date, teams.home.id, goals.home, league.id, league.season).
    """
    if isinstance(raw, Match):
        return raw
    if not isinstance(raw, dict):
        return Rejected("not a mapping")

    ts = parse_timestamp(_pick(raw, "date_utc", "dateUtc", "date", "fixture.date", "kickoff"))
    if ts is None:
        return Rejected("unparseable date")

    goals_home = _safe_int(_pick(raw, "goals_home", "goalsHome", "goals.home", "home_goals"))
    goals_away = _safe_int(_pick(raw, "goals_away", "goalsAway", "goals.away", "away_goals"))
    if goals_home is None or goals_away is None:
        return Rejected("missing score")
    if goals_home < 0 or goals_away < 0:
        return Rejected("negative score")

    home_id = _safe_int(_pick(raw, "home_team_id", "homeTeamId", "teams.home.id", "teams.id"))
    away_id = _safe_int(_pick(raw, "away_team_id", "awayTeamId", "teams.away.id", "opp.id"))
    if home_id is None or away_id is None:
        return Rejected("missing team id")

    season = _safe_int(_pick(raw, "season", "league.season"), default=ts.year)
    competition_id = _safe_int(_pick(raw, "competition_id", "competitionId", "league_id", "league.id"))

    home_name = _pick(raw, "home_team_name", "homeName", "teams.home.name", "teams.name")
    away_name = _pick(raw, "away_team_name", "awayName", "teams.away.name", "opp.name")

    return Match(
        id             = _pick(raw, "id", "fixture_id", "fixtureId", "fixture.id"),
        date_utc       = ts,
        date_value     = to_epoch_ms(ts),
        season         = season,
        competition_id = competition_id,
        home_team_id   = home_id,
        away_team_id   = away_id,
        goals_home     = goals_home,
        goals_away     = goals_away,
        home_name      = str(home_name) if home_name is not None else None,
        away_name      = str(away_name) if away_name is not None else None,
    )


def normalize_fixtures(records: Iterable[Any]) -> NormalizeReport:
    """Parse every record, drop rejections, sort ascending by kickoff."""
    matches: List[Match] = []
    rejected: Counter = Counter()
    fetched = 0
    for raw in records:
        fetched += 1
        result = parse_fixture(raw)
        if isinstance(result, Rejected):
            rejected[result.reason] += 1
        else:
            matches.append(result)

    matches.sort(key=lambda m: m.date_value)
    report = NormalizeReport(matches=matches, fetched=fetched, rejected=rejected)
    if rejected:
        log.debug(f"Fixtures: {report.usable}/{fetched} usable, rejected {dict(rejected)}")
    return report


def ensure_matches(fixtures: Union[pd.DataFrame, Iterable[Any], None]) -> List[Match]:
    """Accept Matches, raw dicts or a DataFrame; return sorted Matches."""
    if fixtures is None:
        return []
    if isinstance(fixtures, pd.DataFrame):
        fixtures = fixtures.to_dict("records")
    return normalize_fixtures(fixtures).matches


# ── Team perspective ──────────────────────────────────────────────────────────

def team_views(match: Match) -> Tuple[TeamMatchView, TeamMatchView]:
    """(home view, away view) of one match."""
    common = dict(
        match_id       = match.id,
        date_value     = match.date_value,
        date_utc       = match.date_utc,
        season         = match.season,
        competition_id = match.competition_id,
    )
    home = TeamMatchView(team_id=match.home_team_id, opponent_id=match.away_team_id,
                         is_home=True, goals_for=match.goals_home,
                         goals_against=match.goals_away, **common)
    away = TeamMatchView(team_id=match.away_team_id, opponent_id=match.home_team_id,
                         is_home=False, goals_for=match.goals_away,
                         goals_against=match.goals_home, **common)
    return home, away


def team_history(matches: Iterable[Match], team_id: int,
                 before_ms: Optional[int] = None) -> List[TeamMatchView]:
    """A team's views in ascending date order, optionally strictly before an instant."""
    views = []
    for match in matches:
        if before_ms is not None and match.date_value >= before_ms:
            continue
        if match.home_team_id == team_id:
            views.append(team_views(match)[0])
        elif match.away_team_id == team_id:
            views.append(team_views(match)[1])
    views.sort(key=lambda v: v.date_value)
    return views


def histories_by_team(matches: Iterable[Match]) -> Dict[int, List[TeamMatchView]]:
    """Every team's ascending history in one pass."""
    out: Dict[int, List[TeamMatchView]] = {}
    for match in matches:
        home, away = team_views(match)
        out.setdefault(home.team_id, []).append(home)
        out.setdefault(away.team_id, []).append(away)
    for views in out.values():
        views.sort(key=lambda v: v.date_value)
    return out


# ── File loading ──────────────────────────────────────────────────────────────

def load_fixtures(path: Union[str, Path]) -> List[Match]:
    """
    Load fixtures from a .csv or .json file and normalize them.
    JSON may be a list of records or {"fixtures": [...]}.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Fixtures file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        records: List[Dict[str, Any]] = pd.read_csv(path).to_dict("records")
    elif suffix == ".json":
        payload = json.loads(path.read_text())
        if isinstance(payload, dict):
            payload = payload.get("fixtures", payload.get("data", []))
        records = list(payload) if isinstance(payload, list) else []
    else:
        raise ValueError(f"Unsupported fixtures format: {path.suffix}")

    report = normalize_fixtures(records)
    log.info(f"Loaded {report.usable}/{report.fetched} usable fixtures from {path}")
    return report.matches
