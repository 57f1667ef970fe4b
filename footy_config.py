"""
Footy Algo — Configuration
Constants, environment overrides and the AlgoSettings value object shared
across footy_* modules.

AlgoSettings is the only knob set the engine reads. It is immutable and
hashable so a (fixtures, settings) pair can be memoized by callers, and it
is always produced by normalize_settings(), which clamps bad input instead
of raising. Nothing deeper in the engine re-validates it.
"""

import json
import logging
import math
import os
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

log = logging.getLogger(__name__)

# ── Paths / environment ──────────────────────────────────────────────────────
DATA_DIR      = Path(os.getenv("FOOTY_DATA_DIR", "data"))
SETTINGS_PATH = Path(os.getenv("FOOTY_SETTINGS_PATH", str(DATA_DIR / "algo_settings.json")))


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Integer env var; unset or malformed values give the default."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"Ignoring non-integer {name}={raw!r}")
        return default


DEFAULT_SWEEP_SEED: Optional[int] = _env_int("FOOTY_SWEEP_SEED")
SWEEP_CHUNK_SIZE: int             = _env_int("FOOTY_SWEEP_CHUNK", 250)

# ── League baselines (goals per match) ───────────────────────────────────────
# Used until a competition has minLeagueMatches played fixtures.
BASELINE_HOME = 1.35
BASELINE_AWAY = 1.15

# ── Model constants ──────────────────────────────────────────────────────────
XG_MIN          = 0.1
XG_MAX          = 6.0
POISSON_BLEND   = 0.6
EMPIRICAL_BLEND = 0.4
MAX_GOALS       = 10      # per-side cap for the scoreline matrix

DOUBLE_CHANCE_LINES: Tuple[str, ...] = ("1X", "X2", "12")
DEFAULT_LINES: Tuple[float, ...]     = (1.5, 2.5, 3.5)

MarketLine = Union[float, str]

# ── Clamp ranges ─────────────────────────────────────────────────────────────
WINDOW_RANGE       = (1, 60)
MIN_LEAGUE_RANGE   = (1, 200)
THRESHOLD_RANGE    = (0.5, 0.95)

# ── Weight profiles (linear decay from 1.0 down to the floor) ─────────────────
DEFAULT_WEIGHT_FLOOR = 0.5
WEIGHT_PROFILE_FLOORS = {
    "soft":   0.7,
    "medium": 0.5,
    "hard":   0.3,
}

# ── Confidence badges ────────────────────────────────────────────────────────
TOTAL_BADGES          = 7
BADGE_MIN_HISTORY     = 20
SCORED_THRESHOLD      = 1.5
TOTAL_THRESHOLD       = 3.5
LAST_SCORED_THRESHOLD = 2.5
NEXT_BELOW_MIN_PCT    = 70
UNDER_BAND            = (70, 99)
UNDER_PREFILTER_BAND  = (68, 99)


def generate_weights(buckets: int, floor: float = DEFAULT_WEIGHT_FLOOR) -> List[float]:
    """Linearly decaying weights, most recent bucket first, rounded to 2dp."""
    if buckets <= 1:
        return [1.0]
    step = (1.0 - floor) / (buckets - 1)
    return [round(1.0 - idx * step, 2) for idx in range(buckets)]


def weight_profile(buckets: int, mode: str) -> List[float]:
    """Named sweep profile: soft / medium / hard."""
    if mode not in WEIGHT_PROFILE_FLOORS:
        raise ValueError(f"Unknown weight profile: {mode!r}")
    return generate_weights(buckets, WEIGHT_PROFILE_FLOORS[mode])


def bucket_count(window_size: int, bucket_size: int) -> int:
    return max(1, math.ceil(window_size / max(1, bucket_size)))


def _finite(value: Any) -> Optional[float]:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _clamp_int(value: Any, default: int, lo: int, hi: int) -> int:
    num = _finite(value)
    if num is None:
        num = default
    return int(max(lo, min(hi, round(num))))


def _clamp_float(value: Any, default: float, lo: float, hi: float) -> float:
    num = _finite(value)
    if num is None:
        num = default
    return float(max(lo, min(hi, num)))


def normalize_line(value: Any) -> Optional[MarketLine]:
    """
    Coerce one market identifier. Numbers must be positive; strings may be a
    double-chance code (case/space-insensitive) or a numeric line.
    Returns None when the value is not a usable line.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
        return num if math.isfinite(num) and num > 0 else None
    if isinstance(value, str):
        cleaned = "".join(value.split()).upper()
        if not cleaned:
            return None
        if cleaned in DOUBLE_CHANCE_LINES:
            return cleaned
        num = _finite(cleaned)
        if num is not None and num > 0:
            return num
    return None


def normalize_lines(lines: Optional[Iterable[Any]]) -> Tuple[MarketLine, ...]:
    """Numeric lines ascending and unique, then double-chance codes in canonical order."""
    cleaned = [normalize_line(line) for line in (lines or [])]
    numeric = sorted({line for line in cleaned if isinstance(line, float)})
    codes   = [code for code in DOUBLE_CHANCE_LINES if code in cleaned]
    merged  = tuple(numeric) + tuple(codes)
    return merged if merged else DEFAULT_LINES


def normalize_weights(weights: Optional[Iterable[Any]], buckets: int) -> Tuple[float, ...]:
    """Drop non-positive / non-finite entries, then pad with the last weight or truncate."""
    cleaned = [w for w in (_finite(v) for v in (weights or [])) if w is not None and w > 0]
    if not cleaned:
        cleaned = generate_weights(buckets)
    if len(cleaned) < buckets:
        cleaned = cleaned + [cleaned[-1]] * (buckets - len(cleaned))
    return tuple(float(w) for w in cleaned[:buckets])


def parse_number_list(value: Optional[str]) -> List[float]:
    """'0.55, 0.6,x' -> [0.55, 0.6]"""
    if not value:
        return []
    return [num for num in (_finite(item.strip()) for item in value.split(",")) if num is not None]


def parse_line_list(value: Optional[str]) -> List[MarketLine]:
    if not value:
        return []
    return [line for line in (normalize_line(item) for item in value.split(",")) if line is not None]


# ═══════════════════════════════════════════════════════════════════════════════
# ALGO SETTINGS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AlgoSettings:
    """
    Scoring model configuration. Build through normalize_settings().

    weights are recency-first, one per bucket; lines are numeric over/under
    lines followed by double-chance codes.
    """
    window_size:        int = 30
    bucket_size:        int = 5
    weights:            Tuple[float, ...] = field(default_factory=lambda: tuple(generate_weights(6)))
    min_matches:        int = 5
    min_league_matches: int = 10
    threshold:          float = 0.65
    lines:              Tuple[MarketLine, ...] = DEFAULT_LINES

    @property
    def buckets(self) -> int:
        return bucket_count(self.window_size, self.bucket_size)

    def to_dict(self) -> Dict[str, Any]:
        """camelCase payload, the shape UI/route collaborators exchange."""
        return {
            "windowSize":       self.window_size,
            "bucketSize":       self.bucket_size,
            "weights":          list(self.weights),
            "minMatches":       self.min_matches,
            "minLeagueMatches": self.min_league_matches,
            "threshold":        self.threshold,
            "lines":            list(self.lines),
        }

    def to_flat_dict(self) -> Dict[str, Any]:
        """One CSV-friendly row."""
        row = asdict(self)
        row["weights"] = ",".join(f"{w:g}" for w in self.weights)
        row["lines"]   = ",".join(str(line) for line in self.lines)
        return row


DEFAULT_ALGO_SETTINGS = AlgoSettings()

_KEY_ALIASES = {
    "windowSize":       "window_size",
    "bucketSize":       "bucket_size",
    "minMatches":       "min_matches",
    "minLeagueMatches": "min_league_matches",
}


def normalize_settings(raw: Union[AlgoSettings, Dict[str, Any], None] = None, **overrides) -> AlgoSettings:
    """
    Build a valid AlgoSettings from partial / untrusted input.

    Accepts an AlgoSettings, a dict with snake_case or camelCase keys, and/or
    keyword overrides. Every field is clamped or defaulted; nothing raises.
    """
    if isinstance(raw, AlgoSettings):
        data: Dict[str, Any] = asdict(raw)
    else:
        data = {_KEY_ALIASES.get(k, k): v for k, v in dict(raw or {}).items()}
    data.update({_KEY_ALIASES.get(k, k): v for k, v in overrides.items()})

    base = DEFAULT_ALGO_SETTINGS
    window_size = _clamp_int(data.get("window_size"), base.window_size, *WINDOW_RANGE)
    bucket_size = _clamp_int(data.get("bucket_size"), base.bucket_size, 1, window_size)
    buckets     = bucket_count(window_size, bucket_size)

    return AlgoSettings(
        window_size        = window_size,
        bucket_size        = bucket_size,
        weights            = normalize_weights(data.get("weights", base.weights), buckets),
        min_matches        = _clamp_int(data.get("min_matches"), base.min_matches, 1, window_size),
        min_league_matches = _clamp_int(data.get("min_league_matches"),
                                        base.min_league_matches, *MIN_LEAGUE_RANGE),
        threshold          = _clamp_float(data.get("threshold"), base.threshold, *THRESHOLD_RANGE),
        lines              = normalize_lines(data.get("lines", base.lines)),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SAVED SETTINGS (global + per-team JSON)
# ═══════════════════════════════════════════════════════════════════════════════

def _read_settings_file(path: Path) -> Dict[str, Any]:
    if not path.exists() or path.stat().st_size == 0:
        return {}
    try:
        payload = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        log.warning(f"Ignoring unreadable settings file {path}: {exc}")
        return {}
    return payload if isinstance(payload, dict) else {}


def load_team_settings(team_id: Optional[Union[int, str]] = None,
                       path: Optional[Path] = None) -> AlgoSettings:
    """
    Resolve settings for a team: team entry → global entry → defaults.
    A missing or corrupt file falls back silently to the next level.
    """
    payload = _read_settings_file(path or SETTINGS_PATH)
    teams = payload.get("teams") if isinstance(payload.get("teams"), dict) else {}
    if team_id is not None and isinstance(teams.get(str(team_id)), dict):
        return normalize_settings(teams[str(team_id)])
    if isinstance(payload.get("global"), dict):
        return normalize_settings(payload["global"])
    return DEFAULT_ALGO_SETTINGS


def save_team_settings(settings: Union[AlgoSettings, Dict[str, Any]],
                       team_id: Optional[Union[int, str]] = None,
                       path: Optional[Path] = None) -> Path:
    """Persist normalized settings; team_id=None writes the global entry."""
    path = path or SETTINGS_PATH
    payload = _read_settings_file(path)
    entry = normalize_settings(settings).to_dict()
    if team_id is None:
        payload["global"] = entry
    else:
        teams = payload.get("teams") if isinstance(payload.get("teams"), dict) else {}
        teams[str(team_id)] = entry
        payload["teams"] = teams
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2))
    log.info(f"Saved {'global' if team_id is None else f'team {team_id}'} settings → {path}")
    return path
