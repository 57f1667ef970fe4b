"""
Footy Output File Schemas — column and range contract for every CSV the
CLIs write.

Each schema lists the columns that must exist before a report is written,
plus the rate columns that must stay inside [0, 1]. A rate outside that
range means an aggregation divided by the wrong denominator.

Usage:
    from footy_output_schemas import validate_output

    validate_output(df, "backtest_picks")            # warns on problems
    validate_output(df, "sweep_results", strict=True) # raises ValueError
"""

import logging
from typing import Dict, List

import pandas as pd

log = logging.getLogger(__name__)

# ── Required columns per report ──────────────────────────────────────────────

OUTPUT_FILE_SCHEMAS: Dict[str, List[str]] = {
    "backtest_picks": [
        "fixture_id", "date_utc", "pick", "probability", "hit", "score",
        "home_team_id", "away_team_id", "total_goals",
    ],
    "threshold_report": [
        "threshold", "evaluated", "picks", "hits", "hit_rate", "coverage",
    ],
    "market_report": [
        "pick", "picks", "hits", "hit_rate",
    ],
    "sweep_results": [
        "window_size", "bucket_size", "weights", "min_matches",
        "min_league_matches", "threshold", "lines",
        "evaluated", "picks", "hits", "hit_rate", "coverage",
    ],
    "team_ranking": [
        "team_id", "picks", "hits", "hit_rate",
    ],
    "badge_report": [
        "badge_count", "total", "successes", "success_rate",
    ],
}

# ── Columns that must lie in [0, 1] when present ─────────────────────────────

RATE_COLUMNS: Dict[str, List[str]] = {
    "backtest_picks":   ["probability"],
    "threshold_report": ["hit_rate", "coverage"],
    "market_report":    ["hit_rate"],
    "sweep_results":    ["hit_rate", "coverage", "threshold"],
    "team_ranking":     ["hit_rate"],
    "badge_report":     ["success_rate"],
}


def _out_of_range(df: pd.DataFrame, schema_name: str) -> List[str]:
    bad = []
    for col in RATE_COLUMNS.get(schema_name, []):
        if col not in df.columns or df.empty:
            continue
        values = pd.to_numeric(df[col], errors="coerce").dropna()
        if ((values < 0) | (values > 1)).any():
            bad.append(col)
    return bad


def validate_output(
    df: pd.DataFrame,
    schema_name: str,
    *,
    strict: bool = False,
) -> List[str]:
    """Check a report DataFrame against its named schema.

    Returns the sorted list of problems: missing column names, plus
    ``"<col> out of [0, 1]"`` entries for rate columns with bad values.

    Raises
    ------
    KeyError
        If *schema_name* is not defined in ``OUTPUT_FILE_SCHEMAS``.
    ValueError
        If *strict* is True and any problem was found.
    """
    required = OUTPUT_FILE_SCHEMAS.get(schema_name)
    if required is None:
        raise KeyError(f"Unknown output schema: {schema_name!r}")

    missing = sorted(set(required) - set(df.columns))
    problems = missing + [f"{col} out of [0, 1]" for col in _out_of_range(df, schema_name)]

    if problems:
        msg = f"Output '{schema_name}' failed validation: {problems}"
        if strict:
            raise ValueError(msg)
        log.warning(msg)

    return problems


def completeness_report(dataframes: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """One row per known report: row count, missing columns, null share of required columns."""
    rows = []
    for name, df in dataframes.items():
        schema = OUTPUT_FILE_SCHEMAS.get(name)
        if schema is None:
            continue
        present = [c for c in schema if c in df.columns]
        missing = [c for c in schema if c not in df.columns]
        if len(df) == 0:
            null_pct = 0.0
        elif present:
            null_pct = round(float(df[present].isnull().mean().mean()) * 100, 2)
        else:
            null_pct = 100.0
        rows.append({
            "output":       name,
            "rows":         len(df),
            "missing_cols": len(missing),
            "missing_list": ", ".join(missing),
            "bad_rates":    ", ".join(_out_of_range(df, name)),
            "null_pct":     null_pct,
        })
    return pd.DataFrame(rows)
