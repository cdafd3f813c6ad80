"""Loading match logs and team covariate tables from CSV or spreadsheet files."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd


class MatchnetError(Exception):
    """Base class for errors raised by this package."""


class DataError(MatchnetError, ValueError):
    """Input data is malformed (bad margin, date, team name or column)."""


class ConfigurationError(MatchnetError, ValueError):
    """Inputs are individually valid but do not fit together."""


SPREADSHEET_SUFFIXES = {".xlsx", ".xls", ".xlsm"}

# Canonical column names of a match log after renaming
MATCH_COLUMNS = ("date", "team_a", "team_b", "margin")


@dataclass(frozen=True)
class MatchRecord:
    """A single game between two teams.

    ``margin`` is the outcome measured against the betting line; a positive
    margin is an "over".
    """
    date: datetime
    team_a: str
    team_b: str
    margin: float

    @property
    def edge(self) -> int:
        # Pushes (margin == 0) fall in the non-over class
        return 1 if self.margin > 0 else 0


def read_table(path: Path, sheet: Optional[str] = None) -> pd.DataFrame:
    """Read a CSV or spreadsheet into a DataFrame, picking the reader by suffix."""
    path = Path(path)
    if not path.exists():
        raise DataError(f"Input file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in SPREADSHEET_SUFFIXES:
        return pd.read_excel(path, sheet_name=sheet if sheet is not None else 0)
    if suffix == ".csv":
        return pd.read_csv(path)
    raise DataError(f"Unsupported file type '{suffix}' for {path} (expected .csv or .xlsx)")


def _require_columns(df: pd.DataFrame, columns, source: str):
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise DataError(
            f"{source} is missing column(s) {', '.join(missing)}. "
            f"Available: {', '.join(map(str, df.columns))}"
        )


def _row_list(mask: pd.Series, limit: int = 10) -> str:
    # Report 1-based data rows, the way a spreadsheet user would count them
    rows = [str(i + 1) for i in mask[mask].index[:limit]]
    extra = int(mask.sum()) - len(rows)
    return ", ".join(rows) + (f" (+{extra} more)" if extra > 0 else "")


def matches_from_frame(df: pd.DataFrame) -> List[MatchRecord]:
    """Validate a frame with canonical match columns and convert it to records."""
    _require_columns(df, MATCH_COLUMNS, "Match log")
    df = df.reset_index(drop=True)

    dates = pd.to_datetime(df["date"], errors="coerce")
    bad_dates = dates.isna()
    if bad_dates.any():
        raise DataError(f"Unparseable or missing date in match log row(s) {_row_list(bad_dates)}")

    margins = pd.to_numeric(df["margin"], errors="coerce")
    bad_margins = margins.isna()
    if bad_margins.any():
        raise DataError(f"Missing or non-numeric margin in match log row(s) {_row_list(bad_margins)}")

    # Names are kept exactly as written; "Jets" and "Jets " are different teams
    teams_a = df["team_a"].astype("string")
    teams_b = df["team_b"].astype("string")
    bad_teams = (teams_a.isna() | teams_b.isna() | (teams_a.str.strip() == "") | (teams_b.str.strip() == ""))
    bad_teams = bad_teams.fillna(True).astype(bool)
    if bad_teams.any():
        raise DataError(f"Missing team name in match log row(s) {_row_list(bad_teams)}")

    self_play = (teams_a == teams_b).fillna(False).astype(bool)
    if self_play.any():
        raise DataError(f"Team listed against itself in match log row(s) {_row_list(self_play)}")

    return [
        MatchRecord(
            date=d.to_pydatetime(),
            team_a=str(a),
            team_b=str(b),
            margin=float(m),
        )
        for d, a, b, m in zip(dates, teams_a, teams_b, margins)
    ]


def load_matches(
    path: Path,
    date_column: str = "date",
    team_column: str = "team",
    opponent_column: str = "opponent",
    margin_column: str = "margin",
    sheet: Optional[str] = None,
) -> List[MatchRecord]:
    """Load a match log, one row per game, in file order."""
    raw = read_table(path, sheet)
    rename: Dict[str, str] = {
        date_column: "date",
        team_column: "team_a",
        opponent_column: "team_b",
        margin_column: "margin",
    }
    _require_columns(raw, list(rename), f"Match log {path}")
    df = raw[list(rename)].rename(columns=rename)
    return matches_from_frame(df)


def load_covariates(
    path: Path,
    team_column: str = "team",
    columns: Optional[List[str]] = None,
    sheet: Optional[str] = None,
) -> pd.DataFrame:
    """Load per-team covariates as a float frame indexed by team name.

    With no ``columns`` given, every numeric column other than the team
    column is used.
    """
    raw = read_table(path, sheet)
    _require_columns(raw, [team_column], f"Covariate table {path}")

    if columns:
        _require_columns(raw, columns, f"Covariate table {path}")
        selected = list(columns)
    else:
        selected = [
            c for c in raw.columns
            if c != team_column and pd.api.types.is_numeric_dtype(raw[c])
        ]
        if not selected:
            raise DataError(f"Covariate table {path} has no numeric columns")

    teams = raw[team_column].astype("string")
    if teams.isna().any():
        raise DataError(f"Missing team name in covariate row(s) {_row_list(teams.isna())}")
    duplicated = teams.duplicated(keep=False)
    if duplicated.any():
        dupes = sorted(set(teams[duplicated]))
        raise DataError(f"Duplicate team(s) in covariate table: {', '.join(dupes)}")

    values = raw[selected].apply(pd.to_numeric, errors="coerce")
    bad = values.isna().any(axis=1)
    if bad.any():
        raise DataError(f"Missing or non-numeric covariate value in row(s) {_row_list(bad)}")

    values.index = pd.Index([str(t) for t in teams], name="team")
    return values.astype(float)


def match_frame(matches: List[MatchRecord]) -> pd.DataFrame:
    """Tabulate match records with their derived edge value."""
    return pd.DataFrame(
        [
            {
                "date": m.date,
                "team_a": m.team_a,
                "team_b": m.team_b,
                "margin": m.margin,
                "edge": m.edge,
            }
            for m in matches
        ],
        columns=list(MATCH_COLUMNS) + ["edge"],
    )
