from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .domain import TeamEntry

TOTAL_TEAMS = 25
MAX_KILLS = 999


def check_match_entries(entries: Iterable["TeamEntry"], total_teams: int = TOTAL_TEAMS) -> list[str]:
    """Check one match worth of (rank, team, kills) rows before they are saved.

    Rows without a team number are treated as unfilled and ignored. Returns
    the problems found, empty when the match can be saved.
    """

    participating = [e for e in entries if e.team_number > 0]
    if not participating:
        return ["no team data entered to save"]

    errors: list[str] = []

    out_of_range = sorted({e.team_number for e in participating if e.team_number > total_teams})
    if out_of_range:
        listed = ", ".join(str(t) for t in out_of_range)
        errors.append(f"invalid team numbers: {listed} (must be 1-{total_teams})")

    if any(e.kills < 0 for e in participating):
        errors.append("kills cannot be negative")

    team_counts = Counter(e.team_number for e in participating)
    duplicate_teams = sorted(t for t, n in team_counts.items() if n > 1)
    if duplicate_teams:
        errors.append("duplicate team numbers found: " + ", ".join(map(str, duplicate_teams)))

    rank_counts = Counter(e.rank for e in participating)
    duplicate_ranks = sorted(r for r, n in rank_counts.items() if n > 1)
    if duplicate_ranks:
        errors.append("duplicate ranks found: " + ", ".join(map(str, duplicate_ranks)))
    elif sorted(rank_counts) != list(range(1, len(rank_counts) + 1)):
        errors.append("ranks must be consecutive (1, 2, 3...) with no gaps")

    return errors


def check_match_number(match_number: int, matches_per_day: int) -> list[str]:
    if match_number < 1:
        return ["match number must be at least 1"]
    if match_number > matches_per_day:
        return [
            f"match {match_number} exceeds configured limit of {matches_per_day} matches per day"
        ]
    return []


def check_penalty(
    day: int,
    match_number: int,
    team_number: int,
    penalty_points: int,
    total_days: int,
    matches_per_day: int,
    total_teams: int = TOTAL_TEAMS,
) -> list[str]:
    errors: list[str] = []
    if not 1 <= day <= total_days:
        errors.append(f"day number must be between 1 and {total_days}")
    if not 1 <= match_number <= matches_per_day:
        errors.append(f"match number must be between 1 and {matches_per_day}")
    if not 1 <= team_number <= total_teams:
        errors.append(f"team number must be between 1 and {total_teams}")
    if penalty_points < 1:
        errors.append("penalty points must be at least 1")
    return errors
