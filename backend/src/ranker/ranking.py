from __future__ import annotations

import logging
from collections import defaultdict

from .domain import LeaderboardEntry, Penalty, SortMode, TeamScore
from .errors import Outcome

logger = logging.getLogger(__name__)


def penalty_totals(penalties: list[Penalty]) -> dict[int, int]:
    totals: dict[int, int] = defaultdict(int)
    for p in penalties:
        totals[p.team_number] += p.penalty_points
    return dict(totals)


def apply_penalties(entries: list[LeaderboardEntry], penalties: list[Penalty]) -> list[TeamScore]:
    """Deduct each team's penalty total from its points, never going below 0."""

    totals = penalty_totals(penalties)
    if totals:
        logger.debug("penalty totals %s", totals)

    scores: list[TeamScore] = []
    for entry in entries:
        penalty = totals.get(entry.team_number, 0)
        final_points = max(0, entry.total_points - penalty)
        if entry.total_points > 0 or entry.total_kills > 0:
            logger.debug(
                "team %s: kills=%s points=%s penalty=%s final=%s matches=%s",
                entry.team_number,
                entry.total_kills,
                entry.total_points,
                penalty,
                final_points,
                entry.matches_played,
            )
        scores.append(
            TeamScore(
                team_number=entry.team_number,
                total_kills=entry.total_kills,
                total_points=final_points,
                matches_played=entry.matches_played,
            )
        )
    return scores


def _try_apply_penalties(
    entries: list[LeaderboardEntry], penalties: list[Penalty]
) -> Outcome[list[TeamScore]]:
    try:
        return Outcome(value=apply_penalties(entries, penalties))
    except Exception as exc:
        return Outcome(error=exc)


def build_leaderboard(
    entries: list[LeaderboardEntry], penalties: list[Penalty], day: int | None = None
) -> list[TeamScore]:
    """Turn raw per-team sums into penalty-adjusted team scores.

    With ``day`` set only that day's penalties count; an already filtered
    list is accepted as well. Entry order and the set of teams are kept.
    If penalties cannot be applied the scores are returned without them.
    """

    if day is not None:
        penalties = [p for p in penalties if p.day == day]

    outcome = _try_apply_penalties(entries, penalties)
    if outcome.ok:
        return outcome.value
    logger.error(
        "failed to apply penalties, showing leaderboard without them", exc_info=outcome.error
    )
    return [
        TeamScore(
            team_number=e.team_number,
            total_kills=e.total_kills,
            total_points=max(0, e.total_points),
            matches_played=e.matches_played,
        )
        for e in entries
    ]


def sort_team_scores(scores: list[TeamScore], mode: SortMode = SortMode.POINTS) -> list[TeamScore]:
    if mode == SortMode.TEAM_NUMBER:
        return sorted(scores, key=lambda s: s.team_number)
    return sorted(scores, key=lambda s: (-s.total_points, -s.total_kills, s.team_number))
