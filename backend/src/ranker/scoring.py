from __future__ import annotations

import logging
from typing import Mapping

from .errors import InvalidInputError
from .validation import MAX_KILLS, TOTAL_TEAMS

logger = logging.getLogger(__name__)


def calculate_total_points(
    kills: int, rank: int, points_per_kill: int, rank_points: Mapping[int, int]
) -> int:
    """Points for one team in one match: ``kills * points_per_kill + rank_points[rank]``.

    Ranks missing from the table are worth 0 position points. There is no
    upper bound on kills.
    """

    if kills < 0:
        raise InvalidInputError(f"kills cannot be negative: {kills}")
    if rank <= 0:
        raise InvalidInputError(f"rank must be positive: {rank}")
    if points_per_kill < 0:
        raise InvalidInputError(f"points per kill cannot be negative: {points_per_kill}")

    kill_points = kills * points_per_kill
    position_points = rank_points.get(rank, 0)
    total = kill_points + position_points

    logger.debug(
        "kills=%s rank=%s kill_points=%s position_points=%s total=%s",
        kills,
        rank,
        kill_points,
        position_points,
        total,
    )
    return total


def validate_match_result(kills: int, rank: int, total_teams: int = TOTAL_TEAMS) -> list[str]:
    """Plausibility messages for one entered result; never raises."""

    errors: list[str] = []
    if kills < 0:
        errors.append(f"kills cannot be negative: {kills}")
    elif kills > MAX_KILLS:
        errors.append(f"kills value too high: {kills}")

    if rank <= 0:
        errors.append(f"rank must be positive: {rank}")
    elif rank > total_teams:
        errors.append(f"rank {rank} exceeds total teams {total_teams}")
    return errors
