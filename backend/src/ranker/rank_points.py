"""Text encoding of the rank -> points table stored with each tournament config.

The stored form is a flat JSON object keyed by rank, e.g. ``{"1":10,"2":6,"3":4}``.
"""

from __future__ import annotations

import json
import logging
from typing import Mapping

from .errors import MalformedConfigError
from .validation import TOTAL_TEAMS

logger = logging.getLogger(__name__)

EMPTY = "{}"


def decode(text: str | None) -> dict[int, int]:
    """Parse stored rank points text.

    Blank input is an empty table. Anything that is not a flat JSON object
    raises ``MalformedConfigError``. Individual entries with a non-integer
    key, a rank below 1 or negative points are skipped with a warning.
    """

    if text is None or not text.strip():
        return {}

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedConfigError(f"invalid rank points format: {exc}") from exc
    if not isinstance(raw, dict):
        raise MalformedConfigError(
            f"invalid rank points format: expected an object, got {type(raw).__name__}"
        )

    table: dict[int, int] = {}
    for key, value in raw.items():
        try:
            rank = int(key)
        except ValueError:
            logger.warning("skipping rank points key %r: not an integer", key)
            continue
        points = _as_points(value)
        if points is None:
            logger.warning("skipping rank %s: points %r are not an integer", rank, value)
        elif rank <= 0:
            logger.warning("skipping rank %s: must be positive", rank)
        elif points < 0:
            logger.warning("skipping rank %s: points %s must be non-negative", rank, points)
        else:
            table[rank] = points

    logger.debug("decoded rank points %s", table)
    return table


def encode(table: Mapping[int, int]) -> str:
    """Serialize a rank -> points table; ranks below 1 are dropped."""

    kept = {str(rank): int(points) for rank, points in sorted(table.items()) if rank > 0}
    if not kept:
        return EMPTY
    return json.dumps(kept, separators=(",", ":"))


def validate(table: Mapping[int, int], max_rank: int = TOTAL_TEAMS) -> list[str]:
    errors: list[str] = []
    for rank, points in sorted(table.items()):
        if rank <= 0:
            errors.append(f"rank {rank} is invalid (must be positive)")
        elif rank > max_rank:
            errors.append(f"rank {rank} exceeds maximum ({max_rank})")
        elif points < 0:
            errors.append(f"points for rank {rank} is negative")
    return errors


def _as_points(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None
