"""Alias group consolidation.

Teams registered more than once are grouped under a primary team number. After
a match is saved the group's scores are permuted between its rows so that the
primary row carries the group's best result of that match.

Example: primary 19 with aliases 7 and 12, scores 7=15, 12=20, 19=10.
Afterwards 19=20, 12=15, 7=10.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from .domain import MatchResult
from .errors import Outcome
from .store import Store

logger = logging.getLogger(__name__)


def redistribute(
    primary_team_number: int, alias_team_numbers: Iterable[int], results: list[MatchResult]
) -> list[MatchResult]:
    """Rows of one match whose score payload changes after consolidating one group.

    Only rows of teams in the group take part. Their (kills, rank, points)
    payloads, ordered by points descending, go to the primary's row first and
    then to the other participating members. Only the primary's claim on the
    best payload is promised; handing the rest out by team number descending
    is a fixed choice here so that reruns are stable, and callers should not
    depend on it. Ties on points keep the order of ``results``. Team identity
    is never changed.
    """

    group = {primary_team_number, *alias_team_numbers}
    by_team = {r.team_number: r for r in results if r.team_number in group}
    if len(by_team) <= 1:
        return []

    payloads = sorted(by_team.values(), key=lambda r: r.total_points, reverse=True)

    recipients = [primary_team_number] if primary_team_number in by_team else []
    recipients += sorted((t for t in by_team if t != primary_team_number), reverse=True)

    changed: list[MatchResult] = []
    for team_number, source in zip(recipients, payloads):
        if source.team_number != team_number:
            changed.append(by_team[team_number].with_score_of(source))
    return changed


class ScoreConsolidationEngine:
    def __init__(self, store: Store):
        self._store = store

    def groups(self) -> dict[int, list[int]]:
        """Alias team numbers keyed by primary, in the order the aliases were added."""

        grouped: dict[int, list[int]] = defaultdict(list)
        for alias in self._store.list_aliases():
            grouped[alias.primary_team_number].append(alias.alias_team_number)
        return dict(grouped)

    def consolidate_match(self, day: int, match_number: int) -> int:
        """Consolidate every alias group for one match; returns the number of rows rewritten."""

        groups = self.groups()
        if not groups:
            logger.debug("no team aliases configured, skipping consolidation")
            return 0

        rewritten = 0
        with self._store.transaction():
            results = self._store.get_match_results(day, match_number)
            for primary, aliases in groups.items():
                changed = redistribute(primary, aliases, results)
                if not changed:
                    logger.debug("group %s has nothing to consolidate", primary)
                    continue
                self._store.upsert_results(changed)
                for row in changed:
                    logger.debug(
                        "team %s now carries %s points", row.team_number, row.total_points
                    )
                rewritten += len(changed)

        logger.info(
            "consolidated %s alias groups for day %s match %s (%s rows rewritten)",
            len(groups),
            day,
            match_number,
            rewritten,
        )
        return rewritten

    def try_consolidate_match(self, day: int, match_number: int) -> Outcome[int]:
        try:
            return Outcome(value=self.consolidate_match(day, match_number))
        except Exception as exc:
            return Outcome(error=exc)
