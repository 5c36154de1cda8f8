from __future__ import annotations

import os
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import ContextManager, Iterator, Protocol

from .domain import LeaderboardEntry, MatchResult, Penalty, TeamAlias, TournamentConfig


class ConfigStore(Protocol):
    def get_current_config(self) -> TournamentConfig | None: ...

    def insert_config(self, config: TournamentConfig) -> None: ...

    def delete_all_configs(self) -> None: ...


class MatchResultStore(Protocol):
    """One row per (day, match_number, team_number); saving an existing key replaces it."""

    def upsert_result(self, result: MatchResult) -> None: ...

    def upsert_results(self, results: list[MatchResult]) -> None: ...

    def get_match_results(self, day: int, match_number: int) -> list[MatchResult]: ...

    def get_result(self, day: int, match_number: int, team_number: int) -> MatchResult | None: ...

    def list_results(self) -> list[MatchResult]: ...

    def delete_match_results(self, day: int, match_number: int) -> None: ...

    def delete_results_by_day(self, day: int) -> None: ...

    def delete_results_by_day_range(self, start_day: int, end_day: int) -> None: ...

    def delete_all_results(self) -> None: ...

    def leaderboard_raw(
        self, day: int | None = None, max_match_number: int | None = None
    ) -> list[LeaderboardEntry]: ...

    def days_with_data(self) -> list[int]: ...

    def matches_with_data(self, day: int) -> list[int]: ...

    def has_match_data(self, day: int, match_number: int) -> bool: ...

    def has_data_beyond_match(self, match_number: int) -> bool: ...

    def has_any_data(self) -> bool: ...

    def last_day_with_data(self) -> int | None: ...

    def last_match_with_data(self, day: int) -> int | None: ...


class PenaltyStore(Protocol):
    """At most one penalty per (day, match_number, team_number)."""

    def upsert_penalty(self, penalty: Penalty) -> None: ...

    def get_match_penalties(self, day: int, match_number: int) -> list[Penalty]: ...

    def list_penalties(self) -> list[Penalty]: ...

    def delete_penalty(self, day: int, match_number: int, team_number: int) -> None: ...

    def delete_match_penalties(self, day: int, match_number: int) -> None: ...

    def delete_penalties_by_day(self, day: int) -> None: ...

    def delete_penalties_by_day_range(self, start_day: int, end_day: int) -> None: ...

    def delete_all_penalties(self) -> None: ...

    def total_penalty_for_team(self, team_number: int) -> int | None: ...

    def total_penalty_for_team_on_day(self, team_number: int, day: int) -> int | None: ...


class TeamAliasStore(Protocol):
    def list_aliases(self) -> list[TeamAlias]: ...

    def aliases_for_primary(self, primary_team_number: int) -> list[TeamAlias]: ...

    def primary_for_alias(self, team_number: int) -> TeamAlias | None: ...

    def count_group_memberships(self, team_number: int) -> int: ...

    def insert_alias(self, alias: TeamAlias) -> None: ...

    def delete_alias(self, alias_id: str) -> None: ...

    def delete_aliases_for_primary(self, primary_team_number: int) -> None: ...

    def delete_all_aliases(self) -> None: ...


class Store(ConfigStore, MatchResultStore, PenaltyStore, TeamAliasStore, Protocol):
    def transaction(self) -> ContextManager[None]: ...


def has_data(result: MatchResult) -> bool:
    return result.kills > 0 or result.rank > 0


def result_sort_key(result: MatchResult) -> tuple[int, int, int]:
    return result.key


def penalty_sort_key(penalty: Penalty) -> tuple[int, int, int]:
    return (penalty.day, penalty.match_number, penalty.team_number)


class ScanQueries:
    """Derived queries computed from full scans.

    Backends without a query engine mix this in and provide ``list_results``,
    ``list_penalties`` and ``list_aliases``.
    """

    def list_results(self) -> list[MatchResult]:
        raise NotImplementedError

    def list_penalties(self) -> list[Penalty]:
        raise NotImplementedError

    def list_aliases(self) -> list[TeamAlias]:
        raise NotImplementedError

    def get_match_results(self, day: int, match_number: int) -> list[MatchResult]:
        rows = [r for r in self.list_results() if r.day == day and r.match_number == match_number]
        return sorted(rows, key=lambda r: r.team_number)

    def get_result(self, day: int, match_number: int, team_number: int) -> MatchResult | None:
        for r in self.get_match_results(day, match_number):
            if r.team_number == team_number:
                return r
        return None

    def leaderboard_raw(
        self, day: int | None = None, max_match_number: int | None = None
    ) -> list[LeaderboardEntry]:
        kills: dict[int, int] = defaultdict(int)
        points: dict[int, int] = defaultdict(int)
        played: dict[int, int] = defaultdict(int)
        for r in self.list_results():
            if day is not None and r.day != day:
                continue
            if max_match_number is not None and r.match_number > max_match_number:
                continue
            kills[r.team_number] += r.kills
            points[r.team_number] += r.total_points
            played[r.team_number] += 1

        entries = [
            LeaderboardEntry(
                team_number=team,
                total_kills=kills[team],
                total_points=points[team],
                matches_played=played[team],
            )
            for team in sorted(played)
        ]
        return sorted(entries, key=lambda e: (-e.total_points, -e.total_kills))

    def days_with_data(self) -> list[int]:
        return sorted({r.day for r in self.list_results() if has_data(r)})

    def matches_with_data(self, day: int) -> list[int]:
        return sorted({r.match_number for r in self.list_results() if r.day == day and has_data(r)})

    def has_match_data(self, day: int, match_number: int) -> bool:
        return any(has_data(r) for r in self.get_match_results(day, match_number))

    def has_data_beyond_match(self, match_number: int) -> bool:
        return any(r.match_number > match_number for r in self.list_results())

    def has_any_data(self) -> bool:
        return any(has_data(r) for r in self.list_results())

    def last_day_with_data(self) -> int | None:
        return max(self.days_with_data(), default=None)

    def last_match_with_data(self, day: int) -> int | None:
        return max(self.matches_with_data(day), default=None)

    def get_match_penalties(self, day: int, match_number: int) -> list[Penalty]:
        rows = [p for p in self.list_penalties() if p.day == day and p.match_number == match_number]
        return sorted(rows, key=lambda p: p.team_number)

    def total_penalty_for_team(self, team_number: int) -> int | None:
        points = [p.penalty_points for p in self.list_penalties() if p.team_number == team_number]
        return sum(points) if points else None

    def total_penalty_for_team_on_day(self, team_number: int, day: int) -> int | None:
        points = [
            p.penalty_points
            for p in self.list_penalties()
            if p.team_number == team_number and p.day == day
        ]
        return sum(points) if points else None

    def aliases_for_primary(self, primary_team_number: int) -> list[TeamAlias]:
        return [a for a in self.list_aliases() if a.primary_team_number == primary_team_number]

    def primary_for_alias(self, team_number: int) -> TeamAlias | None:
        for a in self.list_aliases():
            if a.alias_team_number == team_number:
                return a
        return None

    def count_group_memberships(self, team_number: int) -> int:
        return sum(
            1
            for a in self.list_aliases()
            if a.primary_team_number == team_number or a.alias_team_number == team_number
        )


@dataclass
class InMemoryStore(ScanQueries, Store):
    configs: dict[str, TournamentConfig]
    results: dict[tuple[int, int, int], MatchResult]
    penalties: dict[tuple[int, int, int], Penalty]
    aliases: dict[str, TeamAlias]

    @classmethod
    def create(cls) -> "InMemoryStore":
        return cls(configs={}, results={}, penalties={}, aliases={})

    @contextmanager
    def transaction(self) -> Iterator[None]:
        snapshot = (
            dict(self.configs),
            dict(self.results),
            dict(self.penalties),
            dict(self.aliases),
        )
        try:
            yield
        except Exception:
            self.configs, self.results, self.penalties, self.aliases = snapshot
            raise

    # config

    def get_current_config(self) -> TournamentConfig | None:
        return max(self.configs.values(), key=lambda c: c.created_at, default=None)

    def insert_config(self, config: TournamentConfig) -> None:
        self.configs[config.id] = config

    def delete_all_configs(self) -> None:
        self.configs.clear()

    # match results

    def upsert_result(self, result: MatchResult) -> None:
        self.results[result.key] = result

    def upsert_results(self, results: list[MatchResult]) -> None:
        for result in results:
            self.upsert_result(result)

    def list_results(self) -> list[MatchResult]:
        return sorted(self.results.values(), key=result_sort_key)

    def delete_match_results(self, day: int, match_number: int) -> None:
        self._drop_results(lambda d, m: d == day and m == match_number)

    def delete_results_by_day(self, day: int) -> None:
        self._drop_results(lambda d, m: d == day)

    def delete_results_by_day_range(self, start_day: int, end_day: int) -> None:
        self._drop_results(lambda d, m: start_day <= d <= end_day)

    def delete_all_results(self) -> None:
        self.results.clear()

    def _drop_results(self, match) -> None:
        for key in [k for k in self.results if match(k[0], k[1])]:
            del self.results[key]

    # penalties

    def upsert_penalty(self, penalty: Penalty) -> None:
        self.penalties[penalty_sort_key(penalty)] = penalty

    def list_penalties(self) -> list[Penalty]:
        return sorted(self.penalties.values(), key=penalty_sort_key)

    def delete_penalty(self, day: int, match_number: int, team_number: int) -> None:
        self.penalties.pop((day, match_number, team_number), None)

    def delete_match_penalties(self, day: int, match_number: int) -> None:
        self._drop_penalties(lambda d, m: d == day and m == match_number)

    def delete_penalties_by_day(self, day: int) -> None:
        self._drop_penalties(lambda d, m: d == day)

    def delete_penalties_by_day_range(self, start_day: int, end_day: int) -> None:
        self._drop_penalties(lambda d, m: start_day <= d <= end_day)

    def delete_all_penalties(self) -> None:
        self.penalties.clear()

    def _drop_penalties(self, match) -> None:
        for key in [k for k in self.penalties if match(k[0], k[1])]:
            del self.penalties[key]

    # team aliases

    def list_aliases(self) -> list[TeamAlias]:
        return sorted(self.aliases.values(), key=lambda a: a.created_at)

    def insert_alias(self, alias: TeamAlias) -> None:
        self.aliases[alias.id] = alias

    def delete_alias(self, alias_id: str) -> None:
        self.aliases.pop(alias_id, None)

    def delete_aliases_for_primary(self, primary_team_number: int) -> None:
        for alias in self.aliases_for_primary(primary_team_number):
            del self.aliases[alias.id]

    def delete_all_aliases(self) -> None:
        self.aliases.clear()


def build_store() -> Store:
    kind = os.environ.get("STORE_BACKEND", "inmemory").strip().lower()
    if kind == "dynamodb":
        from .dynamodb_store import DynamoDBStore

        return DynamoDBStore.from_env()
    if kind == "sqlite":
        from .sqlite_store import SqliteStore

        return SqliteStore.from_env()
    return InMemoryStore.create()
