from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from .configuration import ConfigurationManager
from .consolidation import ScoreConsolidationEngine
from .domain import (
    MatchResult,
    Penalty,
    SortMode,
    TeamAlias,
    TeamEntry,
    TeamScore,
    TournamentConfig,
)
from .errors import (
    MatchResultError,
    PenaltyError,
    RankerError,
    RepositoryError,
    TeamAliasError,
)
from .ranking import build_leaderboard, sort_team_scores
from .scoring import calculate_total_points
from .store import Store
from .validation import check_match_number, check_penalty

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[str], None]

CONFIG = "tournament_config"
RESULTS = "match_results"
PENALTIES = "penalties"
ALIASES = "team_aliases"


@contextmanager
def _failure(error_cls: type[RepositoryError], action: str) -> Iterator[None]:
    try:
        yield
    except RankerError:
        raise
    except Exception as exc:
        logger.exception("failed to %s", action)
        raise error_cls(f"failed to {action}: {exc}") from exc


def _read_or(default: T, action: str, read: Callable[[], T]) -> T:
    try:
        return read()
    except Exception:
        logger.exception("failed to %s", action)
        return default


class TournamentRepository:
    """Entry point for everything the app does with tournament data.

    Writes go through the store, keep penalties in step with result resets,
    consolidate alias groups after match saves, and notify subscribers with
    the name of the table that changed.
    """

    def __init__(self, store: Store):
        self._store = store
        self.configuration = ConfigurationManager(store)
        self.consolidation = ScoreConsolidationEngine(store)
        self._listeners: list[Listener] = []

    # observation

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, *tables: str) -> None:
        for listener in list(self._listeners):
            for table in tables:
                try:
                    listener(table)
                except Exception:
                    logger.exception("listener failed on %s change", table)

    def observe_config(
        self, callback: Callable[[TournamentConfig | None], None]
    ) -> Callable[[], None]:
        callback(self.current_config())

        def on_change(table: str) -> None:
            if table == CONFIG:
                callback(self.current_config())

        return self.subscribe(on_change)

    def observe_leaderboard(
        self,
        callback: Callable[[list[TeamScore]], None],
        day: int | None = None,
        sort_mode: SortMode = SortMode.POINTS,
    ) -> Callable[[], None]:
        def emit() -> None:
            callback(self.leaderboard(day=day, sort_mode=sort_mode))

        def on_change(table: str) -> None:
            if table in (CONFIG, RESULTS, PENALTIES):
                emit()

        emit()
        return self.subscribe(on_change)

    # configuration

    def current_config(self) -> TournamentConfig | None:
        return self.configuration.current()

    def save_config(self, config: TournamentConfig) -> int:
        recalculated = self.configuration.save_config(config)
        if recalculated:
            self._notify(CONFIG, RESULTS)
        else:
            self._notify(CONFIG)
        return recalculated

    def delete_configuration(self) -> None:
        self.configuration.delete_configuration()
        self._notify(CONFIG)

    def check_shrink_conflict(self, new_matches_per_day: int) -> bool:
        return self.configuration.check_shrink_conflict(new_matches_per_day)

    # match results

    def save_match(
        self, day: int, match_number: int, entries: list[TeamEntry]
    ) -> list[MatchResult]:
        """Score and store one match entered as (rank, team, kills) rows.

        Replaces whatever was stored for the match. Entries without a team
        number are skipped, kills are clamped at 0 and points floored at 0.
        """

        with _failure(MatchResultError, "load configuration"):
            config = self._store.get_current_config()
        if config is None:
            raise MatchResultError("cannot save match results: tournament is not configured")
        errors = check_match_number(match_number, config.matches_per_day)
        if not 1 <= day <= config.total_days:
            errors.append(f"day number must be between 1 and {config.total_days}")
        if errors:
            raise MatchResultError("; ".join(errors))

        table = config.rank_points_table()
        logger.debug(
            "saving day %s match %s with points_per_kill=%s rank_points=%s",
            day,
            match_number,
            config.points_per_kill,
            table,
        )
        results = [
            self._score_entry(day, match_number, entry, config.points_per_kill, table)
            for entry in entries
            if entry.team_number > 0
        ]
        if not results:
            raise MatchResultError("no team data to save")

        with _failure(MatchResultError, "save match results"):
            with self._store.transaction():
                self._store.delete_match_results(day, match_number)
                self._store.upsert_results(results)
        self._consolidate(day, match_number)

        logger.info("saved %s results for day %s match %s", len(results), day, match_number)
        self._notify(RESULTS)
        return results

    @staticmethod
    def _score_entry(
        day: int, match_number: int, entry: TeamEntry, points_per_kill: int, table: dict[int, int]
    ) -> MatchResult:
        kills = max(0, entry.kills)
        total = calculate_total_points(kills, entry.rank, points_per_kill, table)
        return MatchResult(
            day=day,
            match_number=match_number,
            team_number=entry.team_number,
            kills=kills,
            rank=entry.rank,
            total_points=max(0, total),
        )

    def save_match_results(self, results: list[MatchResult]) -> None:
        """Upsert already scored rows, then consolidate the match of the first row."""

        for r in results:
            logger.debug(
                "result day=%s match=%s team=%s kills=%s rank=%s points=%s",
                r.day,
                r.match_number,
                r.team_number,
                r.kills,
                r.rank,
                r.total_points,
            )
        with _failure(MatchResultError, "save match results"):
            self._store.upsert_results(results)
        if results:
            self._consolidate(results[0].day, results[0].match_number)

        logger.info("saved %s match results", len(results))
        self._notify(RESULTS)

    def save_match_result(self, result: MatchResult) -> None:
        with _failure(MatchResultError, "save match result"):
            self._store.upsert_result(result)
        self._notify(RESULTS)

    def _consolidate(self, day: int, match_number: int) -> None:
        outcome = self.consolidation.try_consolidate_match(day, match_number)
        if not outcome.ok:
            logger.error(
                "alias consolidation failed for day %s match %s; saved results kept",
                day,
                match_number,
                exc_info=outcome.error,
            )

    def get_match_results(self, day: int, match_number: int) -> list[MatchResult]:
        return _read_or(
            [], "load match results", lambda: self._store.get_match_results(day, match_number)
        )

    def get_result(self, day: int, match_number: int, team_number: int) -> MatchResult | None:
        return _read_or(
            None, "load match result", lambda: self._store.get_result(day, match_number, team_number)
        )

    def list_results(self) -> list[MatchResult]:
        return _read_or([], "load match results", self._store.list_results)

    def update_team_score(
        self, day: int, match_number: int, team_number: int, new_score: int
    ) -> MatchResult:
        """Overwrite the stored points of one result, bypassing the score calculator."""

        with _failure(MatchResultError, "update team score"):
            existing = self._store.get_result(day, match_number, team_number)
            if existing is None:
                raise MatchResultError(
                    f"team {team_number} has no result for day {day} match {match_number}"
                )
            updated = existing.model_copy(update={"total_points": new_score})
            self._store.upsert_result(updated)
        logger.info(
            "manual score for team %s day %s match %s: %s -> %s",
            team_number,
            day,
            match_number,
            existing.total_points,
            new_score,
        )
        self._notify(RESULTS)
        return updated

    def delete_match_results(self, day: int, match_number: int) -> None:
        with _failure(MatchResultError, "delete match results"):
            self._store.delete_match_results(day, match_number)
        self._notify(RESULTS)

    def delete_results_by_day(self, day: int) -> None:
        with _failure(MatchResultError, "delete day results"):
            self._store.delete_results_by_day(day)
        self._notify(RESULTS)

    def delete_results_by_day_range(self, start_day: int, end_day: int) -> None:
        with _failure(MatchResultError, "delete day range results"):
            self._store.delete_results_by_day_range(start_day, end_day)
        self._notify(RESULTS)

    def delete_all_results(self) -> None:
        with _failure(MatchResultError, "delete all results"):
            self._store.delete_all_results()
        self._notify(RESULTS)

    # resets clear results and penalties together

    def reset_match(self, day: int, match_number: int) -> None:
        with _failure(MatchResultError, f"reset day {day} match {match_number}"):
            with self._store.transaction():
                self._store.delete_match_results(day, match_number)
                self._store.delete_match_penalties(day, match_number)
        self._notify(RESULTS, PENALTIES)

    def reset_day(self, day: int) -> None:
        with _failure(MatchResultError, f"reset day {day}"):
            with self._store.transaction():
                self._store.delete_results_by_day(day)
                self._store.delete_penalties_by_day(day)
        self._notify(RESULTS, PENALTIES)

    def reset_day_range(self, start_day: int, end_day: int) -> None:
        with _failure(MatchResultError, f"reset days {start_day} to {end_day}"):
            with self._store.transaction():
                self._store.delete_results_by_day_range(start_day, end_day)
                self._store.delete_penalties_by_day_range(start_day, end_day)
        self._notify(RESULTS, PENALTIES)

    def reset_all(self) -> None:
        with _failure(MatchResultError, "reset all tournament data"):
            with self._store.transaction():
                self._store.delete_all_results()
                self._store.delete_all_penalties()
        self._notify(RESULTS, PENALTIES)

    # data presence

    def days_with_data(self) -> list[int]:
        return _read_or([], "load days with data", self._store.days_with_data)

    def matches_with_data(self, day: int) -> list[int]:
        return _read_or(
            [], "load matches with data", lambda: self._store.matches_with_data(day)
        )

    def has_match_data(self, day: int, match_number: int) -> bool:
        return _read_or(
            False, "check match data", lambda: self._store.has_match_data(day, match_number)
        )

    def has_data_beyond_match(self, match_number: int) -> bool:
        # a shrink decision must not be taken on a failed read
        with _failure(MatchResultError, "check data beyond match"):
            return self._store.has_data_beyond_match(match_number)

    def has_any_data(self) -> bool:
        return _read_or(False, "check for data", self._store.has_any_data)

    def last_day_with_data(self) -> int | None:
        return _read_or(None, "load last day with data", self._store.last_day_with_data)

    def last_match_with_data(self, day: int) -> int | None:
        return _read_or(
            None, "load last match with data", lambda: self._store.last_match_with_data(day)
        )

    def match_result_count(self, day: int, match_number: int) -> int:
        return len(self.get_match_results(day, match_number))

    def max_rank_for_match(self, day: int, match_number: int) -> int:
        return max((r.rank for r in self.get_match_results(day, match_number)), default=0)

    # leaderboard

    def leaderboard(
        self, day: int | None = None, sort_mode: SortMode = SortMode.POINTS
    ) -> list[TeamScore]:
        """Penalty-adjusted standings over all days or one day.

        Matches numbered above the current config's ``matches_per_day`` are
        left out along with their penalties.
        """

        try:
            config = self._store.get_current_config()
            max_match = config.matches_per_day if config is not None else None
            entries = self._store.leaderboard_raw(day=day, max_match_number=max_match)
            penalties = self._store.list_penalties()
        except Exception:
            logger.exception("failed to load leaderboard")
            return []

        if max_match is not None:
            penalties = [p for p in penalties if p.match_number <= max_match]
        scores = build_leaderboard(entries, penalties, day=day)
        return sort_team_scores(scores, sort_mode)

    # penalties

    def apply_penalty(
        self, day: int, match_number: int, team_number: int, penalty_points: int
    ) -> Penalty:
        """Record a penalty for a team that played the given match, replacing any earlier one."""

        with _failure(PenaltyError, "load configuration"):
            config = self._store.get_current_config()
        if config is not None:
            errors = check_penalty(
                day,
                match_number,
                team_number,
                penalty_points,
                total_days=config.total_days,
                matches_per_day=config.matches_per_day,
                total_teams=config.total_teams,
            )
        else:
            errors = [] if penalty_points >= 1 else ["penalty points must be at least 1"]
        if errors:
            raise PenaltyError("; ".join(errors))

        with _failure(PenaltyError, "check participation"):
            played = self._store.get_result(day, match_number, team_number) is not None
        if not played:
            raise PenaltyError(
                f"team {team_number} did not participate in day {day} match {match_number}"
            )

        penalty = Penalty(
            day=day, match_number=match_number, team_number=team_number, penalty_points=penalty_points
        )
        self.save_penalty(penalty)
        logger.info(
            "penalty of %s points applied to team %s for day %s match %s",
            penalty_points,
            team_number,
            day,
            match_number,
        )
        return penalty

    def save_penalty(self, penalty: Penalty) -> None:
        with _failure(PenaltyError, "save penalty"):
            self._store.upsert_penalty(penalty)
        self._notify(PENALTIES)

    def get_match_penalties(self, day: int, match_number: int) -> list[Penalty]:
        return _read_or(
            [], "load penalties", lambda: self._store.get_match_penalties(day, match_number)
        )

    def list_penalties(self) -> list[Penalty]:
        return _read_or([], "load penalties", self._store.list_penalties)

    def delete_penalty(self, day: int, match_number: int, team_number: int) -> None:
        with _failure(PenaltyError, "delete penalty"):
            self._store.delete_penalty(day, match_number, team_number)
        self._notify(PENALTIES)

    def delete_match_penalties(self, day: int, match_number: int) -> None:
        with _failure(PenaltyError, "delete match penalties"):
            self._store.delete_match_penalties(day, match_number)
        self._notify(PENALTIES)

    def delete_penalties_by_day(self, day: int) -> None:
        with _failure(PenaltyError, "delete day penalties"):
            self._store.delete_penalties_by_day(day)
        self._notify(PENALTIES)

    def delete_penalties_by_day_range(self, start_day: int, end_day: int) -> None:
        with _failure(PenaltyError, "delete day range penalties"):
            self._store.delete_penalties_by_day_range(start_day, end_day)
        self._notify(PENALTIES)

    def delete_all_penalties(self) -> None:
        with _failure(PenaltyError, "delete all penalties"):
            self._store.delete_all_penalties()
        self._notify(PENALTIES)

    def total_penalty_for_team(self, team_number: int) -> int:
        total = _read_or(
            None, "load penalty total", lambda: self._store.total_penalty_for_team(team_number)
        )
        return total or 0

    def total_penalty_for_team_on_day(self, team_number: int, day: int) -> int:
        total = _read_or(
            None,
            "load penalty total",
            lambda: self._store.total_penalty_for_team_on_day(team_number, day),
        )
        return total or 0

    # team aliases

    def list_team_aliases(self) -> list[TeamAlias]:
        return _read_or([], "load team aliases", self._store.list_aliases)

    def aliases_for_primary(self, primary_team_number: int) -> list[TeamAlias]:
        return _read_or(
            [], "load team group", lambda: self._store.aliases_for_primary(primary_team_number)
        )

    def primary_for_alias(self, team_number: int) -> TeamAlias | None:
        return _read_or(
            None, "load team group", lambda: self._store.primary_for_alias(team_number)
        )

    def is_team_in_group(self, team_number: int) -> bool:
        memberships = _read_or(
            0, "load team group", lambda: self._store.count_group_memberships(team_number)
        )
        return memberships > 0

    def add_team_alias(
        self, primary_team_number: int, alias_team_number: int, group_name: str = ""
    ) -> TeamAlias:
        """Put ``alias_team_number`` in the group led by ``primary_team_number``.

        A team belongs to at most one group, either as its primary or as one
        of its aliases.
        """

        if primary_team_number == alias_team_number:
            raise TeamAliasError(f"team {primary_team_number} cannot be an alias of itself")

        with _failure(TeamAliasError, "load team aliases"):
            existing = self._store.list_aliases()
        for a in existing:
            if a.alias_team_number == alias_team_number:
                raise TeamAliasError(
                    f"team {alias_team_number} is already an alias of team {a.primary_team_number}"
                )
            if a.alias_team_number == primary_team_number:
                raise TeamAliasError(
                    f"team {primary_team_number} is an alias of team {a.primary_team_number} "
                    "and cannot lead a group"
                )
            if a.primary_team_number == alias_team_number:
                raise TeamAliasError(f"team {alias_team_number} already leads its own group")

        if not group_name:
            group_name = next(
                (a.group_name for a in existing if a.primary_team_number == primary_team_number),
                "",
            )
        alias = TeamAlias(
            primary_team_number=primary_team_number,
            alias_team_number=alias_team_number,
            group_name=group_name,
        )
        with _failure(TeamAliasError, "add team alias"):
            self._store.insert_alias(alias)
        self._notify(ALIASES)
        return alias

    def delete_team_alias(self, alias_id: str) -> None:
        with _failure(TeamAliasError, "delete team alias"):
            self._store.delete_alias(alias_id)
        self._notify(ALIASES)

    def delete_aliases_for_primary(self, primary_team_number: int) -> None:
        with _failure(TeamAliasError, "delete team group"):
            self._store.delete_aliases_for_primary(primary_team_number)
        self._notify(ALIASES)

    def delete_all_team_aliases(self) -> None:
        with _failure(TeamAliasError, "delete all team aliases"):
            self._store.delete_all_aliases()
        self._notify(ALIASES)
