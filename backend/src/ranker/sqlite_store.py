"""Embedded SQLite backend: four tables keyed the same way as the domain records.

All statements go through one connection in autocommit mode; ``transaction()``
opens an explicit ``BEGIN`` so multi-statement sequences commit or roll back
together.
"""

from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator

from .domain import LeaderboardEntry, MatchResult, Penalty, TeamAlias, TournamentConfig
from .store import Store

SCHEMA = (
    """CREATE TABLE IF NOT EXISTS tournament_config (
        id TEXT PRIMARY KEY,
        total_days INTEGER NOT NULL,
        matches_per_day INTEGER NOT NULL,
        total_teams INTEGER NOT NULL,
        points_per_kill INTEGER NOT NULL,
        rank_points TEXT NOT NULL,
        created_at TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS match_results (
        day INTEGER NOT NULL,
        match_number INTEGER NOT NULL,
        team_number INTEGER NOT NULL,
        kills INTEGER NOT NULL,
        rank INTEGER NOT NULL,
        total_points INTEGER NOT NULL,
        timestamp TEXT NOT NULL,
        PRIMARY KEY (day, match_number, team_number)
    )""",
    """CREATE TABLE IF NOT EXISTS penalties (
        day INTEGER NOT NULL,
        match_number INTEGER NOT NULL,
        team_number INTEGER NOT NULL,
        penalty_points INTEGER NOT NULL,
        timestamp TEXT NOT NULL,
        PRIMARY KEY (day, match_number, team_number)
    )""",
    """CREATE TABLE IF NOT EXISTS team_aliases (
        id TEXT PRIMARY KEY,
        primary_team_number INTEGER NOT NULL,
        alias_team_number INTEGER NOT NULL,
        group_name TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    )""",
)

RESULT_COLUMNS = "day, match_number, team_number, kills, rank, total_points, timestamp"
PENALTY_COLUMNS = "day, match_number, team_number, penalty_points, timestamp"
ALIAS_COLUMNS = "id, primary_team_number, alias_team_number, group_name, created_at"
CONFIG_COLUMNS = (
    "id, total_days, matches_per_day, total_teams, points_per_kill, rank_points, created_at"
)

HAS_DATA = "(kills > 0 OR rank > 0)"


@dataclass
class SqliteStore(Store):
    path: str
    _conn: sqlite3.Connection = field(init=False, repr=False)
    _lock: threading.RLock = field(init=False, repr=False, default_factory=threading.RLock)
    _in_transaction: bool = field(init=False, repr=False, default=False)

    def __post_init__(self) -> None:
        self._conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            for statement in SCHEMA:
                self._conn.execute(statement)

    @classmethod
    def from_env(cls) -> "SqliteStore":
        return cls(path=os.environ.get("SQLITE_PATH", "ranker.db"))

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._in_transaction:
                yield
                return
            self._conn.execute("BEGIN")
            self._in_transaction = True
            try:
                yield
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._in_transaction = False

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _scalar(self, sql: str, params: tuple = ()):
        with self._lock:
            return self._conn.execute(sql, params).fetchone()[0]

    # config

    def get_current_config(self) -> TournamentConfig | None:
        rows = self._fetchall(
            f"SELECT {CONFIG_COLUMNS} FROM tournament_config ORDER BY created_at DESC LIMIT 1"
        )
        if not rows:
            return None
        row = rows[0]
        return TournamentConfig(
            id=row["id"],
            total_days=row["total_days"],
            matches_per_day=row["matches_per_day"],
            total_teams=row["total_teams"],
            points_per_kill=row["points_per_kill"],
            rank_points=row["rank_points"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def insert_config(self, config: TournamentConfig) -> None:
        self._execute(
            f"INSERT OR REPLACE INTO tournament_config ({CONFIG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                config.id,
                config.total_days,
                config.matches_per_day,
                config.total_teams,
                config.points_per_kill,
                config.rank_points,
                config.created_at.isoformat(),
            ),
        )

    def delete_all_configs(self) -> None:
        self._execute("DELETE FROM tournament_config")

    # match results

    def upsert_result(self, result: MatchResult) -> None:
        self.upsert_results([result])

    def upsert_results(self, results: list[MatchResult]) -> None:
        with self._lock:
            self._conn.executemany(
                f"INSERT OR REPLACE INTO match_results ({RESULT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        r.day,
                        r.match_number,
                        r.team_number,
                        r.kills,
                        r.rank,
                        r.total_points,
                        r.timestamp.isoformat(),
                    )
                    for r in results
                ],
            )

    def get_match_results(self, day: int, match_number: int) -> list[MatchResult]:
        rows = self._fetchall(
            f"""SELECT {RESULT_COLUMNS} FROM match_results
                WHERE day = ? AND match_number = ?
                ORDER BY team_number ASC""",
            (day, match_number),
        )
        return [_result(row) for row in rows]

    def get_result(self, day: int, match_number: int, team_number: int) -> MatchResult | None:
        rows = self._fetchall(
            f"""SELECT {RESULT_COLUMNS} FROM match_results
                WHERE day = ? AND match_number = ? AND team_number = ?
                LIMIT 1""",
            (day, match_number, team_number),
        )
        return _result(rows[0]) if rows else None

    def list_results(self) -> list[MatchResult]:
        rows = self._fetchall(
            f"SELECT {RESULT_COLUMNS} FROM match_results ORDER BY day, match_number, team_number"
        )
        return [_result(row) for row in rows]

    def delete_match_results(self, day: int, match_number: int) -> None:
        self._execute(
            "DELETE FROM match_results WHERE day = ? AND match_number = ?", (day, match_number)
        )

    def delete_results_by_day(self, day: int) -> None:
        self._execute("DELETE FROM match_results WHERE day = ?", (day,))

    def delete_results_by_day_range(self, start_day: int, end_day: int) -> None:
        self._execute(
            "DELETE FROM match_results WHERE day >= ? AND day <= ?", (start_day, end_day)
        )

    def delete_all_results(self) -> None:
        self._execute("DELETE FROM match_results")

    def leaderboard_raw(
        self, day: int | None = None, max_match_number: int | None = None
    ) -> list[LeaderboardEntry]:
        clauses: list[str] = []
        params: list[int] = []
        if day is not None:
            clauses.append("day = ?")
            params.append(day)
        if max_match_number is not None:
            clauses.append("match_number <= ?")
            params.append(max_match_number)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = self._fetchall(
            f"""SELECT team_number,
                       SUM(kills) AS total_kills,
                       SUM(total_points) AS total_points,
                       COUNT(*) AS matches_played
                FROM match_results
                {where}
                GROUP BY team_number
                ORDER BY total_points DESC, total_kills DESC, team_number ASC""",
            tuple(params),
        )
        return [
            LeaderboardEntry(
                team_number=row["team_number"],
                total_kills=row["total_kills"],
                total_points=row["total_points"],
                matches_played=row["matches_played"],
            )
            for row in rows
        ]

    def days_with_data(self) -> list[int]:
        rows = self._fetchall(
            f"SELECT DISTINCT day FROM match_results WHERE {HAS_DATA} ORDER BY day ASC"
        )
        return [row[0] for row in rows]

    def matches_with_data(self, day: int) -> list[int]:
        rows = self._fetchall(
            f"""SELECT DISTINCT match_number FROM match_results
                WHERE day = ? AND {HAS_DATA}
                ORDER BY match_number ASC""",
            (day,),
        )
        return [row[0] for row in rows]

    def has_match_data(self, day: int, match_number: int) -> bool:
        return bool(
            self._scalar(
                f"""SELECT COUNT(*) > 0 FROM match_results
                    WHERE day = ? AND match_number = ? AND {HAS_DATA}""",
                (day, match_number),
            )
        )

    def has_data_beyond_match(self, match_number: int) -> bool:
        return bool(
            self._scalar(
                "SELECT COUNT(*) > 0 FROM match_results WHERE match_number > ?", (match_number,)
            )
        )

    def has_any_data(self) -> bool:
        return bool(self._scalar(f"SELECT COUNT(*) > 0 FROM match_results WHERE {HAS_DATA}"))

    def last_day_with_data(self) -> int | None:
        return self._scalar(f"SELECT MAX(day) FROM match_results WHERE {HAS_DATA}")

    def last_match_with_data(self, day: int) -> int | None:
        return self._scalar(
            f"SELECT MAX(match_number) FROM match_results WHERE day = ? AND {HAS_DATA}", (day,)
        )

    # penalties

    def upsert_penalty(self, penalty: Penalty) -> None:
        self._execute(
            f"INSERT OR REPLACE INTO penalties ({PENALTY_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
            (
                penalty.day,
                penalty.match_number,
                penalty.team_number,
                penalty.penalty_points,
                penalty.timestamp.isoformat(),
            ),
        )

    def get_match_penalties(self, day: int, match_number: int) -> list[Penalty]:
        rows = self._fetchall(
            f"""SELECT {PENALTY_COLUMNS} FROM penalties
                WHERE day = ? AND match_number = ?
                ORDER BY team_number ASC""",
            (day, match_number),
        )
        return [_penalty(row) for row in rows]

    def list_penalties(self) -> list[Penalty]:
        rows = self._fetchall(
            f"SELECT {PENALTY_COLUMNS} FROM penalties ORDER BY day, match_number, team_number"
        )
        return [_penalty(row) for row in rows]

    def delete_penalty(self, day: int, match_number: int, team_number: int) -> None:
        self._execute(
            "DELETE FROM penalties WHERE day = ? AND match_number = ? AND team_number = ?",
            (day, match_number, team_number),
        )

    def delete_match_penalties(self, day: int, match_number: int) -> None:
        self._execute(
            "DELETE FROM penalties WHERE day = ? AND match_number = ?", (day, match_number)
        )

    def delete_penalties_by_day(self, day: int) -> None:
        self._execute("DELETE FROM penalties WHERE day = ?", (day,))

    def delete_penalties_by_day_range(self, start_day: int, end_day: int) -> None:
        self._execute("DELETE FROM penalties WHERE day >= ? AND day <= ?", (start_day, end_day))

    def delete_all_penalties(self) -> None:
        self._execute("DELETE FROM penalties")

    def total_penalty_for_team(self, team_number: int) -> int | None:
        return self._scalar(
            "SELECT SUM(penalty_points) FROM penalties WHERE team_number = ?", (team_number,)
        )

    def total_penalty_for_team_on_day(self, team_number: int, day: int) -> int | None:
        return self._scalar(
            "SELECT SUM(penalty_points) FROM penalties WHERE team_number = ? AND day = ?",
            (team_number, day),
        )

    # team aliases

    def list_aliases(self) -> list[TeamAlias]:
        rows = self._fetchall(
            f"SELECT {ALIAS_COLUMNS} FROM team_aliases ORDER BY created_at, rowid"
        )
        return [_alias(row) for row in rows]

    def aliases_for_primary(self, primary_team_number: int) -> list[TeamAlias]:
        rows = self._fetchall(
            f"""SELECT {ALIAS_COLUMNS} FROM team_aliases
                WHERE primary_team_number = ?
                ORDER BY created_at, rowid""",
            (primary_team_number,),
        )
        return [_alias(row) for row in rows]

    def primary_for_alias(self, team_number: int) -> TeamAlias | None:
        rows = self._fetchall(
            f"""SELECT {ALIAS_COLUMNS} FROM team_aliases
                WHERE alias_team_number = ?
                ORDER BY created_at, rowid LIMIT 1""",
            (team_number,),
        )
        return _alias(rows[0]) if rows else None

    def count_group_memberships(self, team_number: int) -> int:
        return self._scalar(
            """SELECT COUNT(*) FROM team_aliases
               WHERE primary_team_number = ? OR alias_team_number = ?""",
            (team_number, team_number),
        )

    def insert_alias(self, alias: TeamAlias) -> None:
        self._execute(
            f"INSERT OR REPLACE INTO team_aliases ({ALIAS_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
            (
                alias.id,
                alias.primary_team_number,
                alias.alias_team_number,
                alias.group_name,
                alias.created_at.isoformat(),
            ),
        )

    def delete_alias(self, alias_id: str) -> None:
        self._execute("DELETE FROM team_aliases WHERE id = ?", (alias_id,))

    def delete_aliases_for_primary(self, primary_team_number: int) -> None:
        self._execute(
            "DELETE FROM team_aliases WHERE primary_team_number = ?", (primary_team_number,)
        )

    def delete_all_aliases(self) -> None:
        self._execute("DELETE FROM team_aliases")


def _result(row: sqlite3.Row) -> MatchResult:
    return MatchResult(
        day=row["day"],
        match_number=row["match_number"],
        team_number=row["team_number"],
        kills=row["kills"],
        rank=row["rank"],
        total_points=row["total_points"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
    )


def _penalty(row: sqlite3.Row) -> Penalty:
    return Penalty(
        day=row["day"],
        match_number=row["match_number"],
        team_number=row["team_number"],
        penalty_points=row["penalty_points"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
    )


def _alias(row: sqlite3.Row) -> TeamAlias:
    return TeamAlias(
        id=row["id"],
        primary_team_number=row["primary_team_number"],
        alias_team_number=row["alias_team_number"],
        group_name=row["group_name"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
