from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator

import boto3
from boto3.dynamodb.conditions import Key

from .domain import MatchResult, Penalty, TeamAlias, TournamentConfig
from .store import ScanQueries, Store

logger = logging.getLogger(__name__)

# (attribute, key type) of the table's primary key
KEY_SCHEMA = (("pk", "HASH"), ("sk", "RANGE"))


def _match_key(day: int, match_number: int, team_number: int | None = None) -> str:
    # zero padded so that sk order is (day, match, team) order
    key = f"D{day:04d}#M{match_number:04d}#"
    if team_number is not None:
        key += f"T{team_number:04d}"
    return key


@dataclass
class DynamoDBStore(ScanQueries, Store):
    """Single-table layout: pk ``TOURNAMENT#{id}``, sk prefixed by record kind.

    sk formats::

        CONFIG#{created_at}#{config_id}
        RESULT#D{day}#M{match}#T{team}
        PENALTY#D{day}#M{match}#T{team}
        ALIAS#{alias_id}
    """

    table_name: str
    tournament_id: str = "default"
    table: Any = None

    @classmethod
    def from_env(cls) -> "DynamoDBStore":
        table_name = os.environ.get("DDB_TABLE_NAME", "")
        if not table_name:
            raise RuntimeError("DDB_TABLE_NAME is required for dynamodb store")
        return cls(
            table_name=table_name,
            tournament_id=os.environ.get("TOURNAMENT_ID", "default").strip() or "default",
        )

    @property
    def _table(self):
        if self.table is None:
            ddb = boto3.resource("dynamodb")
            self.table = ddb.Table(self.table_name)
        return self.table

    def ensure_table(self, client: Any = None) -> bool:
        """Create the table with the pk/sk key schema unless it exists.

        Returns True when the table was created.
        """

        client = client or boto3.client("dynamodb")
        try:
            client.describe_table(TableName=self.table_name)
            logger.info("table %s already exists", self.table_name)
            return False
        except client.exceptions.ResourceNotFoundException:
            pass

        client.create_table(
            TableName=self.table_name,
            AttributeDefinitions=[
                {"AttributeName": name, "AttributeType": "S"} for name, _ in KEY_SCHEMA
            ],
            KeySchema=[{"AttributeName": name, "KeyType": kind} for name, kind in KEY_SCHEMA],
            BillingMode="PAY_PER_REQUEST",
        )
        client.get_waiter("table_exists").wait(TableName=self.table_name)
        logger.info("created table %s", self.table_name)
        return True

    @property
    def _pk(self) -> str:
        return f"TOURNAMENT#{self.tournament_id}"

    @contextmanager
    def transaction(self) -> Iterator[None]:
        # Writes issued inside the block are not rolled back on failure.
        try:
            yield
        except Exception:
            logger.error("dynamodb writes in failed block were not rolled back")
            raise

    def _query(self, prefix: str) -> list[dict]:
        items: list[dict] = []
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": Key("pk").eq(self._pk) & Key("sk").begins_with(prefix)
        }
        while True:
            resp = self._table.query(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def _delete_prefix(self, prefix: str, keep=None) -> None:
        items = self._query(prefix)
        with self._table.batch_writer() as batch:
            for it in items:
                if keep is not None and keep(it):
                    continue
                batch.delete_item(Key={"pk": it["pk"], "sk": it["sk"]})

    # config

    def get_current_config(self) -> TournamentConfig | None:
        items = self._query("CONFIG#")
        if not items:
            return None
        # iso timestamps in the sk sort chronologically
        it = max(items, key=lambda i: i["sk"])
        return TournamentConfig(
            id=it["config_id"],
            total_days=int(it["total_days"]),
            matches_per_day=int(it["matches_per_day"]),
            total_teams=int(it["total_teams"]),
            points_per_kill=int(it["points_per_kill"]),
            rank_points=it["rank_points"],
            created_at=datetime.fromisoformat(it["created_at"]),
        )

    def insert_config(self, config: TournamentConfig) -> None:
        created_at = config.created_at.isoformat()
        self._table.put_item(
            Item={
                "pk": self._pk,
                "sk": f"CONFIG#{created_at}#{config.id}",
                "config_id": config.id,
                "total_days": config.total_days,
                "matches_per_day": config.matches_per_day,
                "total_teams": config.total_teams,
                "points_per_kill": config.points_per_kill,
                "rank_points": config.rank_points,
                "created_at": created_at,
            }
        )

    def delete_all_configs(self) -> None:
        self._delete_prefix("CONFIG#")

    # match results

    def _result_item(self, r: MatchResult) -> dict:
        return {
            "pk": self._pk,
            "sk": "RESULT#" + _match_key(r.day, r.match_number, r.team_number),
            "day": r.day,
            "match_number": r.match_number,
            "team_number": r.team_number,
            "kills": r.kills,
            "rank": r.rank,
            "total_points": r.total_points,
            "timestamp": r.timestamp.isoformat(),
        }

    def upsert_result(self, result: MatchResult) -> None:
        self._table.put_item(Item=self._result_item(result))

    def upsert_results(self, results: list[MatchResult]) -> None:
        with self._table.batch_writer() as batch:
            for r in results:
                batch.put_item(Item=self._result_item(r))

    def list_results(self) -> list[MatchResult]:
        return [_result(it) for it in self._query("RESULT#")]

    def get_match_results(self, day: int, match_number: int) -> list[MatchResult]:
        return [_result(it) for it in self._query("RESULT#" + _match_key(day, match_number))]

    def get_result(self, day: int, match_number: int, team_number: int) -> MatchResult | None:
        resp = self._table.get_item(
            Key={"pk": self._pk, "sk": "RESULT#" + _match_key(day, match_number, team_number)}
        )
        item = resp.get("Item")
        if not item:
            return None
        return _result(item)

    def delete_match_results(self, day: int, match_number: int) -> None:
        self._delete_prefix("RESULT#" + _match_key(day, match_number))

    def delete_results_by_day(self, day: int) -> None:
        self._delete_prefix(f"RESULT#D{day:04d}#")

    def delete_results_by_day_range(self, start_day: int, end_day: int) -> None:
        self._delete_prefix(
            "RESULT#", keep=lambda it: not start_day <= int(it["day"]) <= end_day
        )

    def delete_all_results(self) -> None:
        self._delete_prefix("RESULT#")

    # penalties

    def upsert_penalty(self, penalty: Penalty) -> None:
        self._table.put_item(
            Item={
                "pk": self._pk,
                "sk": "PENALTY#"
                + _match_key(penalty.day, penalty.match_number, penalty.team_number),
                "day": penalty.day,
                "match_number": penalty.match_number,
                "team_number": penalty.team_number,
                "penalty_points": penalty.penalty_points,
                "timestamp": penalty.timestamp.isoformat(),
            }
        )

    def list_penalties(self) -> list[Penalty]:
        return [_penalty(it) for it in self._query("PENALTY#")]

    def delete_penalty(self, day: int, match_number: int, team_number: int) -> None:
        self._table.delete_item(
            Key={"pk": self._pk, "sk": "PENALTY#" + _match_key(day, match_number, team_number)}
        )

    def delete_match_penalties(self, day: int, match_number: int) -> None:
        self._delete_prefix("PENALTY#" + _match_key(day, match_number))

    def delete_penalties_by_day(self, day: int) -> None:
        self._delete_prefix(f"PENALTY#D{day:04d}#")

    def delete_penalties_by_day_range(self, start_day: int, end_day: int) -> None:
        self._delete_prefix(
            "PENALTY#", keep=lambda it: not start_day <= int(it["day"]) <= end_day
        )

    def delete_all_penalties(self) -> None:
        self._delete_prefix("PENALTY#")

    # team aliases

    def list_aliases(self) -> list[TeamAlias]:
        aliases = [_alias(it) for it in self._query("ALIAS#")]
        return sorted(aliases, key=lambda a: a.created_at)

    def insert_alias(self, alias: TeamAlias) -> None:
        self._table.put_item(
            Item={
                "pk": self._pk,
                "sk": f"ALIAS#{alias.id}",
                "alias_id": alias.id,
                "primary_team_number": alias.primary_team_number,
                "alias_team_number": alias.alias_team_number,
                "group_name": alias.group_name,
                "created_at": alias.created_at.isoformat(),
            }
        )

    def delete_alias(self, alias_id: str) -> None:
        self._table.delete_item(Key={"pk": self._pk, "sk": f"ALIAS#{alias_id}"})

    def delete_aliases_for_primary(self, primary_team_number: int) -> None:
        self._delete_prefix(
            "ALIAS#",
            keep=lambda it: int(it["primary_team_number"]) != primary_team_number,
        )

    def delete_all_aliases(self) -> None:
        self._delete_prefix("ALIAS#")


def _result(it: dict) -> MatchResult:
    return MatchResult(
        day=int(it["day"]),
        match_number=int(it["match_number"]),
        team_number=int(it["team_number"]),
        kills=int(it["kills"]),
        rank=int(it["rank"]),
        total_points=int(it["total_points"]),
        timestamp=datetime.fromisoformat(it["timestamp"]),
    )


def _penalty(it: dict) -> Penalty:
    return Penalty(
        day=int(it["day"]),
        match_number=int(it["match_number"]),
        team_number=int(it["team_number"]),
        penalty_points=int(it["penalty_points"]),
        timestamp=datetime.fromisoformat(it["timestamp"]),
    )


def _alias(it: dict) -> TeamAlias:
    return TeamAlias(
        id=it["alias_id"],
        primary_team_number=int(it["primary_team_number"]),
        alias_team_number=int(it["alias_team_number"]),
        group_name=it.get("group_name", ""),
        created_at=datetime.fromisoformat(it["created_at"]),
    )
