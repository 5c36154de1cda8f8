from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import FakeTable, result
from ranker.domain import Penalty, TeamAlias, TeamEntry, TournamentConfig
from ranker.dynamodb_store import DynamoDBStore
from ranker.repository import TournamentRepository


@pytest.fixture
def table():
    return FakeTable()


@pytest.fixture
def ddb(table):
    return DynamoDBStore(table_name="ranker-test", tournament_id="spring", table=table)


def test_items_use_sortable_keys(ddb, table):
    """Result keys are zero padded so sk order is day, match, team order."""

    ddb.upsert_result(result(2, 10, 3, kills=1, points=4))
    ddb.upsert_result(result(2, 9, 12, kills=1, points=4))

    keys = sorted(sk for _, sk in table.items)
    assert keys == ["RESULT#D0002#M0009#T0012", "RESULT#D0002#M0010#T0003"]
    assert {pk for pk, _ in table.items} == {"TOURNAMENT#spring"}
    assert [(r.match_number, r.team_number) for r in ddb.list_results()] == [(9, 12), (10, 3)]


def test_config_round_trip(ddb):
    """The newest config is read back with all of its fields."""

    old = TournamentConfig(total_days=1, matches_per_day=2, points_per_kill=1)
    new = TournamentConfig(
        total_days=2,
        matches_per_day=6,
        points_per_kill=2,
        rank_points='{"1":10,"2":6}',
        created_at=old.created_at + timedelta(minutes=1),
    )
    ddb.insert_config(old)
    ddb.insert_config(new)

    current = ddb.get_current_config()
    assert current.id == new.id
    assert current.matches_per_day == 6
    assert current.rank_points_table() == {1: 10, 2: 6}

    ddb.delete_all_configs()
    assert ddb.get_current_config() is None


def test_numbers_read_back_as_ints(ddb, table):
    """boto3 returns Decimal for numbers; rows are converted back to ints."""

    ddb.upsert_result(result(1, 1, 4, kills=3, rank=2, points=9))
    for item in table.items.values():
        for field in ("day", "match_number", "team_number", "kills", "rank", "total_points"):
            item[field] = Decimal(item[field])

    row = ddb.get_result(1, 1, 4)
    assert (row.kills, row.rank, row.total_points) == (3, 2, 9)
    assert isinstance(row.total_points, int)


def test_query_follows_pagination():
    """Every page of a prefix query is collected."""

    paged = FakeTable(page_size=2)
    store = DynamoDBStore(table_name="ranker-test", table=paged)
    store.upsert_results([result(1, 1, t, rank=t) for t in range(1, 6)])

    assert [r.team_number for r in store.get_match_results(1, 1)] == [1, 2, 3, 4, 5]
    assert paged.query_calls == 3


def test_range_deletes_and_prefix_isolation(ddb):
    """Deleting a match does not touch a match whose number shares a prefix."""

    ddb.upsert_results([result(d, m, 1) for d in (1, 2, 3) for m in (1, 10)])
    ddb.upsert_penalty(Penalty(day=2, match_number=1, team_number=1, penalty_points=3))

    ddb.delete_match_results(1, 1)
    assert [(r.day, r.match_number) for r in ddb.list_results()][:1] == [(1, 10)]

    ddb.delete_results_by_day_range(2, 2)
    assert sorted({r.day for r in ddb.list_results()}) == [1, 3]
    assert ddb.total_penalty_for_team(1) == 3

    ddb.delete_penalties_by_day(2)
    assert ddb.total_penalty_for_team(1) is None


def test_tournaments_share_a_table_without_mixing(table):
    """Two tournament ids in one table see only their own rows."""

    spring = DynamoDBStore(table_name="t", tournament_id="spring", table=table)
    autumn = DynamoDBStore(table_name="t", tournament_id="autumn", table=table)
    spring.upsert_result(result(1, 1, 1, points=10))

    assert autumn.list_results() == []
    assert len(spring.list_results()) == 1


def test_aliases_round_trip(ddb):
    """Aliases keep their order and group queries work on the scan mixin."""

    a = TeamAlias(primary_team_number=19, alias_team_number=7, group_name="Wolves")
    b = TeamAlias(
        primary_team_number=19,
        alias_team_number=12,
        group_name="Wolves",
        created_at=a.created_at + timedelta(seconds=1),
    )
    ddb.insert_alias(b)
    ddb.insert_alias(a)

    assert [x.alias_team_number for x in ddb.list_aliases()] == [7, 12]
    assert ddb.primary_for_alias(7).group_name == "Wolves"

    ddb.delete_aliases_for_primary(19)
    assert ddb.list_aliases() == []


def test_repository_runs_on_dynamodb(ddb):
    """The full save and leaderboard flow works on the DynamoDB layout."""

    repo = TournamentRepository(ddb)
    repo.save_config(
        TournamentConfig(
            total_days=1, matches_per_day=2, points_per_kill=1, rank_points='{"1":10,"2":6}'
        )
    )
    repo.add_team_alias(19, 7)
    repo.save_match(
        1,
        1,
        [
            TeamEntry(rank=1, team_number=7, kills=5),
            TeamEntry(rank=2, team_number=19, kills=1),
        ],
    )

    scores = repo.leaderboard()
    assert [(s.team_number, s.total_points) for s in scores] == [(19, 15), (7, 7)]


class _TableMissing(Exception):
    pass


class FakeClient:
    class exceptions:
        ResourceNotFoundException = _TableMissing

    def __init__(self, tables=()):
        self.tables = set(tables)
        self.created: list[dict] = []
        self.waited: list[str] = []

    def describe_table(self, TableName):
        if TableName not in self.tables:
            raise _TableMissing(TableName)
        return {"Table": {"TableName": TableName}}

    def create_table(self, **kwargs):
        self.created.append(kwargs)
        self.tables.add(kwargs["TableName"])

    def get_waiter(self, name):
        assert name == "table_exists"
        client = self

        class _Waiter:
            def wait(self, TableName):
                client.waited.append(TableName)

        return _Waiter()


def test_ensure_table_creates_missing_table(ddb):
    """A missing table is created with the pk/sk schema and awaited."""

    client = FakeClient()
    assert ddb.ensure_table(client) is True

    (request,) = client.created
    assert request["TableName"] == "ranker-test"
    assert request["KeySchema"] == [
        {"AttributeName": "pk", "KeyType": "HASH"},
        {"AttributeName": "sk", "KeyType": "RANGE"},
    ]
    assert request["BillingMode"] == "PAY_PER_REQUEST"
    assert client.waited == ["ranker-test"]


def test_ensure_table_keeps_existing_table(ddb):
    client = FakeClient(tables={"ranker-test"})
    assert ddb.ensure_table(client) is False
    assert client.created == []
