from __future__ import annotations

from contextlib import contextmanager

import pytest

from ranker.domain import MatchResult, TournamentConfig
from ranker.repository import TournamentRepository
from ranker.sqlite_store import SqliteStore
from ranker.store import InMemoryStore


@pytest.fixture(params=["inmemory", "sqlite"])
def store(request, tmp_path):
    if request.param == "sqlite":
        s = SqliteStore(path=str(tmp_path / "ranker.db"))
        yield s
        s.close()
    else:
        yield InMemoryStore.create()


@pytest.fixture
def repo(store) -> TournamentRepository:
    return TournamentRepository(store)


@pytest.fixture
def configured_repo(repo) -> TournamentRepository:
    repo.save_config(
        TournamentConfig(
            total_days=3,
            matches_per_day=4,
            points_per_kill=1,
            rank_points='{"1":10,"2":6,"3":5,"4":4}',
        )
    )
    return repo


def result(day: int, match_number: int, team_number: int, kills: int = 0, rank: int = 1, points: int = 0):
    return MatchResult(
        day=day,
        match_number=match_number,
        team_number=team_number,
        kills=kills,
        rank=rank,
        total_points=points,
    )


class FakeTable:
    """Enough of a boto3 DynamoDB Table for the single-table store.

    Items are kept per (pk, sk). ``query`` understands
    ``Key("pk").eq(..) & Key("sk").begins_with(..)`` and pages results when
    ``page_size`` is set.
    """

    def __init__(self, page_size: int | None = None):
        self.items: dict[tuple[str, str], dict] = {}
        self.page_size = page_size
        self.query_calls = 0

    def put_item(self, Item):
        self.items[(Item["pk"], Item["sk"])] = dict(Item)

    def get_item(self, Key):
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": dict(item)} if item else {}

    def delete_item(self, Key):
        self.items.pop((Key["pk"], Key["sk"]), None)

    def query(self, KeyConditionExpression, ExclusiveStartKey=None):
        self.query_calls += 1
        pk, prefix = _key_condition(KeyConditionExpression)
        matched = sorted(
            (it for (p, sk), it in self.items.items() if p == pk and sk.startswith(prefix)),
            key=lambda it: it["sk"],
        )
        if ExclusiveStartKey is not None:
            matched = [it for it in matched if it["sk"] > ExclusiveStartKey["sk"]]
        if self.page_size is not None and len(matched) > self.page_size:
            page = matched[: self.page_size]
            return {
                "Items": [dict(it) for it in page],
                "LastEvaluatedKey": {"pk": pk, "sk": page[-1]["sk"]},
            }
        return {"Items": [dict(it) for it in matched]}

    @contextmanager
    def batch_writer(self):
        yield self


def _key_condition(condition) -> tuple[str, str]:
    expr = condition.get_expression()
    assert expr["operator"] == "AND"
    found = {}
    for part in expr["values"]:
        key, value = part.get_expression()["values"]
        found[key.name] = value
    return found["pk"], found["sk"]
