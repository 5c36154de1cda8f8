from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import result
from ranker.domain import Penalty, TeamAlias, TournamentConfig
from ranker.sqlite_store import SqliteStore


def test_current_config_is_newest(store):
    """The config with the latest created_at is the current one."""

    assert store.get_current_config() is None
    old = TournamentConfig(total_days=1, matches_per_day=2, points_per_kill=1)
    new = TournamentConfig(
        total_days=3,
        matches_per_day=6,
        points_per_kill=2,
        rank_points='{"1":10}',
        created_at=old.created_at + timedelta(seconds=5),
    )
    store.insert_config(new)
    store.insert_config(old)

    current = store.get_current_config()
    assert current.id == new.id
    assert current.rank_points == '{"1":10}'
    assert current.created_at == new.created_at

    store.delete_all_configs()
    assert store.get_current_config() is None


def test_upsert_replaces_same_key(store):
    """A second write for the same day, match and team replaces the first."""

    store.upsert_result(result(1, 1, 5, kills=2, rank=3, points=7))
    store.upsert_result(result(1, 1, 5, kills=4, rank=1, points=14))

    rows = store.get_match_results(1, 1)
    assert len(rows) == 1
    assert (rows[0].kills, rows[0].rank, rows[0].total_points) == (4, 1, 14)
    assert store.get_result(1, 1, 5).total_points == 14
    assert store.get_result(1, 1, 6) is None


def test_match_results_are_ordered_by_team(store):
    """Rows of one match come back in team number order."""

    store.upsert_results([result(1, 1, t, rank=i + 1) for i, t in enumerate([9, 2, 14])])
    assert [r.team_number for r in store.get_match_results(1, 1)] == [2, 9, 14]


def test_deletes_by_match_day_and_range(store):
    """Bulk deletes touch exactly the rows they name."""

    store.upsert_results(
        [result(d, m, 1, kills=1) for d in (1, 2, 3, 4) for m in (1, 2)]
    )

    store.delete_match_results(1, 2)
    assert store.get_match_results(1, 2) == []
    assert len(store.get_match_results(1, 1)) == 1

    store.delete_results_by_day(2)
    assert sorted({r.day for r in store.list_results()}) == [1, 3, 4]

    store.delete_results_by_day_range(3, 4)
    assert [(r.day, r.match_number) for r in store.list_results()] == [(1, 1)]

    store.delete_all_results()
    assert store.list_results() == []


def test_data_presence_queries(store):
    """Days and matches with data are ascending and empty stores report None."""

    assert store.days_with_data() == []
    assert store.last_day_with_data() is None
    assert store.last_match_with_data(1) is None
    assert store.has_any_data() is False

    store.upsert_results(
        [
            result(1, 1, 1, kills=2),
            result(1, 3, 2, kills=0, rank=1),
            result(3, 2, 4, kills=1),
        ]
    )

    assert store.days_with_data() == [1, 3]
    assert store.matches_with_data(1) == [1, 3]
    assert store.matches_with_data(2) == []
    assert store.last_day_with_data() == 3
    assert store.last_match_with_data(1) == 3
    assert store.has_match_data(1, 3) is True
    assert store.has_match_data(1, 2) is False
    assert store.has_any_data() is True


def test_has_data_beyond_match(store):
    """Shrink detection looks at the match number across all days."""

    store.upsert_results([result(1, 2, 1), result(2, 5, 1)])
    assert store.has_data_beyond_match(5) is False
    assert store.has_data_beyond_match(4) is True
    assert store.has_data_beyond_match(1) is True


def test_leaderboard_raw_sums_per_team(store):
    """Kills, points and matches are summed per team across the filtered rows."""

    store.upsert_results(
        [
            result(1, 1, 1, kills=5, rank=1, points=15),
            result(1, 1, 2, kills=3, rank=2, points=9),
            result(1, 2, 1, kills=1, rank=2, points=7),
            result(1, 2, 2, kills=6, rank=1, points=16),
            result(2, 1, 1, kills=2, rank=1, points=12),
            result(2, 1, 3, kills=0, rank=2, points=6),
        ]
    )

    overall = store.leaderboard_raw()
    assert [(e.team_number, e.total_kills, e.total_points, e.matches_played) for e in overall] == [
        (1, 8, 34, 3),
        (2, 9, 25, 2),
        (3, 0, 6, 1),
    ]

    day_one = store.leaderboard_raw(day=1)
    assert [(e.team_number, e.total_points) for e in day_one] == [(2, 25), (1, 22)]

    capped = store.leaderboard_raw(max_match_number=1)
    assert [(e.team_number, e.total_points) for e in capped] == [(1, 27), (2, 9), (3, 6)]


def test_leaderboard_raw_ties_break_on_kills_then_team(store):
    """Equal points fall back to kills, then to team number."""

    store.upsert_results(
        [
            result(1, 1, 4, kills=1, rank=1, points=10),
            result(1, 1, 2, kills=1, rank=2, points=10),
            result(1, 1, 9, kills=3, rank=3, points=10),
        ]
    )
    assert [e.team_number for e in store.leaderboard_raw()] == [9, 2, 4]


def test_penalties_upsert_and_totals(store):
    """One penalty per team per match; totals are None when nothing is recorded."""

    assert store.total_penalty_for_team(3) is None
    store.upsert_penalty(Penalty(day=1, match_number=1, team_number=3, penalty_points=5))
    store.upsert_penalty(Penalty(day=1, match_number=1, team_number=3, penalty_points=8))
    store.upsert_penalty(Penalty(day=2, match_number=1, team_number=3, penalty_points=2))
    store.upsert_penalty(Penalty(day=2, match_number=1, team_number=4, penalty_points=1))

    assert [p.penalty_points for p in store.get_match_penalties(1, 1)] == [8]
    assert store.total_penalty_for_team(3) == 10
    assert store.total_penalty_for_team_on_day(3, 2) == 2
    assert store.total_penalty_for_team_on_day(3, 3) is None

    store.delete_penalty(1, 1, 3)
    assert store.total_penalty_for_team(3) == 2
    store.delete_penalties_by_day_range(1, 2)
    assert store.list_penalties() == []


def test_alias_queries(store):
    """Aliases list in insertion order and answer membership queries."""

    first = TeamAlias(primary_team_number=19, alias_team_number=7, group_name="Wolves")
    second = TeamAlias(
        primary_team_number=19,
        alias_team_number=12,
        group_name="Wolves",
        created_at=first.created_at + timedelta(seconds=1),
    )
    other = TeamAlias(
        primary_team_number=3,
        alias_team_number=4,
        created_at=first.created_at + timedelta(seconds=2),
    )
    for a in (first, second, other):
        store.insert_alias(a)

    assert [a.alias_team_number for a in store.list_aliases()] == [7, 12, 4]
    assert [a.alias_team_number for a in store.aliases_for_primary(19)] == [7, 12]
    assert store.primary_for_alias(12).primary_team_number == 19
    assert store.primary_for_alias(19) is None
    assert store.count_group_memberships(19) == 2
    assert store.count_group_memberships(7) == 1
    assert store.count_group_memberships(1) == 0

    store.delete_alias(first.id)
    assert [a.alias_team_number for a in store.list_aliases()] == [12, 4]
    store.delete_aliases_for_primary(19)
    assert [a.alias_team_number for a in store.list_aliases()] == [4]
    store.delete_all_aliases()
    assert store.list_aliases() == []


def test_transaction_rolls_back_on_error(store):
    """A failure inside a transaction leaves the store as it was."""

    store.upsert_result(result(1, 1, 1, points=5))
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.delete_all_results()
            store.upsert_result(result(1, 1, 2, points=9))
            raise RuntimeError("boom")

    assert [(r.team_number, r.total_points) for r in store.list_results()] == [(1, 5)]


def test_sqlite_data_survives_reopen(tmp_path):
    """The sqlite backend persists to its file."""

    path = str(tmp_path / "ranker.db")
    first = SqliteStore(path=path)
    first.upsert_result(result(2, 1, 8, kills=3, points=13))
    first.close()

    second = SqliteStore(path=path)
    assert second.get_result(2, 1, 8).total_points == 13
    second.close()
