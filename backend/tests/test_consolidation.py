from __future__ import annotations

import pytest

from conftest import result
from ranker.consolidation import ScoreConsolidationEngine, redistribute
from ranker.domain import TeamAlias


def _points(rows):
    return {r.team_number: r.total_points for r in rows}


def test_primary_takes_best_score_of_group():
    """19 with aliases 7 and 12: the best score moves to 19, the rest follow by team number."""

    rows = [
        result(1, 1, 7, kills=5, rank=2, points=15),
        result(1, 1, 12, kills=8, rank=1, points=20),
        result(1, 1, 19, kills=2, rank=3, points=10),
    ]
    changed = redistribute(19, [7, 12], rows)

    assert _points(changed) == {19: 20, 12: 15, 7: 10}
    moved = {r.team_number: (r.kills, r.rank) for r in changed}
    assert moved == {19: (8, 1), 12: (5, 2), 7: (2, 3)}


def test_redistribution_is_a_permutation():
    """Payloads are moved, never copied or invented."""

    rows = [
        result(1, 1, 3, points=4),
        result(1, 1, 5, points=30),
        result(1, 1, 8, points=12),
        result(1, 1, 20, points=9),
    ]
    changed = {r.team_number: r for r in redistribute(8, [3, 5], rows)}
    after = [changed.get(r.team_number, r) for r in rows]

    assert sorted(r.total_points for r in after) == sorted(r.total_points for r in rows)
    assert _points(after)[8] == 30
    assert _points(after)[20] == 9


def test_single_or_no_participant_is_unchanged():
    """Nothing moves unless two members of the group played the match."""

    rows = [result(1, 1, 19, points=10), result(1, 1, 2, points=40)]
    assert redistribute(19, [7, 12], rows) == []
    assert redistribute(30, [31], rows) == []


def test_missing_primary_orders_aliases_descending():
    """Without the primary row the best score goes to the highest alias number."""

    rows = [result(1, 1, 7, points=25), result(1, 1, 12, points=5)]
    assert _points(redistribute(19, [7, 12], rows)) == {12: 25, 7: 5}


def test_already_consolidated_match_is_left_alone():
    """Running again on a consolidated match changes nothing."""

    rows = [result(1, 1, 19, points=20), result(1, 1, 12, points=15), result(1, 1, 7, points=10)]
    assert redistribute(19, [7, 12], rows) == []


def test_engine_rewrites_stored_rows(store):
    """The engine consolidates every group of a match in the store."""

    store.insert_alias(TeamAlias(primary_team_number=19, alias_team_number=7))
    store.insert_alias(TeamAlias(primary_team_number=2, alias_team_number=3))
    store.upsert_results(
        [
            result(1, 1, 7, points=15),
            result(1, 1, 19, points=10),
            result(1, 1, 2, points=1),
            result(1, 1, 3, points=9),
            result(1, 2, 7, points=50),
            result(1, 2, 19, points=0),
        ]
    )
    engine = ScoreConsolidationEngine(store)

    assert engine.groups() == {19: [7], 2: [3]}
    assert engine.consolidate_match(1, 1) == 4
    assert _points(store.get_match_results(1, 1)) == {2: 9, 3: 1, 7: 10, 19: 15}
    assert _points(store.get_match_results(1, 2)) == {7: 50, 19: 0}


def test_engine_without_groups_does_nothing(store):
    """No aliases means no writes."""

    store.upsert_result(result(1, 1, 7, points=15))
    outcome = ScoreConsolidationEngine(store).try_consolidate_match(1, 1)
    assert outcome.ok
    assert outcome.value == 0


def test_engine_rolls_back_when_a_group_fails(store, monkeypatch):
    """A write failure after the first group leaves every stored row as it was."""

    store.insert_alias(TeamAlias(primary_team_number=19, alias_team_number=7))
    store.insert_alias(TeamAlias(primary_team_number=2, alias_team_number=3))
    store.upsert_results(
        [
            result(1, 1, 7, points=15),
            result(1, 1, 19, points=10),
            result(1, 1, 2, points=1),
            result(1, 1, 3, points=9),
        ]
    )
    upsert_results = store.upsert_results
    calls = []

    def fail_after_first(rows):
        calls.append(rows)
        if len(calls) > 1:
            raise OSError("write failed")
        upsert_results(rows)

    monkeypatch.setattr(store, "upsert_results", fail_after_first)
    engine = ScoreConsolidationEngine(store)

    with pytest.raises(OSError):
        engine.consolidate_match(1, 1)
    assert len(calls) == 2
    assert _points(store.get_match_results(1, 1)) == {2: 1, 3: 9, 7: 15, 19: 10}

    outcome = engine.try_consolidate_match(1, 1)
    assert not outcome.ok
    assert isinstance(outcome.error, OSError)
