import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from dartsclub import stats


def _row(date, name, points, score_left=0, darts=0, games=1):
    return {
        "date": date,
        "name": name,
        "points": points,
        "games": games,
        "score_left": score_left,
        "darts_thrown": darts,
    }


def test_rankings_sorted_by_points_with_positions():
    rows = [
        _row("2025-01-03", "Ann", 5),
        _row("2025-01-03", "Bob", 2),
        _row("2025-01-10", "Bob", 4),
    ]
    table = stats.compute_rankings(rows)
    assert [(e["position"], e["name"], e["points"]) for e in table] == [(1, "Bob", 6), (2, "Ann", 5)]
    assert all(e["change"] == 0 for e in table)
    assert table[0]["sessions"] == 2


def test_rankings_tie_broken_by_average():
    # Same points; Cat scored 501 in 30 darts, Dan 501 in 45 darts
    rows = [
        _row("2025-01-03", "Dan", 3, darts=45),
        _row("2025-01-03", "Cat", 3, darts=30),
    ]
    table = stats.compute_rankings(rows)
    assert [e["name"] for e in table] == ["Cat", "Dan"]
    assert table[0]["average"] == 501 / 30 * 3


def test_rankings_change_against_previous_snapshot():
    rows = [
        _row("2025-01-03", "Ann", 5),
        _row("2025-01-03", "Bob", 2),
        _row("2025-01-10", "Bob", 4),
        _row("2025-01-10", "Cat", 1),
    ]
    previous = stats.previous_snapshot(rows)
    assert len(previous) == 2
    table = stats.compute_rankings(rows, previous=previous)
    by_name = {e["name"]: e for e in table}
    assert by_name["Bob"]["position"] == 1 and by_name["Bob"]["change"] == 1
    assert by_name["Ann"]["position"] == 2 and by_name["Ann"]["change"] == -1
    # New this week, nothing to compare against
    assert by_name["Cat"]["change"] == 0


def test_ranking_deltas_pure():
    current = [{"name": "A", "position": 1}, {"name": "B", "position": 2}, {"name": "C", "position": 3}]
    previous = [{"name": "B", "position": 1}, {"name": "A", "position": 3}]
    assert stats.ranking_deltas(current, previous) == {"A": 2, "B": -1, "C": 0}


def test_previous_snapshot_empty_without_dates():
    assert stats.previous_snapshot([{"name": "A", "date": None}]) == []


def test_rankings_are_repeatable():
    rows = [
        _row("2025-01-03", "Ann", 3, darts=40),
        _row("2025-01-03", "Bob", 3, darts=40),
        _row("2025-01-10", "Cat", 3, darts=40),
    ]
    assert stats.compute_rankings(rows) == stats.compute_rankings(rows)
    assert [e["name"] for e in stats.compute_rankings(rows)] == ["Ann", "Bob", "Cat"]
