import pathlib
import sys

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from dartsclub import clubs
from dartsclub.errors import UnknownClubKindError


@pytest.fixture()
def seeded(memory_store):
    memory_store["tables"]["vikings_friday"] = [
        {"id": 1, "date": "2024-05-03", "name": "Ann", "games": 3, "won": 3, "points": 9, "average": 50.0,
         "darts_thrown": 45, "score_left": 0, "season": "9"},
        {"id": 2, "date": "2025-01-03", "name": "Ann", "games": 3, "won": 2, "points": 6, "average": 40.0,
         "darts_thrown": 60, "score_left": 0, "season": "10"},
        {"id": 3, "date": "2025-01-03", "name": "Bob", "games": 3, "won": 1, "points": 3, "average": 30.0,
         "darts_thrown": 75, "score_left": 0, "season": "10"},
        {"id": 4, "date": "2025-01-10", "name": "Bob", "games": 3, "won": 3, "points": 9, "average": 45.0,
         "darts_thrown": 50, "score_left": 0, "season": "10"},
    ]
    memory_store["tables"]["vikings_matches"] = [
        {"id": 5, "date": "2025-01-03", "player": "Ann", "against": "Bob", "legs": 3, "ave": 40.0,
         "result": "Won", "season": "10"},
        {"id": 6, "date": "2025-01-10", "player": "Ann", "against": "Bob", "legs": 3, "ave": 35.0,
         "result": "Lost", "season": "10"},
    ]
    memory_store["tables"]["jda_stats"] = [
        {"id": 7, "date": "2025-02-01", "player": "Cat", "games": 2, "won": 1, "points": 4, "average": 38.0,
         "darts": 40, "score_left": 10, "closer": 96},
    ]
    memory_store["tables"]["jda_matches"] = [
        {"id": 8, "date": "2025-02-01", "player": "Cat", "opponent": "Dan", "legs": 3, "ave": 38.0, "result": "W"},
    ]
    return memory_store


def test_kind_for_prefix():
    assert clubs.kind_for_prefix("vikings") is clubs.VIKINGS
    assert clubs.kind_for_prefix(" JDA ") is clubs.JDA
    assert clubs.kind_for_club({"database_prefix": "jda"}) is clubs.JDA
    with pytest.raises(UnknownClubKindError):
        clubs.kind_for_prefix("darts_r_us")
    with pytest.raises(UnknownClubKindError):
        clubs.kind_for_club({})


def test_resolve_season_defaults_to_latest(seeded):
    assert clubs.VIKINGS.resolve_season(None) == "10"
    assert clubs.VIKINGS.resolve_season("current") == "10"
    assert clubs.VIKINGS.resolve_season("9") == "9"
    # JDA has no seasons
    assert clubs.JDA.resolve_season("9") is None


def test_compute_aggregates_for_season(seeded):
    rows = clubs.VIKINGS.fetch_raw_rows(season="10")
    assert len(rows["sessions"]) == 3
    agg = clubs.VIKINGS.compute_aggregates(rows)
    assert agg["summary"]["total_games"] == 9
    assert agg["rollup"]["latest_date"] == "2025-01-10"
    assert [p["week"] for p in agg["trend"]] == ["03/01/25", "03/01/25", "10/01/25"]
    # Most recent match first
    assert agg["recent_matches"][0]["date"] == "2025-01-10"


def test_player_profile(seeded):
    profile = clubs.VIKINGS.player_profile("Ann", season="10")
    assert profile["stats"]["accumulated_average"] == 40.0
    assert profile["opponents"] == [{"opponent": "Bob", "played": 2, "wins": 1, "losses": 1}]
    assert [m["average"] for m in profile["top_matches"]] == [40.0, 35.0]


def test_rankings_use_latest_week_for_change(seeded):
    table = clubs.VIKINGS.rankings(season="10")
    assert [(e["name"], e["points"], e["change"]) for e in table] == [("Bob", 12, 1), ("Ann", 6, -1)]


def test_handicaps_need_three_sessions(seeded):
    assert clubs.VIKINGS.handicaps(season="10") == []
    table = clubs.VIKINGS.handicaps(season="10", min_sessions=1)
    assert [(h["name"], h["handicap_start_score"]) for h in table] == [("Ann", 451), ("Bob", 401)]


def test_jda_columns_are_mapped(seeded):
    sessions = clubs.JDA.fetch_sessions(player="Cat")
    assert sessions[0]["name"] == "Cat"
    assert sessions[0]["darts_thrown"] == 40
    assert sessions[0]["high_closer"] == 96
    profile = clubs.JDA.player_profile("Cat")
    assert profile["stats"]["highest_closer"] == 96
    assert profile["opponents"] == [{"opponent": "Dan", "played": 1, "wins": 1, "losses": 0}]


def test_matches_without_season_count_for_every_season(seeded, memory_store):
    memory_store["tables"]["vikings_matches"] += [
        {"id": 10, "date": "2024-12-20", "player": "Ann", "against": "Cat", "legs": 3, "ave": 30.0,
         "result": "Won", "season": None},
        {"id": 11, "date": "2024-05-03", "player": "Ann", "against": "Dan", "legs": 3, "ave": 50.0,
         "result": "Won", "season": "9"},
    ]
    profile = clubs.VIKINGS.player_profile("Ann", season="10")
    assert [o["opponent"] for o in profile["opponents"]] == ["Bob", "Cat"]
    assert [m["average"] for m in profile["top_matches"]] == [40.0, 35.0, 30.0]

    earlier = clubs.VIKINGS.fetch_matches(season="9", player="Ann")
    assert [m["against"] for m in earlier] == ["Cat", "Dan"]
