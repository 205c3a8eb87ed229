from __future__ import annotations

from datetime import date, datetime

from oddsraiders.services import mappers


def test_league_row_carries_its_seasons():
    row = {
        "league": {"id": 140, "name": "La Liga", "type": "League"},
        "country": {"name": "Spain"},
        "seasons": [
            {"year": 2024, "start": "2024-08-15", "end": "2025-05-25", "current": False},
            {"year": 2025, "start": "2025-08-15", "end": "2026-05-24", "current": True},
        ],
    }

    [league] = mappers.map_league(row)
    seasons = list(mappers.map_league_seasons(row))

    assert league["api_id"] == 140 and league["country_name"] == "Spain"
    assert [s["year"] for s in seasons] == [2024, 2025]
    assert seasons[1]["start_date"] == date(2025, 8, 15)
    assert seasons[1]["current"] is True


def test_fixture_mapping_normalises_kickoff_to_utc():
    row = {
        "fixture": {"id": 7, "date": "2026-03-07T17:30:00+02:00", "status": {"short": "FT", "elapsed": 90}},
        "league": {"id": 39, "season": 2025, "round": "Regular Season - 28"},
        "teams": {"home": {"id": 33}, "away": {"id": 34}},
        "goals": {"home": 2, "away": 1},
    }

    [rec] = mappers.map_fixture(row)

    assert rec["kickoff_utc"] == datetime(2026, 3, 7, 15, 30)
    assert rec["status_short"] == "FT"
    assert rec["venue_api_id"] is None
    assert (rec["goals_home"], rec["goals_away"]) == (2, 1)


def test_odds_row_fans_out_per_price():
    row = {
        "fixture": {"id": 7},
        "update": "2026-03-06T10:00:00+00:00",
        "bookmakers": [
            {"id": 8, "bets": [{"id": 5, "values": [{"value": "Over 2.5", "odd": "1.90"}, {"value": "Under 2.5", "odd": "1.95"}]}]},
            {"id": 11, "bets": [{"id": 5, "values": [{"value": "Over 2.5", "odd": "1.87"}]}]},
        ],
    }

    recs = list(mappers.map_odds(row))
    outcomes = {(o["market_api_id"], o["name"]) for o in mappers.map_odds_outcomes(row)}

    assert [(r["bookmaker_api_id"], r["outcome_name"], r["price"]) for r in recs] == [
        (8, "Over 2.5", 1.90), (8, "Under 2.5", 1.95), (11, "Over 2.5", 1.87),
    ]
    assert all(r["updated_at"] == datetime(2026, 3, 6, 10, 0) for r in recs)
    assert outcomes == {(5, "Over 2.5"), (5, "Under 2.5")}


def test_map_rows_isolates_malformed_rows():
    rows = [
        {"team": {"id": 33, "name": "Manchester United"}},
        {"team": {"name": "No id"}},
        "not even a dict",
        {"team": {"id": 34, "name": "Newcastle"}},
    ]

    records, errors = mappers.map_rows(mappers.map_team, rows)

    assert [r["api_id"] for r in records] == [33, 34]
    assert len(errors) == 2
    assert "team.id" in errors[0] or "id" in errors[0]


def test_bad_price_fails_the_whole_row_only():
    rows = [
        {"fixture": {"id": 1}, "bookmakers": [{"id": 8, "bets": [{"id": 1, "values": [
            {"value": "Home", "odd": "1.5"}, {"value": "Away", "odd": "n/a"}]}]}]},
        {"fixture": {"id": 2}, "bookmakers": [{"id": 8, "bets": [{"id": 1, "values": [
            {"value": "Home", "odd": "2.0"}]}]}]},
    ]

    records, errors = mappers.map_rows(mappers.map_odds, rows)

    assert [r["fixture_api_id"] for r in records] == [2]
    assert len(errors) == 1


def test_standings_keep_group_and_timestamp():
    row = {"league": {"id": 2, "season": 2025, "standings": [[
        {"rank": 1, "team": {"id": 50}, "points": 12, "group": "Group A",
         "all": {"played": 4, "win": 4, "draw": 0, "lose": 0, "goals": {"for": 10, "against": 2}},
         "update": "2026-02-20T00:00:00+00:00"},
    ]]}}

    [rec] = mappers.map_standing(row)

    assert rec["group_name"] == "Group A"
    assert rec["goals_for"] == 10
    assert rec["updated_at"] == datetime(2026, 2, 20)
