from __future__ import annotations

from datetime import datetime

from oddsraiders.models import Country, Fixture, League, Odds, Season, Team
from oddsraiders.services.reconciler import EntityReconciler


def _seed_reference(rec: EntityReconciler):
    rec.upsert("countries", [{"name": "England", "code": "GB"}])
    rec.upsert("leagues", [{"api_id": 39, "name": "Premier League", "type": "League", "country_name": "England"}])
    rec.upsert("seasons", [{"league_api_id": 39, "year": 2025, "current": True}])


def _teams(*ids):
    return [{"api_id": i, "name": f"Team {i}", "country_name": "England"} for i in ids]


def test_new_teams_insert_and_known_league_is_untouched(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)

    teams = rec.upsert("teams", _teams(33, 34, 40))
    league = rec.upsert("leagues", [{"api_id": 39, "name": "Premier League", "type": "League", "country_name": "England"}])

    assert (teams.inserted, teams.updated, teams.failed) == (3, 0, 0)
    assert (league.inserted, league.updated, league.failed) == (0, 0, 0)
    assert league.unchanged == 1
    assert db.query(Team).count() == 3


def test_same_batch_twice_is_pure_update_in_place(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)
    rec.upsert("teams", _teams(33, 34))

    again = rec.upsert("teams", _teams(33, 34))

    assert (again.inserted, again.updated, again.unchanged) == (0, 0, 2)
    assert db.query(Team).count() == 2


def test_without_timestamp_changes_overwrite(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)
    rec.upsert("teams", _teams(33))

    result = rec.upsert("teams", [{"api_id": 33, "name": "Manchester United", "country_name": "England"}])

    assert result.updated == 1
    assert db.query(Team).filter_by(api_id=33).one().name == "Manchester United"


def _fixture_world(rec: EntityReconciler):
    _seed_reference(rec)
    rec.upsert("teams", _teams(33, 34))
    rec.upsert("fixtures", [{
        "api_id": 1001, "league_api_id": 39, "season": 2025,
        "home_team_api_id": 33, "away_team_api_id": 34,
        "kickoff_utc": datetime(2026, 3, 7, 15, 0),
    }])
    rec.upsert("bookmakers", [{"api_id": 8, "name": "Bet365"}])
    rec.upsert("markets", [{"api_id": 1, "name": "Match Winner"}])
    rec.upsert("outcomes", [{"market_api_id": 1, "name": "Home"}])


def _price(price, updated_at):
    return {
        "fixture_api_id": 1001, "bookmaker_api_id": 8, "market_api_id": 1,
        "outcome_name": "Home", "price": price, "updated_at": updated_at,
    }


def test_newer_provider_timestamp_wins_older_is_skipped(db):
    rec = EntityReconciler(db)
    _fixture_world(rec)

    first = rec.upsert("odds", [_price(1.80, datetime(2026, 3, 6, 10, 0))])
    newer = rec.upsert("odds", [_price(1.75, datetime(2026, 3, 6, 11, 0))])
    older = rec.upsert("odds", [_price(1.95, datetime(2026, 3, 6, 9, 0))])
    same = rec.upsert("odds", [_price(2.10, datetime(2026, 3, 6, 11, 0))])

    assert first.inserted == 1
    assert newer.updated == 1
    assert older.unchanged == 1 and older.updated == 0
    assert same.unchanged == 1
    row = db.query(Odds).one()
    assert row.price == 1.75
    assert row.provider_updated_at == datetime(2026, 3, 6, 11, 0)


def test_missing_reference_is_dangling_not_null(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)
    rec.upsert("teams", _teams(33))

    result = rec.upsert("fixtures", [{
        "api_id": 2002, "league_api_id": 39, "season": 2025,
        "home_team_api_id": 33, "away_team_api_id": 999,
    }])

    assert result.failed == 1
    assert result.dangling == 1
    assert "away_team_id" in result.errors[0]
    assert db.query(Fixture).count() == 0


def test_unknown_season_is_dangling(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)
    rec.upsert("teams", _teams(33, 34))

    result = rec.upsert("fixtures", [{
        "api_id": 2003, "league_api_id": 39, "season": 1999,
        "home_team_api_id": 33, "away_team_api_id": 34,
    }])

    assert result.dangling == 1


def test_optional_reference_may_be_absent_but_not_wrong(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)

    no_country = rec.upsert("teams", [{"api_id": 50, "name": "Nomads"}])
    bad_country = rec.upsert("teams", [{"api_id": 51, "name": "Atlantis FC", "country_name": "Atlantis"}])

    assert no_country.inserted == 1
    assert db.query(Team).filter_by(api_id=50).one().country_id is None
    assert bad_country.dangling == 1


def test_bad_record_does_not_take_the_batch_down(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)

    result = rec.upsert("teams", [
        {"api_id": 33, "name": "Man Utd", "country_name": "England"},
        {"api_id": None, "name": "No Id"},
        {"api_id": 35, "name": "", "country_name": "England"},
        {"api_id": 36, "name": "Ghost", "country_name": "Nowhere"},
        {"api_id": 34, "name": "Newcastle", "country_name": "England"},
    ])

    assert result.inserted == 2
    assert result.failed == 3
    assert result.dangling == 1
    assert sorted(t.api_id for t in db.query(Team)) == [33, 34]


def test_identical_rows_in_one_batch_collapse(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)

    result = rec.upsert("teams", _teams(33) + _teams(33))

    assert result.inserted == 1
    assert result.unchanged == 0
    assert db.query(Team).count() == 1


def test_composite_natural_keys(db):
    rec = EntityReconciler(db)
    _seed_reference(rec)

    rec.upsert("seasons", [{"league_api_id": 39, "year": 2024}])

    assert db.query(Season).count() == 2
    league = db.query(League).one()
    assert {s.year for s in league.seasons} == {2024, 2025}
    assert db.query(Country).one().code == "GB"
