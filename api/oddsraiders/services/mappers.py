# api/oddsraiders/services/mappers.py
"""
Turn raw API-Football rows into flat records the reconciler understands.

A record holds plain column values, natural-key fields, the provider ids of
the entities it points at (`*_api_id`, `country_name`, ...) and, when the
provider dates its data, an `updated_at` timestamp. One raw row may yield
several records (a league carries its seasons, an odds row carries every
bookmaker/market/outcome price).
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from ..errors import InvalidRecordError
from ..util import parse_date, parse_iso_utc, parse_percent

logger = logging.getLogger("oddsraiders.ingest")

Mapper = Callable[[dict], Iterable[dict]]


def _get(d, *path):
    for key in path:
        if not isinstance(d, dict):
            return None
        d = d.get(key)
    return d


def _need(d, *path):
    value = _get(d, *path)
    if value is None or value == "":
        raise InvalidRecordError(f"missing {'.'.join(path)}")
    return value


def _int(v) -> Optional[int]:
    try:
        return int(v) if v is not None and v != "" else None
    except (TypeError, ValueError):
        return None


def _str(v) -> Optional[str]:
    return None if v is None else str(v)


def _scope_id(row: dict, scope: str):
    return _need(row, "_scope", scope)


# ---------- reference data ----------

def map_country(row: dict) -> Iterator[dict]:
    yield {
        "name": _need(row, "name"),
        "code": row.get("code"),
        "flag": row.get("flag"),
    }


def map_league(row: dict) -> Iterator[dict]:
    yield {
        "api_id": _need(row, "league", "id"),
        "name": _need(row, "league", "name"),
        "type": _get(row, "league", "type"),
        "logo": _get(row, "league", "logo"),
        "country_name": _need(row, "country", "name"),
    }


def map_league_seasons(row: dict) -> Iterator[dict]:
    league_id = _need(row, "league", "id")
    for s in row.get("seasons") or []:
        yield {
            "league_api_id": league_id,
            "year": _need(s, "year"),
            "start_date": parse_date(s.get("start")),
            "end_date": parse_date(s.get("end")),
            "current": bool(s.get("current")),
        }


def map_team(row: dict) -> Iterator[dict]:
    team = _need(row, "team")
    yield {
        "api_id": _need(team, "id"),
        "name": _need(team, "name"),
        "code": team.get("code"),
        "founded": _int(team.get("founded")),
        "national": bool(team.get("national")),
        "logo": team.get("logo"),
        "country_name": team.get("country"),
    }


def map_team_venue(row: dict) -> Iterator[dict]:
    venue = row.get("venue") or {}
    if venue.get("id") is None:
        return
    yield {
        "api_id": venue["id"],
        "name": _need(venue, "name"),
        "address": venue.get("address"),
        "city": venue.get("city"),
        "capacity": _int(venue.get("capacity")),
        "surface": venue.get("surface"),
    }


def map_fixture_venue(row: dict) -> Iterator[dict]:
    # neutral grounds never show up under /teams; only id/name/city are known here
    venue = _get(row, "fixture", "venue") or {}
    if venue.get("id") is None or not venue.get("name"):
        return
    yield {"api_id": venue["id"], "name": venue["name"], "city": venue.get("city")}


def map_player(row: dict) -> Iterator[dict]:
    player = _need(row, "player")
    stats = (row.get("statistics") or [{}])[0] or {}
    yield {
        "api_id": _need(player, "id"),
        "name": _need(player, "name"),
        "first_name": player.get("firstname"),
        "last_name": player.get("lastname"),
        "age": _int(player.get("age")),
        "nationality": player.get("nationality"),
        "photo": player.get("photo"),
        "position": _get(stats, "games", "position"),
        "team_api_id": _get(stats, "team", "id"),
    }


def map_coach(row: dict) -> Iterator[dict]:
    team_id = _get(row, "team", "id") or _get(row, "_scope", "team")
    yield {
        "api_id": _need(row, "id"),
        "name": _need(row, "name"),
        "first_name": row.get("firstname"),
        "last_name": row.get("lastname"),
        "nationality": row.get("nationality"),
        "photo": row.get("photo"),
        "team_api_id": team_id,
    }


def map_fixture_status(row: dict) -> Iterator[dict]:
    yield {"short": _need(row, "short"), "long": row.get("long"), "type": row.get("type")}


def map_event_type(row: dict) -> Iterator[dict]:
    yield {"name": _need(row, "name"), "details": row.get("details")}


def map_market(row: dict) -> Iterator[dict]:
    yield {"api_id": _need(row, "id"), "name": _need(row, "name")}


def map_bookmaker(row: dict) -> Iterator[dict]:
    yield {"api_id": _need(row, "id"), "name": _need(row, "name")}


# ---------- fixtures & fixture-scoped data ----------

def map_fixture(row: dict) -> Iterator[dict]:
    fx = _need(row, "fixture")
    yield {
        "api_id": _need(fx, "id"),
        "kickoff_utc": parse_iso_utc(fx.get("date")),
        "referee": fx.get("referee"),
        "round": _get(row, "league", "round"),
        "elapsed": _int(_get(fx, "status", "elapsed")),
        "goals_home": _int(_get(row, "goals", "home")),
        "goals_away": _int(_get(row, "goals", "away")),
        "league_api_id": _need(row, "league", "id"),
        "season": _need(row, "league", "season"),
        "home_team_api_id": _need(row, "teams", "home", "id"),
        "away_team_api_id": _need(row, "teams", "away", "id"),
        "venue_api_id": _get(fx, "venue", "id"),
        "status_short": _get(fx, "status", "short"),
    }


def _iter_prices(row: dict):
    for book in row.get("bookmakers") or []:
        for bet in book.get("bets") or []:
            for value in bet.get("values") or []:
                yield book, bet, value


def map_odds_outcomes(row: dict) -> Iterator[dict]:
    for _book, bet, value in _iter_prices(row):
        yield {
            "market_api_id": _need(bet, "id"),
            "name": str(_need(value, "value")),
        }


def map_odds(row: dict) -> Iterator[dict]:
    fixture_id = _need(row, "fixture", "id")
    updated = parse_iso_utc(row.get("update"))
    for book, bet, value in _iter_prices(row):
        try:
            price = float(value.get("odd"))
        except (TypeError, ValueError):
            raise InvalidRecordError(f"fixture {fixture_id}: bad price {value.get('odd')!r}")
        yield {
            "fixture_api_id": fixture_id,
            "bookmaker_api_id": _need(book, "id"),
            "market_api_id": _need(bet, "id"),
            "outcome_name": str(_need(value, "value")),
            "price": price,
            "updated_at": updated,
        }


def map_prediction(row: dict) -> Iterator[dict]:
    p = _need(row, "predictions")
    yield {
        "fixture_api_id": _scope_id(row, "fixture"),
        "winner_team_api_id": _get(p, "winner", "id"),
        "winner_comment": _get(p, "winner", "comment"),
        "win_or_draw": _get(p, "win_or_draw"),
        "under_over": _str(p.get("under_over")),
        "goals_home": _str(_get(p, "goals", "home")),
        "goals_away": _str(_get(p, "goals", "away")),
        "advice": p.get("advice"),
        "percent_home": parse_percent(_get(p, "percent", "home")),
        "percent_draw": parse_percent(_get(p, "percent", "draw")),
        "percent_away": parse_percent(_get(p, "percent", "away")),
    }


def map_standing(row: dict) -> Iterator[dict]:
    league = _need(row, "league")
    league_id = _need(league, "id")
    season = _need(league, "season")
    for group in league.get("standings") or []:
        for e in group or []:
            yield {
                "league_api_id": league_id,
                "season": season,
                "team_api_id": _need(e, "team", "id"),
                "group_name": e.get("group") or "",
                "rank": _int(e.get("rank")),
                "points": _int(e.get("points")),
                "goals_diff": _int(e.get("goalsDiff")),
                "form": e.get("form"),
                "description": e.get("description"),
                "played": _int(_get(e, "all", "played")),
                "win": _int(_get(e, "all", "win")),
                "draw": _int(_get(e, "all", "draw")),
                "lose": _int(_get(e, "all", "lose")),
                "goals_for": _int(_get(e, "all", "goals", "for")),
                "goals_against": _int(_get(e, "all", "goals", "against")),
                "updated_at": parse_iso_utc(e.get("update")),
            }


def map_statistics(row: dict) -> Iterator[dict]:
    fixture_id = _scope_id(row, "fixture")
    team_id = _need(row, "team", "id")
    for stat in row.get("statistics") or []:
        yield {
            "fixture_api_id": fixture_id,
            "team_api_id": team_id,
            "stat_type": _need(stat, "type"),
            "value": _str(stat.get("value")),
        }


def _lineup_entries(row: dict):
    for bucket, starter in (("startXI", True), ("substitutes", False)):
        for entry in row.get(bucket) or []:
            yield entry.get("player") or {}, starter


def map_lineup_players(row: dict) -> Iterator[dict]:
    # squad players missing from /players (youth call-ups); name only, the rest stays untouched
    for player, _starter in _lineup_entries(row):
        if player.get("id") is None or not player.get("name"):
            continue
        yield {"api_id": player["id"], "name": player["name"]}


def map_lineup(row: dict) -> Iterator[dict]:
    fixture_id = _scope_id(row, "fixture")
    team_id = _need(row, "team", "id")
    for player, starter in _lineup_entries(row):
        yield {
            "fixture_api_id": fixture_id,
            "team_api_id": team_id,
            "player_api_id": _need(player, "id"),
            "formation": row.get("formation"),
            "position": player.get("pos"),
            "number": _int(player.get("number")),
            "grid": player.get("grid"),
            "is_starter": starter,
        }


def map_rows(mapper: Mapper, rows: Iterable[dict]) -> Tuple[List[dict], List[str]]:
    """Apply a mapper row by row. A malformed row is reported, never fatal."""
    records: List[dict] = []
    errors: List[str] = []
    for i, row in enumerate(rows):
        try:
            mapped = list(mapper(row))
        except InvalidRecordError as e:
            errors.append(f"row {i}: {e.message}")
        except (AttributeError, KeyError, TypeError) as e:
            errors.append(f"row {i}: unexpected shape ({e!r})")
        else:
            records.extend(mapped)
    if errors:
        logger.warning("%s: %d malformed row(s), first: %s", mapper.__name__, len(errors), errors[0])
    return records, errors
