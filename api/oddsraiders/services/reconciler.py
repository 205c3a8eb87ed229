# api/oddsraiders/services/reconciler.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import DanglingReferenceError, InvalidRecordError
from ..models import (
    Coach, Country, EventType, Fixture, FixtureStatus, League, Lineup, Market,
    Odds, Outcome, Player, Prediction, Provider, Season, Standing, Statistical,
    Team, Venue,
)
from ..util import utcnow

logger = logging.getLogger("oddsraiders.reconcile")

MAX_ERRORS_KEPT = 20


@dataclass(frozen=True)
class Ref:
    """A foreign key onto another external entity.

    `match` maps columns of the target model to record fields holding the
    provider's identifier, e.g. {"api_id": "home_team_api_id"}.
    """
    column: str
    model: type
    match: Dict[str, str]
    optional: bool = False


@dataclass(frozen=True)
class ResourceSpec:
    model: type
    keys: Tuple[str, ...]
    fields: Tuple[str, ...] = ()
    refs: Tuple[Ref, ...] = ()
    required: Tuple[str, ...] = ()


def _team(column: str, field_name: str, optional: bool = False) -> Ref:
    return Ref(column, Team, {"api_id": field_name}, optional)


_FIXTURE = Ref("fixture_id", Fixture, {"api_id": "fixture_api_id"})
_LEAGUE = Ref("league_id", League, {"api_id": "league_api_id"})
_SEASON = Ref("season_id", Season, {"league_api_id": "league_api_id", "year": "season"})
_MARKET = Ref("market_id", Market, {"api_id": "market_api_id"})

SPECS: Dict[str, ResourceSpec] = {
    "countries": ResourceSpec(Country, ("name",), ("code", "flag")),
    "leagues": ResourceSpec(
        League, ("api_id",), ("name", "type", "logo"),
        refs=(Ref("country_id", Country, {"name": "country_name"}),),
        required=("name",),
    ),
    "seasons": ResourceSpec(
        Season, ("league_api_id", "year"), ("start_date", "end_date", "current"),
        refs=(_LEAGUE,),
    ),
    "teams": ResourceSpec(
        Team, ("api_id",), ("name", "code", "founded", "national", "logo"),
        refs=(Ref("country_id", Country, {"name": "country_name"}, optional=True),),
        required=("name",),
    ),
    "venues": ResourceSpec(
        Venue, ("api_id",), ("name", "address", "city", "capacity", "surface"),
        required=("name",),
    ),
    "players": ResourceSpec(
        Player, ("api_id",),
        ("name", "first_name", "last_name", "age", "nationality", "position", "photo"),
        refs=(_team("team_id", "team_api_id", optional=True),),
        required=("name",),
    ),
    "coaches": ResourceSpec(
        Coach, ("api_id",), ("name", "first_name", "last_name", "nationality", "photo"),
        refs=(_team("team_id", "team_api_id", optional=True),),
        required=("name",),
    ),
    "fixture_statuses": ResourceSpec(FixtureStatus, ("short",), ("long", "type")),
    "event_types": ResourceSpec(EventType, ("name",), ("details",)),
    "markets": ResourceSpec(Market, ("api_id",), ("name",), required=("name",)),
    "outcomes": ResourceSpec(Outcome, ("market_api_id", "name"), refs=(_MARKET,)),
    "bookmakers": ResourceSpec(Provider, ("api_id",), ("name",), required=("name",)),
    "fixtures": ResourceSpec(
        Fixture, ("api_id",),
        ("kickoff_utc", "referee", "round", "elapsed", "goals_home", "goals_away"),
        refs=(
            _LEAGUE,
            _SEASON,
            _team("home_team_id", "home_team_api_id"),
            _team("away_team_id", "away_team_api_id"),
            Ref("venue_id", Venue, {"api_id": "venue_api_id"}, optional=True),
            Ref("status_id", FixtureStatus, {"short": "status_short"}, optional=True),
        ),
    ),
    "odds": ResourceSpec(
        Odds, ("fixture_id", "bookmaker_id", "market_id", "outcome_id"), ("price",),
        refs=(
            _FIXTURE,
            Ref("bookmaker_id", Provider, {"api_id": "bookmaker_api_id"}),
            _MARKET,
            Ref("outcome_id", Outcome, {"market_api_id": "market_api_id", "name": "outcome_name"}),
        ),
        required=("price",),
    ),
    "predictions": ResourceSpec(
        Prediction, ("fixture_id",),
        ("winner_comment", "win_or_draw", "under_over", "goals_home", "goals_away",
         "advice", "percent_home", "percent_draw", "percent_away"),
        refs=(_FIXTURE, _team("winner_team_id", "winner_team_api_id", optional=True)),
    ),
    "standings": ResourceSpec(
        Standing, ("season_id", "team_id", "group_name"),
        ("rank", "points", "goals_diff", "form", "description", "played",
         "win", "draw", "lose", "goals_for", "goals_against"),
        refs=(_LEAGUE, _SEASON, _team("team_id", "team_api_id")),
    ),
    "statistics": ResourceSpec(
        Statistical, ("fixture_id", "team_id", "stat_type"), ("value",),
        refs=(_FIXTURE, _team("team_id", "team_api_id")),
    ),
    "lineups": ResourceSpec(
        Lineup, ("fixture_id", "team_id", "player_id"),
        ("formation", "position", "number", "grid", "is_starter"),
        refs=(_FIXTURE, _team("team_id", "team_api_id"),
              Ref("player_id", Player, {"api_id": "player_api_id"})),
    ),
}


@dataclass
class UpsertResult:
    resource: str
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    dangling: int = 0
    errors: List[str] = field(default_factory=list)

    def note_error(self, message: str) -> None:
        self.failed += 1
        if len(self.errors) < MAX_ERRORS_KEPT:
            self.errors.append(message)


class EntityReconciler:
    """
    Upserts one batch of mapped records per call.

    - natural key lookup decides insert vs update
    - provider `updated_at` newer than stored wins; equal/older is skipped
    - no `updated_at` at all -> overwrite (counted as updated only if a column moved)
    - every record runs in its own SAVEPOINT, so a bad record never takes the batch down
    - a reference to an entity not stored yet fails the record with DanglingReferenceError
    """

    def __init__(self, db: Session, specs: Optional[Dict[str, ResourceSpec]] = None):
        self.db = db
        self.specs = specs or SPECS

    def upsert(self, resource: str, records: List[dict]) -> UpsertResult:
        spec = self.specs[resource]
        result = UpsertResult(resource)
        ref_cache: Dict[tuple, int] = {}

        for rec in _dedupe(records):
            try:
                with self.db.begin_nested():
                    outcome = self._upsert_one(resource, spec, rec, ref_cache)
            except DanglingReferenceError as e:
                result.dangling += 1
                result.note_error(e.message)
                logger.error("%s: dangling reference %s", resource, e.message)
            except InvalidRecordError as e:
                result.note_error(e.message)
                logger.warning("%s: invalid record: %s", resource, e.message)
            except SQLAlchemyError as e:
                result.note_error(f"{type(e).__name__}: {e}")
                logger.warning("%s: store rejected record %r: %s", resource, _brief(rec), e)
            else:
                setattr(result, outcome, getattr(result, outcome) + 1)

        self.db.commit()
        return result

    # --- per record ---

    def _upsert_one(self, resource: str, spec: ResourceSpec, rec: dict, ref_cache: dict) -> str:
        for name in spec.required:
            if rec.get(name) is None or rec.get(name) == "":
                raise InvalidRecordError(f"{resource}: missing {name} in {_brief(rec)}")

        values = {}
        for ref in spec.refs:
            values[ref.column] = self._resolve(resource, ref, rec, ref_cache)
        for name in spec.fields:
            if name in rec:
                values[name] = rec[name]

        key = {}
        for name in spec.keys:
            v = values[name] if name in values else rec.get(name)
            if v is None:
                raise InvalidRecordError(f"{resource}: missing natural key {name} in {_brief(rec)}")
            key[name] = v
        values.update(key)

        incoming_ts = rec.get("updated_at")
        now = utcnow()
        row = self.db.query(spec.model).filter_by(**key).one_or_none()

        if row is None:
            row = spec.model(**values, provider_updated_at=incoming_ts, first_seen_at=now, last_seen_at=now)
            self.db.add(row)
            self.db.flush()
            return "inserted"

        row.last_seen_at = now
        if incoming_ts is not None and row.provider_updated_at is not None and incoming_ts <= row.provider_updated_at:
            return "unchanged"

        changed = False
        for name, v in values.items():
            if getattr(row, name) != v:
                setattr(row, name, v)
                changed = True
        if incoming_ts is not None and row.provider_updated_at != incoming_ts:
            row.provider_updated_at = incoming_ts
            changed = True

        self.db.flush()
        return "updated" if changed else "unchanged"

    def _resolve(self, resource: str, ref: Ref, rec: dict, ref_cache: dict) -> Optional[int]:
        lookup = {col: rec.get(fld) for col, fld in ref.match.items()}
        present = [v is not None for v in lookup.values()]

        if not any(present):
            if ref.optional:
                return None
            raise InvalidRecordError(f"{resource}: missing {'/'.join(ref.match.values())} in {_brief(rec)}")
        if not all(present):
            raise InvalidRecordError(f"{resource}: incomplete {'/'.join(ref.match.values())} in {_brief(rec)}")

        cache_key = (ref.model.__tablename__, tuple(sorted(lookup.items())))
        if cache_key in ref_cache:
            return ref_cache[cache_key]

        target_id = self.db.query(ref.model.id).filter_by(**lookup).scalar()
        if target_id is None:
            shown = next(iter(lookup.values())) if len(lookup) == 1 else lookup
            raise DanglingReferenceError(resource, ref.column, shown)

        ref_cache[cache_key] = target_id
        return target_id


def _dedupe(records: List[dict]) -> List[dict]:
    # providers repeat rows across pages; identical copies collapse to one
    seen = set()
    out = []
    for rec in records:
        try:
            marker = tuple(sorted(rec.items()))
            if marker in seen:
                continue
            seen.add(marker)
        except TypeError:
            pass
        out.append(rec)
    return out


def _brief(rec: dict) -> dict:
    return {k: v for k, v in rec.items() if k.endswith("api_id") or k in ("name", "short", "stat_type")}
