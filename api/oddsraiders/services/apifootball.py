# api/oddsraiders/services/apifootball.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import requests

from ..errors import FetchError
from ..settings import settings

logger = logging.getLogger("oddsraiders.ingest")


# ---------------- Resource catalogue ----------------

@dataclass(frozen=True)
class Source:
    """One raw payload the provider serves.

    scope decides how many calls a fetch makes:
      - global:  one call
      - league:  one call per configured league (plus `season` when seasonal)
      - team / fixture: one call per id collected earlier in the cycle
      - static:  no call, served from the catalogues below
    """
    path: str
    scope: str = "global"
    key: str = ""
    seasonal: bool = False
    paged: bool = False


SOURCES: Dict[str, Source] = {
    "countries":        Source("/countries"),
    "leagues":          Source("/leagues", "league", "id"),
    "teams":            Source("/teams", "league", "league", seasonal=True),
    "players":          Source("/players", "league", "league", seasonal=True, paged=True),
    "coaches":          Source("/coachs", "team", "team"),
    "fixture_statuses": Source("", "static"),
    "event_types":      Source("", "static"),
    "markets":          Source("/odds/bets"),
    "bookmakers":       Source("/odds/bookmakers"),
    "fixtures":         Source("/fixtures", "league", "league", seasonal=True),
    "odds":             Source("/odds", "league", "league", seasonal=True, paged=True),
    "predictions":      Source("/predictions", "fixture", "fixture"),
    "standings":        Source("/standings", "league", "league", seasonal=True),
    "statistics":       Source("/fixtures/statistics", "fixture", "fixture"),
    "lineups":          Source("/fixtures/lineups", "fixture", "fixture"),
}

# API-Football documents these but serves no endpoint for them
FIXTURE_STATUSES = [
    {"short": "TBD", "long": "Time To Be Defined", "type": "Scheduled"},
    {"short": "NS", "long": "Not Started", "type": "Scheduled"},
    {"short": "1H", "long": "First Half, Kick Off", "type": "In Play"},
    {"short": "HT", "long": "Halftime", "type": "In Play"},
    {"short": "2H", "long": "Second Half, 2nd Half Started", "type": "In Play"},
    {"short": "ET", "long": "Extra Time", "type": "In Play"},
    {"short": "BT", "long": "Break Time", "type": "In Play"},
    {"short": "P", "long": "Penalty In Progress", "type": "In Play"},
    {"short": "SUSP", "long": "Match Suspended", "type": "In Play"},
    {"short": "INT", "long": "Match Interrupted", "type": "In Play"},
    {"short": "LIVE", "long": "In Progress", "type": "In Play"},
    {"short": "FT", "long": "Match Finished", "type": "Finished"},
    {"short": "AET", "long": "Match Finished After Extra Time", "type": "Finished"},
    {"short": "PEN", "long": "Match Finished After Penalty", "type": "Finished"},
    {"short": "PST", "long": "Match Postponed", "type": "Postponed"},
    {"short": "CANC", "long": "Match Cancelled", "type": "Cancelled"},
    {"short": "ABD", "long": "Match Abandoned", "type": "Abandoned"},
    {"short": "AWD", "long": "Technical Loss", "type": "Not Played"},
    {"short": "WO", "long": "WalkOver", "type": "Not Played"},
]

EVENT_TYPES = [
    {"name": "Goal", "details": "Normal Goal, Own Goal, Penalty, Missed Penalty"},
    {"name": "Card", "details": "Yellow Card, Red Card"},
    {"name": "subst", "details": "Substitution 1, Substitution 2, ..."},
    {"name": "Var", "details": "Goal cancelled, Penalty confirmed"},
]

STATIC_PAYLOADS = {
    "fixture_statuses": FIXTURE_STATUSES,
    "event_types": EVENT_TYPES,
}


@dataclass
class FetchContext:
    """Ids a cycle needs to address scoped endpoints."""
    leagues: List[int] = field(default_factory=list)
    season: int = 0
    fixture_ids: List[int] = field(default_factory=list)
    team_ids: List[int] = field(default_factory=list)

    def ids_for(self, scope: str) -> List[int]:
        if scope == "league":
            return list(self.leagues)
        if scope == "fixture":
            return list(self.fixture_ids)
        if scope == "team":
            return list(self.team_ids)
        return []


# ---------------- HTTP ----------------

def _sleep_for_429(r, fallback: float) -> float:
    ra = r.headers.get("Retry-After")
    if ra:
        try:
            return max(1.0, float(ra))
        except ValueError:
            pass
    reset = (
        r.headers.get("X-RateLimit-Requests-Reset")
        or r.headers.get("X-RateLimit-Reset")
    )
    if reset:
        try:
            delta = float(reset) - time.time()
            return max(1.0, min(delta + 1.0, 600.0))
        except ValueError:
            pass
    return min(max(fallback, 1.0), 120.0)


def _provider_error(j: dict) -> Optional[str]:
    errs = j.get("errors")
    if isinstance(errs, dict) and errs:
        return "; ".join(f"{k}: {v}" for k, v in errs.items())
    if isinstance(errs, list) and errs:
        return "; ".join(map(str, errs))
    if isinstance(j.get("message"), str) and j["message"]:
        return j["message"]
    return None


class ApiFootballClient:
    """
    API-Football v3 client used by the ingestion worker.

    - RapidAPI headers (x-rapidapi-key / x-rapidapi-host)
    - bounded timeout per request
    - 429 honours Retry-After / rate-limit reset, 5xx retried with backoff
    - follows paging.total for paged endpoints
    - provider `errors` in an otherwise-200 body count as a failure
    Anything unrecoverable raises FetchError; callers never get a partial payload.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        host: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff: float = 0.75,
        http=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or settings.FOOTBALL_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.INGEST_HTTP_TIMEOUT
        self.retries = max(1, retries if retries is not None else settings.INGEST_HTTP_RETRIES)
        self.backoff = backoff
        self.http = http or requests
        self.sleep = sleep
        self.headers = {
            "x-rapidapi-key": api_key if api_key is not None else settings.FOOTBALL_API_KEY,
            "x-rapidapi-host": host or settings.RAPIDAPI_HOST,
            "Accept": "application/json",
        }

    # --- public ---

    def fetch(self, resource: str, context: FetchContext) -> List[dict]:
        """Raw `response` rows for one resource type across every id in scope."""
        source = SOURCES.get(resource)
        if source is None:
            raise FetchError(resource, "unknown resource type")

        if source.scope == "static":
            return [dict(row) for row in STATIC_PAYLOADS[resource]]

        if source.scope == "global":
            return self._get_all_pages(resource, source.path, {}, source.paged)

        rows: List[dict] = []
        for scope_id in context.ids_for(source.scope):
            params = {source.key: scope_id}
            if source.seasonal:
                params["season"] = context.season
            chunk = self._get_all_pages(resource, source.path, params, source.paged)
            if source.scope in ("fixture", "team"):
                # these endpoints do not echo the id they were asked about
                for row in chunk:
                    row["_scope"] = {source.scope: scope_id}
            rows.extend(chunk)
        return rows

    # --- internals ---

    def _get(self, resource: str, path: str, params: dict) -> dict:
        url = f"{self.base_url}{path}"
        wait = self.backoff
        last_error = "no attempt made"

        for attempt in range(self.retries):
            final = attempt == self.retries - 1
            try:
                r = self.http.get(url, headers=self.headers, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                last_error = repr(e)
                logger.warning("GET %s %s failed (attempt %d/%d): %s", path, params, attempt + 1, self.retries, e)
                if not final:
                    self.sleep(wait)
                    wait = min(wait * 2, 5.0)
                continue

            status = r.status_code
            if status == 429:
                last_error = "429 rate_limited"
                if not final:
                    self.sleep(_sleep_for_429(r, wait))
                    wait = min(wait * 2, 5.0)
                continue

            if 500 <= status < 600:
                last_error = f"{status} server error"
                if not final:
                    self.sleep(wait)
                    wait = min(wait * 2, 5.0)
                continue

            if status >= 400:
                raise FetchError(resource, f"{status} from {path}")

            try:
                j = r.json() or {}
            except ValueError:
                raise FetchError(resource, f"invalid JSON from {path}")

            provider_err = _provider_error(j)
            if provider_err:
                raise FetchError(resource, provider_err)
            return j

        raise FetchError(resource, f"{path} gave up after {self.retries} attempts: {last_error}")

    def _get_all_pages(self, resource: str, path: str, params: dict, paged: bool) -> List[dict]:
        j = self._get(resource, path, dict(params))
        out = _rows(j)
        if not paged:
            return out

        try:
            total_pages = int((j.get("paging") or {}).get("total") or 1)
        except (TypeError, ValueError):
            total_pages = 1

        for page in range(2, total_pages + 1):
            self.sleep(0.12)  # be polite
            out.extend(_rows(self._get(resource, path, {**params, "page": page})))
        return out


def _rows(j: dict) -> List[dict]:
    resp = j.get("response")
    return [row for row in resp if isinstance(row, dict)] if isinstance(resp, list) else []
