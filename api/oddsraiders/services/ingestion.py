# api/oddsraiders/services/ingestion.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..errors import FetchError
from ..models import Fixture, IngestRun, Team
from ..settings import settings
from ..util import parse_iso_utc, utcnow
from . import mappers
from .apifootball import SOURCES, ApiFootballClient, FetchContext
from .reconciler import EntityReconciler

logger = logging.getLogger("oddsraiders.ingest")

PHASE_ONE_SCOPES = ("global", "league", "static")
PHASE_TWO_SCOPES = ("fixture", "team")


@dataclass(frozen=True)
class Step:
    name: str
    resource: str
    source: str
    mapper: mappers.Mapper


# Dependency order: nothing may reference a resource applied after it.
PIPELINE: List[Step] = [
    Step("countries", "countries", "countries", mappers.map_country),
    Step("leagues", "leagues", "leagues", mappers.map_league),
    Step("seasons", "seasons", "leagues", mappers.map_league_seasons),
    Step("teams", "teams", "teams", mappers.map_team),
    Step("venues", "venues", "teams", mappers.map_team_venue),
    Step("fixture_venues", "venues", "fixtures", mappers.map_fixture_venue),
    Step("players", "players", "players", mappers.map_player),
    Step("coaches", "coaches", "coaches", mappers.map_coach),
    Step("fixture_statuses", "fixture_statuses", "fixture_statuses", mappers.map_fixture_status),
    Step("event_types", "event_types", "event_types", mappers.map_event_type),
    Step("markets", "markets", "markets", mappers.map_market),
    Step("outcomes", "outcomes", "odds", mappers.map_odds_outcomes),
    Step("bookmakers", "bookmakers", "bookmakers", mappers.map_bookmaker),
    Step("fixtures", "fixtures", "fixtures", mappers.map_fixture),
    Step("odds", "odds", "odds", mappers.map_odds),
    Step("predictions", "predictions", "predictions", mappers.map_prediction),
    Step("standings", "standings", "standings", mappers.map_standing),
    Step("statistics", "statistics", "statistics", mappers.map_statistics),
    Step("lineup_players", "players", "lineups", mappers.map_lineup_players),
    Step("lineups", "lineups", "lineups", mappers.map_lineup),
]


@dataclass
class StepSummary:
    name: str
    resource: str
    status: str = "ok"            # ok|fetch_failed|error|cancelled
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    dangling: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def upserted(self) -> int:
        return self.inserted + self.updated


@dataclass
class CycleSummary:
    status: str = "running"       # completed|cancelled|failed|skipped
    run_id: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    steps: List[StepSummary] = field(default_factory=list)
    error: Optional[str] = None

    def step(self, name: str) -> Optional[StepSummary]:
        return next((s for s in self.steps if s.name == name), None)

    @property
    def totals(self) -> Dict[str, int]:
        keys = ("fetched", "inserted", "updated", "unchanged", "failed", "dangling")
        return {k: sum(getattr(s, k) for s in self.steps) for k in keys}

    def as_dict(self) -> dict:
        d = asdict(self)
        d["started_at"] = self.started_at.isoformat() if self.started_at else None
        d["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        d["totals"] = self.totals
        return d


# In-process fast path; uq_ingest_runs_running guards across processes.
# Either way a second caller gets a "skipped" summary.
_CYCLE_LOCK = threading.Lock()


class IngestionScheduler:
    """
    One ingestion cycle per run_cycle() call.

    Fetch every source the pipeline needs in parallel (league-level sources
    first, then fixture/team-scoped ones using ids from the first batch), then
    apply the steps one by one in PIPELINE order. Fetch failures and bad
    records end up in the summary; nothing raises past run_cycle().
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client,
        pipeline: Optional[List[Step]] = None,
        leagues: Optional[List[int]] = None,
        season: Optional[int] = None,
        fixture_limit: Optional[int] = None,
        fetch_workers: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.client = client
        self.pipeline = pipeline if pipeline is not None else PIPELINE
        self.leagues = leagues if leagues is not None else list(settings.INGEST_LEAGUES)
        self.season = season if season is not None else settings.INGEST_SEASON
        self.fixture_limit = fixture_limit if fixture_limit is not None else settings.INGEST_FIXTURE_LIMIT
        self.fetch_workers = max(1, fetch_workers or settings.INGEST_FETCH_WORKERS)

    def run_cycle(self, cancel: Optional[threading.Event] = None) -> CycleSummary:
        if not _CYCLE_LOCK.acquire(blocking=False):
            logger.warning("ingest cycle already running; skipping this trigger")
            return CycleSummary(status="skipped", started_at=utcnow(), finished_at=utcnow())
        try:
            return self._run(cancel or threading.Event())
        finally:
            _CYCLE_LOCK.release()

    # --- cycle ---

    def _run(self, cancel: threading.Event) -> CycleSummary:
        summary = CycleSummary(started_at=utcnow())
        db = self.session_factory()
        run = None
        try:
            run = self._claim(db, summary.started_at)
            if run is None:
                logger.warning("another process is running an ingest cycle; skipping this trigger")
                summary.status = "skipped"
                summary.finished_at = utcnow()
                return summary
            summary.run_id = run.id

            self._execute(db, summary, cancel)
            summary.status = "cancelled" if cancel.is_set() else "completed"
        except Exception as e:
            logger.exception("ingest cycle aborted")
            db.rollback()
            summary.status = "failed"
            summary.error = repr(e)
        finally:
            if summary.status != "skipped":
                summary.finished_at = utcnow()
                self._finish_run(db, run, summary)
            db.close()

        t = summary.totals
        logger.info(
            "ingest cycle %s: status=%s fetched=%d inserted=%d updated=%d unchanged=%d failed=%d dangling=%d",
            summary.run_id, summary.status, t["fetched"], t["inserted"], t["updated"],
            t["unchanged"], t["failed"], t["dangling"],
        )
        return summary

    def _claim(self, db: Session, started_at: datetime) -> Optional[IngestRun]:
        """
        Insert this cycle's "running" row, or return None when another process
        holds one. uq_ingest_runs_running makes the insert the arbiter; rows left
        behind by a crashed process are marked abandoned once they go stale.
        """
        stale_before = started_at - timedelta(seconds=settings.INGEST_STALE_RUN_SEC)
        abandoned = (
            db.query(IngestRun)
            .filter(IngestRun.status == "running", IngestRun.started_at < stale_before)
            .update({"status": "abandoned", "finished_at": started_at}, synchronize_session=False)
        )
        if abandoned:
            logger.warning("marked %d stale ingest run(s) as abandoned", abandoned)

        run = IngestRun(started_at=started_at, status="running")
        db.add(run)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        return run

    def _finish_run(self, db: Session, run: Optional[IngestRun], summary: CycleSummary) -> None:
        if run is None or run.id is None:
            return
        try:
            run.status = summary.status
            run.finished_at = summary.finished_at
            run.summary = summary.as_dict()
            db.commit()
        except Exception:
            logger.exception("could not record ingest run %s", summary.run_id)
            db.rollback()

    def _execute(self, db: Session, summary: CycleSummary, cancel: threading.Event) -> None:
        ctx = FetchContext(leagues=list(self.leagues), season=self.season)
        needed = list(dict.fromkeys(step.source for step in self.pipeline))
        payloads: Dict[str, List[dict]] = {}
        fetch_errors: Dict[str, str] = {}

        self._fetch_all([s for s in needed if SOURCES[s].scope in PHASE_ONE_SCOPES], ctx, payloads, fetch_errors)

        if not cancel.is_set():
            ctx.fixture_ids = self._fixture_ids(db, payloads.get("fixtures"))
            ctx.team_ids = self._team_ids(db, payloads.get("teams"))
            self._fetch_all([s for s in needed if SOURCES[s].scope in PHASE_TWO_SCOPES], ctx, payloads, fetch_errors)

        reconciler = EntityReconciler(db)
        for step in self.pipeline:
            if cancel.is_set():
                summary.steps.append(StepSummary(step.name, step.resource, status="cancelled"))
                continue
            summary.steps.append(self._apply(db, reconciler, step, payloads, fetch_errors))

        if cancel.is_set():
            logger.warning("ingest cycle %s cancelled", summary.run_id)

    def _apply(self, db, reconciler, step: Step, payloads, fetch_errors) -> StepSummary:
        out = StepSummary(step.name, step.resource)

        if step.source in fetch_errors:
            out.status = "fetch_failed"
            out.errors.append(fetch_errors[step.source])
            logger.warning("step %s: fetch failed, skipping: %s", step.name, fetch_errors[step.source])
            return out

        rows = payloads.get(step.source) or []
        records, map_errors = mappers.map_rows(step.mapper, rows)
        out.fetched = len(records)
        out.failed += len(map_errors)
        out.errors.extend(map_errors[:5])

        try:
            res = reconciler.upsert(step.resource, records)
        except Exception as e:
            logger.exception("step %s: reconcile blew up", step.name)
            db.rollback()
            out.status = "error"
            out.errors.append(repr(e))
            return out

        out.inserted, out.updated, out.unchanged = res.inserted, res.updated, res.unchanged
        out.failed += res.failed
        out.dangling = res.dangling
        out.errors.extend(res.errors)

        log = logger.error if res.dangling else logger.info
        log(
            "step %s: fetched=%d inserted=%d updated=%d unchanged=%d failed=%d dangling=%d",
            step.name, out.fetched, out.inserted, out.updated, out.unchanged, out.failed, out.dangling,
        )
        return out

    # --- fetching ---

    def _fetch_all(self, sources: List[str], ctx: FetchContext, payloads: dict, fetch_errors: dict) -> None:
        if not sources:
            return
        with ThreadPoolExecutor(max_workers=min(self.fetch_workers, len(sources))) as pool:
            futures = {pool.submit(self.client.fetch, src, ctx): src for src in sources}
            for fut in as_completed(futures):
                src = futures[fut]
                try:
                    payloads[src] = fut.result()
                except FetchError as e:
                    fetch_errors[src] = e.message
                    logger.warning("fetch %s failed: %s", src, e.message)
                except Exception as e:
                    fetch_errors[src] = repr(e)
                    logger.exception("fetch %s crashed", src)

    def _fixture_ids(self, db: Session, fixture_rows: Optional[List[dict]]) -> List[int]:
        """Fixtures worth fixture-scoped calls: recent and upcoming, nearest kickoff first."""
        horizon = utcnow() - timedelta(days=3)

        if fixture_rows is not None:
            dated = []
            for row in fixture_rows:
                fid = (row.get("fixture") or {}).get("id")
                kickoff = parse_iso_utc((row.get("fixture") or {}).get("date"))
                if fid is not None and kickoff is not None and kickoff >= horizon:
                    dated.append((kickoff, fid))
            dated.sort()
            return [fid for _, fid in dated[: self.fixture_limit]]

        q = (
            db.query(Fixture.api_id)
            .filter(Fixture.kickoff_utc >= horizon)
            .order_by(Fixture.kickoff_utc.asc())
            .limit(self.fixture_limit)
        )
        return [fid for (fid,) in q.all()]

    def _team_ids(self, db: Session, team_rows: Optional[List[dict]]) -> List[int]:
        if team_rows is not None:
            ids = [(row.get("team") or {}).get("id") for row in team_rows]
            return list(dict.fromkeys(i for i in ids if i is not None))
        return [tid for (tid,) in db.query(Team.api_id).order_by(Team.api_id).all()]


def build_scheduler() -> IngestionScheduler:
    return IngestionScheduler(SessionLocal, ApiFootballClient())
