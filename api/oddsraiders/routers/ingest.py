# api/oddsraiders/routers/ingest.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth_firebase import require_admin
from ..db import get_db
from ..errors import NotFoundError
from ..models import IngestRun
from ..schemas import IngestRunOut
from ..services.ingestion import IngestionScheduler, build_scheduler

router = APIRouter(prefix="/ingest", tags=["ingest"])


def get_scheduler() -> IngestionScheduler:
    return build_scheduler()


@router.post("/run")
def run_ingest(
    _admin=Depends(require_admin),
    scheduler: IngestionScheduler = Depends(get_scheduler),
):
    """Run one ingestion cycle now and return its summary (blocks until done)."""
    return scheduler.run_cycle().as_dict()


@router.get("/runs/latest", response_model=IngestRunOut)
def latest_run(
    _admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    run = db.query(IngestRun).order_by(IngestRun.started_at.desc(), IngestRun.id.desc()).first()
    if run is None:
        raise NotFoundError("no ingest run recorded yet")
    return run
