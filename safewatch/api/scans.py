"""Scan trigger and on-demand scheduler / batch passes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import require_token
from database import get_db
from schemas.scan import ScanTriggerIn

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/trigger/")
def trigger(
    payload: ScanTriggerIn,
    db: Session = Depends(get_db),
    token: str = Depends(require_token),
):
    from services.scan import trigger_scan

    return trigger_scan(db, payload.subject_id, force=payload.force)


@router.post("/tick/")
def tick(token: str = Depends(require_token)):
    from services.scheduler import run_scheduler_tick

    summary = run_scheduler_tick()
    return {k: v for k, v in summary.items() if k != "results"}


@router.post("/batch/")
def batch(token: str = Depends(require_token)):
    from services.batch import run_batch_scan

    summary = run_batch_scan()
    return {k: v for k, v in summary.items() if k != "results"}
