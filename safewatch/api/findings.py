"""Findings listing and guardian acknowledgement."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import require_token
from database import get_db
from models.finding import Finding
from schemas.scan import FindingOut, FindingUpdate
from services.findings import mark_handled

router = APIRouter()


def _serialize(finding: Finding) -> dict:
    return FindingOut.model_validate(finding).model_dump()


@router.get("/")
def list_findings(
    limit: int = 50,
    offset: int = 0,
    subject_id: str | None = None,
    unhandled: bool = False,
    db: Session = Depends(get_db),
    token: str = Depends(require_token),
):
    q = db.query(Finding)
    if subject_id:
        q = q.filter(Finding.subject_id == subject_id)
    if unhandled:
        q = q.filter(Finding.handled.is_(False))
    total = q.count()
    findings = q.order_by(Finding.created_at.desc()).offset(offset).limit(limit).all()
    return {"items": [_serialize(f) for f in findings], "total": total}


@router.patch("/{finding_id}/", response_model=FindingOut)
def update_finding(
    finding_id: str,
    payload: FindingUpdate,
    db: Session = Depends(get_db),
    token: str = Depends(require_token),
):
    finding = db.get(Finding, finding_id)
    if not finding:
        raise HTTPException(status_code=404, detail="Finding not found.")
    return _serialize(mark_handled(db, finding, payload.handled))
