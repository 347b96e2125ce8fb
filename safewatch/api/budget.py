"""Budget ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import require_token
from database import get_db
from models.subject import Subject
from schemas.scan import BudgetStatusOut
from services.budget import check_budget, run_budget_check

router = APIRouter()


@router.get("/{subject_id}/", response_model=BudgetStatusOut)
def get_budget(
    subject_id: str,
    db: Session = Depends(get_db),
    token: str = Depends(require_token),
):
    if db.get(Subject, subject_id) is None:
        raise HTTPException(status_code=404, detail="Subject not found.")
    return check_budget(db, subject_id).to_dict()


@router.post("/check/")
def budget_report(
    db: Session = Depends(get_db),
    token: str = Depends(require_token),
):
    return run_budget_check(db)
