"""Ingestion push endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import require_token
from database import get_db
from schemas.ingest import MessageIn
from services.ingestion import ChatOwnershipError, ingest_message

router = APIRouter()


@router.post("/")
def push_message(
    payload: MessageIn,
    db: Session = Depends(get_db),
    token: str = Depends(require_token),
):
    try:
        return ingest_message(db, payload)
    except ChatOwnershipError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
