"""Stateless pre-filter endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from auth import require_token
from schemas.ingest import PreFilterRequest, PreFilterResponse
from services.prefilter import prefilter_messages, summarize

router = APIRouter()


@router.post("/", response_model=PreFilterResponse)
def run_prefilter(
    payload: PreFilterRequest,
    token: str = Depends(require_token),
):
    results = prefilter_messages(payload.messages)
    return {
        "results": [r.to_dict() for r in results],
        "summary": summarize(results),
    }
