"""FastAPI router aggregation."""

from fastapi import APIRouter

from api.budget import router as budget_router
from api.findings import router as findings_router
from api.messages import router as messages_router
from api.prefilter import router as prefilter_router
from api.scans import router as scans_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(messages_router, prefix="/messages", tags=["messages"])
api_router.include_router(prefilter_router, prefix="/prefilter", tags=["prefilter"])
api_router.include_router(scans_router, prefix="/scans", tags=["scans"])
api_router.include_router(budget_router, prefix="/budget", tags=["budget"])
api_router.include_router(findings_router, prefix="/findings", tags=["findings"])
