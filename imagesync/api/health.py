"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from imagesync.api.deps import get_ledger, get_session
from imagesync.schemas.sync import HealthResponse
from imagesync.services.ledger_service import HashLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    ledger: Annotated[HashLedger, Depends(get_ledger)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    db_status = "ok"
    records: dict[str, int] = {}
    try:
        await session.execute(text("SELECT 1"))
        records = await ledger.status_counts()
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version="0.1.0",
        database=db_status,
        records=records,
    )
