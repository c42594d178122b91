"""Shared API dependencies: DB session, services, sync-token auth."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from imagesync.config import Settings
from imagesync.services.auth_service import verify_sync_token
from imagesync.services.ledger_service import HashLedger
from imagesync.services.trigger_service import TriggerService

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_ledger(request: Request) -> HashLedger:
    ledger: HashLedger = request.app.state.ledger
    return ledger


def get_trigger(request: Request) -> TriggerService:
    trigger: TriggerService = request.app.state.trigger
    return trigger


async def require_sync_token(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> None:
    """Require ``Authorization: Bearer <SYNC_SECRET>``. Raises 401 otherwise."""
    if not settings.sync_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SYNC_SECRET not configured",
        )
    header = f"Bearer {credentials.credentials}" if credentials is not None else None
    if not verify_sync_token(header, settings.sync_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
