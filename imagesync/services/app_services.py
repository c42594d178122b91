"""Construct the reconciler and its collaborators from settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from imagesync.clients.baserow import BaserowClient
from imagesync.clients.drive import GoogleDriveClient
from imagesync.services.ledger_service import HashLedger
from imagesync.services.mirror_service import MirrorService
from imagesync.services.reconcile_service import Reconciler
from imagesync.services.storage_service import ObjectStorage
from imagesync.services.transform_service import TransformPipeline, TransformPolicy
from imagesync.services.trigger_service import TriggerService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from imagesync.clients.base import RemoteSource, RowStore
    from imagesync.config import Settings


@dataclass
class AppServices:
    ledger: HashLedger
    storage: ObjectStorage
    reconciler: Reconciler
    trigger: TriggerService


def build_services(
    settings: Settings,
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    source: RemoteSource | None = None,
    storage: ObjectStorage | None = None,
    rows: RowStore | None = None,
) -> AppServices:
    """Wire the object graph. Collaborators may be injected, e.g. by tests."""
    policy = TransformPolicy.from_settings(settings)
    ledger = HashLedger(session_factory)
    storage = storage or ObjectStorage.from_settings(settings)
    reconciler = Reconciler(
        ledger=ledger,
        storage=storage,
        source=source or GoogleDriveClient.from_settings(settings),
        pipeline=TransformPipeline(policy),
        policy=policy,
    )
    trigger = TriggerService(
        reconciler=reconciler,
        rows=rows or BaserowClient.from_settings(settings),
        mirror=MirrorService(engine),
        database_id=settings.baserow_database_id,
        write_back_to_source=settings.write_back_to_source,
    )
    return AppServices(ledger=ledger, storage=storage, reconciler=reconciler, trigger=trigger)
