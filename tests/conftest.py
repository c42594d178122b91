"""Shared test fixtures for imagesync."""

from __future__ import annotations

import io
import random
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import boto3
import pytest
from httpx import ASGITransport, AsyncClient
from moto import mock_aws
from PIL import Image

from imagesync.clients.base import Field, RemoteFile, Row, Table
from imagesync.config import Settings
from imagesync.database import create_engine, init_schema
from imagesync.exceptions import RemoteUnavailable, SizeExceeded, TargetWriteError
from imagesync.main import create_app
from imagesync.services.app_services import build_services
from imagesync.services.ledger_service import HashLedger
from imagesync.services.reconcile_service import Reconciler
from imagesync.services.storage_service import (
    META_CONTENT_HASH,
    META_REMOTE_ID,
    ObjectHead,
    ObjectStorage,
)
from imagesync.services.transform_service import TransformPipeline, TransformPolicy

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

TEST_SYNC_SECRET = "test-sync-secret-0123456789"
TEST_WEBHOOK_SECRET = "test-webhook-secret-0123456789"
TEST_BUCKET = "test-images"
PUBLIC_BASE = "https://cdn.example.test"
FOLDER_ID = "folder-abcdefghij"


def make_image_bytes(
    width: int = 64, height: int = 64, fmt: str = "PNG", *, noise: bool = True, seed: int = 1
) -> bytes:
    """Encode a test image. Noise keeps PNGs from compressing to almost nothing."""
    img = Image.new("RGB", (width, height), (200, 120, 40))
    if noise:
        rng = random.Random(seed)
        img.putdata(
            [
                (rng.randrange(256), rng.randrange(256), rng.randrange(256))
                for _ in range(width * height)
            ]
        )
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


class FakeRemoteSource:
    """In-memory remote folder listing and download."""

    def __init__(self) -> None:
        self.folders: dict[str, list[RemoteFile]] = {}
        self.contents: dict[str, bytes] = {}
        self.failing_downloads: set[str] = set()
        self.list_calls = 0
        self.downloads: list[str] = []
        self.list_error: Exception | None = None

    def add_file(
        self,
        folder_id: str,
        remote_id: str,
        name: str,
        data: bytes,
        *,
        mime_type: str = "image/png",
        content_hash: str | None = None,
    ) -> RemoteFile:
        remote = RemoteFile(
            remote_id=remote_id,
            name=name,
            mime_type=mime_type,
            content_hash=content_hash if content_hash is not None else f"hash-{remote_id}-1",
            size=len(data),
        )
        files = [f for f in self.folders.get(folder_id, []) if f.remote_id != remote_id]
        files.append(remote)
        self.folders[folder_id] = sorted(files, key=lambda f: (f.name, f.remote_id))
        self.contents[remote_id] = data
        return remote

    def change_file(self, folder_id: str, remote_id: str, data: bytes, content_hash: str) -> None:
        old = next(f for f in self.folders[folder_id] if f.remote_id == remote_id)
        self.add_file(
            folder_id, remote_id, old.name, data, mime_type=old.mime_type, content_hash=content_hash
        )

    def remove_file(self, folder_id: str, remote_id: str) -> None:
        self.folders[folder_id] = [f for f in self.folders[folder_id] if f.remote_id != remote_id]

    async def list_files(self, folder_id: str) -> list[RemoteFile]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.folders.get(folder_id, []))

    async def download(self, remote_id: str, max_bytes: int | None = None) -> bytes:
        self.downloads.append(remote_id)
        if remote_id in self.failing_downloads:
            msg = f"download of {remote_id} failed"
            raise RemoteUnavailable(msg)
        data = self.contents[remote_id]
        if max_bytes is not None and len(data) > max_bytes:
            raise SizeExceeded(len(data), max_bytes)
        return data


class InMemoryStorage:
    """Object store double with the same surface as ObjectStorage."""

    def __init__(self, public_base_url: str = PUBLIC_BASE) -> None:
        self.public_base_url = public_base_url
        self.objects: dict[str, tuple[bytes, str, dict[str, str]]] = {}
        self.puts: list[str] = []
        self.deletes: list[str] = []
        self.failing_puts: set[str] = set()
        self.fail_all_puts = False

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    async def put(self, key: str, data: bytes, mime_type: str, metadata: dict[str, str]) -> None:
        self.puts.append(key)
        if self.fail_all_puts or key in self.failing_puts:
            msg = f"Failed to write object {key}"
            raise TargetWriteError(msg)
        self.objects[key] = (data, mime_type, dict(metadata))

    async def head(self, key: str) -> ObjectHead | None:
        if key not in self.objects:
            return None
        data, mime_type, metadata = self.objects[key]
        return ObjectHead(
            key=key,
            size=len(data),
            content_type=mime_type,
            remote_id=metadata.get(META_REMOTE_ID),
            content_hash=metadata.get(META_CONTENT_HASH),
            synced_at=None,
        )

    async def delete(self, key: str) -> bool:
        self.deletes.append(key)
        self.objects.pop(key, None)
        return True

    def mutate(self, key: str, content_hash: str) -> None:
        """Simulate an out-of-band overwrite of an object."""
        data, mime_type, metadata = self.objects[key]
        self.objects[key] = (data + b"x", mime_type, {**metadata, META_CONTENT_HASH: content_hash})


class FakeRowStore:
    """In-memory Baserow double."""

    def __init__(self, database_id: int = 1) -> None:
        self.database_id = database_id
        self.tables: list[Table] = []
        self.fields: dict[int, list[Field]] = {}
        self.rows: dict[int, list[Row]] = {}
        self.updates: list[tuple[int, int, str, Any]] = []
        self.failing_tables: set[int] = set()

    @property
    def configured(self) -> bool:
        return True

    def add_table(self, table_id: int, name: str, fields: list[Field]) -> Table:
        table = Table(id=table_id, name=name, database_id=self.database_id)
        self.tables.append(table)
        self.fields[table_id] = fields
        self.rows[table_id] = []
        return table

    async def list_tables(self, database_id: int) -> list[Table]:
        return [t for t in self.tables if t.database_id == database_id]

    async def list_fields(self, table_id: int) -> list[Field]:
        if table_id in self.failing_tables:
            msg = f"Baserow API error: 500 - table {table_id}"
            raise RemoteUnavailable(msg)
        return list(self.fields.get(table_id, []))

    async def list_rows(self, table_id: int) -> list[Row]:
        return list(self.rows.get(table_id, []))

    async def update_scalar(self, table_id: int, row_id: int, column: str, value: Any) -> None:
        self.updates.append((table_id, row_id, column, value))

    async def delete_rows(self, table_id: int, row_ids: list[int]) -> None:
        self.rows[table_id] = [r for r in self.rows.get(table_id, []) if r.id not in row_ids]


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        sync_secret=TEST_SYNC_SECRET,
        webhook_secret=TEST_WEBHOOK_SECRET,
        baserow_api_token="test-token",
        baserow_database_id=1,
        storage_bucket=TEST_BUCKET,
        storage_region="us-east-1",
        public_url_prefix=PUBLIC_BASE,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the ledger schema."""
    engine, _ = create_engine(test_settings)
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def ledger(session_factory: async_sessionmaker[AsyncSession]) -> HashLedger:
    return HashLedger(session_factory)


@pytest.fixture
def source() -> FakeRemoteSource:
    return FakeRemoteSource()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def row_store() -> FakeRowStore:
    return FakeRowStore()


@pytest.fixture
def policy() -> TransformPolicy:
    return TransformPolicy()


@pytest.fixture
def reconciler(
    ledger: HashLedger,
    storage: InMemoryStorage,
    source: FakeRemoteSource,
    policy: TransformPolicy,
) -> Reconciler:
    return Reconciler(
        ledger=ledger,
        storage=storage,  # type: ignore[arg-type]
        source=source,
        pipeline=TransformPipeline(policy),
        policy=policy,
    )


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fake credentials so botocore never reaches for real ones."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3_storage(aws_credentials: None) -> Iterator[ObjectStorage]:
    """ObjectStorage backed by moto's in-process S3."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=TEST_BUCKET)
        yield ObjectStorage(client, TEST_BUCKET, prefix="images", public_base_url=PUBLIC_BASE)


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    *,
    source: FakeRemoteSource,
    storage: InMemoryStorage,
    rows: FakeRowStore,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan because
    ASGITransport does not trigger it.
    """
    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    await init_schema(engine)

    services = build_services(
        settings,
        engine,
        session_factory,
        source=source,
        storage=storage,  # type: ignore[arg-type]
        rows=rows,
    )
    app.state.ledger = services.ledger
    app.state.storage = services.storage
    app.state.reconciler = services.reconciler
    app.state.trigger = services.trigger

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()
