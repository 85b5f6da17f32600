import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from replicator.db.models import ReplicatedResource, StoredObject
from replicator.db.ops import ObjectStore
from replicator.replication import build_registry


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory object store per test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return ObjectStore(session_factory)


@pytest.fixture
def registry(store):
    return build_registry(store, ["Secret"])


@pytest.fixture
def create_secret(store):
    async def _create(namespace: str, name: str, data=None, type: str = "Opaque") -> StoredObject:
        return await store.create_object(
            StoredObject(kind="Secret", namespace=namespace, name=name, type=type, data=dict(data or {}))
        )

    return _create


@pytest.fixture
def create_replicated_resource(store):
    async def _create(
        namespace: str,
        name: str,
        source_namespace: str,
        source_name: str,
        source_kind: str = "Secret",
    ) -> ReplicatedResource:
        return await store.create_replicated_resource(
            ReplicatedResource(
                namespace=namespace,
                name=name,
                source_namespace=source_namespace,
                source_name=source_name,
                source_kind=source_kind,
            )
        )

    return _create


class WriteCounter:
    """Counts destination writes going through an ObjectStore"""

    def __init__(self, store: ObjectStore, monkeypatch):
        self.creates = 0
        self.updates = 0
        self.status_writes = 0
        original_create = store.create_object
        original_update = store.update_object
        original_status = store.update_replicated_resource_status

        async def create_object(obj):
            self.creates += 1
            return await original_create(obj)

        async def update_object(obj):
            self.updates += 1
            return await original_update(obj)

        async def update_status(rr):
            self.status_writes += 1
            return await original_status(rr)

        monkeypatch.setattr(store, "create_object", create_object)
        monkeypatch.setattr(store, "update_object", update_object)
        monkeypatch.setattr(store, "update_replicated_resource_status", update_status)

    @property
    def writes(self) -> int:
        return self.creates + self.updates


@pytest.fixture
def write_counter(store, monkeypatch):
    return WriteCounter(store, monkeypatch)
