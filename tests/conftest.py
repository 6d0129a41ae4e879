"""Shared test fixtures with in-memory SQLite and a fake NerdGraph endpoint."""
import itertools
import json
import re

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from dashvault.config import settings
from dashvault.database import get_db
from dashvault.dependencies import get_blob_store, get_client_factory
from dashvault.integrations.nerdgraph.client import NerdGraphClient
from dashvault.integrations.resilience import circuit_breakers
from dashvault.main import app
from dashvault.models import Base
from dashvault.schemas.credential import CredentialCreate
from dashvault.services.backup_service import BackupService
from dashvault.services.credential_service import CredentialService
from dashvault.services.restore_service import RestoreService
from dashvault.storage.blob_store import LocalBlobStore
from dashvault.storage.vault import CredentialVault

# --- SQLite compatibility: compile PostgreSQL types for SQLite ---

@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

VALID_API_KEY = "NRAK-TESTKEY"
ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"


def make_dashboard(guid: str, name: str, account_id: int = 1001, **overrides) -> dict:
    """Full dashboard detail as NerdGraph returns it."""
    dashboard = {
        "guid": guid,
        "name": name,
        "description": f"{name} description",
        "accountId": account_id,
        "owner": {"email": "owner@example.com"},
        "permissions": "PUBLIC_READ_WRITE",
        "pages": [
            {
                "guid": f"{guid}-page-1",
                "name": "Overview",
                "description": None,
                "widgets": [
                    {
                        "id": f"{guid}-widget-1",
                        "title": "Throughput",
                        "layout": {"column": 1, "row": 1, "width": 4, "height": 3},
                        "visualization": {"id": "viz.line"},
                        "configuration": None,
                        "rawConfiguration": {
                            "nrqlQueries": [
                                {"accountIds": [account_id], "query": "SELECT count(*) FROM Transaction"},
                            ],
                        },
                    },
                ],
            },
        ],
        "variables": [],
        "createdAt": "2026-01-01T00:00:00Z",
        "updatedAt": "2026-03-01T12:00:00Z",
    }
    dashboard.update(overrides)
    return dashboard


class FakeNewRelic:
    """In-memory NerdGraph endpoint, served through ``httpx.MockTransport``."""

    def __init__(self):
        self.accounts = [{"id": 1001, "name": "Production"}, {"id": 1002, "name": "Staging"}]
        self.dashboards: dict[str, dict] = {}
        self.valid_keys = {VALID_API_KEY}
        self.failing_accounts: set[str] = set()
        self.failing_fetches: set[str] = set()
        self.reject_create: str | None = None
        self.reject_update: str | None = None
        self.created: list[tuple[int, dict]] = []
        self.updated: list[tuple[str, dict]] = []
        self._guid_seq = itertools.count(1)

    def add(self, dashboard: dict) -> dict:
        self.dashboards[dashboard["guid"]] = dashboard
        return dashboard

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        query, variables = body["query"], body.get("variables") or {}

        if request.headers.get("API-Key") not in self.valid_keys:
            return self._errors("Invalid API key")
        if "dashboardCreate" in query:
            return self._create(variables)
        if "dashboardUpdate" in query:
            return self._update(variables)
        if "entitySearch" in query:
            return self._search(variables)
        if "entity(guid" in query:
            return self._get(variables)
        return httpx.Response(200, json={"data": {"actor": {"accounts": self.accounts}}})

    @staticmethod
    def _errors(message: str) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"message": message}]})

    def _search(self, variables: dict) -> httpx.Response:
        account_id = re.search(r"accountId = (\d+)", variables["query"]).group(1)
        if account_id in self.failing_accounts:
            return self._errors(f"Account {account_id} is not accessible")
        entities = [
            {k: d[k] for k in ("guid", "name", "accountId", "owner", "updatedAt")}
            for d in self.dashboards.values()
            if str(d["accountId"]) == account_id
        ]
        return httpx.Response(200, json={"data": {"actor": {"entitySearch": {
            "results": {"entities": entities, "nextCursor": None},
        }}}})

    def _get(self, variables: dict) -> httpx.Response:
        guid = variables["guid"]
        if guid in self.failing_fetches:
            return self._errors("Internal entity lookup failure")
        return httpx.Response(200, json={"data": {"actor": {"entity": self.dashboards.get(guid)}}})

    def _create(self, variables: dict) -> httpx.Response:
        if self.reject_create:
            return httpx.Response(200, json={"data": {"dashboardCreate": {
                "entityResult": None,
                "errors": [{"description": self.reject_create, "type": "INVALID_INPUT"}],
            }}})
        guid = f"NEW-GUID-{next(self._guid_seq)}"
        self.created.append((variables["accountId"], variables["dashboard"]))
        self.add({**variables["dashboard"], "guid": guid, "accountId": variables["accountId"]})
        return httpx.Response(200, json={"data": {"dashboardCreate": {
            "entityResult": {"guid": guid, "name": variables["dashboard"].get("name")},
            "errors": [],
        }}})

    def _update(self, variables: dict) -> httpx.Response:
        guid = variables["guid"]
        self.updated.append((guid, variables["dashboard"]))
        if self.reject_update:
            return httpx.Response(200, json={"data": {"dashboardUpdate": {
                "entityResult": None,
                "errors": [{"description": self.reject_update, "type": "INVALID_INPUT"}],
            }}})
        return httpx.Response(200, json={"data": {"dashboardUpdate": {
            "entityResult": {"guid": guid}, "errors": [],
        }}})


def make_token(orgs: list[str], subject: str = "user-1") -> str:
    return jwt.encode(
        {"sub": subject, "orgs": orgs}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM,
    )


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    for breaker in circuit_breakers.values():
        breaker.reset()
    yield
    for breaker in circuit_breakers.values():
        breaker.reset()


@pytest.fixture
async def session_factory():
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_newrelic() -> FakeNewRelic:
    return FakeNewRelic()


@pytest.fixture
def client_factory(fake_newrelic):
    def _factory(api_key: str, account_ids: list[str] | None = None) -> NerdGraphClient:
        return NerdGraphClient(
            api_key,
            account_ids,
            url="https://nerdgraph.test/graphql",
            max_retries=0,
            transport=httpx.MockTransport(fake_newrelic.handle),
        )
    return _factory


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def credential_service(db, client_factory) -> CredentialService:
    return CredentialService(db, CredentialVault(db), client_factory)


@pytest.fixture
def backup_service(db, blob_store, credential_service) -> BackupService:
    return BackupService(db, blob_store, credential_service, bucket="test-bucket")


@pytest.fixture
def restore_service(db, backup_service, credential_service) -> RestoreService:
    return RestoreService(db, backup_service, credential_service)


@pytest.fixture
async def credential(credential_service):
    """An ACTIVE credential of ORG_ID reaching accounts 1001 and 1002."""
    return await credential_service.create(
        ORG_ID, CredentialCreate(name="Primary", api_key=VALID_API_KEY), created_by="user-1",
    )


@pytest.fixture
async def client(session_factory, blob_store, client_factory):
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_client_factory] = lambda: client_factory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {make_token([ORG_ID])}"}
