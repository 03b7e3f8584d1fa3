from collections.abc import AsyncGenerator, Callable

import pytest
import structlog
from httpx import ASGITransport, AsyncClient

from reviewbot.config.settings import Settings, settings
from reviewbot.infra.database import Database
from reviewbot.main import create_app
from reviewbot.v1.infra.jobs.schemas import TenantConfig, WorkDescriptor
from reviewbot.v1.infra.jobs.store import JobStore


@pytest.fixture(autouse=True)
def uncached_loggers(monkeypatch):
    """Resolve stdout on every log call; CliRunner swaps and closes it per invoke."""
    monkeypatch.setattr(settings, "log_cache_loggers", False)
    structlog.configure(cache_logger_on_first_use=False)
    yield
    structlog.reset_defaults()


@pytest.fixture
def sqlite_settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'reviewbot.db'}",
        environment="development",
        debug=True,
    )


@pytest.fixture
async def database(sqlite_settings) -> AsyncGenerator[Database, None]:
    """Create a fresh database with the schema applied."""
    db = Database(sqlite_settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def store(database) -> JobStore:
    return JobStore(database.SessionLocal, default_max_attempts=3)


@pytest.fixture
def make_descriptor() -> Callable[..., WorkDescriptor]:
    """Build work descriptors for one repository, varying PR and commit."""

    def _make(
        pr_number: int = 7,
        commit_sha: str = "a1b2c3d4e5",
        repo_full_name: str = "acme/widgets",
    ) -> WorkDescriptor:
        owner, repo = repo_full_name.split("/")
        return WorkDescriptor(
            owner=owner,
            repo=repo,
            repo_full_name=repo_full_name,
            pr_number=pr_number,
            pr_title=f"Change #{pr_number}",
            commit_sha=commit_sha,
            base_branch="main",
        )

    return _make


@pytest.fixture
def app(database):
    """Create a test FastAPI application bound to the test database."""
    app = create_app(database=database)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def tenant_config() -> TenantConfig:
    return TenantConfig(installation_id=101, api_key="sk-test")
