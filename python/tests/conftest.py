"""Pytest configuration and fixtures for explainer tests.

Test isolation strategy:
- Every test gets a fresh in-memory SQLite database (StaticPool, one shared
  connection) with the schema built from the ORM metadata
- The process-wide session factory is pointed at that database and reset after
- The vision model, object store and analysis cache are in-process fakes
- HTTP tests use an app wired to those fakes and an RSA-signed test verifier
"""

import os
from collections.abc import Generator

os.environ.setdefault("EXPLAINER_ENV", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from explainer.app import add_request_id_middleware, create_app
from explainer.config import clear_settings_cache
from explainer.db.engine import create_db_engine
from explainer.db.models import Base
from explainer.db.session import SessionFactory, create_session_factory, set_session_factory
from explainer.services.analysis_cache import InMemoryAnalysisCache
from explainer.services.pipeline import ExplanationPipeline
from explainer.services.rate_limit import RateLimiter
from explainer.services.usage import UsageGate
from explainer.services.vision import VisionAnalyzer
from explainer.storage.client import FakeObjectStore
from explainer.tasks.cleanup_storage import StorageCleanup
from tests.helpers import create_user
from tests.support.fakes import ScriptedVisionProvider
from tests.support.test_verifier import MockJwtVerifier

TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = create_db_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> Generator[SessionFactory, None, None]:
    factory = create_session_factory(engine)
    set_session_factory(factory)
    yield factory
    set_session_factory(None)


@pytest.fixture
def db_session(session_factory: SessionFactory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db_session: Session):
    """A free-tier user with no usage window opened yet."""
    return create_user(db_session)


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def provider() -> ScriptedVisionProvider:
    return ScriptedVisionProvider()


@pytest.fixture
def cache() -> InMemoryAnalysisCache:
    return InMemoryAnalysisCache()


@pytest.fixture
def analyzer(provider: ScriptedVisionProvider, cache: InMemoryAnalysisCache) -> VisionAnalyzer:
    return VisionAnalyzer(provider, cache)


@pytest.fixture
def pipeline(
    session_factory: SessionFactory, store: FakeObjectStore, analyzer: VisionAnalyzer
) -> ExplanationPipeline:
    return ExplanationPipeline(
        session_factory,
        store,
        analyzer,
        UsageGate(),
        cleanup=StorageCleanup(store, use_broker=False),
    )


@pytest.fixture
def test_verifier() -> MockJwtVerifier:
    return MockJwtVerifier()


@pytest.fixture
def app(
    session_factory: SessionFactory,
    pipeline: ExplanationPipeline,
    store: FakeObjectStore,
    test_verifier: MockJwtVerifier,
):
    """App wired to the test database and fakes.

    The lifespan is not run (no `with TestClient(...)`), so collaborators
    are placed on app.state directly.
    """
    app = create_app(token_verifier=test_verifier)
    add_request_id_middleware(app, log_requests=False)
    app.state.pipeline = pipeline
    app.state.object_store = store
    app.state.rate_limiter = RateLimiter(redis_client=None)
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)
