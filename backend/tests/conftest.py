# @TASK P0-T0.3 - Test configuration
import os
import uuid
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing universo modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("PUBLISH_DELAY_SECONDS", "0")


def _create_test_engine() -> AsyncEngine:
    """Per-test engine. SQLite runs in memory on one shared connection.

    pysqlite's own transaction handling breaks SAVEPOINT, so SQLite gets
    explicit BEGIN statements instead.
    """
    url = os.environ["DATABASE_URL"]
    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=False, pool_pre_ping=True)

    engine = create_async_engine(
        url,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Engine with all tables created; dropped again after the test."""
    from universo.database import Base
    import universo.models  # noqa: F401 - Import to register models with Base

    engine = _create_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session on a fresh schema."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def statement_log(test_engine: AsyncEngine) -> list[str]:
    """Every SQL statement sent to the database during the test."""
    statements: list[str] = []

    @event.listens_for(test_engine.sync_engine, "before_cursor_execute")
    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    return statements


@pytest_asyncio.fixture(scope="function")
async def test_app(test_db: AsyncSession, session_factory):
    """Provide a FastAPI app instance with test database override."""
    from universo.database import get_db
    from universo.main import app
    from universo.services.publication_service import PublicationService

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    # Publications stay pending during API tests; the service tests drive completion.
    app.state.publications = PublicationService(session_factory=session_factory, delay_seconds=60)
    yield app
    await app.state.publications.shutdown()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing with test database."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def make_auth_headers(user_id: uuid.UUID | str, email: str | None = None) -> dict[str, str]:
    """Create Authorization headers with a valid access token."""
    from universo.services.auth_service import create_access_token

    claims = {"sub": str(user_id)}
    if email is not None:
        claims["email"] = email
    token = create_access_token(data=claims)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------


async def create_user(
    db: AsyncSession,
    email: str,
    nickname: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
):
    from universo.models import Profile, User

    user = User(email=email)
    db.add(user)
    await db.flush()
    if nickname is not None or first_name is not None or last_name is not None:
        db.add(Profile(user_id=user.id, nickname=nickname, first_name=first_name, last_name=last_name))
        await db.flush()
    return user


async def create_node(db: AsyncSession, kind: str, name: str):
    from universo.models import Node

    node = Node(kind=kind, name=name)
    db.add(node)
    await db.flush()
    return node


async def add_membership(db: AsyncSession, container_id, user_id, role: str | None = "member"):
    from universo.models import ContainerMembership

    membership = ContainerMembership(container_id=container_id, user_id=user_id, role=role)
    db.add(membership)
    await db.flush()
    return membership


async def link(db: AsyncSession, left, right, sort_order: int = 1):
    from universo.services.link_store import create_link

    created, _ = await create_link(db, left.kind, left.id, right.kind, right.id, sort_order)
    return created
