import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from courtsync.database.tables import Base
from courtsync.main.config import Settings, reset_settings, set_settings
from courtsync.upstream.shared import reset_shared_state

WEBHOOK_SECRET = "unit-test-webhook-secret"
QUEUE_API_KEY = "unit-test-queue-key"


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with explicit values for unit tests.

    Provides a clean, isolated configuration that doesn't depend on the .env
    file or environment variables.
    """
    return Settings(
        # Minimal database settings (tests use sqlite through `session`)
        postgres_user="unit_test_user",
        postgres_host="localhost",
        postgres_password="unit_test_password",
        postgres_port=5432,
        postgres_db="unit_test_db",

        # Redis settings (limiter and breaker stay in memory)
        redis_host="localhost",
        redis_port=6379,
        rate_limit_backend="memory",

        # Upstream
        upstream_api_token="unit-test-token",
        upstream_request_delay_seconds=0.0,

        # Webhooks and queue API
        webhook_secret=WEBHOOK_SECRET,
        queue_api_key=QUEUE_API_KEY,

        # Testing mode
        testing=True,
        dev=True,
    )


@pytest.fixture
def use_test_settings(test_settings):
    set_settings(test_settings)
    return test_settings


@pytest.fixture(autouse=True)
def reset_settings_after_test():
    """Reset settings and shared upstream state after each test to prevent leakage."""
    yield
    reset_settings()
    reset_shared_state()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy drive BEGIN/SAVEPOINT instead of the driver
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, autocommit=False, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session
