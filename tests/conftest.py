"""
Test configuration and fixtures.
Sets up an in-memory SQLite database, a pinned clock and cache stores.
"""
import os
from datetime import datetime
from unittest.mock import Mock

import fakeredis
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("ENVIRONMENT", "test")

from saas_core import models  # noqa: F401,E402
from saas_core.clock import FrozenClock  # noqa: E402
from saas_core.database import Base  # noqa: E402
from saas_core.services.caching_service import (  # noqa: E402
    InMemoryCacheStore,
    RedisCacheStore,
    set_cache_store,
)

SQLALCHEMY_DATABASE_URL = "sqlite://"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite defers BEGIN on its own; hand transaction control to SQLAlchemy so
# SAVEPOINTs behave
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(connection):
    connection.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create test database tables"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """
    Session whose commits and rollbacks are savepoints inside an outer
    transaction that is rolled back after each test.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def now():
    return datetime(2025, 6, 15, 12, 0, 0)


@pytest.fixture
def frozen_clock(now):
    return FrozenClock(now)


@pytest.fixture
def memory_cache():
    return InMemoryCacheStore()


@pytest.fixture
def fake_redis():
    client = fakeredis.FakeRedis(decode_responses=True)
    # Instances may share one fake server
    client.flushall()
    return client


@pytest.fixture
def redis_cache(fake_redis):
    return RedisCacheStore(redis_client=fake_redis, prefix="test")


@pytest.fixture(autouse=True)
def default_cache_store(memory_cache):
    """Services built without an explicit store use the per-test memory store"""
    set_cache_store(memory_cache)
    yield memory_cache
    set_cache_store(None)


@pytest.fixture
def mock_db_session():
    """Create a mock database session for testing"""
    mock_session = Mock(spec=Session)

    mock_query = Mock()
    mock_query.filter.return_value = mock_query
    mock_query.join.return_value = mock_query
    mock_query.order_by.return_value = mock_query
    mock_query.with_for_update.return_value = mock_query
    mock_query.all.return_value = []
    mock_query.first.return_value = None
    mock_query.scalar.return_value = None

    mock_session.query.return_value = mock_query
    mock_session.commit.return_value = None
    mock_session.rollback.return_value = None
    return mock_session
