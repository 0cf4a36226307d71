"""Shared fixtures for LQS tests.

Integration tests run against a file-backed SQLite database (aiosqlite)
created fresh for every test.
"""

import pytest
import pytest_asyncio

from lqs.config import Settings
from lqs.db import create_engine_for_url, init_db, make_session_factory
from lqs.locks import KeyedLockArena


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite file, with no retry delays."""
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'lqs.db'}",
        batch_max_concurrency=1,
        storage_max_retries=1,
        storage_retry_base_delay=0.0,
        storage_retry_max_delay=0.0,
        log_format="text",
    )


@pytest_asyncio.fixture
async def engine(settings):
    """Create the schema in a fresh database."""
    engine = create_engine_for_url(settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    """A session for direct registry work; rolled back at the end."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def lock_arena() -> KeyedLockArena:
    return KeyedLockArena()


@pytest.fixture
def runner_kwargs(session_factory, settings, lock_arena) -> dict:
    """Options for the batch entry points (ingest_leads, ingest_quotes, ingest_sales)."""
    return {
        "session_factory": session_factory,
        "settings": settings,
        "lock_arena": lock_arena,
    }


# =========================
# Sample rows
# =========================


@pytest.fixture
def smith_lead() -> dict:
    return {
        "first_name": "John",
        "last_name": "Smith",
        "zip": "12345",
        "phone": "(555) 123-4567",
        "email": "john.smith@example.com",
        "received_date": "01/05/2024",
    }


@pytest.fixture
def smith_quote() -> dict:
    return {
        "first_name": "John",
        "last_name": "Smith",
        "zip": "12345",
        "address": "1 Main St",
        "issued_policy_number": "POL123",
        "sub_producer": "112-JANE AGENT",
        "product": "Standard Auto",
        "premium": "$1,200.00",
        "production_date": "2024-01-10",
    }


@pytest.fixture
def smith_sale() -> dict:
    return {
        "customer_name": "SMITH, JOHN",
        "zip": "12345",
        "policy_number": "POL123",
        "sub_producer": "112",
        "product": "Auto",
        "premium": 1200,
        "issued_date": "2024-02-01",
    }
