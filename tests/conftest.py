"""Root-level pytest fixtures for all tests.

Provides shared fixtures for the dispatch ledger:
- In-memory SQLite session factory
- SqlRecordStore bound to it
- Helpers to seed shipping operations and dispatch records
"""

from collections.abc import Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.db.models import (
    Base,
    DispatchRecord,
    DispatchStatus,
    ShippingOperation,
    ShippingOperationStatus,
)
from src.services.record_store import SqlRecordStore


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring external services"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    """Session factory over a single shared in-memory SQLite connection."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def record_store(session_factory: sessionmaker[Session]) -> SqlRecordStore:
    """SQL-backed record store on the in-memory database."""
    return SqlRecordStore(session_factory)


@pytest.fixture
def add_operation(
    session_factory: sessionmaker[Session],
) -> Callable[..., None]:
    """Insert a shipping operation."""

    def _add(
        op_id: str,
        capture_id: str | None = "cap-1",
        status: ShippingOperationStatus = ShippingOperationStatus.approved,
        created_at: str = "2026-01-01T00:00:00+00:00",
    ) -> None:
        with session_factory() as db:
            db.add(
                ShippingOperation(
                    id=op_id,
                    capture_id=capture_id,
                    status=status.value,
                    created_at=created_at,
                )
            )
            db.commit()

    return _add


@pytest.fixture
def add_record(
    session_factory: sessionmaker[Session],
) -> Callable[..., int]:
    """Insert a dispatch record and return its id."""

    def _add(
        op_id: str,
        status: DispatchStatus = DispatchStatus.pending,
        attempt_count: int = 0,
        transaction_id: str | None = None,
        partner_status: str | None = None,
        target_gln: str | None = None,
    ) -> int:
        with session_factory() as db:
            record = DispatchRecord(
                shipping_operation_id=op_id,
                capture_id="cap-1",
                status=status.value,
                attempt_count=attempt_count,
                transaction_id=transaction_id,
                partner_status=partner_status,
                target_gln=target_gln,
                last_attempted_at="2026-01-01T00:00:00+00:00",
            )
            db.add(record)
            db.commit()
            return record.id

    return _add
