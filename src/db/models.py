"""SQLAlchemy ORM models for the EPCIS relay state database.

Defines the dispatch ledger (one DispatchRecord per shipping operation sent
to the partner network) and the upstream shipping operations it is keyed
on. Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


# Enums matching the database schema constraints


class DispatchStatus(str, Enum):
    """Lifecycle status of a dispatch record.

    Lifecycle: pending -> processing -> acknowledged/retrying/failed
               retrying -> processing (next cycle, below the attempt ceiling)
    """

    pending = "pending"
    processing = "processing"
    acknowledged = "acknowledged"
    retrying = "retrying"
    failed = "failed"


class ConfirmationState(str, Enum):
    """Partner-side delivery confirmation state."""

    pending = "pending"
    confirmed = "confirmed"
    failed = "failed"


class ShippingOperationStatus(str, Enum):
    """Upstream status values relevant to dispatch."""

    draft = "draft"
    approved = "approved"
    cancelled = "cancelled"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class ShippingOperation(Base):
    """Shipping operation produced upstream.

    Only the columns the relay reads are mapped. An operation with status
    ``approved`` is ready to be dispatched.

    Attributes:
        id: Upstream identity (string or numeric in the source system)
        capture_id: Identity of the EPCIS capture batch that holds its events
        status: Upstream status
        created_at: ISO8601 timestamp, used for dispatch ordering
    """

    __tablename__ = "shipping_operations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    capture_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ShippingOperationStatus.draft.value
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_shipping_operations_status", "status"),
        Index("idx_shipping_operations_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ShippingOperation(id={self.id!r}, status={self.status!r})>"


class DispatchRecord(Base):
    """Dispatch ledger entry for one shipping operation.

    Created lazily on the first dispatch attempt and never deleted.
    The dispatch executor owns attempt_count and the status column; the
    confirmation reconciler owns the partner_* columns and confirmed_at.

    Attributes:
        id: Integer primary key
        shipping_operation_id: Upstream operation identity (unique)
        capture_id: Source capture batch identity
        status: DispatchStatus value
        attempt_count: Number of submissions started, never decreases
        target_gln: GLN of the receiving location
        transaction_id: Partner-assigned id, set on acknowledgement
        http_status_code: Status code of the last submission response
        last_error_message: Sanitized detail of the last failure
        partner_status: ConfirmationState value from the last reconciliation
        partner_status_code: Raw partner status code
        partner_status_message: Raw partner status message
        partner_status_checked_at: ISO8601 timestamp of the last status query
        created_at: ISO8601 timestamp of record creation
        last_attempted_at: ISO8601 timestamp of the last submission attempt
        dispatched_at: ISO8601 timestamp the partner accepted the document
        acknowledged_at: ISO8601 acceptance timestamp reported by the partner
        confirmed_at: ISO8601 timestamp delivery was confirmed
    """

    __tablename__ = "dispatch_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shipping_operation_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )
    capture_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DispatchStatus.pending.value
    )
    attempt_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    target_gln: Mapped[str | None] = mapped_column(String(13), nullable=True)

    # Submission result
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    http_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Partner confirmation
    partner_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    partner_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    partner_status_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    partner_status_checked_at: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )

    # Timestamps (ISO8601 strings for SQLite compatibility)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    last_attempted_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dispatched_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    acknowledged_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    confirmed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_dispatch_records_status", "status"),
        Index("idx_dispatch_records_transaction", "transaction_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DispatchRecord(id={self.id!r}, "
            f"shipping_operation_id={self.shipping_operation_id!r}, "
            f"status={self.status!r}, attempts={self.attempt_count})>"
        )
