"""Database module for dispatch ledger persistence."""

from src.db.connection import (
    create_db_engine,
    create_session_factory,
    get_database_url,
    get_db_context,
    init_db,
)
from src.db.models import (
    Base,
    ConfirmationState,
    DispatchRecord,
    DispatchStatus,
    ShippingOperation,
    ShippingOperationStatus,
)

__all__ = [
    # Models
    "Base",
    "DispatchRecord",
    "ShippingOperation",
    # Enums
    "DispatchStatus",
    "ConfirmationState",
    "ShippingOperationStatus",
    # Connection
    "get_database_url",
    "create_db_engine",
    "create_session_factory",
    "get_db_context",
    "init_db",
]
