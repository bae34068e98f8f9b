"""Collaborator implementations for the dispatch engine.

Provides the SQL-backed dispatch ledger and the two partner network
channels (mTLS submission and dashboard status).
"""

from src.services.errors import (
    PartnerConnectionError,
    PartnerServiceError,
    StatusNotFoundError,
)
from src.services.token_cache import TokenCache

__all__ = [
    "PartnerServiceError",
    "PartnerConnectionError",
    "StatusNotFoundError",
    "TokenCache",
]
