"""Document store access layer with async MongoDB and the repository pattern.

Core components:
- **base**: DocumentModel, the entity base with a store-assignable ``_id``
- **connection**: Lazy, idempotent client construction and scoped disposal
- **repository**: Generic CRUD, bulk and cursor operations with upsert semantics
- **retry**: Fixed-delay retry used by the retrying repository flavor

All store operations are async-first, using the Motor driver.
"""

from src.infrastructure.database.base import DocumentId, DocumentModel
from src.infrastructure.database.connection import (
    ConnectionManager,
    ConnectionResult,
    ConnectionState,
    check_database_connection,
    create_mongo_client,
)
from src.infrastructure.database.repository import (
    BaseRepository,
    FindOptions,
    RetryingRepository,
)
from src.infrastructure.database.retry import with_retry

__all__ = [
    "BaseRepository",
    "ConnectionManager",
    "ConnectionResult",
    "ConnectionState",
    "DocumentId",
    "DocumentModel",
    "FindOptions",
    "RetryingRepository",
    "check_database_connection",
    "create_mongo_client",
    "with_retry",
]
