"""Base repository pattern implementation for document store operations.

This module provides generic repositories that implement CRUD, bulk and
cursor-style retrieval for DocumentModel entities using async Motor calls.

Write semantics:
- **Upsert**: insert and update both replace-by-id with insert-if-absent
- **Unordered bulk insert**: one failing item doesn't block the rest
- **Bulk upsert**: one replace model per item, executed as one bulk call

Absence is never an error here: lookups return None, deletes return False,
queries return empty lists. Store errors propagate unmodified.
"""

import time
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Self

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ReplaceOne
from pymongo.errors import BulkWriteError

from src.core.config import get_settings
from src.core.constants import MILLISECONDS_PER_SECOND
from src.core.error_context import sanitize_filter
from src.core.exceptions import ValidationError
from src.core.types import FilterSpec, SortSpec
from src.infrastructure.constants import (
    ID_FIELD,
    RETRY_ATTEMPTS,
    RETRY_DELAY_SECONDS,
)
from src.infrastructure.database.base import DocumentModel
from src.infrastructure.database.connection import ConnectionManager
from src.infrastructure.database.retry import with_retry


@dataclass(frozen=True, kw_only=True)
class FindOptions:
    """Paging and projection options for cursor retrieval.

    Fields excluded by ``projection`` must have defaults on the model,
    since every streamed document is validated into an entity.
    """

    skip: int = 0
    limit: int = 0
    sort: SortSpec | None = None
    projection: dict[str, Any] | None = None
    batch_size: int | None = None

    def to_find_kwargs(self) -> dict[str, Any]:
        """Translate to keyword arguments for ``Collection.find``."""
        kwargs: dict[str, Any] = {"skip": self.skip, "limit": self.limit}
        if self.sort:
            kwargs["sort"] = self.sort
        if self.projection is not None:
            kwargs["projection"] = self.projection
        if self.batch_size is not None:
            kwargs["batch_size"] = self.batch_size
        return kwargs


class BaseRepository[T: DocumentModel]:
    """Base repository class providing common document operations.

    The collection name defaults to the model class name unless given
    explicitly or configured in ``DatabaseConfig.collection_name``.

    Args:
        connection: The connection manager shared by all operations.
        model_class: The DocumentModel subclass this repository manages.
        collection_name: Optional explicit collection name.
        slow_operation_threshold_ms: Round-trips at or above this duration are
            logged as warnings. Read from ``LogConfig`` once, here, when omitted.

    Example:
        class CustomerRepository(BaseRepository[Customer]):
            def __init__(self, connection: ConnectionManager) -> None:
                super().__init__(connection, Customer)
    """

    def __init__(
        self,
        connection: ConnectionManager,
        model_class: type[T],
        collection_name: str | None = None,
        slow_operation_threshold_ms: int | None = None,
    ) -> None:
        if slow_operation_threshold_ms is None:
            slow_operation_threshold_ms = (
                get_settings().log_config.slow_operation_threshold_ms
            )
        self.connection = connection
        self.model_class = model_class
        self.slow_operation_threshold_ms = slow_operation_threshold_ms
        self.collection_name = (
            collection_name
            or connection.config.collection_name
            or model_class.__name__
        )
        logger.debug(
            "Initialized repository for {} on collection {}",
            model_class.__name__,
            self.collection_name,
        )

    async def __aenter__(self) -> Self:
        """Enter the scope that owns this repository's connection."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Dispose the owned connection on every exit path."""
        await self.connection.dispose()

    def _collection(self, collection_name: str | None = None) -> AsyncIOMotorCollection:
        return self.connection.get_collection(collection_name or self.collection_name)

    @contextmanager
    def _timed(self, operation: str) -> Iterator[None]:
        """Log the duration of a store round-trip, warning when slow."""
        start = time.perf_counter()
        yield
        duration_ms = (time.perf_counter() - start) * MILLISECONDS_PER_SECOND
        threshold_ms = self.slow_operation_threshold_ms
        if duration_ms >= threshold_ms:
            logger.warning(
                "Slow store operation {} on {}: {:.2f}ms",
                operation,
                self.collection_name,
                duration_ms,
                collection=self.collection_name,
                operation=operation,
                duration_ms=round(duration_ms, 2),
                threshold_ms=threshold_ms,
            )

    def _require_id(self, entity_or_id: T | ObjectId, operation: str) -> ObjectId:
        entity_id = (
            entity_or_id.id
            if isinstance(entity_or_id, DocumentModel)
            else entity_or_id
        )
        if entity_id is None:
            raise ValidationError(
                f"{operation} requires a populated identifier",
                context={"collection": self.collection_name, "operation": operation},
            )
        return entity_id

    def build_upsert_model(self, entity: T) -> ReplaceOne:
        """Build the replace-by-id write model used by all upserts.

        Args:
            entity: The entity to write. An identifier is generated if absent.

        Returns:
            ReplaceOne: Replacement filtered by ``_id`` with insert-if-absent set.
        """
        entity_id = entity.ensure_id()
        return ReplaceOne({ID_FIELD: entity_id}, entity.to_document(), upsert=True)

    async def get_by_id(self, entity_or_id: T | ObjectId) -> T | None:
        """Retrieve an entity by its identifier.

        Args:
            entity_or_id: An entity carrying its identifier, or the identifier.

        Returns:
            T | None: The stored entity if found, None otherwise.
        """
        entity_id = self._require_id(entity_or_id, "get_by_id")
        logger.debug("Fetching {} by ID: {}", self.model_class.__name__, entity_id)

        with self._timed("get_by_id"):
            document = await self._collection().find_one({ID_FIELD: entity_id})

        if document is None:
            logger.debug(
                "{} instance not found with ID: {}",
                self.model_class.__name__,
                entity_id,
            )
            return None

        return self.model_class.from_document(document)

    async def _upsert(self, entity: T, operation: str) -> T:
        entity_id = entity.ensure_id()
        with self._timed(operation):
            result = await self._collection().replace_one(
                {ID_FIELD: entity_id}, entity.to_document(), upsert=True
            )

        logger.info(
            "{} {} instance with ID: {} - created: {}",
            operation.capitalize(),
            self.model_class.__name__,
            entity.id,
            result.acknowledged and result.upserted_id is not None,
            collection=self.collection_name,
            operation=operation,
        )
        return entity

    async def insert(self, entity: T) -> T:
        """Insert an entity, replacing any stored document with the same ID.

        Args:
            entity: The entity to insert. An identifier is generated if absent.

        Returns:
            T: The same entity with its identifier populated.
        """
        logger.debug("Inserting {} instance", self.model_class.__name__)
        return await self._upsert(entity, "insert")

    async def update(self, entity: T) -> T:
        """Replace the stored document for an entity, creating it if absent.

        Args:
            entity: The entity to write. Must carry an identifier.

        Returns:
            T: The same entity.

        Raises:
            ValidationError: If the entity has no identifier.
        """
        self._require_id(entity, "update")
        return await self._upsert(entity, "update")

    async def delete_by_id(self, entity_or_id: T | ObjectId) -> bool:
        """Delete one entity by its identifier.

        Args:
            entity_or_id: An entity carrying its identifier, or the identifier.

        Returns:
            bool: True if exactly one document was removed, False if none matched.
        """
        entity_id = self._require_id(entity_or_id, "delete_by_id")
        logger.debug(
            "Deleting {} instance with ID: {}", self.model_class.__name__, entity_id
        )

        with self._timed("delete_by_id"):
            result = await self._collection().delete_one({ID_FIELD: entity_id})

        deleted = result.deleted_count == 1
        if deleted:
            logger.info(
                "Deleted {} instance with ID: {}", self.model_class.__name__, entity_id
            )
        else:
            logger.debug(
                "{} instance not found for deletion - ID: {}",
                self.model_class.__name__,
                entity_id,
            )
        return deleted

    async def delete_by_predicate(self, filter_doc: FilterSpec) -> bool:
        """Delete every entity matching a filter.

        Args:
            filter_doc: MongoDB filter document.

        Returns:
            bool: Whether the store acknowledged the delete.
        """
        with self._timed("delete_by_predicate"):
            result = await self._collection().delete_many(dict(filter_doc))

        logger.info(
            "Deleted {} {} instances with filter: {}",
            result.deleted_count if result.acknowledged else "unacknowledged",
            self.model_class.__name__,
            sanitize_filter(filter_doc),
        )
        return result.acknowledged

    async def delete_all(self) -> bool:
        """Delete every entity in the collection.

        Returns:
            bool: Whether the store acknowledged the delete.
        """
        with self._timed("delete_all"):
            result = await self._collection().delete_many({})

        logger.warning(
            "Deleted all {} instances from {} - count: {}",
            self.model_class.__name__,
            self.collection_name,
            result.deleted_count if result.acknowledged else "unacknowledged",
        )
        return result.acknowledged

    async def find_all_by_predicate(self, filter_doc: FilterSpec) -> list[T]:
        """Retrieve every entity matching a filter.

        Args:
            filter_doc: MongoDB filter document.

        Returns:
            list[T]: Matching entities in no particular order.
        """
        logger.debug(
            "Filtering {} instances with filter: {}",
            self.model_class.__name__,
            sanitize_filter(filter_doc),
        )

        with self._timed("find_all_by_predicate"):
            documents = await self._collection().find(dict(filter_doc)).to_list(None)

        instances = [self.model_class.from_document(doc) for doc in documents]
        logger.debug(
            "Retrieved {} {} instances", len(instances), self.model_class.__name__
        )
        return instances

    async def find_all(self) -> list[T]:
        """Retrieve a snapshot of the whole collection.

        Returns:
            list[T]: Every stored entity.
        """
        return await self.find_all_by_predicate({})

    async def stream_all(
        self,
        filter_doc: FilterSpec | None = None,
        options: FindOptions | None = None,
    ) -> AsyncIterator[T]:
        """Lazily iterate over matching entities.

        The iterator is single-pass and cannot be restarted; documents are
        fetched from the server in batches as iteration proceeds.

        Args:
            filter_doc: Optional MongoDB filter document.
            options: Optional paging, sort and projection options.

        Yields:
            T: Each matching entity.
        """
        find_kwargs = (options or FindOptions()).to_find_kwargs()
        logger.debug(
            "Streaming {} instances with filter: {}, options: {}",
            self.model_class.__name__,
            sanitize_filter(filter_doc),
            find_kwargs,
        )

        cursor = self._collection().find(dict(filter_doc or {}), **find_kwargs)
        async for document in cursor:
            yield self.model_class.from_document(document)

    async def insert_many(
        self, items: Sequence[T], collection_name: str | None = None
    ) -> bool:
        """Insert a batch of entities without ordering guarantees.

        A failing item (e.g. a duplicate key) does not prevent the rest of
        the batch from being inserted. Identifiers are generated for items
        that have none.

        Args:
            items: Non-empty sequence of entities.
            collection_name: Optional alternate target collection.

        Returns:
            bool: True if every item was inserted, False if some failed.

        Raises:
            ValidationError: If ``items`` is empty.
        """
        target = collection_name or self.collection_name
        if not items:
            raise ValidationError(
                "insert_many requires at least one item",
                context={"collection": target, "operation": "insert_many"},
            )

        documents = []
        for item in items:
            item.ensure_id()
            documents.append(item.to_document())

        try:
            with self._timed("insert_many"):
                result = await self._collection(target).insert_many(
                    documents, ordered=False
                )
        except BulkWriteError as e:
            write_errors = e.details.get("writeErrors", [])
            logger.warning(
                "Bulk insert into {} partially failed - inserted: {}, failed: {}",
                target,
                e.details.get("nInserted", 0),
                len(write_errors),
                collection=target,
                operation="insert_many",
                error_codes=sorted({err.get("code") for err in write_errors}),
            )
            return False

        logger.info(
            "Inserted {} {} instances into {}",
            len(result.inserted_ids),
            self.model_class.__name__,
            target,
        )
        return result.acknowledged

    async def insert_one(self, item: T) -> bool:
        """Insert a single entity, subject to document validation.

        Args:
            item: The entity to insert. An identifier is generated if absent.

        Returns:
            bool: Whether the store acknowledged the insert.
        """
        item.ensure_id()
        with self._timed("insert_one"):
            result = await self._collection().insert_one(
                item.to_document(), bypass_document_validation=False
            )

        logger.info(
            "Inserted {} instance with ID: {}",
            self.model_class.__name__,
            result.inserted_id,
        )
        return result.acknowledged

    async def update_many(self, items: Sequence[T]) -> str:
        """Upsert a batch of entities in a single bulk call.

        Items whose identifier doesn't exist yet are created; they count as
        upserted, not modified. Document validation is bypassed.

        Args:
            items: Entities to write.

        Returns:
            str: The number of modified documents as decimal text.
        """
        if not items:
            logger.debug(
                "Skipping bulk upsert of empty batch into {}", self.collection_name
            )
            return "0"

        models = [self.build_upsert_model(item) for item in items]
        with self._timed("update_many"):
            result = await self._collection().bulk_write(
                models, bypass_document_validation=True
            )

        logger.info(
            "Bulk upserted {} {} instances - matched: {}, modified: {}, upserted: {}",
            len(models),
            self.model_class.__name__,
            result.matched_count,
            result.modified_count,
            result.upserted_count,
            collection=self.collection_name,
            operation="update_many",
        )
        return str(result.modified_count)

    async def exists(self, filter_doc: FilterSpec) -> bool:
        """Check whether any entity matches a filter.

        Args:
            filter_doc: MongoDB filter document.

        Returns:
            bool: True if at least one document matches.
        """
        with self._timed("exists"):
            matches = await self._collection().count_documents(
                dict(filter_doc), limit=1
            )

        exists_value = matches > 0
        logger.debug(
            "Existence check result for {} with filter {}: {}",
            self.model_class.__name__,
            sanitize_filter(filter_doc),
            exists_value,
        )
        return exists_value

    async def count(self, filter_doc: FilterSpec | None = None) -> int:
        """Count entities matching a filter.

        Args:
            filter_doc: Optional MongoDB filter document.

        Returns:
            int: The number of matching documents.
        """
        with self._timed("count"):
            count_value = await self._collection().count_documents(
                dict(filter_doc or {})
            )

        logger.debug("Counted {} {} instances", count_value, self.model_class.__name__)
        return count_value


class RetryingRepository[T: DocumentModel](BaseRepository[T]):
    """Repository flavor whose read paths retry transient failures.

    Each ``*_with_retry`` call makes up to ``retry_attempts`` attempts with
    ``retry_delay_seconds`` between them; the last failure propagates.
    """

    retry_attempts: int = RETRY_ATTEMPTS
    retry_delay_seconds: float = RETRY_DELAY_SECONDS

    async def find_all_by_predicate_with_retry(self, filter_doc: FilterSpec) -> list[T]:
        """Retrieve every entity matching a filter, retrying on failure.

        Args:
            filter_doc: MongoDB filter document.

        Returns:
            list[T]: Matching entities in no particular order.
        """
        return await with_retry(
            lambda: self.find_all_by_predicate(filter_doc),
            operation_name=f"{self.model_class.__name__}.find_all_by_predicate",
            attempts=self.retry_attempts,
            delay_seconds=self.retry_delay_seconds,
        )

    async def exists_with_retry(self, filter_doc: FilterSpec) -> bool:
        """Check whether any entity matches a filter, retrying on failure.

        Args:
            filter_doc: MongoDB filter document.

        Returns:
            bool: True if at least one document matches.
        """
        return await with_retry(
            lambda: self.exists(filter_doc),
            operation_name=f"{self.model_class.__name__}.exists",
            attempts=self.retry_attempts,
            delay_seconds=self.retry_delay_seconds,
        )
