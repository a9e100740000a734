"""Pydantic base model for entities stored in the document store.

Every entity managed by a repository inherits from DocumentModel, which
provides the single capability repositories rely on: a unique identifier
stored as the document's ``_id``.

The identifier:
- **Type**: ``bson.ObjectId``, globally unique and compared by equality only
- **Assignment**: supplied by the caller or generated on first insert
- **Stability**: never reassigned once set
"""

from typing import Annotated, Any, Self

from bson import ObjectId
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer

from src.core.types import RawDocument
from src.infrastructure.constants import ID_FIELD


def _coerce_object_id(value: Any) -> Any:
    """Accept the 24-character hex form of an ObjectId."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


# ObjectId that validates from its hex string and serializes to it in JSON mode
DocumentId = Annotated[
    ObjectId,
    BeforeValidator(_coerce_object_id),
    PlainSerializer(str, return_type=str, when_used="json"),
]


class DocumentModel(BaseModel):
    """Base model for all stored entities.

    Subclasses declare their own fields; the identifier is inherited.
    Repositories derive the default collection name from the subclass name.

    Example:
        class Customer(DocumentModel):
            name: str
            email: str | None = None
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        populate_by_name=True,
    )

    id: DocumentId | None = Field(
        default=None,
        alias=ID_FIELD,
        description="Document identifier, generated on first insert if absent",
    )

    def ensure_id(self) -> ObjectId:
        """Return the identifier, generating one if none is assigned yet.

        Returns:
            ObjectId: The entity's identifier.
        """
        if self.id is None:
            self.id = ObjectId()
        return self.id

    def to_document(self) -> RawDocument:
        """Convert the entity to a BSON-ready document keyed by ``_id``."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_document(cls, document: RawDocument) -> Self:
        """Build an entity from a stored document.

        Args:
            document: The raw document returned by the store.

        Returns:
            Self: The validated entity.
        """
        return cls.model_validate(document)

    def __repr__(self) -> str:
        """Return a string representation showing the class name and ID."""
        return f"<{self.__class__.__name__}(id={self.id})>"
