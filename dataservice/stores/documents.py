import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from loguru import logger
from pymongo import DESCENDING
from pymongo.collection import Collection


@dataclass
class Document:
    name: str
    content: str
    id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)

    def to_bson(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": dict(self.metadata),
            "tags": list(self.tags),
        }

    @classmethod
    def from_bson(cls, raw: dict[str, Any]) -> "Document":
        return cls(
            id=str(raw["_id"]),
            name=raw.get("name", ""),
            content=raw.get("content", ""),
            created_at=raw.get("created_at"),
            updated_at=raw.get("updated_at"),
            metadata=raw.get("metadata") or {},
            tags=raw.get("tags") or [],
        )


def _object_id(document_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        return None


class DocumentStore:
    """CRUD and search operations over the documents collection."""

    def __init__(self, collection: Collection):
        self._collection = collection

    def _find(self, query: dict[str, Any]) -> list[Document]:
        cursor = self._collection.find(query).sort("created_at", DESCENDING)
        return [Document.from_bson(raw) for raw in cursor]

    def list_all(self) -> list[Document]:
        return self._find({})

    def get(self, document_id: str) -> Optional[Document]:
        oid = _object_id(document_id)
        if oid is None:
            return None
        raw = self._collection.find_one({"_id": oid})
        return Document.from_bson(raw) if raw else None

    def create(self, document: Document) -> Document:
        document.created_at = datetime.now(timezone.utc)
        document.updated_at = None
        result = self._collection.insert_one(document.to_bson())
        document.id = str(result.inserted_id)

        logger.info(f"Created document with ID {document.id}")
        return document

    def update(self, document_id: str, document: Document) -> Optional[Document]:
        """Replaces the stored document, keeping its creation time. No upsert."""
        oid = _object_id(document_id)
        if oid is None:
            return None

        existing = self._collection.find_one({"_id": oid}, {"created_at": 1})
        if existing is None:
            return None

        document.id = document_id
        document.created_at = existing.get("created_at") or document.created_at
        document.updated_at = datetime.now(timezone.utc)
        result = self._collection.replace_one({"_id": oid}, document.to_bson(), upsert=False)
        if result.matched_count == 0:
            return None

        logger.info(f"Updated document with ID {document_id}")
        return document

    def delete(self, document_id: str) -> bool:
        oid = _object_id(document_id)
        if oid is None:
            return False
        result = self._collection.delete_one({"_id": oid})

        logger.info(f"Deleted document with ID {document_id}, count: {result.deleted_count}")
        return result.deleted_count > 0

    def search(self, term: str) -> list[Document]:
        """Case-insensitive substring match on name or content."""
        pattern = {"$regex": re.escape(term), "$options": "i"}
        return self._find({"$or": [{"name": pattern}, {"content": pattern}]})

    def by_tag(self, tag: str) -> list[Document]:
        return self._find({"tags": tag})

    def ping(self) -> bool:
        try:
            self._collection.database.client.admin.command("ping")
            return True
        except Exception as e:
            logger.error(f"MongoDB ping failed: {e}")
            return False
