import asyncio
from typing import Optional

from ..messaging.interfaces import IMessageQueue
from ..stores.documents import Document, DocumentStore
from .notifications import ChangeNotifier


class DocumentService:
    def __init__(self, store: DocumentStore, queue: IMessageQueue):
        self.store = store
        self.notifier = ChangeNotifier(queue, "document")

    async def list_all(self) -> list[Document]:
        return await asyncio.to_thread(self.store.list_all)

    async def get(self, document_id: str) -> Optional[Document]:
        return await asyncio.to_thread(self.store.get, document_id)

    async def search(self, term: str) -> list[Document]:
        return await asyncio.to_thread(self.store.search, term)

    async def by_tag(self, tag: str) -> list[Document]:
        return await asyncio.to_thread(self.store.by_tag, tag)

    async def create(self, document: Document) -> Document:
        created = await asyncio.to_thread(self.store.create, document)
        await self.notifier.notify("created", f"New document created: {created.name}")
        return created

    async def update(self, document_id: str, document: Document) -> Optional[Document]:
        updated = await asyncio.to_thread(self.store.update, document_id, document)
        if updated is None:
            return None
        await self.notifier.notify("updated", f"Document updated: {updated.name}")
        return updated

    async def delete(self, document_id: str) -> bool:
        deleted = await asyncio.to_thread(self.store.delete, document_id)
        if deleted:
            await self.notifier.notify("deleted", f"Document deleted with ID: {document_id}")
        return deleted
