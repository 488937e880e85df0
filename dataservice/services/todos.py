import asyncio
from typing import Any, Optional

from ..messaging.interfaces import IMessageQueue
from ..stores.todos import Todo, TodoStore
from .notifications import ChangeNotifier


class TodoService:
    def __init__(self, store: TodoStore, queue: IMessageQueue):
        self.store = store
        self.notifier = ChangeNotifier(queue, "todo")

    async def list_all(self) -> list[Todo]:
        return await asyncio.to_thread(self.store.list_all)

    async def get(self, todo_id: int) -> Optional[Todo]:
        return await asyncio.to_thread(self.store.get, todo_id)

    async def by_category(self, category: str) -> list[Todo]:
        return await asyncio.to_thread(self.store.by_category, category)

    async def pending(self) -> list[Todo]:
        return await asyncio.to_thread(self.store.pending)

    async def create(self, data: dict[str, Any]) -> Todo:
        todo = await asyncio.to_thread(self.store.create, data)
        await self.notifier.notify("created", f"New todo created: {todo.title}")
        return todo

    async def update(self, todo_id: int, data: dict[str, Any]) -> Optional[Todo]:
        todo = await asyncio.to_thread(self.store.update, todo_id, data)
        if todo is None:
            return None
        await self.notifier.notify("updated", f"Todo updated: {todo.title}")
        return todo

    async def delete(self, todo_id: int) -> bool:
        deleted = await asyncio.to_thread(self.store.delete, todo_id)
        if deleted:
            await self.notifier.notify("deleted", f"Todo deleted with ID: {todo_id}")
        return deleted
