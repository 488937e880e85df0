from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger
from sqlalchemy import Boolean, Column, DateTime, Integer, String, select
from sqlalchemy.orm import sessionmaker

from .database import Base

UPDATABLE_FIELDS = ("title", "done", "description", "category", "priority")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Todo(Base):
    __tablename__ = "todos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    done = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    description = Column(String(500), nullable=True)
    category = Column(String(100), nullable=True, index=True)
    # 1-5 scale, 1 is the most urgent
    priority = Column(Integer, nullable=False, default=1)


class TodoStore:
    """CRUD operations over the todos table. Every call uses its own session."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def list_all(self) -> list[Todo]:
        with self._session_factory() as session:
            query = select(Todo).order_by(Todo.created_at.desc(), Todo.id.desc())
            return list(session.scalars(query))

    def get(self, todo_id: int) -> Optional[Todo]:
        with self._session_factory() as session:
            return session.get(Todo, todo_id)

    def create(self, data: dict[str, Any]) -> Todo:
        fields = {key: data[key] for key in UPDATABLE_FIELDS if data.get(key) is not None}
        todo = Todo(**fields, created_at=_utcnow())
        with self._session_factory() as session:
            session.add(todo)
            session.commit()
            session.refresh(todo)

        logger.info(f"Created todo with ID {todo.id}")
        return todo

    def update(self, todo_id: int, data: dict[str, Any]) -> Optional[Todo]:
        """Replaces the editable fields of a todo. Returns None if it does not exist."""
        with self._session_factory() as session:
            todo = session.get(Todo, todo_id)
            if todo is None:
                return None

            for key in UPDATABLE_FIELDS:
                if key in data:
                    setattr(todo, key, data[key])
            todo.updated_at = _utcnow()
            session.commit()
            session.refresh(todo)

        logger.info(f"Updated todo with ID {todo_id}")
        return todo

    def delete(self, todo_id: int) -> bool:
        with self._session_factory() as session:
            todo = session.get(Todo, todo_id)
            if todo is None:
                return False
            session.delete(todo)
            session.commit()

        logger.info(f"Deleted todo with ID {todo_id}")
        return True

    def by_category(self, category: str) -> list[Todo]:
        with self._session_factory() as session:
            query = (
                select(Todo)
                .where(Todo.category == category)
                .order_by(Todo.created_at.desc(), Todo.id.desc())
            )
            return list(session.scalars(query))

    def pending(self) -> list[Todo]:
        """Open todos, most urgent first, newest first within a priority."""
        with self._session_factory() as session:
            query = (
                select(Todo)
                .where(Todo.done.is_(False))
                .order_by(Todo.priority.asc(), Todo.created_at.desc(), Todo.id.desc())
            )
            return list(session.scalars(query))
