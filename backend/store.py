from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel
from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import InterviewSessionRow, BankedQuestionRow
from schemas import BankedQuestion, QuestionRecord, Session

T = TypeVar("T", bound=BaseModel)


class _SqlStore(ABC, Generic[T]):
    """Keyed collection over one table: list/get/put/replace/delete.

    Every call opens and commits its own unit of work, so each accepted
    transition is durable as soon as put() or replace() returns.
    """

    row_model = None
    key_column = ""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    @abstractmethod
    def to_domain(self, row) -> T: ...

    @abstractmethod
    def columns(self, item: T) -> dict[str, Any]:
        """Column values for every field except the key."""

    def key_of(self, item: T) -> str:
        return item.id

    def _key(self):
        return getattr(self.row_model, self.key_column)

    async def list(self) -> list[T]:
        async with self._sessionmaker() as db:
            result = await db.execute(select(self.row_model).order_by(self.row_model.pk.desc()))
            return [self.to_domain(row) for row in result.scalars().all()]

    async def get(self, key: str) -> Optional[T]:
        async with self._sessionmaker() as db:
            result = await db.execute(select(self.row_model).where(self._key() == key))
            row = result.scalar_one_or_none()
            return self.to_domain(row) if row else None

    async def put(self, item: T) -> None:
        """Insert, or overwrite the row with the same key."""
        async with self._sessionmaker() as db:
            result = await db.execute(select(self.row_model).where(self._key() == self.key_of(item)))
            row = result.scalar_one_or_none()
            if row is None:
                db.add(self.row_model(**{self.key_column: self.key_of(item)}, **self.columns(item)))
            else:
                for name, value in self.columns(item).items():
                    setattr(row, name, value)
            await db.commit()

    async def replace(self, item: T) -> bool:
        """Overwrite an existing row in one UPDATE. Returns False (and writes
        nothing) when the row is gone, so a deleted item is never re-created."""
        async with self._sessionmaker() as db:
            result = await db.execute(
                update(self.row_model)
                .where(self._key() == self.key_of(item))
                .values(**self.columns(item))
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount > 0

    async def delete(self, key: str) -> None:
        async with self._sessionmaker() as db:
            await db.execute(delete(self.row_model).where(self._key() == key))
            await db.commit()


class SessionStore(_SqlStore[Session]):
    row_model = InterviewSessionRow
    key_column = "session_id"

    def to_domain(self, row: InterviewSessionRow) -> Session:
        return Session(
            id=row.session_id,
            name=row.name,
            role=row.role,
            job_description=row.job_description,
            resume_ref=row.resume_ref,
            questions=[QuestionRecord(**q) for q in (row.questions or [])],
            accumulated_context=row.accumulated_context or "",
            feedback_text=row.feedback_text,
            score=row.score,
            created_at=row.created_at,
        )

    def columns(self, item: Session) -> dict[str, Any]:
        return {
            "name": item.name,
            "role": item.role,
            "job_description": item.job_description,
            "resume_ref": item.resume_ref,
            "questions": [q.model_dump() for q in item.questions],
            "accumulated_context": item.accumulated_context,
            "feedback_text": item.feedback_text,
            "score": item.score,
            "created_at": item.created_at,
        }


class QuestionBankStore(_SqlStore[BankedQuestion]):
    row_model = BankedQuestionRow
    key_column = "question_id"

    def to_domain(self, row: BankedQuestionRow) -> BankedQuestion:
        return BankedQuestion(
            id=row.question_id,
            question_text=row.question_text,
            category=row.category,
            difficulty=row.difficulty,
            tips=list(row.tips or []),
            ideal_answer=row.ideal_answer,
            created_at=row.created_at,
        )

    def columns(self, item: BankedQuestion) -> dict[str, Any]:
        return {
            "question_text": item.question_text,
            "category": item.category,
            "difficulty": item.difficulty,
            "tips": list(item.tips),
            "ideal_answer": item.ideal_answer,
            "created_at": item.created_at,
        }


class InMemoryStore(Generic[T]):
    """Same contract as the SQL stores, kept in a dict. Used by tests and scripts."""

    def __init__(self):
        self._items: dict[str, T] = {}

    async def list(self) -> list[T]:
        return list(reversed(self._items.values()))

    async def get(self, key: str) -> Optional[T]:
        return self._items.get(key)

    async def put(self, item: T) -> None:
        # Re-putting an existing key keeps its original position.
        self._items[item.id] = item

    async def replace(self, item: T) -> bool:
        if item.id not in self._items:
            return False
        self._items[item.id] = item
        return True

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)
