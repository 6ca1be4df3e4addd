"""Small Django-style query helpers bound to SQLModel table classes."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlmodel import SQLModel, col, select

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT", bound=SQLModel)


class QuerySet(Generic[ModelT]):
    """Lazily composed select statement for a single model."""

    def __init__(self, model: type[ModelT], statement: SelectOfScalar[ModelT]) -> None:
        self.model = model
        self.statement = statement

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return QuerySet(self.model, self.statement.where(*criteria))

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return QuerySet(self.model, self.statement.filter_by(**kwargs))

    def order_by(self, *clauses: Any) -> QuerySet[ModelT]:
        return QuerySet(self.model, self.statement.order_by(*clauses))

    def limit(self, value: int) -> QuerySet[ModelT]:
        return QuerySet(self.model, self.statement.limit(value))

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement.limit(1))).first()

    async def all(self, session: AsyncSession) -> Sequence[ModelT]:
        return (await session.exec(self.statement)).all()


class ModelManager(Generic[ModelT]):
    """Entry point for building querysets from a model class."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> QuerySet[ModelT]:
        return QuerySet(self.model, select(self.model))

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return self.all().filter_by(**kwargs)

    def by_id(self, obj_id: Any) -> QuerySet[ModelT]:
        return self.all().filter(col(self.model.id) == obj_id)  # type: ignore[attr-defined]


class ManagerDescriptor:
    """Expose `Model.objects` as a manager bound to the accessing class."""

    def __get__(self, instance: object, owner: type[ModelT]) -> ModelManager[ModelT]:
        return ModelManager(owner)
