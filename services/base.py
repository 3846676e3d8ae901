"""Tool Ledger — Base Service Interface.

All services take an AsyncSession and never commit it: the caller owns
the outer transaction, each mutation runs in its own savepoint.

Features:
    - Primary key lookups with NotFoundError
    - Row locking (SELECT ... FOR UPDATE) with a fresh read
    - Savepoint execution with one retry on concurrent updates
    - Consistency violation reporting

Usage:
    class ToolService(BaseService[Tool]):
        def __init__(self, db: AsyncSession):
            super().__init__(Tool, db)

        async def rename(self, tool_id: int, name: str) -> Tool:
            async def _rename() -> Tool:
                tool = await self.get_for_update(tool_id)
                tool.tool_name = name
                return tool
            return await self.run_in_transaction("rename", _rename, tool_id=tool_id)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from config import get_settings
from core.exceptions import ConflictError, ConsistencyViolation, NotFoundError, ValidationError
from core.monitoring import capture_exception
from database import transaction
from db.base import utcnow
from logger import get_logger

ModelType = TypeVar("ModelType")
SchemaType = TypeVar("SchemaType", bound=BaseModel)
ResultType = TypeVar("ResultType")

logger = get_logger(__name__)

# Unique key that two concurrent writers of the same ledger sequence collide on
SEQUENCE_CONSTRAINT = "uq_maintenance_events_sequence"
SEQUENCE_COLUMN = "maintenance_events.event_sequence"


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite returns them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_payload(schema: type[SchemaType], payload: SchemaType | dict[str, Any]) -> SchemaType:
    """Coerce a dict into a schema, converting pydantic errors to ValidationError."""
    if isinstance(payload, schema):
        return payload
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "payload"
        raise ValidationError(field, first["msg"]) from exc


def require_actor(actor_id: str | None) -> str:
    if actor_id is None or not str(actor_id).strip():
        raise ValidationError("actor_id", "an actor is required for every mutation")
    return str(actor_id).strip()


def is_sequence_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return SEQUENCE_CONSTRAINT in message or SEQUENCE_COLUMN in message


class BaseService(Generic[ModelType]):
    """Base class for all business logic services."""

    def __init__(self, model: type[ModelType], db: AsyncSession):
        """Initialize service with model class and database session.

        Args:
            model: The SQLAlchemy model class.
            db: The async database session.
        """
        self.model = model
        self.db = db
        self.logger = logger.bind(service=self.__class__.__name__)

    async def get(self, id: Any) -> ModelType | None:
        """Get a single record by primary key."""
        return await self.db.get(self.model, id)

    async def get_or_raise(self, id: Any) -> ModelType:
        """Get record or raise NotFoundError."""
        obj = await self.get(id)
        if obj is None:
            raise NotFoundError(self.model.__name__, id)
        return obj

    async def get_for_update(self, id: Any, model: type[Any] | None = None) -> Any:
        """Lock a row for the rest of the transaction and reload it.

        populate_existing discards any stale copy held by the session so a
        retry after a conflict sees the committed state.

        Args:
            id: Primary key value.
            model: Model to lock, defaults to the service model.
        """
        model = model or self.model
        pk = model.__mapper__.primary_key[0]
        result = await self.db.execute(
            select(model)
            .where(pk == id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        obj = result.scalar_one_or_none()
        if obj is None:
            raise NotFoundError(model.__name__, id)
        return obj

    async def run_in_transaction(
        self,
        operation: str,
        fn: Callable[[], Awaitable[ResultType]],
        **context: Any,
    ) -> ResultType:
        """Run fn inside a savepoint, retrying after a concurrent update.

        A lost update (StaleDataError from the version column) or a
        collision on the ledger sequence key rolls the savepoint back and
        runs fn again from a fresh read. Once the configured retries are
        used up the conflict surfaces as ConflictError(transient=True).

        A ConsistencyViolation rolls the savepoint back, is reported and
        re-raised; it is never retried.
        """
        retries = get_settings().ledger.conflict_retries
        attempt = 0

        while True:
            try:
                async with transaction(self.db):
                    return await fn()
            except StaleDataError as exc:
                conflict: Exception = exc
            except IntegrityError as exc:
                if not is_sequence_conflict(exc):
                    raise
                conflict = exc
            except ConsistencyViolation as exc:
                self.logger.critical(
                    "consistency_violation",
                    operation=operation,
                    check=exc.check,
                    **exc.context,
                )
                capture_exception(exc, context={"operation": operation, **context, **exc.context})
                raise

            attempt += 1
            self.logger.warning(
                "concurrent_update_detected",
                operation=operation,
                attempt=attempt,
                error_type=type(conflict).__name__,
                **context,
            )
            if attempt > retries:
                raise ConflictError(
                    f"{operation} conflicted with a concurrent update",
                    transient=True,
                    details={"operation": operation, **context},
                ) from conflict

    async def flush(self) -> None:
        """Flush pending changes without committing.

        Useful for getting auto-generated IDs before commit.
        """
        await self.db.flush()
