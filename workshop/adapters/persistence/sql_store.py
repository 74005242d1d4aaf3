"""SqlDocumentStore: the document store port on PostgreSQL JSONB."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy import delete, select, text
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from workshop.adapters.persistence.database import build_session_factory
from workshop.adapters.persistence.filters import apply_query
from workshop.adapters.persistence.models import DocumentModel
from workshop.adapters.persistence.serialization import merge_fields, nest, to_json_ready
from workshop.application.ports.document_store import (
    Document,
    DocumentStore,
    Filter,
    OrderBy,
    Transaction,
    WriteOp,
)
from workshop.domain.errors import (
    NotFoundError,
    PermanentStoreError,
    StoreError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_TRANSACTION_ATTEMPTS = 5


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    """Map SQLAlchemy/driver failures onto the store error hierarchy."""
    try:
        yield
    except IntegrityError as e:
        raise TransientStoreError(f"{action}: write conflict: {e.orig}") from e
    except (OperationalError, InterfaceError, PoolTimeoutError) as e:
        raise TransientStoreError(f"{action}: database unavailable: {e}") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise TransientStoreError(f"{action}: connection lost: {e}") from e
        raise PermanentStoreError(f"{action}: {e}") from e
    except SQLAlchemyError as e:
        raise PermanentStoreError(f"{action}: {e}") from e
    except (ConnectionError, OSError) as e:
        raise TransientStoreError(f"{action}: {e}") from e


def _pushdown(flt: Filter) -> bool:
    """Only string equality is narrowed in SQL; everything is re-checked in Python."""
    value = flt.value.value if isinstance(flt.value, Enum) else flt.value
    return flt.op == "==" and isinstance(value, str)


async def _load_for_update(session: AsyncSession, collection: str, doc_id: str) -> DocumentModel | None:
    result = await session.execute(
        select(DocumentModel)
        .where(DocumentModel.collection == collection, DocumentModel.id == doc_id)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def _apply(session: AsyncSession, op: WriteOp) -> None:
    if op.kind == "delete":
        await session.execute(
            delete(DocumentModel).where(
                DocumentModel.collection == op.collection, DocumentModel.id == op.doc_id
            )
        )
        return

    existing = await _load_for_update(session, op.collection, op.doc_id)
    if op.kind == "update":
        if existing is None:
            raise NotFoundError(f"{op.collection}/{op.doc_id} does not exist")
        existing.data = merge_fields(existing.data, to_json_ready(op.data))
    elif op.kind == "set":
        payload = to_json_ready(op.data["data"])
        if existing is None:
            session.add(DocumentModel(collection=op.collection, id=op.doc_id, data=payload))
        elif op.data.get("merge", False):
            existing.data = merge_fields(existing.data, payload)
        else:
            existing.data = payload
    else:
        raise StoreError(f"Unknown write kind: {op.kind}")
    await session.flush()


class _SqlTransaction(Transaction):
    def __init__(self, session: AsyncSession):
        self._s = session
        self.writes: list[WriteOp] = []

    async def get(self, collection: str, doc_id: str) -> Document | None:
        m = await _load_for_update(self._s, collection, doc_id)
        return Document(m.id, dict(m.data)) if m else None

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self.writes.append(WriteOp("set", collection, doc_id, {"data": data, "merge": merge}))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self.writes.append(WriteOp("update", collection, doc_id, fields))


class SqlDocumentStore(DocumentStore):
    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._sessions = build_session_factory(engine)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        with _translate_errors(f"get {collection}/{doc_id}"):
            async with self._sessions() as session:
                m = await session.get(DocumentModel, (collection, doc_id))
                return Document(m.id, dict(m.data)) if m else None

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        stmt = select(DocumentModel).where(DocumentModel.collection == collection)
        for flt in filters:
            if _pushdown(flt):
                stmt = stmt.where(DocumentModel.data.contains(nest(flt.field, to_json_ready(flt.value))))

        with _translate_errors(f"query {collection}"):
            async with self._sessions() as session:
                result = await session.execute(stmt)
                docs = [Document(m.id, dict(m.data)) for m in result.scalars().all()]
        return apply_query(docs, filters, order_by, limit)

    async def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        await self._write(WriteOp("set", collection, doc_id, {"data": data, "merge": merge}))

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        await self._write(WriteOp("update", collection, doc_id, fields))

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        with _translate_errors(f"add {collection}"):
            async with self._sessions() as session, session.begin():
                session.add(DocumentModel(collection=collection, id=doc_id, data=to_json_ready(data)))
        return doc_id

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._write(WriteOp("delete", collection, doc_id))

    async def _write(self, op: WriteOp) -> None:
        with _translate_errors(f"{op.kind} {op.collection}/{op.doc_id}"):
            async with self._sessions() as session, session.begin():
                await _apply(session, op)

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Rows read through the transaction are locked ``FOR UPDATE``.

        Two transactions creating the same missing row collide on the primary
        key; the loser is re-run from scratch.
        """
        for attempt in range(1, MAX_TRANSACTION_ATTEMPTS + 1):
            try:
                with _translate_errors("transaction"):
                    async with self._sessions() as session, session.begin():
                        tx = _SqlTransaction(session)
                        result = await fn(tx)
                        for op in tx.writes:
                            await _apply(session, op)
                return result
            except TransientStoreError as e:
                if not isinstance(e.__cause__, IntegrityError) or attempt == MAX_TRANSACTION_ATTEMPTS:
                    raise
                logger.warning("Transaction conflict (attempt %d), retrying: %s", attempt, e)
        raise TransientStoreError("transaction: retries exhausted")

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        failures: list[str] = []
        for op in ops:
            try:
                await self._write(op)
            except (StoreError, NotFoundError) as e:
                failures.append(f"{op.kind} {op.collection}/{op.doc_id}: {e}")
        if failures:
            raise StoreError(f"{len(failures)} of {len(ops)} batch writes failed: {failures[0]}")

    async def ping(self) -> None:
        with _translate_errors("ping"):
            async with self._sessions() as session:
                await session.execute(text("SELECT 1"))

    async def aclose(self) -> None:
        await self._engine.dispose()
