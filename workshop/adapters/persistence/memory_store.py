"""MemoryDocumentStore: in-process document store for tests and single-node runs."""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

from workshop.adapters.persistence.filters import apply_query
from workshop.adapters.persistence.serialization import merge_fields
from workshop.application.ports.document_store import (
    Document,
    DocumentStore,
    Filter,
    OrderBy,
    Transaction,
    WriteOp,
)
from workshop.domain.errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryDocumentStore"):
        self._store = store
        self.writes: list[WriteOp] = []

    async def get(self, collection: str, doc_id: str) -> Document | None:
        return self._store._read(collection, doc_id)

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self.writes.append(WriteOp("set", collection, doc_id, {"data": data, "merge": merge}))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self.writes.append(WriteOp("update", collection, doc_id, fields))


class MemoryDocumentStore(DocumentStore):
    """Documents live in ``{collection: {id: data}}``; values are deep-copied in and out.

    Transactions are serialized by one ``asyncio.Lock`` and apply their
    buffered writes only when the callback returns without raising.
    """

    def __init__(self):
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._tx_lock = asyncio.Lock()

    # ─── Seeding helpers ────────────────────────────────────────────

    def load(self, collection: str, documents: Mapping[str, dict[str, Any]]) -> None:
        """Synchronously seed documents (tests, fixtures)."""
        bucket = self._data.setdefault(collection, {})
        for doc_id, data in documents.items():
            bucket[doc_id] = copy.deepcopy(data)

    def dump(self, collection: str) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._data.get(collection, {}))

    # ─── Internals ──────────────────────────────────────────────────

    def _read(self, collection: str, doc_id: str) -> Document | None:
        data = self._data.get(collection, {}).get(doc_id)
        return Document(doc_id, copy.deepcopy(data)) if data is not None else None

    def _write(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool) -> None:
        bucket = self._data.setdefault(collection, {})
        if merge and doc_id in bucket:
            bucket[doc_id] = merge_fields(bucket[doc_id], data)
        else:
            bucket[doc_id] = copy.deepcopy(data)

    def _update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        bucket = self._data.get(collection, {})
        if doc_id not in bucket:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        bucket[doc_id] = merge_fields(bucket[doc_id], fields)

    def _apply(self, op: WriteOp) -> None:
        if op.kind == "set":
            self._write(op.collection, op.doc_id, op.data["data"], op.data.get("merge", False))
        elif op.kind == "update":
            self._update(op.collection, op.doc_id, op.data)
        elif op.kind == "delete":
            self._data.get(op.collection, {}).pop(op.doc_id, None)
        else:
            raise StoreError(f"Unknown write kind: {op.kind}")

    # ─── DocumentStore ──────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str) -> Document | None:
        return self._read(collection, doc_id)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        docs = [Document(doc_id, copy.deepcopy(data)) for doc_id, data in self._data.get(collection, {}).items()]
        return apply_query(docs, filters, order_by, limit)

    async def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._write(collection, doc_id, data, merge)

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._update(collection, doc_id, fields)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self._write(collection, doc_id, data, merge=False)
        return doc_id

    async def delete(self, collection: str, doc_id: str) -> None:
        self._data.get(collection, {}).pop(doc_id, None)

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        async with self._tx_lock:
            tx = _MemoryTransaction(self)
            result = await fn(tx)
            touched = {op.collection for op in tx.writes}
            backup = {name: copy.deepcopy(self._data.get(name, {})) for name in touched}
            try:
                for op in tx.writes:
                    self._apply(op)
            except Exception:
                self._data.update(backup)
                raise
            return result

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        failures: list[str] = []
        for op in ops:
            try:
                self._apply(op)
            except Exception as e:
                failures.append(f"{op.kind} {op.collection}/{op.doc_id}: {e}")
        if failures:
            raise StoreError(f"{len(failures)} of {len(ops)} batch writes failed: {failures[0]}")

    async def ping(self) -> None:
        return None
