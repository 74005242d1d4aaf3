"""ResilientDocumentStore: timeout and retry decorator around any document store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from workshop.application.ports.document_store import (
    Document,
    DocumentStore,
    Filter,
    OrderBy,
    Transaction,
    WriteOp,
)
from workshop.domain.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilientDocumentStore(DocumentStore):
    """Every call gets ``timeout_s``; a timeout becomes ``TransientStoreError``.

    Transient errors are retried with exponential backoff and jitter up to
    ``max_attempts`` in total. ``add`` is not idempotent, so it only gets the
    timeout. Permanent errors and ``NotFoundError`` pass straight through.
    """

    def __init__(
        self,
        inner: DocumentStore,
        timeout_s: float = 5.0,
        max_attempts: int = 3,
        initial_wait_s: float = 0.2,
        max_wait_s: float = 5.0,
    ):
        self._inner = inner
        self._timeout = timeout_s
        self._max_attempts = max(1, max_attempts)
        self._initial_wait = initial_wait_s
        self._max_wait = max_wait_s

    @property
    def inner(self) -> DocumentStore:
        return self._inner

    async def _with_timeout(self, action: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise TransientStoreError(f"{action} timed out after {self._timeout}s") from e

    async def _call(self, action: str, call: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential_jitter(multiplier=self._initial_wait, max=self._max_wait),
            retry=retry_if_exception_type(TransientStoreError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._with_timeout(action, call)
        raise TransientStoreError(f"{action}: retries exhausted")

    async def get(self, collection: str, doc_id: str) -> Document | None:
        return await self._call(f"get {collection}/{doc_id}", lambda: self._inner.get(collection, doc_id))

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        return await self._call(
            f"query {collection}",
            lambda: self._inner.query(collection, filters, order_by, limit),
        )

    async def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        await self._call(
            f"set {collection}/{doc_id}",
            lambda: self._inner.set(collection, doc_id, data, merge),
        )

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        await self._call(
            f"update {collection}/{doc_id}",
            lambda: self._inner.update(collection, doc_id, fields),
        )

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        return await self._with_timeout(f"add {collection}", lambda: self._inner.add(collection, data))

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._call(f"delete {collection}/{doc_id}", lambda: self._inner.delete(collection, doc_id))

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        return await self._call("transaction", lambda: self._inner.run_transaction(fn))

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        await self._with_timeout(f"batch of {len(ops)}", lambda: self._inner.batch_write(ops))

    async def ping(self) -> None:
        await self._with_timeout("ping", self._inner.ping)

    async def aclose(self) -> None:
        await self._inner.aclose()
