"""Port interface for the shared document store.

Every engine component talks to persistence through this port only. Adapters
raise ``TransientStoreError`` for timeouts, unavailability and conflicts, and
``PermanentStoreError`` for everything that retrying cannot fix.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, TypeVar

T = TypeVar("T")

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains"]


@dataclass(frozen=True)
class Document:
    id: str
    data: dict[str, Any]

    def get(self, path: str, default: Any = None) -> Any:
        """Read a dotted path such as ``availability.isAvailable``."""
        node: Any = self.data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node


@dataclass(frozen=True)
class Filter:
    field: str
    op: FilterOp
    value: Any


def where(field_path: str, op: FilterOp, value: Any) -> Filter:
    return Filter(field_path, op, value)


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class WriteOp:
    """One entry of a best-effort batch."""

    kind: Literal["set", "update", "delete"]
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)


class Transaction(ABC):
    """Read-then-write unit scoped to the documents it touches.

    Reads happen immediately; writes are buffered and applied on commit.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        ...


class DocumentStore(ABC):
    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Partial merge. Raises NotFoundError when the document does not exist."""
        ...

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Insert under a generated id and return it."""
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run *fn* atomically; the store retries it internally on conflict."""
        ...

    @abstractmethod
    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        """Apply independent writes; raises StoreError after trying all if any failed."""
        ...

    @abstractmethod
    async def ping(self) -> None:
        """Round-trip check used by the health endpoint."""
        ...

    async def aclose(self) -> None:
        return None
