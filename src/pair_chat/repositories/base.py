"""Base document store interface."""

import operator
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

T = TypeVar("T")

MISSING = object()

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def get_field(data: Dict[str, Any], field_path: str) -> Any:
    """Resolve a dotted field path, returning ``MISSING`` when absent."""
    current: Any = data
    for part in field_path.split("."):
        if not isinstance(current, dict) or part not in current:
            return MISSING
        current = current[part]
    return current


@dataclass(frozen=True)
class Filter:
    """Single ``field op value`` query condition."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator {self.op!r}")

    def matches(self, data: Dict[str, Any]) -> bool:
        # Documents without the field never match, as in hosted document stores.
        current = get_field(data, self.field)
        if current is MISSING:
            return False
        try:
            return _OPERATORS[self.op](current, self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass
class DocumentSnapshot:
    """Point-in-time copy of a document."""

    id: str
    path: str
    data: Optional[Dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass
class WriteOp:
    """Buffered write used by transactions and batches."""

    kind: str  # "set", "update" or "delete"
    path: str
    data: Dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class Transaction(ABC):
    """Handle passed to a transaction function. Reads must precede writes."""

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot:
        """Read a document and record its version for the commit check."""
        pass

    @abstractmethod
    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        """Buffer a full or merged write."""
        pass

    @abstractmethod
    def update(self, path: str, data: Dict[str, Any]) -> None:
        """Buffer a partial update of an existing document."""
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        """Buffer a delete."""
        pass


class WriteBatch:
    """Collects independent writes and commits them all-or-nothing."""

    def __init__(self, store: "ChatStore") -> None:
        self._store = store
        self._ops: List[WriteOp] = []

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        self._ops.append(WriteOp("set", path, dict(data), merge))
        return self

    def update(self, path: str, data: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(WriteOp("update", path, dict(data)))
        return self

    def delete(self, path: str) -> "WriteBatch":
        self._ops.append(WriteOp("delete", path))
        return self

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> None:
        await self._store.batch_write(self._ops)


class ChatStore(ABC):
    """Abstract transactional document store.

    Paths are slash-separated: an even number of segments names a document,
    an odd number names a collection.
    """

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot:
        """Read a single document."""
        pass

    @abstractmethod
    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        """Create or overwrite a document; ``merge`` keeps unspecified fields."""
        pass

    @abstractmethod
    async def update(self, path: str, data: Dict[str, Any]) -> None:
        """Update fields of an existing document.

        Dotted string keys address nested fields; a tuple key names the same
        path segment by segment, for segments that themselves contain dots.
        """
        pass

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a document. Deleting an absent document is a no-op."""
        pass

    @abstractmethod
    async def query(
        self,
        collection_path: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[DocumentSnapshot]:
        """Return documents of a collection matching every filter."""
        pass

    @abstractmethod
    def new_id(self) -> str:
        """Generate an id for a document that does not exist yet."""
        pass

    @abstractmethod
    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``fn`` atomically, re-running it when a document it read changed."""
        pass

    @abstractmethod
    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        """Apply independent writes all-or-nothing."""
        pass

    def batch(self) -> WriteBatch:
        return WriteBatch(self)
