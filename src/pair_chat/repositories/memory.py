"""In-memory document store implementation."""

import asyncio
import copy
import secrets
import string
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar, Union

import structlog

from ..domain.exceptions import DocumentMissingError, StoreError, TransactionConflictError
from .base import (
    ChatStore,
    DocumentSnapshot,
    Filter,
    MISSING,
    OrderBy,
    Transaction,
    WriteOp,
    get_field,
)

logger = structlog.get_logger()

T = TypeVar("T")

_ID_ALPHABET = string.ascii_letters + string.digits
_ID_LENGTH = 20


def _segments(path: str) -> List[str]:
    parts = path.strip("/").split("/")
    if any(not part for part in parts):
        raise StoreError(f"Invalid path {path!r}")
    return parts


def _check_document_path(path: str) -> str:
    parts = _segments(path)
    if len(parts) % 2:
        raise StoreError(f"{path!r} is a collection path, not a document path")
    return "/".join(parts)


def _check_collection_path(path: str) -> str:
    parts = _segments(path)
    if not len(parts) % 2:
        raise StoreError(f"{path!r} is a document path, not a collection path")
    return "/".join(parts)


def _deep_merge(target: Dict[str, Any], incoming: Dict[str, Any]) -> None:
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


def _set_field(data: Dict[str, Any], field_path: Union[str, Tuple[str, ...]], value: Any) -> None:
    parts = field_path if isinstance(field_path, tuple) else field_path.split(".")
    *parents, leaf = parts
    current = data
    for part in parents:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[leaf] = copy.deepcopy(value)


class _InMemoryTransaction(Transaction):
    """Buffers writes and remembers the version of every document read."""

    def __init__(self, store: "InMemoryChatStore") -> None:
        self._store = store
        self.reads: Dict[str, int] = {}
        self.writes: List[WriteOp] = []

    async def get(self, path: str) -> DocumentSnapshot:
        if self.writes:
            raise StoreError("Transaction reads must be executed before all writes")
        snapshot, version = await self._store._read(path)
        self.reads[snapshot.path] = version
        return snapshot

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self.writes.append(WriteOp("set", path, dict(data), merge))

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self.writes.append(WriteOp("update", path, dict(data)))

    def delete(self, path: str) -> None:
        self.writes.append(WriteOp("delete", path))


class InMemoryChatStore(ChatStore):
    """Versioned in-memory store with optimistic transactions.

    Every write bumps the version of the document it touches. A transaction
    commits only if all documents it read still carry the versions it saw;
    otherwise the transaction function runs again.
    """

    def __init__(self, max_attempts: int = 5, retry_backoff: float = 0.0) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._documents: Dict[str, Dict[str, Any]] = {}
        # Versions survive deletes so a delete-then-recreate still conflicts.
        self._versions: Dict[str, int] = {}
        self._commit_lock = asyncio.Lock()
        logger.info("store_initialized", max_attempts=max_attempts)

    async def _read(self, path: str) -> Tuple[DocumentSnapshot, int]:
        path = _check_document_path(path)
        data = self._documents.get(path)
        snapshot = DocumentSnapshot(
            id=path.rsplit("/", 1)[-1],
            path=path,
            data=copy.deepcopy(data) if data is not None else None,
        )
        version = self._versions.get(path, 0)
        # Snapshot first, then yield like a response still in flight.
        await asyncio.sleep(0)
        return snapshot, version

    async def get(self, path: str) -> DocumentSnapshot:
        snapshot, _ = await self._read(path)
        return snapshot

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self.batch_write([WriteOp("set", path, dict(data), merge)])

    async def update(self, path: str, data: Dict[str, Any]) -> None:
        await self.batch_write([WriteOp("update", path, dict(data))])

    async def delete(self, path: str) -> None:
        await self.batch_write([WriteOp("delete", path)])

    async def query(
        self,
        collection_path: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[DocumentSnapshot]:
        collection_path = _check_collection_path(collection_path)

        matches = [
            (path, data)
            for path, data in self._documents.items()
            if path.rsplit("/", 1)[0] == collection_path
            and all(f.matches(data) for f in filters)
        ]
        if order_by is not None:
            matches = [
                (path, data)
                for path, data in matches
                if get_field(data, order_by.field) is not MISSING
            ]
            matches.sort(
                key=lambda item: (get_field(item[1], order_by.field), item[0]),
                reverse=order_by.descending,
            )
        if limit is not None:
            matches = matches[:limit]

        results = [
            DocumentSnapshot(id=path.rsplit("/", 1)[-1], path=path, data=copy.deepcopy(data))
            for path, data in matches
        ]
        await asyncio.sleep(0)
        return results

    def new_id(self) -> str:
        return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            transaction = _InMemoryTransaction(self)
            result = await fn(transaction)

            async with self._commit_lock:
                stale = [
                    path
                    for path, version in transaction.reads.items()
                    if self._versions.get(path, 0) != version
                ]
                if not stale:
                    self._apply(transaction.writes)
                    logger.debug(
                        "transaction_committed",
                        attempt=attempt,
                        writes=len(transaction.writes),
                    )
                    return result

            logger.warning("transaction_conflict", attempt=attempt, stale_paths=stale)
            if self.retry_backoff:
                await asyncio.sleep(self.retry_backoff * attempt)

        logger.error("transaction_attempts_exhausted", attempts=self.max_attempts)
        raise TransactionConflictError(self.max_attempts)

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        async with self._commit_lock:
            self._apply(ops)

    def _apply(self, ops: Sequence[WriteOp]) -> None:
        """Validate every op, then apply them. Nothing is written if any op is invalid."""
        normalized = [
            WriteOp(op.kind, _check_document_path(op.path), op.data, op.merge) for op in ops
        ]

        created: Set[str] = set()
        deleted: Set[str] = set()
        for op in normalized:
            if op.kind == "set":
                created.add(op.path)
                deleted.discard(op.path)
            elif op.kind == "update":
                present = op.path in created or (
                    op.path in self._documents and op.path not in deleted
                )
                if not present:
                    raise DocumentMissingError(op.path)
            elif op.kind == "delete":
                created.discard(op.path)
                deleted.add(op.path)
            else:
                raise StoreError(f"Unknown write kind {op.kind!r}")

        for op in normalized:
            if op.kind == "set":
                if op.merge and op.path in self._documents:
                    _deep_merge(self._documents[op.path], op.data)
                else:
                    self._documents[op.path] = copy.deepcopy(op.data)
            elif op.kind == "update":
                document = self._documents[op.path]
                for field_path, value in op.data.items():
                    _set_field(document, field_path, value)
            else:
                self._documents.pop(op.path, None)
            self._versions[op.path] = self._versions.get(op.path, 0) + 1
