"""
Remote document store contract consumed by the sync core.

The store models a hosted document database: slash-separated paths, documents
nested under collections, real-time collection listeners, atomic increments,
batched writes and server-assigned timestamps. Concrete backends only provide
raw reads and an atomic apply; listener bookkeeping, query evaluation and
field transforms live here so every backend behaves the same way.
"""
import asyncio
import copy
import datetime as dt
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Awaitable, Callable, Iterator, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """Base exception for remote store failures."""
    pass


class DocumentNotFoundError(RemoteStoreError):
    """Update targeted a document that does not exist."""
    pass


class DocumentExistsError(RemoteStoreError):
    """Create targeted a document that already exists."""
    pass


class _ServerTimestamp:
    """Sentinel replaced by the store's clock when a write is applied."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Field transform: add `delta` to the stored numeric value (missing counts as 0)."""
    delta: int


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "in": lambda a, b: a in b,
}


@dataclass(frozen=True)
class Where:
    """Single-field filter. Documents missing the field never match."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op}")

    def matches(self, data: dict) -> bool:
        if self.field not in data:
            return False
        try:
            return _OPERATORS[self.op](data[self.field], self.value)
        except TypeError:
            return False


@dataclass
class DocumentSnapshot:
    """A single document as read from the store. `data` is None when absent."""
    path: str
    data: Optional[dict] = None

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, key: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(key, default)


@dataclass
class QuerySnapshot:
    """Full result set of a collection query, or the error that prevented it."""
    documents: list[DocumentSnapshot] = field(default_factory=list)
    error: Optional[Exception] = None

    def __len__(self) -> int:
        return len(self.documents)

    def __iter__(self) -> Iterator[DocumentSnapshot]:
        return iter(self.documents)


@dataclass
class WriteOp:
    """One write inside an atomic commit."""
    kind: str  # "set", "update", "create" or "delete"
    path: str
    data: dict = field(default_factory=dict)
    merge: bool = False


SnapshotCallback = Callable[[QuerySnapshot], Awaitable[None]]


def collection_of(document_path: str) -> str:
    """Return the collection path that contains `document_path`."""
    parts = document_path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path: {document_path}")
    return "/".join(parts[:-1])


def check_collection_path(collection_path: str) -> str:
    parts = collection_path.strip("/").split("/")
    if not parts[0] or len(parts) % 2 == 0:
        raise ValueError(f"Not a collection path: {collection_path}")
    return "/".join(parts)


def apply_field_values(
    current: Optional[dict],
    fields: dict,
    now: dt.datetime,
    merge: bool = True,
) -> dict:
    """
    Resolve sentinels and transforms of `fields` against `current`.

    Args:
        current: Stored document data, or None when the document is absent
        fields: Fields being written, possibly containing SERVER_TIMESTAMP/Increment
        now: Timestamp substituted for SERVER_TIMESTAMP
        merge: Keep fields of `current` that are not being written

    Returns:
        New document data
    """
    base = copy.deepcopy(current) if (current is not None and merge) else {}
    for key, value in fields.items():
        if value is SERVER_TIMESTAMP:
            base[key] = now
        elif isinstance(value, Increment):
            existing = (current or {}).get(key, 0)
            if not isinstance(existing, (int, float)) or isinstance(existing, bool):
                existing = 0
            base[key] = existing + value.delta
        else:
            base[key] = copy.deepcopy(value)
    return base


def run_query(
    documents: list[DocumentSnapshot],
    order_by: Optional[OrderBy] = None,
    where: Optional[list[Where]] = None,
) -> list[DocumentSnapshot]:
    """Filter and order documents. Documents lacking the order field sort last."""
    matched = [
        doc for doc in documents
        if all(clause.matches(doc.data or {}) for clause in (where or []))
    ]
    if order_by is None:
        return sorted(matched, key=lambda doc: doc.path)

    with_field = [doc for doc in matched if (doc.data or {}).get(order_by.field) is not None]
    without_field = [doc for doc in matched if (doc.data or {}).get(order_by.field) is None]
    with_field.sort(key=lambda doc: doc.path)
    try:
        with_field.sort(key=lambda doc: doc.data[order_by.field], reverse=order_by.descending)
    except TypeError:
        logger.warning(f"Mixed value types for order field '{order_by.field}', ordering by path")
    return with_field + without_field


class ListenerRegistration:
    """
    Handle for a live collection listener.

    Deliveries for one listener are serialized: a new full snapshot is read
    only after the previous callback finished, and writes landing meanwhile
    are coalesced into that next snapshot.
    """

    def __init__(
        self,
        store: "RemoteStore",
        collection_path: str,
        callback: SnapshotCallback,
        order_by: Optional[OrderBy],
        where: Optional[list[Where]],
    ):
        self._store = store
        self.collection_path = collection_path
        self.callback = callback
        self.order_by = order_by
        self.where = where
        self.active = True
        self._dirty = False
        self._task: Optional[asyncio.Task] = None

    def remove(self) -> None:
        """Stop deliveries. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        self._store._listeners.discard(self)


class WriteBatch:
    """Collects writes and applies them all-or-nothing on commit()."""

    def __init__(self, store: "RemoteStore"):
        self._store = store
        self._ops: list[WriteOp] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def set(self, path: str, data: dict, merge: bool = False) -> "WriteBatch":
        self._ops.append(WriteOp("set", path, dict(data), merge=merge))
        return self

    def create(self, path: str, data: dict) -> "WriteBatch":
        self._ops.append(WriteOp("create", path, dict(data)))
        return self

    def update(self, path: str, data: dict) -> "WriteBatch":
        self._ops.append(WriteOp("update", path, dict(data)))
        return self

    def delete(self, path: str) -> "WriteBatch":
        self._ops.append(WriteOp("delete", path))
        return self

    async def commit(self) -> None:
        if self._committed:
            raise RemoteStoreError("Batch already committed")
        self._committed = True
        if self._ops:
            await self._store._commit(self._ops)


class RemoteStore(ABC):
    """
    Base class for document store backends.

    Subclasses implement `_read_document`, `_read_collection` and `_apply`;
    `_apply` must apply every op or none of them.
    """

    def __init__(self, clock: Optional[Callable[[], dt.datetime]] = None):
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))
        self._listeners: set[ListenerRegistration] = set()
        self._deliveries: set[asyncio.Task] = set()

    # --- backend hooks ---

    @abstractmethod
    async def _read_document(self, path: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def _read_collection(self, collection_path: str) -> list[DocumentSnapshot]:
        ...

    @abstractmethod
    async def _apply(self, ops: list[WriteOp], now: dt.datetime) -> None:
        ...

    def now(self) -> dt.datetime:
        """Current time on the store's clock (the value SERVER_TIMESTAMP resolves to)."""
        return self._clock()

    # --- reads ---

    async def get(self, path: str) -> DocumentSnapshot:
        collection_of(path)
        return DocumentSnapshot(path=path.strip("/"), data=await self._read_document(path.strip("/")))

    async def get_collection(
        self,
        collection_path: str,
        order_by: Optional[OrderBy] = None,
        where: Optional[list[Where]] = None,
    ) -> QuerySnapshot:
        documents = await self._read_collection(check_collection_path(collection_path))
        return QuerySnapshot(documents=run_query(documents, order_by, where))

    # --- writes ---

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def set(self, path: str, data: dict, merge: bool = False) -> None:
        await self._commit([WriteOp("set", path, dict(data), merge=merge)])

    async def create(self, path: str, data: dict) -> None:
        await self._commit([WriteOp("create", path, dict(data))])

    async def update(self, path: str, data: dict) -> None:
        await self._commit([WriteOp("update", path, dict(data))])

    async def delete(self, path: str) -> None:
        await self._commit([WriteOp("delete", path)])

    async def add(self, collection_path: str, data: dict) -> str:
        """Create a document with a generated ID and return the ID."""
        doc_id = uuid4().hex
        await self.create(f"{check_collection_path(collection_path)}/{doc_id}", data)
        return doc_id

    async def increment(self, path: str, field_name: str, delta: int) -> None:
        await self.update(path, {field_name: Increment(delta)})

    async def _commit(self, ops: list[WriteOp]) -> None:
        for op in ops:
            op.path = op.path.strip("/")
            collection_of(op.path)
        await self._apply(ops, self._clock())
        self._notify({collection_of(op.path) for op in ops})

    # --- listeners ---

    def subscribe(
        self,
        collection_path: str,
        callback: SnapshotCallback,
        order_by: Optional[OrderBy] = None,
        where: Optional[list[Where]] = None,
    ) -> ListenerRegistration:
        """
        Listen to a collection. The callback receives the current full result
        set right away and again after every write touching the collection.
        """
        registration = ListenerRegistration(
            self, check_collection_path(collection_path), callback, order_by, where
        )
        self._listeners.add(registration)
        self._schedule(registration)
        return registration

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, collections: AbstractSet[str]) -> None:
        for registration in list(self._listeners):
            if registration.active and registration.collection_path in collections:
                self._schedule(registration)

    def _schedule(self, registration: ListenerRegistration) -> None:
        registration._dirty = True
        if registration._task is not None and not registration._task.done():
            return
        task = asyncio.get_running_loop().create_task(self._run_listener(registration))
        registration._task = task
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _run_listener(self, registration: ListenerRegistration) -> None:
        while registration.active and registration._dirty:
            registration._dirty = False
            try:
                snapshot = await self.get_collection(
                    registration.collection_path, registration.order_by, registration.where
                )
            except RemoteStoreError as e:
                snapshot = QuerySnapshot(error=e)
            if not registration.active:
                return
            try:
                await registration.callback(snapshot)
            except Exception as e:
                logger.error(f"Listener on {registration.collection_path} raised: {e}")

    async def drain(self) -> None:
        """Wait until every scheduled listener delivery has finished."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)
