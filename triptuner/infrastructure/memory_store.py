"""
In-process RemoteStore backend.

Used for local development and tests. Supports failure injection so the
rollback paths of optimistic mutations can be exercised.
"""
import copy
import datetime as dt
import logging
from typing import Callable, Optional

from triptuner.infrastructure.remote_store import (
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    RemoteStore,
    RemoteStoreError,
    WriteOp,
    apply_field_values,
    collection_of,
)

logger = logging.getLogger(__name__)


class InMemoryRemoteStore(RemoteStore):
    """Dictionary-backed document store."""

    def __init__(self, clock: Optional[Callable[[], dt.datetime]] = None):
        super().__init__(clock=clock)
        self._documents: dict[str, dict] = {}
        self._write_failures: dict[str, Exception] = {}
        self._read_failures: dict[str, Exception] = {}
        # Every committed batch, in commit order (a single write is a batch of one)
        self.commit_log: list[list[WriteOp]] = []

    def inject_failure(
        self,
        path_prefix: str,
        error: Optional[Exception] = None,
        reads: bool = False,
    ) -> None:
        """
        Make writes (or reads) under `path_prefix` fail until cleared.

        Args:
            path_prefix: Document or collection path prefix
            error: Exception to raise (defaults to a RemoteStoreError)
            reads: Fail reads instead of writes
        """
        error = error or RemoteStoreError(f"Injected failure for {path_prefix}")
        target = self._read_failures if reads else self._write_failures
        target[path_prefix.strip("/")] = error

    def clear_failures(self) -> None:
        self._write_failures.clear()
        self._read_failures.clear()

    def _failure_for(self, path: str, failures: dict[str, Exception]) -> Optional[Exception]:
        for prefix, error in failures.items():
            if path == prefix or path.startswith(prefix + "/"):
                return error
        return None

    def document_data(self, path: str) -> Optional[dict]:
        """Direct peek at stored data, bypassing failure injection."""
        data = self._documents.get(path.strip("/"))
        return copy.deepcopy(data) if data is not None else None

    async def _read_document(self, path: str) -> Optional[dict]:
        error = self._failure_for(path, self._read_failures)
        if error:
            raise error
        data = self._documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    async def _read_collection(self, collection_path: str) -> list[DocumentSnapshot]:
        error = self._failure_for(collection_path, self._read_failures)
        if error:
            raise error
        return [
            DocumentSnapshot(path=path, data=copy.deepcopy(data))
            for path, data in self._documents.items()
            if collection_of(path) == collection_path
        ]

    async def _apply(self, ops: list[WriteOp], now: dt.datetime) -> None:
        for op in ops:
            error = self._failure_for(op.path, self._write_failures)
            if error:
                raise error

        # Stage against an overlay so a failing op leaves nothing applied
        staged: dict[str, Optional[dict]] = {}

        def current(path: str) -> Optional[dict]:
            if path in staged:
                return staged[path]
            return self._documents.get(path)

        for op in ops:
            existing = current(op.path)
            if op.kind == "delete":
                staged[op.path] = None
            elif op.kind == "create":
                if existing is not None:
                    raise DocumentExistsError(f"Document already exists: {op.path}")
                staged[op.path] = apply_field_values(None, op.data, now)
            elif op.kind == "update":
                if existing is None:
                    raise DocumentNotFoundError(f"No document to update: {op.path}")
                staged[op.path] = apply_field_values(existing, op.data, now)
            elif op.kind == "set":
                staged[op.path] = apply_field_values(existing, op.data, now, merge=op.merge)
            else:
                raise RemoteStoreError(f"Unknown write kind: {op.kind}")

        for path, data in staged.items():
            if data is None:
                self._documents.pop(path, None)
            else:
                self._documents[path] = data
        self.commit_log.append(list(ops))
