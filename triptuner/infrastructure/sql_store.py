"""
RemoteStore backend on top of SQLAlchemy async sessions.

Every commit runs in one database transaction, so batches are all-or-nothing.
Listeners are notified in-process after the transaction commits; writes made
by other processes are only seen by the next read or push.
"""
import datetime as dt
import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from triptuner.infrastructure.models import DocumentModel
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


class SqlRemoteStore(RemoteStore):
    """Document store persisted in the `documents` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Async session factory bound to an initialized engine
            clock: Source for SERVER_TIMESTAMP values (defaults to UTC now)
        """
        super().__init__(clock=clock)
        self._session_factory = session_factory

    async def _read_document(self, path: str) -> Optional[dict]:
        try:
            async with self._session_factory() as db:
                row = await db.get(DocumentModel, path)
                return row.data if row is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Document read failed for {path}: {e}")
            raise RemoteStoreError(str(e)) from e

    async def _read_collection(self, collection_path: str) -> list[DocumentSnapshot]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(DocumentModel).where(DocumentModel.collection == collection_path)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Collection read failed for {collection_path}: {e}")
            raise RemoteStoreError(str(e)) from e
        return [DocumentSnapshot(path=row.path, data=row.data) for row in rows]

    async def _apply(self, ops: list[WriteOp], now: dt.datetime) -> None:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    for op in ops:
                        await self._apply_one(db, op, now)
        except RemoteStoreError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Commit of {len(ops)} writes failed: {e}")
            raise RemoteStoreError(str(e)) from e

    async def _apply_one(self, db, op: WriteOp, now: dt.datetime) -> None:
        row = await db.get(DocumentModel, op.path)

        if op.kind == "delete":
            if row is not None:
                await db.delete(row)
                await db.flush()
            return

        if op.kind == "create" and row is not None:
            raise DocumentExistsError(f"Document already exists: {op.path}")
        if op.kind == "update" and row is None:
            raise DocumentNotFoundError(f"No document to update: {op.path}")
        if op.kind not in ("set", "create", "update"):
            raise RemoteStoreError(f"Unknown write kind: {op.kind}")

        current = row.data if row is not None else None
        merge = op.merge or op.kind == "update"
        data = apply_field_values(current, op.data, now, merge=merge)

        if row is None:
            db.add(DocumentModel(
                path=op.path,
                collection=collection_of(op.path),
                doc_id=op.path.rsplit("/", 1)[-1],
                data=data,
            ))
        else:
            row.data = data
        await db.flush()
