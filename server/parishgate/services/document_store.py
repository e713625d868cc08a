"""Keyed JSON document store with optimistic read-modify-write transactions.

Documents live in the ``documents`` table, addressed by ``(collection, key)``.
Every write bumps the row's ``version``. A transaction remembers the version
of each document it read and only commits if none of them changed in the
meantime; otherwise the whole callback is re-run on fresh data.
"""

import copy
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from parishgate.core.time import utcnow
from parishgate.models.document import Document

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 5


class StoreError(Exception):
    """The document store could not complete an operation."""


class DocumentNotFoundError(StoreError):
    """``update`` was called for a key that does not exist."""

    def __init__(self, collection: str, key: str) -> None:
        super().__init__(f"No document {collection}/{key}")
        self.collection = collection
        self.key = key


class TransactionConflictError(StoreError):
    """A transaction kept losing races until its retries ran out."""


class _Conflict(Exception):
    pass


class Transaction:
    """Read/write handle passed to a ``transaction`` callback.

    Reads go to the database immediately. Writes are buffered and applied
    together at commit, each guarded by the version observed when the
    document was first read.
    """

    def __init__(self, db: Session) -> None:
        self._db = db
        self._snapshots: dict[tuple[str, str], tuple[dict | None, int | None]] = {}
        self._writes: dict[tuple[str, str], dict[str, Any]] = {}

    def _load(self, collection: str, key: str) -> tuple[dict | None, int | None]:
        ref = (collection, key)
        if ref not in self._snapshots:
            row = (
                self._db.query(Document)
                .filter(Document.collection == collection, Document.key == key)
                .first()
            )
            if row is None:
                self._snapshots[ref] = (None, None)
            else:
                self._snapshots[ref] = (copy.deepcopy(row.data), row.version)
        return self._snapshots[ref]

    def _current(self, collection: str, key: str) -> dict | None:
        ref = (collection, key)
        if ref in self._writes:
            return self._writes[ref]
        data, _version = self._load(collection, key)
        return data

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        data = self._current(collection, key)
        return copy.deepcopy(data) if data is not None else None

    def set(self, collection: str, key: str, fields: dict[str, Any], merge: bool = False) -> None:
        existing = self._current(collection, key)
        if merge and existing is not None:
            data = {**existing, **fields}
        else:
            data = dict(fields)
        self._writes[(collection, key)] = data

    def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        existing = self._current(collection, key)
        if existing is None:
            raise DocumentNotFoundError(collection, key)
        self._writes[(collection, key)] = {**existing, **fields}

    def commit(self) -> None:
        now = utcnow()
        for (collection, key), data in self._writes.items():
            _snapshot, version = self._load(collection, key)
            if version is None:
                self._db.add(
                    Document(
                        collection=collection,
                        key=key,
                        data=data,
                        version=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
                try:
                    self._db.flush()
                except IntegrityError as exc:
                    # Another writer created the document after our read.
                    raise _Conflict from exc
                continue

            updated = (
                self._db.query(Document)
                .filter(
                    Document.collection == collection,
                    Document.key == key,
                    Document.version == version,
                )
                .update(
                    {"data": data, "version": version + 1, "updated_at": now},
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise _Conflict
        self._db.commit()


class DocumentStore:
    """Interface every counter store backend implements."""

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def set(self, collection: str, key: str, fields: dict[str, Any], merge: bool = False) -> None:
        raise NotImplementedError

    def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        raise NotImplementedError

    def transaction(self, fn: Callable[[Transaction], T]) -> T:
        raise NotImplementedError


class SqlDocumentStore(DocumentStore):
    """``DocumentStore`` backed by the SQLAlchemy ``documents`` table.

    Each call opens its own session from ``session_factory`` so the store can
    be shared across requests.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._session_factory = session_factory
        self._max_retries = max_retries

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        db = self._session_factory()
        try:
            row = (
                db.query(Document)
                .filter(Document.collection == collection, Document.key == key)
                .first()
            )
            return copy.deepcopy(row.data) if row is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {collection}/{key}") from exc
        finally:
            db.close()

    def set(self, collection: str, key: str, fields: dict[str, Any], merge: bool = False) -> None:
        self.transaction(lambda txn: txn.set(collection, key, fields, merge=merge))

    def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        self.transaction(lambda txn: txn.update(collection, key, fields))

    def transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` in an isolated read-modify-write cycle.

        ``fn`` may be called more than once and must not have side effects
        outside the transaction handle.
        """
        for attempt in range(1, self._max_retries + 1):
            db = self._session_factory()
            try:
                txn = Transaction(db)
                result = fn(txn)
                txn.commit()
                return result
            except _Conflict:
                db.rollback()
                logger.info(
                    "Document transaction conflict (attempt %d/%d), retrying",
                    attempt,
                    self._max_retries,
                )
            except DocumentNotFoundError:
                db.rollback()
                raise
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError("Document transaction failed") from exc
            finally:
                db.close()

        raise TransactionConflictError(
            f"Document transaction gave up after {self._max_retries} attempts"
        )
