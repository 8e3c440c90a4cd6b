"""Transactional document store layered over the master workbook.

Every worksheet managed by :mod:`bar_pos.data_manager` is exposed as a
collection of documents addressed by :class:`DocumentRef`. Multi-document
mutations go through :meth:`DocumentStore.run_transaction`, which stages reads
and writes, validates the read set against per-document versions at commit
time, and retries the whole unit when a concurrently committed transaction
touched the same documents (optimistic locking).

Two write sentinels are resolved at commit time, under the store lock:

* :data:`SERVER_TIMESTAMP` becomes the store clock's current time.
* :class:`Increment` adds a delta to the field's committed value.

Realtime listeners are explicit :class:`Subscription` handles returned by
:meth:`DocumentStore.subscribe`. The caller owns the handle and must release
it with :meth:`Subscription.close` (or a ``with`` block).
"""

from __future__ import annotations

import operator
import threading
import uuid
from collections import deque
from dataclasses import dataclass, fields, replace
from datetime import UTC, datetime
from typing import Any, Callable, Deque, Dict, Iterable, Iterator, List, Optional, Tuple, TypeVar

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import DEFAULT_MAX_TRANSACTION_ATTEMPTS


T = TypeVar("T")

# Unread snapshots an iterated subscription keeps before dropping the oldest.
SUBSCRIPTION_BUFFER_SIZE = 16

ID_PREFIXES: Dict[str, str] = {
    data_manager.PRODUCTS_SHEET: "P",
    data_manager.SALES_SHEET: "S",
    data_manager.PURCHASES_SHEET: "B",
    data_manager.COMANDAS_SHEET: "C",
    data_manager.ORDERS_SHEET: "O",
}

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda candidate, options: candidate in options,
}


class StoreError(RuntimeError):
    """Base class for failures raised by the document store."""


class TransactionConflict(StoreError):
    """Raised when a concurrent commit invalidated a transaction's reads.

    :meth:`DocumentStore.run_transaction` retries transparently and only lets
    this error reach the caller once the retry budget is exhausted.
    """


class TransactionError(StoreError):
    """Raised when a transaction is used outside its contract."""


class DocumentMissing(StoreError):
    """Raised when an update targets a document that does not exist."""


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Atomic add of ``amount`` to a numeric field, applied at commit."""

    amount: Any


@dataclass(frozen=True)
class DocumentRef:
    """Address of one document: the sheet it lives on and its id."""

    sheet: str
    doc_id: str

    def __str__(self) -> str:
        return f"{self.sheet}/{self.doc_id}"


@dataclass(frozen=True)
class Query:
    """Immutable description of a filtered, ordered collection read."""

    sheet: str
    filters: Tuple[Tuple[str, str, Any], ...] = ()
    order_field: Optional[str] = None
    descending: bool = False

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported query operator: {op}")
        return replace(self, filters=self.filters + ((field_name, op, value),))

    def order_by(self, field_name: str, *, descending: bool = False) -> "Query":
        return replace(self, order_field=field_name, descending=descending)

    def matches(self, record: Any) -> bool:
        for field_name, op, value in self.filters:
            candidate = getattr(record, field_name)
            # Range filters never match documents missing the field.
            if candidate is None and op not in ("==", "!=", "in"):
                return False
            if not _OPERATORS[op](candidate, value):
                return False
        return True

    def apply(self, records: Iterable[Any]) -> List[Any]:
        """Filter and sort ``records``; documents lacking the order field go last."""

        matched = [record for record in records if self.matches(record)]
        if self.order_field is None:
            return matched
        present = [record for record in matched if getattr(record, self.order_field) is not None]
        absent = [record for record in matched if getattr(record, self.order_field) is None]
        present.sort(key=lambda record: getattr(record, self.order_field), reverse=self.descending)
        return present + absent


def generate_document_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable document identifier.

    Args:
        prefix (str): Designator prepended to the identifier, one per sheet.
        when (datetime | None): Timestamp used for the sortable part. When
            ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{4 hex}``.

    The trailing random hex digits keep identifiers unique when several
    documents are created within the same microsecond.
    """

    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:4]}"


def _resolve_value(current: Any, value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Increment):
        return (current or 0) + value.amount
    return value


class Transaction:
    """A unit of staged reads and writes committed atomically by the store.

    Reads go straight to the store and remember the version they observed.
    Writes are only staged; nothing reaches the workbook until the store
    commits. Every read must happen before the first write.
    """

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self._reads: Dict[DocumentRef, int] = {}
        self._writes: List[Tuple[str, DocumentRef, Any]] = []
        self._finished = False

    def get(self, ref: DocumentRef) -> Optional[Any]:
        """Read one document, returning ``None`` when it does not exist."""

        self._ensure_active()
        if self._writes:
            raise TransactionError("Transactions require all reads to be executed before all writes")
        record, version = self._store._read_versioned(ref)
        self._reads.setdefault(ref, version)
        return record

    def set(self, ref: DocumentRef, record: Any) -> None:
        self._ensure_active()
        self._writes.append(("set", ref, record))

    def update(self, ref: DocumentRef, **changes: Any) -> None:
        self._ensure_active()
        if not changes:
            raise TransactionError(f"Update of {ref} carries no fields")
        self._writes.append(("update", ref, changes))

    def delete(self, ref: DocumentRef) -> None:
        self._ensure_active()
        self._writes.append(("delete", ref, None))

    def _ensure_active(self) -> None:
        if self._finished:
            raise TransactionError("Transaction has already been committed")


class Subscription:
    """Caller-owned realtime listener on a :class:`Query`.

    The handle receives the full matching snapshot immediately on creation and
    again after every commit that touches the query's sheet. Snapshots go to
    ``callback`` when one was supplied; otherwise they are buffered and can be
    consumed by iterating the handle, which blocks for the next snapshot and
    stops once the subscription is closed and drained. At most
    ``buffer_size`` unread snapshots are kept; older ones are dropped first.
    """

    def __init__(
        self,
        store: "DocumentStore",
        query: Query,
        callback: Optional[Callable[[List[Any]], None]],
        *,
        buffer_size: int = SUBSCRIPTION_BUFFER_SIZE,
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self._store = store
        self.query = query
        self._callback = callback
        self._pending: Deque[List[Any]] = deque(maxlen=buffer_size)
        self._ready = threading.Condition()
        self._closed = threading.Event()
        self.latest: Optional[List[Any]] = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Release the listener. Calling ``close`` twice is harmless."""

        if self._closed.is_set():
            return
        self._closed.set()
        self._store._release(self)
        with self._ready:
            self._ready.notify_all()
        log.debug("Released subscription on sheet '%s'", self.query.sheet)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __iter__(self) -> Iterator[List[Any]]:
        while True:
            with self._ready:
                while not self._pending and not self.closed:
                    self._ready.wait()
                if not self._pending:
                    return
                snapshot = self._pending.popleft()
            yield snapshot

    def _deliver(self, snapshot: List[Any]) -> None:
        if self.closed:
            return
        self.latest = snapshot
        if self._callback is None:
            with self._ready:
                self._pending.append(snapshot)
                self._ready.notify()
            return
        self._callback(snapshot)


class DocumentStore:
    """Versioned, lock-guarded document access over an ``openpyxl`` workbook.

    Args:
        workbook (Workbook): Workbook holding one sheet per collection.
        clock (Callable[[], datetime] | None): Source of server timestamps.
            Defaults to the current UTC time.
    """

    def __init__(self, workbook: Workbook, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.workbook = workbook
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.RLock()
        self._versions: Dict[DocumentRef, int] = {}
        self._subscriptions: List[Subscription] = []

    def new_ref(self, sheet: str) -> DocumentRef:
        """Allocate a reference with a freshly generated id on ``sheet``."""

        return DocumentRef(sheet, generate_document_id(prefix=ID_PREFIXES[sheet], when=self._clock()))

    def ref(self, sheet: str, doc_id: str) -> DocumentRef:
        return DocumentRef(sheet, doc_id)

    def version_of(self, ref: DocumentRef) -> int:
        with self._lock:
            return self._versions.get(ref, 0)

    def get(self, ref: DocumentRef) -> Optional[Any]:
        record, _ = self._read_versioned(ref)
        return record

    def query(self, query: Query) -> List[Any]:
        """Return every document matching ``query`` as a full snapshot."""

        with self._lock:
            records = list(data_manager.iter_records(self.workbook, query.sheet))
        return query.apply(records)

    def run_transaction(self, fn: Callable[[Transaction], T], *, max_attempts: int = DEFAULT_MAX_TRANSACTION_ATTEMPTS) -> T:
        """Run ``fn`` inside a transaction and commit its staged writes.

        ``fn`` receives a fresh :class:`Transaction` on every attempt and may
        be called several times, so it must not have side effects outside the
        transaction. Any exception raised by ``fn`` aborts the attempt without
        writing anything and propagates unchanged.

        Args:
            fn (Callable[[Transaction], T]): Transaction body.
            max_attempts (int): Upper bound on attempts when commits conflict.

        Returns:
            T: Whatever ``fn`` returned on the attempt that committed.

        Raises:
            TransactionConflict: If every attempt conflicted.
            ValueError: If ``max_attempts`` is below one.
        """

        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        attempt = 0
        while True:
            attempt += 1
            transaction = Transaction(self)
            result = fn(transaction)
            try:
                self._commit(transaction)
            except TransactionConflict as exc:
                if attempt >= max_attempts:
                    log.error("Transaction aborted after %d conflicting attempts: %s", attempt, exc)
                    raise
                log.warning("Transaction conflict on attempt %d/%d, retrying: %s", attempt, max_attempts, exc)
                continue
            return result

    def add(self, sheet: str, record: Any) -> DocumentRef:
        """Create a document with a generated id outside any transaction."""

        ref = self.new_ref(sheet)
        self.run_transaction(lambda transaction: transaction.set(ref, record), max_attempts=1)
        return ref

    def update(self, ref: DocumentRef, **changes: Any) -> None:
        """Apply a single-document partial update (sentinels allowed)."""

        self.run_transaction(lambda transaction: transaction.update(ref, **changes), max_attempts=1)

    def delete(self, ref: DocumentRef) -> None:
        self.run_transaction(lambda transaction: transaction.delete(ref), max_attempts=1)

    def subscribe(
        self,
        query: Query,
        callback: Optional[Callable[[List[Any]], None]] = None,
        *,
        buffer_size: int = SUBSCRIPTION_BUFFER_SIZE,
    ) -> Subscription:
        """Start a realtime listener on ``query`` and deliver the first snapshot."""

        subscription = Subscription(self, query, callback, buffer_size=buffer_size)
        with self._lock:
            self._subscriptions.append(subscription)
        log.debug("Opened subscription on sheet '%s'", query.sheet)
        subscription._deliver(self.query(query))
        return subscription

    @property
    def active_subscriptions(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _release(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _read_versioned(self, ref: DocumentRef) -> Tuple[Optional[Any], int]:
        with self._lock:
            record = data_manager.read_record(self.workbook, ref.sheet, ref.doc_id)
            return record, self._versions.get(ref, 0)

    def _commit(self, transaction: Transaction) -> None:
        """Validate the read set, resolve sentinels, then apply every write.

        All final document states are computed before the workbook is touched,
        so a failure while resolving leaves the store unchanged.
        """

        with self._lock:
            for ref, seen in transaction._reads.items():
                current = self._versions.get(ref, 0)
                if current != seen:
                    raise TransactionConflict(f"Document {ref} changed since it was read (v{seen} -> v{current})")

            now = self._clock()
            staged: Dict[DocumentRef, Optional[Any]] = {}
            for kind, ref, payload in transaction._writes:
                if kind == "set":
                    record = replace(payload, **{data_manager.KEY_FIELDS[ref.sheet]: ref.doc_id})
                    staged[ref] = self._resolve_record(record, now)
                elif kind == "update":
                    current_record = staged[ref] if ref in staged else data_manager.read_record(self.workbook, ref.sheet, ref.doc_id)
                    if current_record is None:
                        raise DocumentMissing(f"Cannot update missing document {ref}")
                    staged[ref] = self._apply_changes(current_record, payload, now)
                else:
                    staged[ref] = None

            for ref, record in staged.items():
                if record is None:
                    data_manager.delete_record(self.workbook, ref.sheet, ref.doc_id)
                else:
                    data_manager.write_record(self.workbook, ref.sheet, record)
                self._versions[ref] = self._versions.get(ref, 0) + 1
            transaction._finished = True

        if staged:
            log.debug("Committed %d document write(s)", len(staged))
            self._notify({ref.sheet for ref in staged})

    @staticmethod
    def _resolve_record(record: Any, now: datetime) -> Any:
        changes = {
            f.name: _resolve_value(None, getattr(record, f.name), now)
            for f in fields(record)
            if getattr(record, f.name) is SERVER_TIMESTAMP or isinstance(getattr(record, f.name), Increment)
        }
        return replace(record, **changes) if changes else record

    @staticmethod
    def _apply_changes(record: Any, changes: Dict[str, Any], now: datetime) -> Any:
        known = {f.name for f in fields(record)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise TransactionError(f"Unknown field(s) for {type(record).__name__}: {', '.join(unknown)}")
        resolved = {name: _resolve_value(getattr(record, name), value, now) for name, value in changes.items()}
        return replace(record, **resolved)

    def _notify(self, sheets: set) -> None:
        with self._lock:
            listeners = [s for s in self._subscriptions if s.query.sheet in sheets]
        for subscription in listeners:
            try:
                subscription._deliver(self.query(subscription.query))
            except Exception:
                log.exception("Subscription listener on sheet '%s' failed", subscription.query.sheet)
