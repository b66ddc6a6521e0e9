"""Record store: CRUD over the primary relational store with change events.

Every successful mutation commits its own single-row transaction and then
emits a ``ChangeEvent`` to the registered listeners. Listeners run on the
event loop after the commit; a failing listener is logged and never undoes
or fails the write, since the store is the source of truth.

A call that outlives its timeout fails with ``TransientStoreError``, but
the worker thread is not interrupted and the write may still commit. When
it does, its change event is emitted on completion, so the index follows
the store either way. Callers retrying a timed-out ``create`` may therefore
insert a second row.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from catalogsync.errors import NotFoundError, TransientStoreError, ValidationError
from catalogsync.models.record import (
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    MAX_PRICE,
    ChangeEvent,
    ChangeKind,
    Record,
    RecordCreate,
    RecordUpdate,
)
from catalogsync.store.models import Base, ProductRow

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

ChangeListener = Callable[[ChangeEvent], None]

_UPDATABLE_FIELDS = frozenset({"name", "description", "price"})
_CENT = Decimal("0.01")


def _clean_name(value: Any) -> str:
    if value is None or not str(value).strip():
        raise ValidationError("Field 'name' is required and must not be blank")
    name = str(value).strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Field 'name' must be at most {MAX_NAME_LENGTH} characters")
    return name


def _clean_description(value: Any) -> str:
    description = str(value) if value else ""
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Field 'description' must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return description


def _clean_price(value: Any) -> Decimal:
    if value is None:
        raise ValidationError("Field 'price' is required")
    try:
        price = Decimal(str(value))
        if not price.is_finite():
            raise ValidationError("Field 'price' must be finite")
        if price < 0:
            raise ValidationError(f"Field 'price' must not be negative, got {price}")
        if price > MAX_PRICE:
            raise ValidationError(f"Field 'price' must not exceed {MAX_PRICE}, got {price}")
        return price.quantize(_CENT)
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Field 'price' must be a number, got {value!r}") from e


def create_store_engine(url: str, *, echo: bool = False, timeout: float = 5.0) -> Engine:
    """Create a SQLAlchemy engine, sharing one connection for in-memory SQLite.

    ``timeout`` becomes the driver's lock wait (SQLite) or connect timeout,
    so a blocked call fails inside the database rather than only in the caller.
    """
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

        return engine
    connect_args: dict[str, Any] = {}
    if url.startswith("postgresql"):
        connect_args["connect_timeout"] = max(int(timeout), 1)
    return create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)


class RecordStore:
    """Async facade over the relational product table.

    Blocking SQLAlchemy calls run in a worker thread under a timeout; a
    timeout or a dropped connection surfaces as ``TransientStoreError``.
    When the engine shares a single connection (``StaticPool``), calls are
    serialized so that concurrent sessions never share one transaction.

    Args:
        engine: SQLAlchemy engine bound to the primary store.
        timeout: Seconds allowed for any single store call.
    """

    def __init__(self, engine: Engine, *, timeout: float = 5.0) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._timeout = timeout
        self._listeners: list[ChangeListener] = []
        self._sequence = itertools.count(1)
        self._serial = asyncio.Lock() if isinstance(engine.pool, StaticPool) else None

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False, timeout: float = 5.0) -> RecordStore:
        return cls(create_store_engine(url, echo=echo, timeout=timeout), timeout=timeout)

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the product table if it does not exist."""
        await self._run(Base.metadata.create_all, self._engine)
        logger.info("Record store ready (%s)", self._engine.url.render_as_string(hide_password=True))

    async def shutdown(self) -> None:
        """Dispose of pooled connections."""
        await asyncio.to_thread(self._engine.dispose)

    # ── Listeners ────────────────────────────────────────────────────────

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callable invoked with every committed change event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        self._listeners.remove(listener)

    # ── Operations ───────────────────────────────────────────────────────

    async def create(self, data: RecordCreate | dict[str, Any]) -> Record:
        """Insert a new record.

        Raises:
            ValidationError: If name or price is missing, a field is too
                long, or price is negative or out of range.
        """
        if isinstance(data, dict):
            try:
                data = RecordCreate.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid record: {e}") from e
        name = _clean_name(data.name)
        price = _clean_price(data.price)
        description = _clean_description(data.description)

        def _insert(session: Session) -> Record:
            row = ProductRow(name=name, description=description, price=price, version=1)
            session.add(row)
            session.flush()
            return row.to_record()

        def _created(record: Record) -> None:
            self._emit(ChangeKind.CREATED, record.id, record.version, record)

        return await self._transaction(_insert, on_commit=_created)

    async def get(self, record_id: str) -> Record:
        """Fetch a record by id.

        Raises:
            NotFoundError: If no record has this id.
        """

        def _get(session: Session) -> Record:
            row = session.get(ProductRow, record_id)
            if row is None:
                raise NotFoundError(record_id)
            return row.to_record()

        return await self._transaction(_get)

    async def update(self, record_id: str, fields: RecordUpdate | dict[str, Any]) -> Record:
        """Apply a partial update and bump the record version.

        Raises:
            NotFoundError: If no record has this id.
            ValidationError: On unknown fields, a blank name, or a bad price.
        """
        if isinstance(fields, RecordUpdate):
            changes = fields.model_dump(exclude_unset=True)
        else:
            unknown = set(fields) - _UPDATABLE_FIELDS
            if unknown:
                raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}")
            changes = dict(fields)

        if "name" in changes:
            changes["name"] = _clean_name(changes["name"])
        if "price" in changes:
            changes["price"] = _clean_price(changes["price"])
        if "description" in changes:
            changes["description"] = _clean_description(changes["description"])

        def _update(session: Session) -> Record:
            row = session.get(ProductRow, record_id, with_for_update=True)
            if row is None:
                raise NotFoundError(record_id)
            for key, value in changes.items():
                setattr(row, key, value)
            row.version += 1
            session.flush()
            return row.to_record()

        def _updated(record: Record) -> None:
            self._emit(ChangeKind.UPDATED, record.id, record.version, record)

        return await self._transaction(_update, on_commit=_updated)

    async def delete(self, record_id: str) -> None:
        """Delete a record.

        Raises:
            NotFoundError: If no record has this id.
        """

        def _delete(session: Session) -> int:
            row = session.get(ProductRow, record_id, with_for_update=True)
            if row is None:
                raise NotFoundError(record_id)
            version = row.version
            session.delete(row)
            return version

        def _deleted(last_version: int) -> None:
            self._emit(ChangeKind.DELETED, record_id, last_version + 1, None)

        await self._transaction(_delete, on_commit=_deleted)

    async def list_all(self) -> list[Record]:
        """Return every record, oldest first."""

        def _list(session: Session) -> list[Record]:
            rows = session.scalars(select(ProductRow).order_by(ProductRow.created_at, ProductRow.id))
            return [row.to_record() for row in rows]

        return await self._transaction(_list)

    # ── Internals ────────────────────────────────────────────────────────

    async def _transaction(
        self,
        work: Callable[[Session], _T],
        on_commit: Callable[[_T], None] | None = None,
    ) -> _T:
        """Run ``work`` in its own transaction, then call ``on_commit`` with its result.

        ``on_commit`` also runs when the transaction commits after the caller
        has already timed out or been cancelled.
        """

        def _run_in_session() -> _T:
            with self._session_factory.begin() as session:
                return work(session)

        result = await self._run(_run_in_session, on_late_result=on_commit)
        if on_commit is not None:
            on_commit(result)
        return result

    async def _run(
        self,
        fn: Callable[..., _T],
        *args: Any,
        on_late_result: Callable[[_T], None] | None = None,
    ) -> _T:
        if self._serial is not None:
            await self._serial.acquire()
        future = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        if self._serial is not None:
            # The shared connection stays locked until the thread is done, not the caller.
            future.add_done_callback(lambda _: self._serial.release())
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self._timeout)
        except TimeoutError as e:
            self._follow_late(future, on_late_result)
            raise TransientStoreError(
                f"Record store call timed out after {self._timeout}s; the write may still commit"
            ) from e
        except asyncio.CancelledError:
            self._follow_late(future, on_late_result)
            raise
        except OperationalError as e:
            raise TransientStoreError(f"Record store unavailable: {e}") from e
        except SQLAlchemyError:
            logger.error("Record store call failed", exc_info=True)
            raise

    @staticmethod
    def _follow_late(future: asyncio.Future[_T], on_result: Callable[[_T], None] | None) -> None:
        def _done(f: asyncio.Future[_T]) -> None:
            if f.cancelled():
                return
            error = f.exception()
            if error is not None:
                logger.warning("Timed-out record store call failed after its caller gave up: %s", error)
                return
            if on_result is not None:
                logger.warning("Record store call committed after its caller timed out; emitting its change event")
                on_result(f.result())

        future.add_done_callback(_done)

    def _emit(self, kind: ChangeKind, record_id: str, version: int, record: Record | None) -> None:
        change = ChangeEvent(
            sequence=next(self._sequence),
            record_id=record_id,
            kind=kind,
            record=record,
            version=version,
        )
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.error(
                    "Change listener failed for %s event on %s",
                    kind.value,
                    record_id,
                    exc_info=True,
                )
