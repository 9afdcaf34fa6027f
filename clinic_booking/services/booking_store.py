from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from clinic_booking.core.config import Settings
from clinic_booking.core.errors import PersistenceError, UniquenessViolation
from clinic_booking.services.booking_models import (
    BLOCKING_STATUSES,
    Booking,
    BookingStatus,
    StatusHistoryEntry,
    normalize_instant,
    parse_booking_status,
)

logger = logging.getLogger(__name__)

STATUS_FIELD_NAMES = frozenset(
    {
        "status",
        "status_changed_at",
        "status_changed_by",
        "cancellation_reason",
        "completion_notes",
    },
)


class BookingStore(ABC):
    @abstractmethod
    def insert(
        self,
        *,
        provider_id: str,
        subject_id: str,
        instant: datetime,
        status: BookingStatus = BookingStatus.scheduled,
        link_id: str | None = None,
    ) -> Booking:
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, booking_id: str) -> Booking | None:
        raise NotImplementedError

    @abstractmethod
    def update_status(
        self,
        booking_id: str,
        fields: Mapping[str, Any],
        *,
        expected_status: BookingStatus | None = None,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    def read_by_provider_and_instant(self, provider_id: str, instant: datetime) -> Booking | None:
        """Return the blocking booking holding ``instant`` for the provider, if any."""
        raise NotImplementedError

    @abstractmethod
    def read_by_provider(
        self,
        provider_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: frozenset[BookingStatus] | None = None,
    ) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def read_by_subject(self, subject_id: str) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def append_history(self, entry: StatusHistoryEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_history(self, booking_id: str) -> list[StatusHistoryEntry]:
        raise NotImplementedError

    @abstractmethod
    def commit_status_transition(
        self,
        booking_id: str,
        *,
        expected_status: BookingStatus,
        fields: Mapping[str, Any],
        history_entry: StatusHistoryEntry,
        before_commit: Callable[[Booking], None] | None = None,
    ) -> Booking | None:
        """Apply status fields and append history as one unit.

        Returns ``None`` without writing anything when the booking is no
        longer in ``expected_status``. ``before_commit`` receives the updated
        booking; if it raises, nothing is written. It runs while the store
        lock or transaction is held: it may call back into the store from the
        same thread but must not block on other threads that use the store.
        """
        raise NotImplementedError


class InMemoryBookingStore(BookingStore):
    def __init__(self, *, timeout_seconds: float = 5.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._lock = threading.RLock()
        self._next_id = 1
        self._bookings_by_id: dict[str, Booking] = {}
        self._blocking_id_by_slot: dict[tuple[str, datetime], str] = {}
        self._history: list[StatusHistoryEntry] = []

    def insert(
        self,
        *,
        provider_id: str,
        subject_id: str,
        instant: datetime,
        status: BookingStatus = BookingStatus.scheduled,
        link_id: str | None = None,
    ) -> Booking:
        canonical_instant = normalize_instant(instant)
        with self._locked():
            slot_key = (provider_id, canonical_instant)
            if status in BLOCKING_STATUSES and slot_key in self._blocking_id_by_slot:
                raise UniquenessViolation(
                    "A blocking booking already exists for this provider and instant.",
                    details={"provider_id": provider_id, "instant": canonical_instant.isoformat()},
                )
            now = datetime.now(UTC)
            booking = Booking(
                id=str(self._next_id),
                provider_id=provider_id,
                subject_id=subject_id,
                instant=canonical_instant,
                status=status,
                created_at=now,
                status_changed_at=now,
                link_id=link_id,
            )
            self._next_id += 1
            self._bookings_by_id[booking.id] = booking
            if status in BLOCKING_STATUSES:
                self._blocking_id_by_slot[slot_key] = booking.id
            return replace(booking)

    def get_by_id(self, booking_id: str) -> Booking | None:
        with self._locked():
            booking = self._bookings_by_id.get(booking_id)
            return replace(booking) if booking else None

    def update_status(
        self,
        booking_id: str,
        fields: Mapping[str, Any],
        *,
        expected_status: BookingStatus | None = None,
    ) -> bool:
        with self._locked():
            booking = self._bookings_by_id.get(booking_id)
            if booking is None:
                return False
            if expected_status is not None and booking.status != expected_status:
                return False
            self._apply_fields_locked(booking, fields)
            return True

    def read_by_provider_and_instant(self, provider_id: str, instant: datetime) -> Booking | None:
        canonical_instant = normalize_instant(instant)
        with self._locked():
            booking_id = self._blocking_id_by_slot.get((provider_id, canonical_instant))
            if booking_id is None:
                return None
            return replace(self._bookings_by_id[booking_id])

    def read_by_provider(
        self,
        provider_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: frozenset[BookingStatus] | None = None,
    ) -> list[Booking]:
        with self._locked():
            bookings = [
                replace(booking)
                for booking in self._bookings_by_id.values()
                if booking.provider_id == provider_id
                and (start is None or booking.instant >= start)
                and (end is None or booking.instant <= end)
                and (statuses is None or booking.status in statuses)
            ]
        return sorted(bookings, key=lambda booking: booking.instant)

    def read_by_subject(self, subject_id: str) -> list[Booking]:
        with self._locked():
            bookings = [
                replace(booking)
                for booking in self._bookings_by_id.values()
                if booking.subject_id == subject_id
            ]
        return sorted(bookings, key=lambda booking: booking.instant, reverse=True)

    def append_history(self, entry: StatusHistoryEntry) -> None:
        with self._locked():
            self._append_history_locked(entry)

    def list_history(self, booking_id: str) -> list[StatusHistoryEntry]:
        with self._locked():
            entries = [entry for entry in self._history if entry.booking_id == booking_id]
        return sorted(entries, key=lambda entry: entry.changed_at)

    def commit_status_transition(
        self,
        booking_id: str,
        *,
        expected_status: BookingStatus,
        fields: Mapping[str, Any],
        history_entry: StatusHistoryEntry,
        before_commit: Callable[[Booking], None] | None = None,
    ) -> Booking | None:
        with self._locked():
            booking = self._bookings_by_id.get(booking_id)
            if booking is None or booking.status != expected_status:
                return None

            snapshot = replace(booking)
            slot_snapshot = dict(self._blocking_id_by_slot)
            history_length = len(self._history)
            try:
                self._apply_fields_locked(booking, fields)
                self._append_history_locked(history_entry)
                if before_commit is not None:
                    before_commit(replace(booking))
            except BaseException:
                self._bookings_by_id[booking_id] = snapshot
                self._blocking_id_by_slot = slot_snapshot
                del self._history[history_length:]
                raise
            return replace(booking)

    def _apply_fields_locked(self, booking: Booking, fields: Mapping[str, Any]) -> None:
        unknown_fields = set(fields) - STATUS_FIELD_NAMES
        if unknown_fields:
            raise PersistenceError(
                "Unsupported booking fields in status update.",
                details={"fields": sorted(unknown_fields)},
            )
        new_status = parse_booking_status(fields.get("status", booking.status))
        slot_key = (booking.provider_id, booking.instant)
        holder = self._blocking_id_by_slot.get(slot_key)
        if new_status in BLOCKING_STATUSES and holder not in (None, booking.id):
            raise UniquenessViolation(
                "A blocking booking already exists for this provider and instant.",
                details={"provider_id": booking.provider_id, "instant": booking.instant.isoformat()},
            )

        for field_name, value in fields.items():
            setattr(booking, field_name, new_status if field_name == "status" else value)

        if new_status in BLOCKING_STATUSES:
            self._blocking_id_by_slot[slot_key] = booking.id
        elif holder == booking.id:
            del self._blocking_id_by_slot[slot_key]

    def _append_history_locked(self, entry: StatusHistoryEntry) -> None:
        self._history.append(entry)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.timeout_seconds):
            raise PersistenceError(
                "Timed out waiting for the bookings store.",
                details={"timeout_seconds": self.timeout_seconds},
            )
        try:
            yield
        finally:
            self._lock.release()


class MongoBookingStore(BookingStore):
    """MongoDB-backed bookings.

    A unique partial index on ``(provider_id, instant)`` over documents flagged
    ``blocking`` is the last line of defence against double bookings. Status
    transitions run in a multi-document transaction and therefore need a
    replica set deployment.
    """

    def __init__(
        self,
        uri: str,
        db_name: str,
        bookings_collection_name: str,
        history_collection_name: str,
        connect_timeout_ms: int = 2000,
        timeout_seconds: float = 5.0,
    ) -> None:
        from pymongo import ASCENDING, DESCENDING, MongoClient

        self._asc = ASCENDING
        self._desc = DESCENDING
        timeout_ms = int(timeout_seconds * 1000)
        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            socketTimeoutMS=timeout_ms,
            timeoutMS=timeout_ms,
            tz_aware=True,
        )
        database = self._client[db_name]
        self._bookings = database[bookings_collection_name]
        self._history = database[history_collection_name]
        with self._translate_errors():
            self._bookings.create_index(
                [("provider_id", ASCENDING), ("instant", ASCENDING)],
                unique=True,
                partialFilterExpression={"blocking": True},
                name="uniq_blocking_provider_instant",
            )
            self._bookings.create_index([("provider_id", ASCENDING), ("instant", ASCENDING), ("status", ASCENDING)])
            self._bookings.create_index([("subject_id", ASCENDING), ("instant", DESCENDING)])
            self._history.create_index([("booking_id", ASCENDING), ("changed_at", ASCENDING)])

    def insert(
        self,
        *,
        provider_id: str,
        subject_id: str,
        instant: datetime,
        status: BookingStatus = BookingStatus.scheduled,
        link_id: str | None = None,
    ) -> Booking:
        from pymongo.errors import DuplicateKeyError

        canonical_instant = normalize_instant(instant)
        now = datetime.now(UTC)
        document = {
            "provider_id": provider_id,
            "subject_id": subject_id,
            "instant": canonical_instant,
            "status": status.value,
            "blocking": status in BLOCKING_STATUSES,
            "created_at": now,
            "status_changed_at": now,
            "status_changed_by": None,
            "cancellation_reason": None,
            "completion_notes": None,
            "link_id": link_id,
        }
        with self._translate_errors():
            try:
                insert_result = self._bookings.insert_one(document)
            except DuplicateKeyError as exc:
                raise UniquenessViolation(
                    "A blocking booking already exists for this provider and instant.",
                    details={"provider_id": provider_id, "instant": canonical_instant.isoformat()},
                ) from exc
        document["_id"] = insert_result.inserted_id
        return Booking.from_document(document)

    def get_by_id(self, booking_id: str) -> Booking | None:
        object_id = self._object_id(booking_id)
        if object_id is None:
            return None
        with self._translate_errors():
            document = self._bookings.find_one({"_id": object_id})
        return Booking.from_document(document) if document else None

    def update_status(
        self,
        booking_id: str,
        fields: Mapping[str, Any],
        *,
        expected_status: BookingStatus | None = None,
    ) -> bool:
        object_id = self._object_id(booking_id)
        if object_id is None:
            return False
        query: dict[str, Any] = {"_id": object_id}
        if expected_status is not None:
            query["status"] = expected_status.value
        with self._translate_errors():
            result = self._bookings.update_one(query, {"$set": self._status_document(fields)})
        return result.matched_count == 1

    def read_by_provider_and_instant(self, provider_id: str, instant: datetime) -> Booking | None:
        with self._translate_errors():
            document = self._bookings.find_one(
                {
                    "provider_id": provider_id,
                    "instant": normalize_instant(instant),
                    "blocking": True,
                },
            )
        return Booking.from_document(document) if document else None

    def read_by_provider(
        self,
        provider_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: frozenset[BookingStatus] | None = None,
    ) -> list[Booking]:
        query: dict[str, Any] = {"provider_id": provider_id}
        instant_range: dict[str, datetime] = {}
        if start is not None:
            instant_range["$gte"] = start
        if end is not None:
            instant_range["$lte"] = end
        if instant_range:
            query["instant"] = instant_range
        if statuses is not None:
            query["status"] = {"$in": sorted(status.value for status in statuses)}
        with self._translate_errors():
            documents = list(self._bookings.find(query).sort("instant", self._asc))
        return [Booking.from_document(document) for document in documents]

    def read_by_subject(self, subject_id: str) -> list[Booking]:
        with self._translate_errors():
            documents = list(self._bookings.find({"subject_id": subject_id}).sort("instant", self._desc))
        return [Booking.from_document(document) for document in documents]

    def append_history(self, entry: StatusHistoryEntry) -> None:
        with self._translate_errors():
            self._history.insert_one(entry.to_dict())

    def list_history(self, booking_id: str) -> list[StatusHistoryEntry]:
        with self._translate_errors():
            documents = list(self._history.find({"booking_id": booking_id}).sort("changed_at", self._asc))
        return [StatusHistoryEntry.from_document(document) for document in documents]

    def commit_status_transition(
        self,
        booking_id: str,
        *,
        expected_status: BookingStatus,
        fields: Mapping[str, Any],
        history_entry: StatusHistoryEntry,
        before_commit: Callable[[Booking], None] | None = None,
    ) -> Booking | None:
        from pymongo import ReturnDocument

        object_id = self._object_id(booking_id)
        if object_id is None:
            return None

        def _run(session: Any) -> Booking | None:
            document = self._bookings.find_one_and_update(
                {"_id": object_id, "status": expected_status.value},
                {"$set": self._status_document(fields)},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if document is None:
                return None
            self._history.insert_one(history_entry.to_dict(), session=session)
            booking = Booking.from_document(document)
            if before_commit is not None:
                before_commit(booking)
            return booking

        with self._translate_errors():
            with self._client.start_session() as session:
                return session.with_transaction(_run)

    @staticmethod
    def _status_document(fields: Mapping[str, Any]) -> dict[str, Any]:
        unknown_fields = set(fields) - STATUS_FIELD_NAMES
        if unknown_fields:
            raise PersistenceError(
                "Unsupported booking fields in status update.",
                details={"fields": sorted(unknown_fields)},
            )
        document = dict(fields)
        if "status" in document:
            status = parse_booking_status(document["status"])
            document["status"] = status.value
            document["blocking"] = status in BLOCKING_STATUSES
        return document

    @staticmethod
    def _object_id(booking_id: str) -> Any:
        from bson import ObjectId
        from bson.errors import InvalidId

        try:
            return ObjectId(booking_id)
        except (InvalidId, TypeError):
            return None

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        from pymongo.errors import DuplicateKeyError, PyMongoError

        try:
            yield
        except DuplicateKeyError as exc:
            raise UniquenessViolation(
                "A blocking booking already exists for this provider and instant.",
            ) from exc
        except PyMongoError as exc:
            logger.warning("Bookings store failure (%s: %s)", type(exc).__name__, exc)
            raise PersistenceError(f"Bookings store failure: {exc}") from exc


def create_booking_store(settings: Settings) -> BookingStore:
    store_name = settings.bookings_store
    if store_name == "memory":
        return InMemoryBookingStore(timeout_seconds=settings.persistence_timeout_seconds)

    if store_name == "mongodb":
        return MongoBookingStore(
            uri=settings.mongodb_uri,
            db_name=settings.mongodb_db_name,
            bookings_collection_name=settings.mongodb_bookings_collection,
            history_collection_name=settings.mongodb_status_history_collection,
            connect_timeout_ms=settings.mongodb_connect_timeout_ms,
            timeout_seconds=settings.persistence_timeout_seconds,
        )

    raise ValueError(f"Unsupported bookings store: {store_name!r}")
