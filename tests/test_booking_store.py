import threading
from datetime import UTC, datetime, timedelta

import pytest

from clinic_booking.core.config import Settings
from clinic_booking.core.errors import PersistenceError, UniquenessViolation
from clinic_booking.services.booking_models import BookingStatus, StatusHistoryEntry
from clinic_booking.services.booking_store import InMemoryBookingStore, create_booking_store
from clinic_booking.services.schedule_store import InMemoryScheduleStore, create_schedule_store

MONDAY_TEN = datetime(2026, 10, 19, 10, 0, tzinfo=UTC)


def test_insert_assigns_ids_and_canonical_instants() -> None:
    store = InMemoryBookingStore()

    first = store.insert(provider_id="doctor-1", subject_id="patient-1", instant=MONDAY_TEN.replace(second=42))
    second = store.insert(
        provider_id="doctor-1",
        subject_id="patient-2",
        instant=MONDAY_TEN + timedelta(minutes=30),
    )

    assert (first.id, second.id) == ("1", "2")
    assert first.instant == MONDAY_TEN
    assert first.status == BookingStatus.scheduled
    assert store.get_by_id("1") == first
    assert store.get_by_id("missing") is None


def test_insert_rejects_second_blocking_booking_for_the_same_slot() -> None:
    store = InMemoryBookingStore()
    store.insert(provider_id="doctor-1", subject_id="patient-1", instant=MONDAY_TEN)

    with pytest.raises(UniquenessViolation):
        store.insert(provider_id="doctor-1", subject_id="patient-2", instant=MONDAY_TEN)

    other_provider = store.insert(provider_id="doctor-2", subject_id="patient-2", instant=MONDAY_TEN)
    assert other_provider.provider_id == "doctor-2"


def test_cancelling_frees_the_slot_and_blocks_reinstating_the_old_booking() -> None:
    store = InMemoryBookingStore()
    original = store.insert(provider_id="doctor-1", subject_id="patient-1", instant=MONDAY_TEN)

    assert store.update_status(original.id, {"status": BookingStatus.cancelled}) is True
    assert store.read_by_provider_and_instant("doctor-1", MONDAY_TEN) is None

    replacement = store.insert(provider_id="doctor-1", subject_id="patient-2", instant=MONDAY_TEN)
    assert store.read_by_provider_and_instant("doctor-1", MONDAY_TEN).id == replacement.id

    with pytest.raises(UniquenessViolation):
        store.update_status(original.id, {"status": BookingStatus.scheduled})


def test_update_status_honours_expected_status() -> None:
    store = InMemoryBookingStore()
    booking = store.insert(provider_id="doctor-1", subject_id="patient-1", instant=MONDAY_TEN)

    assert store.update_status(booking.id, {"status": "checked"}, expected_status=BookingStatus.cancelled) is False
    assert store.get_by_id(booking.id).status == BookingStatus.scheduled
    assert store.update_status("missing", {"status": "checked"}) is False


def test_update_status_rejects_unknown_fields() -> None:
    store = InMemoryBookingStore()
    booking = store.insert(provider_id="doctor-1", subject_id="patient-1", instant=MONDAY_TEN)

    with pytest.raises(PersistenceError):
        store.update_status(booking.id, {"instant": MONDAY_TEN + timedelta(hours=1)})


def test_read_queries_filter_and_sort() -> None:
    store = InMemoryBookingStore()
    late = store.insert(provider_id="doctor-1", subject_id="patient-1", instant=MONDAY_TEN + timedelta(hours=2))
    early = store.insert(provider_id="doctor-1", subject_id="patient-1", instant=MONDAY_TEN)
    cancelled = store.insert(
        provider_id="doctor-1",
        subject_id="patient-2",
        instant=MONDAY_TEN + timedelta(hours=1),
        status=BookingStatus.cancelled,
    )
    store.insert(provider_id="doctor-2", subject_id="patient-1", instant=MONDAY_TEN)

    assert [b.id for b in store.read_by_provider("doctor-1")] == [early.id, cancelled.id, late.id]
    assert [
        b.id for b in store.read_by_provider("doctor-1", statuses=frozenset({BookingStatus.scheduled}))
    ] == [early.id, late.id]
    assert [
        b.id
        for b in store.read_by_provider(
            "doctor-1",
            start=MONDAY_TEN + timedelta(minutes=30),
            end=MONDAY_TEN + timedelta(hours=1),
        )
    ] == [cancelled.id]
    assert [b.instant for b in store.read_by_subject("patient-1")] == [
        MONDAY_TEN + timedelta(hours=2),
        MONDAY_TEN,
        MONDAY_TEN,
    ]


def test_returned_bookings_are_copies() -> None:
    store = InMemoryBookingStore()
    booking = store.insert(provider_id="doctor-1", subject_id="patient-1", instant=MONDAY_TEN)

    booking.status = BookingStatus.cancelled

    assert store.get_by_id(booking.id).status == BookingStatus.scheduled


def test_history_is_listed_in_change_order() -> None:
    store = InMemoryBookingStore()
    later = StatusHistoryEntry(
        booking_id="1",
        old_status=BookingStatus.scheduled,
        new_status=BookingStatus.cancelled,
        actor_id="staff-1",
        changed_at=MONDAY_TEN + timedelta(minutes=5),
    )
    earlier = StatusHistoryEntry(
        booking_id="1",
        old_status=BookingStatus.scheduled,
        new_status=BookingStatus.checked,
        actor_id="staff-1",
        changed_at=MONDAY_TEN,
    )
    store.append_history(later)
    store.append_history(earlier)

    assert store.list_history("1") == [earlier, later]
    assert store.list_history("2") == []


def test_locked_store_times_out_with_persistence_error() -> None:
    store = InMemoryBookingStore(timeout_seconds=0.05)
    acquired = threading.Event()
    release = threading.Event()

    def hold_lock() -> None:
        with store._locked():
            acquired.set()
            release.wait(timeout=5)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    try:
        assert acquired.wait(timeout=5)
        with pytest.raises(PersistenceError):
            store.get_by_id("1")
    finally:
        release.set()
        holder.join()


def test_store_factories_follow_settings() -> None:
    assert isinstance(create_booking_store(Settings(bookings_store="memory")), InMemoryBookingStore)
    assert isinstance(create_schedule_store(Settings(schedules_store="Memory")), InMemoryScheduleStore)

    with pytest.raises(ValueError):
        create_booking_store(Settings(bookings_store="sqlite"))
    with pytest.raises(ValueError):
        create_schedule_store(Settings(schedules_store="sqlite"))


def test_locked_schedule_store_times_out_with_persistence_error() -> None:
    store = InMemoryScheduleStore(timeout_seconds=0.05)
    acquired = threading.Event()
    release = threading.Event()

    def hold_lock() -> None:
        with store._locked():
            acquired.set()
            release.wait(timeout=5)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    try:
        assert acquired.wait(timeout=5)
        with pytest.raises(PersistenceError):
            store.get_schedule("doctor-1")
    finally:
        release.set()
        holder.join()


def test_schedule_store_factory_applies_persistence_timeout() -> None:
    store = create_schedule_store(Settings(schedules_store="memory", persistence_timeout_seconds=1.5))

    assert store.timeout_seconds == 1.5
