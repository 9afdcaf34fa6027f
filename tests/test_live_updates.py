from datetime import UTC, datetime

from clinic_booking.services.booking_models import BookingStatus
from clinic_booking.services.live_updates import InMemoryLiveUpdateBroker, StatusChangeEvent


def _event(provider_id: str = "doctor-1") -> StatusChangeEvent:
    return StatusChangeEvent(
        booking_id="1",
        provider_id=provider_id,
        subject_id="patient-1",
        new_status=BookingStatus.cancelled,
        occurred_at=datetime(2026, 10, 19, 10, 0, tzinfo=UTC),
    )


def test_publish_reaches_matching_subscribers() -> None:
    broker = InMemoryLiveUpdateBroker()
    everything: list[StatusChangeEvent] = []
    doctor_two: list[StatusChangeEvent] = []
    broker.subscribe(everything.append)
    broker.subscribe(doctor_two.append, provider_id="doctor-2")

    broker.publish(_event())

    assert everything == [_event()]
    assert doctor_two == []


def test_unsubscribe_stops_delivery() -> None:
    broker = InMemoryLiveUpdateBroker()
    received: list[StatusChangeEvent] = []
    unsubscribe = broker.subscribe(received.append)

    unsubscribe()
    broker.publish(_event())

    assert received == []
    assert broker.subscriber_count == 0


def test_failing_subscriber_does_not_block_others() -> None:
    broker = InMemoryLiveUpdateBroker()
    received: list[StatusChangeEvent] = []

    def explode(event: StatusChangeEvent) -> None:
        raise RuntimeError("subscriber down")

    broker.subscribe(explode)
    broker.subscribe(received.append)

    broker.publish(_event())

    assert len(received) == 1


def test_event_serializes_status_value() -> None:
    payload = _event().to_dict()

    assert payload["new_status"] == "cancelled"
    assert payload["occurred_at"] == "2026-10-19T10:00:00+00:00"


def test_subject_subscription_only_sees_that_subjects_bookings() -> None:
    broker = InMemoryLiveUpdateBroker()
    mine: list[StatusChangeEvent] = []
    broker.subscribe(mine.append, subject_id="patient-1")
    other = StatusChangeEvent(
        booking_id="2",
        provider_id="doctor-1",
        subject_id="patient-2",
        new_status=BookingStatus.checked,
        occurred_at=datetime(2026, 10, 19, 11, 0, tzinfo=UTC),
    )

    broker.publish(_event())
    broker.publish(other)

    assert [event.booking_id for event in mine] == ["1"]


def test_booking_subscription_follows_a_single_booking() -> None:
    broker = InMemoryLiveUpdateBroker()
    history_view: list[StatusChangeEvent] = []
    broker.subscribe(history_view.append, booking_id="2")
    second = StatusChangeEvent(
        booking_id="2",
        provider_id="doctor-1",
        subject_id="patient-1",
        new_status=BookingStatus.checked,
        occurred_at=datetime(2026, 10, 19, 11, 0, tzinfo=UTC),
    )

    broker.publish(_event())
    broker.publish(second)

    assert history_view == [second]


def test_combined_filters_must_all_match() -> None:
    broker = InMemoryLiveUpdateBroker()
    received: list[StatusChangeEvent] = []
    broker.subscribe(received.append, provider_id="doctor-1", subject_id="patient-9")

    broker.publish(_event())

    assert received == []
