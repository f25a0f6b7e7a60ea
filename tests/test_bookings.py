from unittest.mock import patch

from sqlalchemy.exc import OperationalError
from sqlmodel import select

from conftest import days_from_today
from gymbook.errors import ErrorKind
from gymbook.models import Booking
from gymbook.services import bookings as booking_service
from gymbook.services.blackouts import add_blackout
from gymbook.services.notifications import ConfirmationOutbox


def _count(session):
    return len(session.exec(select(Booking)).all())


def test_create_booking_records_everything(session, make_slot):
    slot = make_slot()
    day = "2030-01-07"

    booking = booking_service.create_booking(
        session, day, slot.id, " Asha ", "(555) 010-1234", "asha@example.com"
    ).unwrap()

    assert booking.id is not None
    assert booking.client_name == "Asha"
    assert booking.client_phone == "(555) 010-1234"
    assert booking.phone_key == "5550101234"
    assert booking.day == "Monday"
    assert booking.seat == 1
    assert len(booking.cancel_token) >= 32
    assert booking.booked_at is not None


def test_cancel_tokens_are_unique(session, make_slot):
    slot = make_slot(max_capacity=10)
    day = days_from_today(1)
    tokens = {
        booking_service.create_booking(session, day, slot.id, f"C{i}", f"555-{i}").unwrap().cancel_token
        for i in range(10)
    }
    assert len(tokens) == 10


def test_fourth_booking_is_full_and_store_unchanged(session, make_slot):
    slot = make_slot(max_capacity=3)
    day = days_from_today(2)
    for i in range(3):
        booking_service.create_booking(session, day, slot.id, f"C{i}", f"555-000{i}").unwrap()

    result = booking_service.create_booking(session, day, slot.id, "Late", "555-9999")
    assert result.kind == ErrorKind.slot_full
    assert _count(session) == 3


def test_blacked_out_day_refuses_booking(session, make_slot):
    slot = make_slot()
    day = days_from_today(4)
    add_blackout(session, day, reason="Holiday").unwrap()

    result = booking_service.create_booking(session, day, slot.id, "Asha", "555-0101")
    assert result.kind == ErrorKind.slot_unavailable
    assert _count(session) == 0


def test_blacked_out_slot_refuses_booking(session, make_slot):
    slot = make_slot(sort_order=1)
    other = make_slot(name="Evening", sort_order=2)
    day = days_from_today(4)
    add_blackout(session, day, slot_id=slot.id).unwrap()

    assert booking_service.create_booking(session, day, slot.id, "Asha", "555-0101").kind == ErrorKind.slot_unavailable
    assert booking_service.create_booking(session, day, other.id, "Asha", "555-0101").ok
    assert _count(session) == 1


def test_validation_and_missing_slot(session, make_slot):
    slot = make_slot()
    day = days_from_today(1)
    assert booking_service.create_booking(session, day, slot.id, "", "555").kind == ErrorKind.validation_error
    assert booking_service.create_booking(session, day, slot.id, "Asha", " ").kind == ErrorKind.validation_error
    assert booking_service.create_booking(session, "", slot.id, "Asha", "555").kind == ErrorKind.validation_error
    assert booking_service.create_booking(session, "2030-02-31", slot.id, "Asha", "555").kind == ErrorKind.validation_error
    assert booking_service.create_booking(session, day, 999, "Asha", "555").kind == ErrorKind.not_found

    inactive = make_slot(name="Off", is_active=False)
    assert booking_service.create_booking(session, day, inactive.id, "Asha", "555").kind == ErrorKind.not_found
    assert _count(session) == 0


def test_cancel_by_token_second_call_reports_not_found(session, make_slot):
    slot = make_slot()
    booking = booking_service.create_booking(session, days_from_today(1), slot.id, "Asha", "555").unwrap()

    assert booking_service.cancel_by_token(session, booking.cancel_token).ok
    second = booking_service.cancel_by_token(session, booking.cancel_token)
    assert second.kind == ErrorKind.not_found
    assert booking_service.cancel_by_token(session, "").kind == ErrorKind.not_found
    assert _count(session) == 0


def test_delete_booking(session, make_slot):
    slot = make_slot()
    booking = booking_service.create_booking(session, days_from_today(1), slot.id, "Asha", "555").unwrap()
    assert booking_service.delete_booking(session, booking.id).ok
    assert booking_service.delete_booking(session, booking.id).kind == ErrorKind.not_found


def test_cancelled_seat_is_reused(session, make_slot):
    slot = make_slot(max_capacity=2)
    day = days_from_today(1)
    first = booking_service.create_booking(session, day, slot.id, "A", "1").unwrap()
    booking_service.create_booking(session, day, slot.id, "B", "2").unwrap()
    booking_service.cancel_by_token(session, first.cancel_token).unwrap()

    again = booking_service.create_booking(session, day, slot.id, "C", "3").unwrap()
    assert again.seat == 1
    assert booking_service.create_booking(session, day, slot.id, "D", "4").kind == ErrorKind.slot_full


def test_lost_seat_race_retries_then_reports_full(session, make_slot):
    slot = make_slot(max_capacity=1)
    day = days_from_today(1)
    booking_service.create_booking(session, day, slot.id, "Winner", "1").unwrap()

    # Simulate a stale check: the seat looks free but the insert collides
    with patch.object(booking_service, "_first_free_seat", return_value=1) as seat_check:
        result = booking_service.create_booking(session, day, slot.id, "Loser", "2")

    assert result.kind == ErrorKind.slot_full
    assert seat_check.call_count == booking_service.MAX_SEAT_ATTEMPTS
    assert _count(session) == 1


def test_store_failure_is_reported_and_rolled_back(session, make_slot):
    slot = make_slot()
    error = OperationalError("INSERT", {}, Exception("disk I/O error"))
    with patch.object(session, "commit", side_effect=error):
        result = booking_service.create_booking(session, days_from_today(1), slot.id, "Asha", "555")

    assert result.kind == ErrorKind.store_unavailable
    assert "disk I/O error" in result.error.detail
    assert "disk" not in result.error.message
    assert _count(session) == 0


def test_confirmation_enqueued_only_with_email(session, make_slot):
    slot = make_slot(name="Morning")
    outbox = ConfirmationOutbox(sender=lambda confirmation: True)
    day = "2030-01-07"

    booking_service.create_booking(session, day, slot.id, "NoMail", "1", outbox=outbox).unwrap()
    assert outbox.pending() == 0

    booking = booking_service.create_booking(
        session, day, slot.id, "Asha", "2", "asha@example.com", outbox=outbox, site_url="https://gym.test"
    ).unwrap()
    assert outbox.pending() == 1
    confirmation = outbox._pending[0]
    assert confirmation.slot_name == "Morning"
    assert confirmation.slot_time == "7:00 AM - 8:30 AM"
    assert confirmation.date == "Mon, Jan 7"
    assert confirmation.cancel_url == f"https://gym.test/cancel/{booking.cancel_token}"


def test_failed_admission_enqueues_nothing(session, make_slot):
    slot = make_slot(max_capacity=1)
    outbox = ConfirmationOutbox(sender=lambda confirmation: True)
    day = days_from_today(1)
    booking_service.create_booking(session, day, slot.id, "A", "1").unwrap()

    booking_service.create_booking(session, day, slot.id, "B", "2", "b@example.com", outbox=outbox)
    assert outbox.pending() == 0


def test_list_bookings_filters(session, make_slot):
    late = make_slot(name="Late", sort_order=2)
    early = make_slot(name="Early", sort_order=1)
    d1, d2, d3 = days_from_today(1), days_from_today(2), days_from_today(3)
    booking_service.create_booking(session, d1, late.id, "A", "1").unwrap()
    booking_service.create_booking(session, d1, early.id, "B", "2").unwrap()
    booking_service.create_booking(session, d3, early.id, "C", "3").unwrap()

    assert [b.client_name for b in booking_service.list_bookings(session)] == ["B", "A", "C"]
    assert [b.client_name for b in booking_service.list_bookings(session, booking_date=d3)] == ["C"]
    assert [b.client_name for b in booking_service.list_bookings(session, start=d2, end=d3)] == ["C"]


def test_unpadded_date_shares_capacity_with_padded(session, make_slot):
    slot = make_slot(max_capacity=1)
    first = booking_service.create_booking(session, "2030-01-07", slot.id, "Asha", "555-0101").unwrap()
    assert first.booking_date == "2030-01-07"

    result = booking_service.create_booking(session, "2030-1-7", slot.id, "Ravi", "555-0102")
    assert result.kind == ErrorKind.slot_full
    assert [b.booking_date for b in session.exec(select(Booking)).all()] == ["2030-01-07"]


def test_unpadded_date_respects_day_blackout(session, make_slot):
    slot = make_slot()
    add_blackout(session, "2030-01-08", reason="Holiday").unwrap()
    result = booking_service.create_booking(session, "2030-1-8", slot.id, "Asha", "555-0101")
    assert result.kind == ErrorKind.slot_unavailable
    assert _count(session) == 0


def test_bookings_for_date(session, make_slot):
    evening = make_slot(name="Evening", sort_order=2)
    morning = make_slot(name="Morning", sort_order=1)
    booking_service.create_booking(session, "2030-01-07", evening.id, "A", "1").unwrap()
    booking_service.create_booking(session, "2030-01-07", morning.id, "B", "2").unwrap()
    booking_service.create_booking(session, "2030-01-08", morning.id, "C", "3").unwrap()

    assert [b.client_name for b in booking_service.bookings_for_date(session, "2030-01-07")] == ["B", "A"]
    assert [b.client_name for b in booking_service.bookings_for_date(session, "2030-1-8")] == ["C"]
    assert booking_service.bookings_for_date(session, "2030-01-09") == []
    assert [b.client_name for b in booking_service.list_bookings(session, start="2030-1-8")] == ["C"]
