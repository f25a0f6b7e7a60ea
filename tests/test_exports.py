import csv
import io
from datetime import date

from gymbook.models import Booking, Client, MembershipStatus, PlanType, Slot
from gymbook.services import exports


def _slots():
    return {
        1: Slot(id=1, name="Morning", time_start="7:00 AM", time_end="8:30 AM", max_capacity=3),
        2: Slot(id=2, name="Open Gym", time_start="anytime", time_end="late", max_capacity=3),
    }


def _booking(booking_id, slot_id, name="Asha, Jr.", email=None):
    return Booking(
        id=booking_id,
        booking_date="2030-01-07",
        day="Monday",
        slot_id=slot_id,
        seat=1,
        client_name=name,
        client_phone="555-0101",
        phone_key="5550101",
        client_email=email,
        cancel_token=f"token-{booking_id}",
    )


def test_bookings_csv_one_row_per_booking():
    content = exports.bookings_csv([_booking(1, 1, email="a@x.io"), _booking(2, 9)], _slots())
    rows = list(csv.reader(io.StringIO(content)))
    assert rows[0] == exports.BOOKING_COLUMNS
    assert len(rows) == 3
    assert rows[1][:7] == ["2030-01-07", "Monday", "Morning", "7:00 AM - 8:30 AM", "Asha, Jr.", "555-0101", "a@x.io"]
    assert rows[2][2] == "Slot 9"


def test_clients_csv_includes_status():
    client = Client(
        id=1,
        name="Ravi",
        phone="555",
        phone_key="555",
        plan_type=PlanType.three_months,
        start_date="2024-01-01",
        end_date="2024-03-31",
    )
    rows = list(csv.reader(io.StringIO(exports.clients_csv([(client, MembershipStatus.expired)]))))
    assert rows[1] == ["Ravi", "555", "", "3_months", "2024-01-01", "2024-03-31", "expired", ""]


def test_bookings_ics_one_event_per_booking():
    content = exports.bookings_ics([_booking(1, 1), _booking(2, 2)], _slots())
    assert content.startswith("BEGIN:VCALENDAR\r\n")
    assert content.endswith("END:VCALENDAR\r\n")
    assert content.count("BEGIN:VEVENT") == 2
    assert "UID:booking-1@gymbook" in content
    assert "DTSTART:20300107T070000" in content
    assert "DTEND:20300107T083000" in content
    assert "SUMMARY:Morning: Asha\\, Jr." in content
    # Unparseable slot times fall back to an all-day event
    assert "DTSTART;VALUE=DATE:20300107" in content
    assert "DTEND;VALUE=DATE:20300108" in content


def test_export_filename():
    assert exports.export_filename("bookings", "csv", today=date(2024, 5, 1)) == "bookings-2024-05-01.csv"
