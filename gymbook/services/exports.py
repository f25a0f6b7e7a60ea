from __future__ import annotations

import csv
import io
from datetime import date as date_type
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from gymbook.models import Booking, Client, MembershipStatus, Slot
from gymbook.time_utils import format_slot_time, parse_slot_time, parse_ymd

BOOKING_COLUMNS = ["Date", "Day", "Slot", "Time", "Name", "Phone", "Email", "Booked At"]
CLIENT_COLUMNS = ["Name", "Phone", "Email", "Plan", "Start Date", "End Date", "Status", "Notes"]


def _slot_label(slot: Optional[Slot], slot_id: int) -> Tuple[str, str]:
    if slot is None:
        return f"Slot {slot_id}", ""
    return slot.name, format_slot_time(slot.time_start, slot.time_end)


def bookings_csv(bookings: Iterable[Booking], slots: Dict[int, Slot]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(BOOKING_COLUMNS)
    for booking in bookings:
        slot_name, slot_time = _slot_label(slots.get(booking.slot_id), booking.slot_id)
        writer.writerow(
            [
                booking.booking_date,
                booking.day,
                slot_name,
                slot_time,
                booking.client_name,
                booking.client_phone,
                booking.client_email or "",
                booking.booked_at.strftime("%Y-%m-%d %H:%M") if booking.booked_at else "",
            ]
        )
    return buffer.getvalue()


def clients_csv(rows: Iterable[Tuple[Client, MembershipStatus]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CLIENT_COLUMNS)
    for client, status in rows:
        writer.writerow(
            [
                client.name,
                client.phone,
                client.email or "",
                client.plan_type.value,
                client.start_date,
                client.end_date,
                status.value,
                client.notes or "",
            ]
        )
    return buffer.getvalue()


def _ics_escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def _event_window(booking: Booking, slot: Optional[Slot]) -> List[str]:
    day = parse_ymd(booking.booking_date)
    start = parse_slot_time(slot.time_start) if slot else None
    end = parse_slot_time(slot.time_end) if slot else None
    if start is None:
        next_day = day + timedelta(days=1)
        return [
            f"DTSTART;VALUE=DATE:{day.strftime('%Y%m%d')}",
            f"DTEND;VALUE=DATE:{next_day.strftime('%Y%m%d')}",
        ]
    start_dt = datetime.combine(day, start)
    end_dt = datetime.combine(day, end) if end and end > start else start_dt + timedelta(hours=1)
    return [
        f"DTSTART:{start_dt.strftime('%Y%m%dT%H%M%S')}",
        f"DTEND:{end_dt.strftime('%Y%m%dT%H%M%S')}",
    ]


def bookings_ics(
    bookings: Iterable[Booking],
    slots: Dict[int, Slot],
    calendar_name: str = "Gym Bookings",
    domain: str = "gymbook",
) -> str:
    """One VEVENT per booking, in floating local time."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:-//{domain}//bookings//EN",
        "CALSCALE:GREGORIAN",
        f"X-WR-CALNAME:{_ics_escape(calendar_name)}",
    ]
    for booking in bookings:
        slot = slots.get(booking.slot_id)
        slot_name, slot_time = _slot_label(slot, booking.slot_id)
        description = f"Phone: {booking.client_phone}"
        if booking.client_email:
            description += f"\nEmail: {booking.client_email}"
        if slot_time:
            description += f"\nTime: {slot_time}"
        lines.extend(
            [
                "BEGIN:VEVENT",
                f"UID:booking-{booking.id}@{domain}",
                f"DTSTAMP:{stamp}",
                *_event_window(booking, slot),
                f"SUMMARY:{_ics_escape(f'{slot_name}: {booking.client_name}')}",
                f"DESCRIPTION:{_ics_escape(description)}",
                "END:VEVENT",
            ]
        )
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


def export_filename(prefix: str, extension: str, today: Optional[date_type] = None) -> str:
    return f"{prefix}-{(today or date_type.today()).strftime('%Y-%m-%d')}.{extension}"
