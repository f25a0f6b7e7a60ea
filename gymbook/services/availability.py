from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from gymbook.models import Booking, Slot
from gymbook.services.blackouts import blackouts_for_date
from gymbook.services.slots import list_active_slots
from gymbook.time_utils import canonical_ymd


@dataclass(frozen=True)
class SlotAvailability:
    slot: Slot
    booked: int
    available: int
    blocked: bool


@dataclass(frozen=True)
class DayAvailability:
    date: str
    day_blocked: bool
    reason: Optional[str]
    slots: List[SlotAvailability]


def booking_counts(session: Session, booking_date: str) -> Dict[int, int]:
    rows = session.exec(
        select(Booking.slot_id, func.count(Booking.id))
        .where(Booking.booking_date == canonical_ymd(booking_date))
        .group_by(Booking.slot_id)
    ).all()
    return {int(slot_id): int(cnt) for slot_id, cnt in rows}


def booking_count(session: Session, booking_date: str, slot_id: int) -> int:
    return session.exec(
        select(func.count())
        .select_from(Booking)
        .where(Booking.booking_date == canonical_ymd(booking_date), Booking.slot_id == slot_id)
    ).one()


def availability(session: Session, booking_date: str) -> DayAvailability:
    """Remaining capacity for every active slot on a date, blackouts applied.

    Always read fresh from the store: bookings change between calls.
    Raises ValueError for an unparseable date.
    """
    booking_date = canonical_ymd(booking_date)
    entries = blackouts_for_date(session, booking_date)
    day_entries = [e for e in entries if e.slot_id is None]
    blocked_slot_ids = {e.slot_id for e in entries if e.slot_id is not None}
    counts = booking_counts(session, booking_date)

    slots: List[SlotAvailability] = []
    for slot in list_active_slots(session):
        booked = counts.get(slot.id, 0)
        blocked = bool(day_entries) or slot.id in blocked_slot_ids
        available = 0 if blocked else max(0, slot.max_capacity - booked)
        slots.append(
            SlotAvailability(
                slot=slot,
                booked=booked,
                available=available,
                blocked=blocked,
            )
        )

    return DayAvailability(
        date=booking_date,
        day_blocked=bool(day_entries),
        reason=day_entries[0].reason if day_entries else None,
        slots=slots,
    )
