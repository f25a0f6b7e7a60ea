from __future__ import annotations

import secrets
from typing import List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from gymbook.errors import ErrorKind, Result, store_guard
from gymbook.logger import logger
from gymbook.models import Booking, Slot
from gymbook.services.blackouts import is_blocked
from gymbook.services.notifications import BookingConfirmation, ConfirmationOutbox
from gymbook.time_utils import (
    canonical_ymd,
    format_date,
    format_slot_time,
    normalize_phone,
    weekday_long_name,
)

# A lost race for a seat re-runs the admission check this many times
MAX_SEAT_ATTEMPTS = 5


def new_cancel_token() -> str:
    return secrets.token_urlsafe(24)


def _first_free_seat(session: Session, booking_date: str, slot: Slot) -> Optional[int]:
    taken = set(
        session.exec(
            select(Booking.seat).where(
                Booking.booking_date == booking_date,
                Booking.slot_id == slot.id,
            )
        ).all()
    )
    if len(taken) >= slot.max_capacity:
        return None
    for seat in range(1, slot.max_capacity + 1):
        if seat not in taken:
            return seat
    return None


@store_guard("create_booking")
def create_booking(
    session: Session,
    booking_date: str,
    slot_id: int,
    client_name: str,
    client_phone: str,
    client_email: Optional[str] = None,
    outbox: Optional[ConfirmationOutbox] = None,
    site_url: str = "",
) -> Result[Booking]:
    name = (client_name or "").strip()
    phone = (client_phone or "").strip()
    email = (client_email or "").strip() or None
    if not booking_date or not name or not phone:
        return Result.failure(ErrorKind.validation_error, "Name, phone and date are required")
    try:
        booking_date = canonical_ymd(booking_date)
    except ValueError:
        return Result.failure(ErrorKind.validation_error, "Invalid date format")

    slot = session.get(Slot, slot_id)
    if not slot or not slot.is_active:
        return Result.failure(ErrorKind.not_found, "Slot not found")

    for _ in range(MAX_SEAT_ATTEMPTS):
        # Covers whole-day blackouts as well as this slot's own
        if is_blocked(session, booking_date, slot.id):
            logger.info(f"Booking refused, {booking_date} slot {slot.id} is blacked out")
            return Result.failure(ErrorKind.slot_unavailable, "This slot is not available")

        seat = _first_free_seat(session, booking_date, slot)
        if seat is None:
            logger.info(f"Booking refused, {booking_date} slot {slot.id} is full")
            return Result.failure(ErrorKind.slot_full, "Slot is full")

        booking = Booking(
            booking_date=booking_date,
            day=weekday_long_name(booking_date),
            slot_id=slot.id,
            seat=seat,
            client_name=name,
            client_phone=phone,
            phone_key=normalize_phone(phone),
            client_email=email,
            cancel_token=new_cancel_token(),
        )
        session.add(booking)
        try:
            session.commit()
        except IntegrityError:
            # Another request took this seat between the check and the insert
            session.rollback()
            logger.info(f"Seat {seat} on {booking_date} slot {slot_id} taken concurrently, retrying")
            continue

        session.refresh(booking)
        logger.info(f"Booking {booking.id} created: {name} on {booking_date}, slot {slot.name}")
        if email and outbox is not None:
            outbox.enqueue(
                BookingConfirmation(
                    client_name=name,
                    client_email=email,
                    client_phone=phone,
                    date=format_date(booking_date),
                    slot_name=slot.name,
                    slot_time=format_slot_time(slot.time_start, slot.time_end),
                    cancel_token=booking.cancel_token,
                    site_url=site_url,
                )
            )
        return Result.success(booking)

    return Result.failure(ErrorKind.slot_full, "Slot is full")


@store_guard("cancel_by_token")
def cancel_by_token(session: Session, token: str) -> Result[None]:
    if not token:
        return Result.failure(ErrorKind.not_found, "Booking not found or already cancelled")
    deleted = session.execute(delete(Booking).where(Booking.cancel_token == token))
    session.commit()
    if deleted.rowcount == 0:
        return Result.failure(ErrorKind.not_found, "Booking not found or already cancelled")
    logger.info("Booking cancelled by token")
    return Result.success(None)


@store_guard("delete_booking")
def delete_booking(session: Session, booking_id: int) -> Result[None]:
    deleted = session.execute(delete(Booking).where(Booking.id == booking_id))
    session.commit()
    if deleted.rowcount == 0:
        return Result.failure(ErrorKind.not_found, "Booking not found")
    logger.info(f"Booking {booking_id} deleted by admin")
    return Result.success(None)


def list_bookings(
    session: Session,
    booking_date: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[Booking]:
    """Bookings ordered by date, then slot display order, then booking time.

    Date filters are canonicalised first; raises ValueError for an unparseable one.
    """
    stmt = select(Booking).join(Slot, Slot.id == Booking.slot_id)
    if booking_date:
        stmt = stmt.where(Booking.booking_date == canonical_ymd(booking_date))
    if start:
        stmt = stmt.where(Booking.booking_date >= canonical_ymd(start))
    if end:
        stmt = stmt.where(Booking.booking_date <= canonical_ymd(end))
    stmt = stmt.order_by(Booking.booking_date, Slot.sort_order, Booking.booked_at)
    return list(session.exec(stmt).all())


def bookings_for_date(session: Session, booking_date: str) -> List[Booking]:
    return list_bookings(session, booking_date=booking_date)


def bookings_for_phone(session: Session, phone: str) -> List[Booking]:
    return list(
        session.exec(
            select(Booking)
            .where(Booking.phone_key == normalize_phone(phone))
            .order_by(Booking.booking_date, Booking.booked_at)
        ).all()
    )
