from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import delete, func
from sqlmodel import Session, select

from gymbook.errors import ErrorKind, Result, store_guard
from gymbook.logger import logger
from gymbook.models import BlockedSlot, Booking, Slot

DEFAULT_SLOTS = [
    {"name": "Early Morning", "time_start": "5:30 AM", "time_end": "7:00 AM"},
    {"name": "Morning", "time_start": "7:00 AM", "time_end": "8:30 AM"},
    {"name": "Evening", "time_start": "5:00 PM", "time_end": "6:30 PM"},
    {"name": "Late Evening", "time_start": "7:00 PM", "time_end": "8:30 PM"},
]

EDITABLE_FIELDS = {"name", "time_start", "time_end", "max_capacity", "is_active", "sort_order"}


def list_active_slots(session: Session) -> List[Slot]:
    return list(
        session.exec(
            select(Slot).where(Slot.is_active == True).order_by(Slot.sort_order, Slot.id)  # noqa: E712
        ).all()
    )


def list_all_slots(session: Session) -> List[Slot]:
    return list(session.exec(select(Slot).order_by(Slot.sort_order, Slot.id)).all())


def get_slot(session: Session, slot_id: int) -> Optional[Slot]:
    return session.get(Slot, slot_id)


def _next_sort_order(session: Session) -> int:
    current = session.exec(select(func.max(Slot.sort_order))).one()
    return (current or 0) + 1


def _validate_fields(fields: dict) -> Optional[str]:
    for key in ("name", "time_start", "time_end"):
        if key in fields and not str(fields[key] or "").strip():
            return f"{key} is required"
    if "max_capacity" in fields:
        capacity = fields["max_capacity"]
        if not isinstance(capacity, int) or capacity < 1:
            return "max_capacity must be a positive integer"
    return None


@store_guard("create_slot")
def create_slot(
    session: Session,
    name: str,
    time_start: str,
    time_end: str,
    max_capacity: int = 3,
) -> Result[Slot]:
    problem = _validate_fields(
        {"name": name, "time_start": time_start, "time_end": time_end, "max_capacity": max_capacity}
    )
    if problem:
        return Result.failure(ErrorKind.validation_error, problem)

    slot = Slot(
        name=name.strip(),
        time_start=time_start.strip(),
        time_end=time_end.strip(),
        max_capacity=max_capacity,
        sort_order=_next_sort_order(session),
        is_active=True,
    )
    session.add(slot)
    session.commit()
    session.refresh(slot)
    logger.info(f"Slot created: {slot.name} ({slot.time_start} - {slot.time_end})")
    return Result.success(slot)


@store_guard("update_slot")
def update_slot(session: Session, slot_id: int, **fields) -> Result[Slot]:
    slot = session.get(Slot, slot_id)
    if not slot:
        return Result.failure(ErrorKind.not_found, "Slot not found")

    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        return Result.failure(
            ErrorKind.validation_error, f"Unknown slot fields: {', '.join(sorted(unknown))}"
        )
    changes = {key: value for key, value in fields.items() if value is not None}
    problem = _validate_fields(changes)
    if problem:
        return Result.failure(ErrorKind.validation_error, problem)

    for key, value in changes.items():
        setattr(slot, key, value.strip() if isinstance(value, str) else value)
    session.add(slot)
    session.commit()
    session.refresh(slot)
    return Result.success(slot)


def toggle_slot(session: Session, slot_id: int) -> Result[Slot]:
    slot = session.get(Slot, slot_id)
    if not slot:
        return Result.failure(ErrorKind.not_found, "Slot not found")
    return update_slot(session, slot_id, is_active=not slot.is_active)


@store_guard("delete_slot")
def delete_slot(session: Session, slot_id: int) -> Result[None]:
    slot = session.get(Slot, slot_id)
    if not slot:
        return Result.failure(ErrorKind.not_found, "Slot not found")

    in_use = session.exec(
        select(func.count()).select_from(Booking).where(Booking.slot_id == slot_id)
    ).one()
    if in_use:
        return Result.failure(
            ErrorKind.validation_error,
            f"Slot has {in_use} booking(s); deactivate it instead of deleting",
        )

    session.execute(delete(BlockedSlot).where(BlockedSlot.slot_id == slot_id))
    session.delete(slot)
    session.commit()
    logger.info(f"Slot {slot_id} deleted")
    return Result.success(None)


@store_guard("reorder_slots")
def reorder_slots(session: Session, slot_ids: Iterable[int]) -> Result[List[Slot]]:
    ordered = list(slot_ids)
    if len(set(ordered)) != len(ordered):
        return Result.failure(ErrorKind.validation_error, "Slot ids must be unique")

    slots = []
    for position, slot_id in enumerate(ordered, start=1):
        slot = session.get(Slot, slot_id)
        if not slot:
            session.rollback()
            return Result.failure(ErrorKind.not_found, f"Slot {slot_id} not found")
        slot.sort_order = position
        session.add(slot)
        slots.append(slot)
    session.commit()
    for slot in slots:
        session.refresh(slot)
    return Result.success(slots)


def ensure_default_slots(session: Session, capacity: int = 3) -> None:
    existing = session.exec(select(func.count()).select_from(Slot)).one()
    if existing:
        return
    for position, data in enumerate(DEFAULT_SLOTS, start=1):
        session.add(Slot(max_capacity=capacity, sort_order=position, is_active=True, **data))
    session.commit()
    logger.info(f"Seeded {len(DEFAULT_SLOTS)} default slots")
