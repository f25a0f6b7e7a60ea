from __future__ import annotations

from typing import List, Optional

from sqlmodel import Session, or_, select

from gymbook.errors import ErrorKind, Result, store_guard
from gymbook.logger import logger
from gymbook.models import BlockedSlot, Slot
from gymbook.time_utils import canonical_ymd


def blackouts_for_date(session: Session, blocked_date: str) -> List[BlockedSlot]:
    return list(
        session.exec(
            select(BlockedSlot).where(BlockedSlot.blocked_date == canonical_ymd(blocked_date))
        ).all()
    )


def is_blocked(session: Session, blocked_date: str, slot_id: int) -> bool:
    entry = session.exec(
        select(BlockedSlot.id).where(
            BlockedSlot.blocked_date == canonical_ymd(blocked_date),
            or_(BlockedSlot.slot_id == None, BlockedSlot.slot_id == slot_id),  # noqa: E711
        )
    ).first()
    return entry is not None


def day_blackout(session: Session, blocked_date: str) -> Optional[BlockedSlot]:
    return session.exec(
        select(BlockedSlot)
        .where(
            BlockedSlot.blocked_date == canonical_ymd(blocked_date),
            BlockedSlot.slot_id == None,  # noqa: E711
        )
        .order_by(BlockedSlot.id)
    ).first()


def day_blocked(session: Session, blocked_date: str) -> bool:
    return day_blackout(session, blocked_date) is not None


def list_blackouts(session: Session) -> List[BlockedSlot]:
    return list(
        session.exec(select(BlockedSlot).order_by(BlockedSlot.blocked_date, BlockedSlot.id)).all()
    )


@store_guard("add_blackout")
def add_blackout(
    session: Session,
    blocked_date: str,
    slot_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> Result[BlockedSlot]:
    if not blocked_date:
        return Result.failure(ErrorKind.validation_error, "Date is required")
    try:
        blocked_date = canonical_ymd(blocked_date)
    except ValueError:
        return Result.failure(ErrorKind.validation_error, "Invalid date format")
    if slot_id is not None and not session.get(Slot, slot_id):
        return Result.failure(ErrorKind.not_found, "Slot not found")

    entry = BlockedSlot(
        blocked_date=blocked_date,
        slot_id=slot_id,
        reason=(reason or "").strip() or None,
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    scope = f"slot {slot_id}" if slot_id is not None else "whole day"
    logger.info(f"Blackout added for {blocked_date} ({scope})")
    return Result.success(entry)


@store_guard("remove_blackout")
def remove_blackout(session: Session, blackout_id: int) -> Result[None]:
    entry = session.get(BlockedSlot, blackout_id)
    if not entry:
        return Result.failure(ErrorKind.not_found, "Blackout not found")
    session.delete(entry)
    session.commit()
    logger.info(f"Blackout {blackout_id} removed")
    return Result.success(None)
