from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanType(str, Enum):
    one_month = "1_month"
    two_months = "2_months"
    three_months = "3_months"
    four_months = "4_months"
    five_months = "5_months"
    six_months = "6_months"
    one_year = "1_year"


PLAN_DAYS = {
    PlanType.one_month: 30,
    PlanType.two_months: 60,
    PlanType.three_months: 90,
    PlanType.four_months: 120,
    PlanType.five_months: 150,
    PlanType.six_months: 180,
    PlanType.one_year: 365,
}


class MembershipStatus(str, Enum):
    active = "active"
    expiring = "expiring"
    expired = "expired"


class Slot(SQLModel, table=True):
    __tablename__ = "slots"
    __table_args__ = (CheckConstraint("max_capacity >= 1", name="ck_slot_capacity_positive"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    time_start: str
    time_end: str
    max_capacity: int = 3
    is_active: bool = Field(default=True, index=True)
    sort_order: int = Field(default=0, index=True)
    created_at: datetime = Field(default_factory=utcnow)


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # At most one booking per seat; seats are numbered 1..max_capacity on insert
        UniqueConstraint("booking_date", "slot_id", "seat", name="uq_booking_seat"),
        UniqueConstraint("cancel_token", name="uq_booking_cancel_token"),
        CheckConstraint("seat >= 1", name="ck_booking_seat_positive"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    booking_date: str = Field(index=True)
    day: str
    slot_id: int = Field(foreign_key="slots.id", ondelete="RESTRICT", index=True)
    seat: int
    client_name: str
    client_phone: str
    phone_key: str = Field(index=True)
    client_email: Optional[str] = None
    cancel_token: str = Field(index=True)
    booked_at: datetime = Field(default_factory=utcnow, index=True)


class BlockedSlot(SQLModel, table=True):
    __tablename__ = "blocked_slots"

    id: Optional[int] = Field(default=None, primary_key=True)
    blocked_date: str = Field(index=True)
    slot_id: Optional[int] = Field(
        default=None, foreign_key="slots.id", ondelete="CASCADE", index=True
    )
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Client(SQLModel, table=True):
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("phone_key", name="uq_client_phone_key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    phone: str
    phone_key: str = Field(index=True)
    email: Optional[str] = None
    plan_type: PlanType
    start_date: str
    end_date: str = Field(index=True)
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
