from __future__ import annotations

from dataclasses import dataclass
from datetime import date as date_type
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, or_, select

from gymbook.errors import ErrorKind, Result, store_guard
from gymbook.logger import logger
from gymbook.models import Booking, Client, MembershipStatus, PlanType
from gymbook.services.bookings import bookings_for_phone
from gymbook.settings import settings
from gymbook.time_utils import (
    calculate_end_date,
    canonical_ymd,
    classify_status,
    days_remaining,
    normalize_phone,
    to_ymd,
)

CLIENT_FIELDS = {"name", "phone", "email", "plan_type", "start_date", "notes"}


@dataclass(frozen=True)
class ClientVerification:
    """Outcome of a phone lookup.

    Phone is the only credential, so this identifies a member; it does not
    authenticate one.
    """

    client: Client
    status: MembershipStatus
    days_remaining: int

    @property
    def expired(self) -> bool:
        return self.status == MembershipStatus.expired

    @property
    def days_expired(self) -> int:
        return max(0, -self.days_remaining)


@dataclass(frozen=True)
class BookingHistory:
    past: List[Booking]
    upcoming: List[Booking]


def membership_status(client: Client, today: Optional[date_type] = None) -> MembershipStatus:
    return classify_status(client.end_date, today=today, threshold=settings.expiring_threshold_days)


def get_client(session: Session, client_id: int) -> Optional[Client]:
    return session.get(Client, client_id)


def list_clients(
    session: Session,
    status: Optional[MembershipStatus] = None,
    today: Optional[date_type] = None,
) -> List[Tuple[Client, MembershipStatus]]:
    clients = session.exec(select(Client).order_by(Client.end_date, Client.name)).all()
    rows = [(client, membership_status(client, today=today)) for client in clients]
    if status is not None:
        rows = [row for row in rows if row[1] == status]
    return rows


def find_by_phone(session: Session, phone: str) -> Optional[Client]:
    raw = (phone or "").strip()
    key = normalize_phone(raw)
    if not key:
        return None
    return session.exec(
        select(Client).where(or_(Client.phone_key == key, Client.phone == raw))
    ).first()


def verify_by_phone(
    session: Session, phone: str, today: Optional[date_type] = None
) -> Result[ClientVerification]:
    """Look up a member by phone.

    An expired membership is still a success: the result carries the client
    with ``expired`` set so the caller can show when it lapsed. Only an
    unknown phone is a failure (not_found).
    """
    client = find_by_phone(session, phone)
    if not client:
        return Result.failure(ErrorKind.not_found, "No membership found for this phone number")
    remaining = days_remaining(client.end_date, today=today)
    verification = ClientVerification(
        client=client,
        status=membership_status(client, today=today),
        days_remaining=remaining,
    )
    if verification.expired:
        logger.info(f"Client {client.id} verified with expired membership ({-remaining} days ago)")
    return Result.success(verification)


def _coerce_plan(plan_type) -> Optional[PlanType]:
    try:
        return PlanType(plan_type)
    except ValueError:
        return None


def _canonical_date(value) -> Optional[str]:
    try:
        return canonical_ymd(value)
    except (AttributeError, TypeError, ValueError):
        return None


@store_guard("create_client")
def create_client(
    session: Session,
    name: str,
    phone: str,
    plan_type,
    start_date: Optional[str] = None,
    email: Optional[str] = None,
    notes: Optional[str] = None,
) -> Result[Client]:
    name = (name or "").strip()
    phone = (phone or "").strip()
    if not name or not phone:
        return Result.failure(ErrorKind.validation_error, "Name and phone are required")
    plan = _coerce_plan(plan_type)
    if plan is None:
        return Result.failure(ErrorKind.validation_error, f"Unknown plan type: {plan_type}")
    start_date = _canonical_date(start_date or to_ymd(date_type.today()))
    if start_date is None:
        return Result.failure(ErrorKind.validation_error, "Invalid start date")

    client = Client(
        name=name,
        phone=phone,
        phone_key=normalize_phone(phone),
        email=(email or "").strip() or None,
        plan_type=plan,
        start_date=start_date,
        end_date=calculate_end_date(start_date, plan),
        notes=notes,
    )
    session.add(client)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return Result.failure(ErrorKind.validation_error, "A client with this phone already exists")
    session.refresh(client)
    logger.info(f"Client {client.id} created on plan {plan.value} until {client.end_date}")
    return Result.success(client)


@store_guard("update_client")
def update_client(session: Session, client_id: int, **fields) -> Result[Client]:
    client = session.get(Client, client_id)
    if not client:
        return Result.failure(ErrorKind.not_found, "Client not found")

    unknown = set(fields) - CLIENT_FIELDS
    if unknown:
        return Result.failure(
            ErrorKind.validation_error, f"Unknown client fields: {', '.join(sorted(unknown))}"
        )
    changes = {key: value for key, value in fields.items() if value is not None}

    # Validate everything before touching the row
    if "name" in changes and not changes["name"].strip():
        return Result.failure(ErrorKind.validation_error, "Name is required")
    if "phone" in changes and not changes["phone"].strip():
        return Result.failure(ErrorKind.validation_error, "Phone is required")
    plan = _coerce_plan(changes.get("plan_type", client.plan_type))
    if plan is None:
        return Result.failure(
            ErrorKind.validation_error, f"Unknown plan type: {changes['plan_type']}"
        )
    start_date = _canonical_date(changes.get("start_date", client.start_date))
    if start_date is None:
        return Result.failure(ErrorKind.validation_error, "Invalid start date")

    if "name" in changes:
        client.name = changes["name"].strip()
    if "phone" in changes:
        client.phone = changes["phone"].strip()
        client.phone_key = normalize_phone(client.phone)
    if "email" in changes:
        client.email = changes["email"].strip() or None
    if "notes" in changes:
        client.notes = changes["notes"]
    if "plan_type" in changes or "start_date" in changes:
        client.plan_type = plan
        client.start_date = start_date
        client.end_date = calculate_end_date(start_date, plan)

    session.add(client)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return Result.failure(ErrorKind.validation_error, "A client with this phone already exists")
    session.refresh(client)
    return Result.success(client)


def renew(
    session: Session,
    client_id: int,
    plan_type,
    start_date: Optional[str] = None,
) -> Result[Client]:
    """Start a fresh membership window. The previous window is not kept."""
    return update_client(
        session,
        client_id,
        plan_type=plan_type,
        start_date=start_date or to_ymd(date_type.today()),
    )


@store_guard("delete_client")
def delete_client(session: Session, client_id: int) -> Result[None]:
    client = session.get(Client, client_id)
    if not client:
        return Result.failure(ErrorKind.not_found, "Client not found")
    # Bookings carry their own name and phone, they stay as history
    session.delete(client)
    session.commit()
    logger.info(f"Client {client_id} deleted")
    return Result.success(None)


def booking_history(session: Session, phone: str) -> List[Booking]:
    return bookings_for_phone(session, phone)


def partition_history(bookings: List[Booking], today: Optional[date_type] = None) -> BookingHistory:
    cutoff = to_ymd(today or date_type.today())
    past = [b for b in bookings if b.booking_date < cutoff]
    upcoming = [b for b in bookings if b.booking_date >= cutoff]
    return BookingHistory(past=past, upcoming=upcoming)
