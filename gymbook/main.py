from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date as date_type
from datetime import datetime
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.middleware.sessions import SessionMiddleware

from gymbook.auth import (
    AdminGateNotConfigured,
    check_admin_password,
    end_session,
    get_verified_client,
    require_active_member,
    require_admin,
    start_admin_session,
    start_client_session,
)
from gymbook.db import create_db_and_tables, engine, get_session
from gymbook.errors import STORE_UNAVAILABLE_MESSAGE, ErrorKind, Result
from gymbook.logger import logger, setup_logging
from gymbook.models import Booking, Client, MembershipStatus, PlanType, Slot
from gymbook.services import blackouts as blackout_service
from gymbook.services import bookings as booking_service
from gymbook.services import clients as client_service
from gymbook.services import exports
from gymbook.services import slots as slot_service
from gymbook.services.availability import availability
from gymbook.services.notifications import outbox
from gymbook.settings import settings
from gymbook.time_utils import canonical_ymd, days_remaining, format_slot_time, next_dates

setup_logging()

# Upper bound for the public date picker window
MAX_WINDOW_DAYS = 60

ERROR_STATUS = {
    ErrorKind.not_found: 404,
    ErrorKind.slot_unavailable: 409,
    ErrorKind.slot_full: 409,
    ErrorKind.validation_error: 400,
    ErrorKind.store_unavailable: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting gym booking service")
    create_db_and_tables()
    if settings.seed_default_slots:
        with Session(engine) as session:
            slot_service.ensure_default_slots(session, capacity=settings.default_capacity)
    yield
    logger.info("Shutting down gym booking service")


app = FastAPI(title="Gym Slot Booking", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    same_site="lax",
    https_only=settings.cookie_secure,
    max_age=settings.session_max_age,
)


@app.exception_handler(SQLAlchemyError)
async def store_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Store failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": {"error": ErrorKind.store_unavailable.value, "message": STORE_UNAVAILABLE_MESSAGE}},
    )


@app.exception_handler(AdminGateNotConfigured)
async def admin_gate_exception_handler(request: Request, exc: AdminGateNotConfigured):
    logger.error(f"Admin gate misconfigured: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Server configuration error"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


def unwrap(result: Result):
    if not result.ok:
        raise HTTPException(
            status_code=ERROR_STATUS[result.kind],
            detail={"error": result.kind.value, "message": result.error.message},
        )
    return result.value


def require_date(value: str) -> str:
    try:
        return canonical_ymd(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format")


def optional_date(value: Optional[str]) -> Optional[str]:
    return require_date(value) if value else None


def slot_to_dict(slot: Slot) -> dict:
    return {
        "id": slot.id,
        "name": slot.name,
        "time_start": slot.time_start,
        "time_end": slot.time_end,
        "time": format_slot_time(slot.time_start, slot.time_end),
        "max_capacity": slot.max_capacity,
        "is_active": slot.is_active,
        "sort_order": slot.sort_order,
    }


def booking_to_dict(booking: Booking, slot: Optional[Slot] = None) -> dict:
    return {
        "id": booking.id,
        "booking_date": booking.booking_date,
        "day": booking.day,
        "slot_id": booking.slot_id,
        "slot_name": slot.name if slot else None,
        "client_name": booking.client_name,
        "client_phone": booking.client_phone,
        "client_email": booking.client_email,
        "booked_at": booking.booked_at.isoformat() if booking.booked_at else None,
    }


def client_to_dict(client: Client, status: Optional[MembershipStatus] = None) -> dict:
    return {
        "id": client.id,
        "name": client.name,
        "phone": client.phone,
        "email": client.email,
        "plan_type": client.plan_type.value,
        "start_date": client.start_date,
        "end_date": client.end_date,
        "notes": client.notes,
        "status": (status or client_service.membership_status(client)).value,
        "days_remaining": days_remaining(client.end_date),
    }


def blackout_to_dict(entry) -> dict:
    return {
        "id": entry.id,
        "blocked_date": entry.blocked_date,
        "slot_id": entry.slot_id,
        "reason": entry.reason,
    }


class BookingRequest(BaseModel):
    date: str
    slot_id: int
    name: str
    phone: str
    email: Optional[str] = None


class MemberBookingRequest(BaseModel):
    date: str
    slot_id: int


class PhoneRequest(BaseModel):
    phone: str


class SlotCreate(BaseModel):
    name: str
    time_start: str
    time_end: str
    max_capacity: int = Field(default_factory=lambda: settings.default_capacity)


class SlotUpdate(BaseModel):
    name: Optional[str] = None
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    max_capacity: Optional[int] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class SlotOrder(BaseModel):
    slot_ids: List[int]


class BlackoutCreate(BaseModel):
    date: str
    slot_id: Optional[int] = None
    reason: Optional[str] = None


class ClientCreate(BaseModel):
    name: str
    phone: str
    plan_type: PlanType
    start_date: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


class ClientUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    plan_type: Optional[PlanType] = None
    start_date: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


class RenewRequest(BaseModel):
    plan_type: PlanType
    start_date: Optional[str] = None


def _book(
    session: Session,
    background_tasks: BackgroundTasks,
    booking_date: str,
    slot_id: int,
    name: str,
    phone: str,
    email: Optional[str],
) -> dict:
    result = booking_service.create_booking(
        session=session,
        booking_date=booking_date,
        slot_id=slot_id,
        client_name=name,
        client_phone=phone,
        client_email=email,
        outbox=outbox,
        site_url=settings.site_url,
    )
    booking = unwrap(result)
    if outbox.pending():
        background_tasks.add_task(outbox.dispatch)
    slot = slot_service.get_slot(session, booking.slot_id)
    payload = booking_to_dict(booking, slot)
    payload["cancel_token"] = booking.cancel_token
    return payload


@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now().isoformat()}


@app.get("/api/dates")
def api_dates(days: Optional[int] = Query(None, ge=1, le=MAX_WINDOW_DAYS)):
    window = days or settings.booking_window_days
    return [asdict(option) for option in next_dates(window)]


@app.get("/api/slots")
def api_slots(session: Session = Depends(get_session)):
    return [slot_to_dict(s) for s in slot_service.list_active_slots(session)]


@app.get("/api/availability")
def api_availability(date: str, session: Session = Depends(get_session)):
    day = availability(session, require_date(date))
    return {
        "date": day.date,
        "day_blocked": day.day_blocked,
        "reason": day.reason,
        "slots": [
            {
                **slot_to_dict(item.slot),
                "booked": item.booked,
                "available": item.available,
                "blocked": item.blocked,
            }
            for item in day.slots
        ],
    }


@app.post("/api/bookings", status_code=201)
def api_create_booking(
    req: BookingRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    return _book(session, background_tasks, req.date, req.slot_id, req.name, req.phone, req.email)


@app.post("/api/bookings/cancel/{token}")
def api_cancel_booking(token: str, session: Session = Depends(get_session)):
    unwrap(booking_service.cancel_by_token(session, token))
    return {"success": True}


@app.post("/api/members/verify")
def api_verify_member(
    req: PhoneRequest,
    request: Request,
    session: Session = Depends(get_session),
):
    verification = unwrap(client_service.verify_by_phone(session, req.phone))
    if verification.expired:
        return JSONResponse(
            status_code=403,
            content={
                "verified": False,
                "expired": True,
                "days_expired": verification.days_expired,
                "client": client_to_dict(verification.client, verification.status),
            },
        )
    start_client_session(request, verification.client)
    return {
        "verified": True,
        "expired": False,
        "client": client_to_dict(verification.client, verification.status),
    }


@app.get("/api/members/me")
def api_member_profile(
    client: Client = Depends(get_verified_client),
    session: Session = Depends(get_session),
):
    slots = {s.id: s for s in slot_service.list_all_slots(session)}
    history = client_service.partition_history(client_service.booking_history(session, client.phone))
    return {
        "client": client_to_dict(client),
        "upcoming": [booking_to_dict(b, slots.get(b.slot_id)) for b in history.upcoming],
        "past": [booking_to_dict(b, slots.get(b.slot_id)) for b in history.past],
    }


@app.post("/api/members/book", status_code=201)
def api_member_book(
    req: MemberBookingRequest,
    background_tasks: BackgroundTasks,
    client: Client = Depends(require_active_member),
    session: Session = Depends(get_session),
):
    return _book(
        session, background_tasks, req.date, req.slot_id, client.name, client.phone, client.email
    )


@app.post("/api/members/logout")
def api_member_logout(request: Request):
    end_session(request)
    return {"success": True}


@app.post("/admin/login")
def admin_login(request: Request, password: str = Form("")):
    if not password:
        raise HTTPException(status_code=400, detail="Password required")
    if not check_admin_password(password):
        logger.warning("Rejected admin login attempt")
        raise HTTPException(status_code=401, detail="Invalid password")
    start_admin_session(request)
    return {"success": True}


@app.post("/admin/logout")
def admin_logout(request: Request):
    end_session(request)
    return {"success": True}


@app.get("/admin/bookings")
def admin_bookings(
    date: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    slots = {s.id: s for s in slot_service.list_all_slots(session)}
    rows = booking_service.list_bookings(
        session,
        booking_date=optional_date(date),
        start=optional_date(start),
        end=optional_date(end),
    )
    return [booking_to_dict(b, slots.get(b.slot_id)) for b in rows]


@app.delete("/admin/bookings/{booking_id}")
def admin_delete_booking(
    booking_id: int,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    unwrap(booking_service.delete_booking(session, booking_id))
    return {"success": True}


@app.get("/admin/slots")
def admin_slots(admin: int = Depends(require_admin), session: Session = Depends(get_session)):
    return [slot_to_dict(s) for s in slot_service.list_all_slots(session)]


@app.post("/admin/slots", status_code=201)
def admin_create_slot(
    req: SlotCreate,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    slot = unwrap(
        slot_service.create_slot(
            session,
            name=req.name,
            time_start=req.time_start,
            time_end=req.time_end,
            max_capacity=req.max_capacity,
        )
    )
    return slot_to_dict(slot)


@app.patch("/admin/slots/{slot_id}")
def admin_update_slot(
    slot_id: int,
    req: SlotUpdate,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    slot = unwrap(slot_service.update_slot(session, slot_id, **req.model_dump(exclude_unset=True)))
    return slot_to_dict(slot)


@app.post("/admin/slots/{slot_id}/toggle")
def admin_toggle_slot(
    slot_id: int,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return slot_to_dict(unwrap(slot_service.toggle_slot(session, slot_id)))


@app.post("/admin/slots/reorder")
def admin_reorder_slots(
    req: SlotOrder,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return [slot_to_dict(s) for s in unwrap(slot_service.reorder_slots(session, req.slot_ids))]


@app.delete("/admin/slots/{slot_id}")
def admin_delete_slot(
    slot_id: int,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    unwrap(slot_service.delete_slot(session, slot_id))
    return {"success": True}


@app.get("/admin/blackouts")
def admin_blackouts(admin: int = Depends(require_admin), session: Session = Depends(get_session)):
    return [blackout_to_dict(e) for e in blackout_service.list_blackouts(session)]


@app.post("/admin/blackouts", status_code=201)
def admin_add_blackout(
    req: BlackoutCreate,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    entry = unwrap(
        blackout_service.add_blackout(
            session, blocked_date=req.date, slot_id=req.slot_id, reason=req.reason
        )
    )
    return blackout_to_dict(entry)


@app.delete("/admin/blackouts/{blackout_id}")
def admin_remove_blackout(
    blackout_id: int,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    unwrap(blackout_service.remove_blackout(session, blackout_id))
    return {"success": True}


@app.get("/admin/clients")
def admin_clients(
    status: Optional[MembershipStatus] = None,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    rows = client_service.list_clients(session, status=status)
    return [client_to_dict(client, client_status) for client, client_status in rows]


@app.post("/admin/clients", status_code=201)
def admin_create_client(
    req: ClientCreate,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    client = unwrap(
        client_service.create_client(
            session,
            name=req.name,
            phone=req.phone,
            plan_type=req.plan_type,
            start_date=req.start_date,
            email=req.email,
            notes=req.notes,
        )
    )
    return client_to_dict(client)


@app.patch("/admin/clients/{client_id}")
def admin_update_client(
    client_id: int,
    req: ClientUpdate,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    client = unwrap(
        client_service.update_client(session, client_id, **req.model_dump(exclude_unset=True))
    )
    return client_to_dict(client)


@app.post("/admin/clients/{client_id}/renew")
def admin_renew_client(
    client_id: int,
    req: RenewRequest,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    client = unwrap(
        client_service.renew(session, client_id, plan_type=req.plan_type, start_date=req.start_date)
    )
    return client_to_dict(client)


@app.delete("/admin/clients/{client_id}")
def admin_delete_client(
    client_id: int,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    unwrap(client_service.delete_client(session, client_id))
    return {"success": True}


@app.get("/admin/clients/{client_id}/history")
def admin_client_history(
    client_id: int,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    client = client_service.get_client(session, client_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    slots = {s.id: s for s in slot_service.list_all_slots(session)}
    history = client_service.partition_history(client_service.booking_history(session, client.phone))
    return {
        "client": client_to_dict(client),
        "upcoming": [booking_to_dict(b, slots.get(b.slot_id)) for b in history.upcoming],
        "past": [booking_to_dict(b, slots.get(b.slot_id)) for b in history.past],
    }


def _download(content: str, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/admin/exports/bookings.csv")
def admin_export_bookings_csv(
    start: Optional[str] = None,
    end: Optional[str] = None,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    slots = {s.id: s for s in slot_service.list_all_slots(session)}
    rows = booking_service.list_bookings(session, start=optional_date(start), end=optional_date(end))
    return _download(
        exports.bookings_csv(rows, slots), "text/csv", exports.export_filename("bookings", "csv")
    )


@app.get("/admin/exports/bookings.ics")
def admin_export_bookings_ics(
    start: Optional[str] = None,
    end: Optional[str] = None,
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    slots = {s.id: s for s in slot_service.list_all_slots(session)}
    rows = booking_service.list_bookings(
        session,
        start=optional_date(start) or date_type.today().isoformat(),
        end=optional_date(end),
    )
    return _download(
        exports.bookings_ics(rows, slots), "text/calendar", exports.export_filename("bookings", "ics")
    )


@app.get("/admin/exports/clients.csv")
def admin_export_clients_csv(
    admin: int = Depends(require_admin),
    session: Session = Depends(get_session),
):
    rows = client_service.list_clients(session)
    return _download(exports.clients_csv(rows), "text/csv", exports.export_filename("clients", "csv"))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("gymbook.main:app", host="0.0.0.0", port=8000, reload=True)
