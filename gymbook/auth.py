from __future__ import annotations

import hmac
import time
from datetime import date as date_type

from fastapi import Depends, HTTPException, Request
from passlib.context import CryptContext
from sqlmodel import Session

from gymbook.db import get_session
from gymbook.models import Client, MembershipStatus
from gymbook.services.clients import membership_status
from gymbook.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ADMIN_SESSION_KEY = "admin_since"
CLIENT_SESSION_KEY = "client_id"


class AdminGateNotConfigured(Exception):
    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def check_admin_password(password: str) -> bool:
    if not password:
        return False
    if settings.admin_password_hash:
        return pwd_context.verify(password, settings.admin_password_hash)
    if settings.admin_password:
        return hmac.compare_digest(password.encode(), settings.admin_password.encode())
    raise AdminGateNotConfigured("ADMIN_PASSWORD or ADMIN_PASSWORD_HASH must be set")


def start_admin_session(request: Request) -> None:
    request.session[ADMIN_SESSION_KEY] = int(time.time())


def end_session(request: Request) -> None:
    request.session.clear()


def require_admin(request: Request) -> int:
    started = request.session.get(ADMIN_SESSION_KEY)
    if not started:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if time.time() - int(started) > settings.session_max_age:
        request.session.pop(ADMIN_SESSION_KEY, None)
        raise HTTPException(status_code=401, detail="Session expired")
    return int(started)


def start_client_session(request: Request, client: Client) -> None:
    request.session[CLIENT_SESSION_KEY] = client.id


def get_verified_client(
    request: Request,
    session: Session = Depends(get_session),
) -> Client:
    client_id = request.session.get(CLIENT_SESSION_KEY)
    if not client_id:
        raise HTTPException(status_code=401, detail="Verify your phone number first")
    client = session.get(Client, int(client_id))
    if not client:
        request.session.pop(CLIENT_SESSION_KEY, None)
        raise HTTPException(status_code=401, detail="Verify your phone number first")
    return client


def require_active_member(client: Client = Depends(get_verified_client)) -> Client:
    # Re-checked on every request; a membership can lapse mid-session
    if membership_status(client, today=date_type.today()) == MembershipStatus.expired:
        raise HTTPException(status_code=403, detail="Membership expired")
    return client


def main() -> None:
    """Print a bcrypt hash for ADMIN_PASSWORD_HASH."""
    from getpass import getpass

    print(hash_password(getpass("Admin password: ")))
