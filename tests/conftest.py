import os

os.environ.setdefault("ADMIN_PASSWORD", "trainer-secret")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("SEED_DEFAULT_SLOTS", "false")

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from gymbook.db import create_db_and_tables, get_session, make_engine
from gymbook.main import app
from gymbook.models import Slot


def days_from_today(days: int) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


@pytest.fixture
def engine():
    test_engine = make_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_slot(session):
    def _make(name="Morning", time_start="7:00 AM", time_end="8:30 AM", max_capacity=3, **kwargs):
        slot = Slot(
            name=name,
            time_start=time_start,
            time_end=time_end,
            max_capacity=max_capacity,
            sort_order=kwargs.pop("sort_order", 1),
            **kwargs,
        )
        session.add(slot)
        session.commit()
        session.refresh(slot)
        return slot

    return _make


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client):
    response = client.post("/admin/login", data={"password": "trainer-secret"})
    assert response.status_code == 200
    return client
