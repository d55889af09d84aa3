import os
import tempfile
from typing import Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="roombook-logs-"))

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import RoleEnum  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.rooms.app import app as rooms_app, room_list_cache  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    room_list_cache.invalidate()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def rooms_client() -> Generator[TestClient, None, None]:
    with TestClient(rooms_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


def register(users_client: TestClient, username: str, name: str, role: RoleEnum = RoleEnum.USER) -> dict:
    response = users_client.post(
        "/users/register",
        json={
            "name": name,
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
            "role": role.value,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def auth_header(users_client: TestClient, username: str, password: str = PASSWORD) -> dict[str, str]:
    response = users_client.post(
        "/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(users_client) -> dict[str, str]:
    register(users_client, "admin", "Admin User", RoleEnum.ADMIN)
    return auth_header(users_client, "admin")


@pytest.fixture()
def alice_headers(users_client, admin_headers) -> dict[str, str]:
    register(users_client, "alice", "Alice")
    return auth_header(users_client, "alice")


@pytest.fixture()
def bob_headers(users_client, admin_headers) -> dict[str, str]:
    register(users_client, "bob", "Bob")
    return auth_header(users_client, "bob")


@pytest.fixture()
def room_id(rooms_client, admin_headers) -> int:
    response = rooms_client.post("/rooms", json={"name": "Conf A", "capacity": 10}, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]
