import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("EVENT_PUBLISHING_ENABLED", "false")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.auth import get_password_hash  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import RoleEnum, User  # noqa: E402
from services.schedules.app import app as schedules_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402
from services.wards.app import app as wards_app  # noqa: E402
from services.wards.app import ward_summary_cache  # noqa: E402


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    ward_summary_cache.clear()
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
def make_user(db_session):
    """Insert a user directly; returns the persisted row."""

    def _make(username: str, role: RoleEnum = RoleEnum.PATIENT, **fields) -> User:
        user = User(
            name=fields.pop("name", username.title()),
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            role=role,
            hashed_password=get_password_hash(fields.pop("password", "Passw0rd!")),
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def wards_client() -> Generator[TestClient, None, None]:
    with TestClient(wards_app) as client:
        yield client


@pytest.fixture()
def schedules_client() -> Generator[TestClient, None, None]:
    with TestClient(schedules_app) as client:
        yield client
