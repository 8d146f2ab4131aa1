"""
Pytest configuration and fixtures.

Every test gets its own SQLite file. The schema and roster are written with
a plain synchronous engine so seeding never shares an event loop with the
app under test.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List

import jwt
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from petitionpay.auth import issue_token
from petitionpay.config import Settings
from petitionpay.infra.sql import make_async_engine
from petitionpay.model.orm import Admin, Base, Petitioner
from petitionpay.model.petitioners import PetitionerStore
from petitionpay.server import create_app


JWT_SECRET = "test-jwt-secret-with-enough-bytes-for-hs256"

ROSTER: List[Dict[str, Any]] = [
    {"id": "p-1", "name": "Anita Das", "email": "anita@example.com",
     "department": "Health", "petitioner_number": 101, "petitioner_group": 1},
    {"id": "p-2", "name": "Bikash Roy", "email": "bikash@example.com",
     "department": "Education", "petitioner_number": 102,
     "petitioner_group": 2},
    {"id": "p-3", "name": "Chandana Pal", "email": "chandana@example.com",
     "department": "Revenue", "petitioner_number": 103,
     "petitioner_group": 3},
    {"id": "p-99", "name": "Dipak Ghosh", "email": "dipak@example.com",
     "department": "Transport", "petitioner_number": 199,
     "petitioner_group": 99},
    {"id": "p-50", "name": "Anirban_Sen", "email": "anirban@example.com",
     "department": "Health", "petitioner_number": 50, "petitioner_group": 1},
]
ADMINS = [("Asha Rao", "CODE-1")]


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: List[Dict[str, str]] = []

    def send(self, to: str, subject: str, html: str) -> None:
        self.sent.append({"to": to, "subject": subject, "html": html})


class FailingMailer:
    def __init__(self) -> None:
        self.attempts = 0

    def send(self, to: str, subject: str, html: str) -> None:
        self.attempts += 1
        raise ConnectionRefusedError("smtp.gmail.com:465 refused")


@pytest.fixture
def db_path(tmp_path) -> str:
    path = tmp_path / "petitionpay.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.connect() as conn:
        # persistent; spares concurrent app connections the switch
        conn.exec_driver_sql("PRAGMA journal_mode=WAL")
    Base.metadata.create_all(engine)
    with Session(engine) as s, s.begin():
        for row in ROSTER:
            s.add(Petitioner(**row, payment_confirmed=False))
        for name, code in ADMINS:
            s.add(Admin(name=name, admin_code=code))
    engine.dispose()
    return str(path)


@pytest.fixture
def read_petitioner(db_path):
    def _read(pid: str) -> Dict[str, Any] | None:
        engine = create_engine(f"sqlite:///{db_path}")
        try:
            with engine.connect() as conn:
                row = conn.execute(
                    select(Petitioner.__table__)
                    .where(Petitioner.id == pid)
                ).mappings().first()
        finally:
            engine.dispose()
        return dict(row) if row else None
    return _read


@pytest.fixture
def settings(db_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{db_path}",
        jwt_secret=JWT_SECRET,
        mail_user="receipts@example.com",
        mail_app_password="app-password",
        log_level="WARNING",
    )


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def client(settings: Settings, mailer) -> Iterator[TestClient]:
    app = create_app(settings, mailer=mailer)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def token() -> str:
    return issue_token("Asha Rao", "CODE-1", JWT_SECRET)


@pytest.fixture
def auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def expired_token() -> str:
    past = datetime.now(timezone.utc) - timedelta(hours=9)
    return jwt.encode(
        {"adminName": "Asha Rao", "adminCode": "CODE-1",
         "iat": past, "exp": past + timedelta(hours=8)},
        JWT_SECRET,
        algorithm="HS256",
    )


@pytest_asyncio.fixture
async def store_factory(db_path):
    """Hand out a fresh PetitionerStore (own session) per call."""
    engine, SessionAsync, gated = make_async_engine(f"sqlite:///{db_path}")
    sessions = []

    async def _make() -> PetitionerStore:
        session = SessionAsync()
        sessions.append(session)
        return PetitionerStore(db=session, gated=gated)

    yield _make

    for s in sessions:
        await s.close()
    await engine.dispose()
