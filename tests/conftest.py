import os
import sys
from datetime import UTC, datetime, time
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

from app.api.deps import get_now
from app.core.rate_limiter import rate_limiter
from app.core.security import StaffRole, create_access_token
from app.db.base import Base
from app.db.models import Service, Specialist, SpecialistService, WorkingHours
from app.db.session import get_db
from app.main import app

TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Monday 2026-11-02, 08:00 in Moscow (UTC+3)
FIXED_NOW = datetime(2026, 11, 2, 5, 0, tzinfo=UTC)
MONDAY = FIXED_NOW.date()


def seed_clinic(db: Session) -> SimpleNamespace:
    anna = Specialist(
        display_name="Anna Petrova",
        title="Stylist",
        slot_duration_min=30,
        buffer_min_default=15,
        min_lead_min=60,
        tzid="Europe/Moscow",
        requires_confirmation=False,
    )
    boris = Specialist(
        display_name="Boris Ivanov",
        title="Barber",
        slot_duration_min=30,
        buffer_min_default=10,
        min_lead_min=60,
        tzid="Europe/Moscow",
        requires_confirmation=True,
    )
    anna.working_hours = [WorkingHours(weekday=day, opens_at=time(9), closes_at=time(18)) for day in range(5)]
    boris.working_hours = [WorkingHours(weekday=0, opens_at=time(10), closes_at=time(16))]

    haircut = Service(title="Haircut", category="hair", duration_min=30, price_cents=150000, currency="RUB")
    coloring = Service(
        title="Coloring",
        category="hair",
        duration_min=45,
        buffer_min_override=30,
        price_cents=400000,
        currency="RUB",
    )
    manicure = Service(
        title="Manicure",
        category="nails",
        duration_min=60,
        price_cents=200000,
        currency="RUB",
        requires_confirmation=True,
    )
    massage = Service(title="Massage", category="spa", duration_min=60, price_cents=9000, currency="USD")
    db.add_all([anna, boris, haircut, coloring, manicure, massage])
    db.flush()

    db.add_all(
        [
            SpecialistService(specialist_id=anna.id, service_id=haircut.id),
            SpecialistService(specialist_id=anna.id, service_id=coloring.id),
            SpecialistService(specialist_id=anna.id, service_id=manicure.id),
            SpecialistService(specialist_id=anna.id, service_id=massage.id),
            SpecialistService(specialist_id=boris.id, service_id=haircut.id),
        ]
    )
    db.commit()
    return SimpleNamespace(
        anna=anna.id,
        boris=boris.id,
        haircut=haircut.id,
        coloring=coloring.id,
        manicure=manicure.id,
        massage=massage.id,
    )


@pytest.fixture(autouse=True)
def reset_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    rate_limiter.reset()


@pytest.fixture()
def db_session() -> Session:
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def clinic(db_session: Session) -> SimpleNamespace:
    return seed_clinic(db_session)


@pytest.fixture()
def staff_headers() -> dict[str, str]:
    token = create_access_token(subject="frontdesk", role=StaffRole.ADMIN)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def client() -> TestClient:
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_now] = lambda: FIXED_NOW
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture()
def clinic_seeder():
    return seed_clinic
