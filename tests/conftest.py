import os

# Settings are read at import time; point them at an in-memory database first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret"
os.environ.pop("REDIS_URL", None)

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ctms.core.database import get_db
from ctms.core.security import get_password_hash
from ctms.main import app
from ctms.models.base import Base
from ctms.models.site import Site
from ctms.models.subject import Sex
from ctms.models.user import RoleName, User
from ctms.services.drug_unit_service import register_shipment
from ctms.services.seed_service import ensure_default_visits
from ctms.services.subject_service import enroll_subject

from tests.helpers import PASSWORD

# bcrypt is slow; hash once for every fixture user
PASSWORD_HASH = get_password_hash(PASSWORD)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# SQLite ignores foreign keys unless asked; match Postgres behaviour.
@event.listens_for(engine, "connect")
def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def visits(db):
    created = ensure_default_visits(db)
    db.commit()
    return created


@pytest.fixture
def site_a(db) -> Site:
    site = Site(site_number="1384", site_name="Memorial Hospital", pi_name="Dr. Smith", country="USA")
    db.add(site)
    db.commit()
    return site


@pytest.fixture
def site_b(db) -> Site:
    site = Site(site_number="1385", site_name="City Medical Center", pi_name="Dr. Johnson", country="USA")
    db.add(site)
    db.commit()
    return site


@pytest.fixture
def make_user(db):
    def _make(username: str, role: RoleName, site: Site | None = None, *, is_active: bool = True) -> User:
        user = User(
            username=username,
            password_hash=PASSWORD_HASH,
            email=f"{username}@ctms.local",
            role=role,
            site_id=site.id if site else None,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user) -> User:
    return make_user("admin", RoleName.ADMIN)


@pytest.fixture
def coordinator(make_user, site_a) -> User:
    return make_user("coordinator1384", RoleName.COORDINATOR, site_a)


@pytest.fixture
def monitor(make_user, site_a) -> User:
    return make_user("monitor1384", RoleName.MONITOR, site_a)


@pytest.fixture
def auditor(make_user, site_a) -> User:
    return make_user("auditor", RoleName.AUDITOR, site_a)


@pytest.fixture
def coordinator_b(make_user, site_b) -> User:
    return make_user("coordinator1385", RoleName.COORDINATOR, site_b)


@pytest.fixture
def make_subject(db, visits, admin):
    def _make(
        subject_number: str,
        site: Site,
        *,
        enrollment_date: date = date(2024, 1, 1),
    ):
        subject = enroll_subject(
            db,
            actor=admin,
            subject_number=subject_number,
            site_id=site.id,
            dob=date(1980, 5, 17),
            sex=Sex.FEMALE,
            consent_date=enrollment_date,
            enrollment_date=enrollment_date,
        )
        db.commit()
        return subject

    return _make


@pytest.fixture
def subject(make_subject, site_a):
    return make_subject("1384-001", site_a)


@pytest.fixture
def make_units(db, admin):
    def _make(site: Site, count: int = 3, *, expiration_date: date = date(2099, 12, 31), drug_code: str = "DRUG-A"):
        units = register_shipment(
            db,
            actor=admin,
            site_id=site.id,
            drug_code=drug_code,
            lot_number="LOT-12345",
            expiration_date=expiration_date,
            quantity_per_unit=30,
            unit_description="Bottle of 30 tablets",
            count=count,
        )
        db.commit()
        return units

    return _make


@pytest.fixture
def units(make_units, site_a):
    return make_units(site_a)
