"""
Pytest configuration and fixtures.

API tests run against an in-memory SQLite database shared across threads.
Object storage and SMS are replaced with in-process fakes.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from khareedo import models  # noqa: F401
from khareedo.core.database import Base, get_db
from khareedo.core.security import (
    ROLE_AGENT,
    ROLE_PROJECT_MANAGER,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    create_access_token,
    hash_password,
)
from khareedo.main import app
from khareedo.models.developer import Developer
from khareedo.models.property import Property
from khareedo.models.user import User
from khareedo.services.roles import find_role, seed_roles
from khareedo.services.sms import SmsResult, TwilioSmsClient, get_sms_client
from khareedo.services.storage import get_storage


class FakeStorage:
    """Records uploads and hands back deterministic URLs."""

    def __init__(self):
        self.uploads = []

    def upload(self, data, content_type, folder, filename=None):
        url = f"https://test-bucket.s3.ap-south-1.amazonaws.com/{folder}/{len(self.uploads)}_{filename}"
        self.uploads.append({"folder": folder, "filename": filename, "size": len(data), "url": url})
        return url


class FakeSms(TwilioSmsClient):
    """Captures outgoing messages instead of calling Twilio."""

    def __init__(self):
        super().__init__(account_sid="ACtest", auth_token="token", from_number="+15005550006")
        self.sent = []
        self.fail = False

    async def send_sms(self, to, body):
        if self.fail:
            return SmsResult(success=False, error="provider down")
        self.sent.append({"to": to, "body": body})
        return SmsResult(success=True, message_id=f"SM{len(self.sent)}", status="queued")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    seed_roles(session)
    yield session
    session.close()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def client(db, storage, sms):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_sms_client] = lambda: sms
    # Not used as a context manager: the lifespan would connect to the configured database
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role_name=ROLE_USER, name="Test User", email=None, phone=None, password=None):
        counter["n"] += 1
        role = find_role(db, role_name)
        user = User(
            email=email or f"user{counter['n']}@acme-realty.in",
            phone_number=phone or f"98765{counter['n']:05d}",
            country_code="+91",
            role_id=role.id,
            password_hash=hash_password(password) if password else None,
        )
        first, _, last = name.partition(" ")
        user.set_name(first, last)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token(user.id, user.email, user.role_id, user.role_name)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def buyer(make_user):
    return make_user(ROLE_USER, name="Asha Verma")


@pytest.fixture
def super_admin(make_user):
    return make_user(ROLE_SUPER_ADMIN, name="Root Admin", email="root@acme-realty.in", password="Admin@123")


@pytest.fixture
def project_manager(make_user):
    return make_user(ROLE_PROJECT_MANAGER, name="Priya Shah", email="priya@acme-realty.in")


@pytest.fixture
def agent(make_user):
    return make_user(ROLE_AGENT, name="Ravi Kumar", email="ravi@acme-realty.in")


@pytest.fixture
def developer(db):
    dev = Developer(
        developer_name="Skyline Builders",
        city="Pune",
        logo="https://test-bucket.s3.ap-south-1.amazonaws.com/developers/logos/skyline.png",
        sourcing_manager={"name": "Amit", "mobile": "9000000000"},
    )
    db.add(dev)
    db.commit()
    db.refresh(dev)
    return dev


@pytest.fixture
def make_property(db, developer):
    def _make(**overrides):
        fields = {
            "project_name": "Green Meadows",
            "developer_id": developer.id,
            "location": "Baner, Pune, Maharashtra",
            "possession_status": "Under Construction",
            "developer_price": 5_000_000,
            "offer_price": 4_000_000,
            "min_group_members": 3,
            "configurations": [
                {
                    "unitType": "2 BHK",
                    "subConfigurations": [
                        {"carpetArea": "950 sqft", "price": 4_500_000, "availabilityStatus": "Available"},
                        {"carpetArea": "1100 sqft", "price": 5_200_000, "availabilityStatus": "Sold"},
                    ],
                },
            ],
            "images": [
                {"url": "https://img/2.jpg", "isCover": False, "order": 2},
                {"url": "https://img/1.jpg", "isCover": True, "order": 1},
            ],
            "is_status": True,
        }
        fields.update(overrides)
        prop = Property(**fields)
        db.add(prop)
        db.commit()
        db.refresh(prop)
        return prop

    return _make
