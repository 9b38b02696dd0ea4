"""
Test configuration for the estimate tracker backend.
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTAKE_API_KEY", "test-intake-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from estimate_tracker.database import Base, get_db
from estimate_tracker.main import app
from estimate_tracker.auth.models import UserRole
from estimate_tracker.auth.schemas import AccountCreate
from estimate_tracker.auth.service import create_account
from estimate_tracker.core.feed import ChangeFeed
from estimate_tracker.core.middleware import SlidingWindowRateLimiter
from estimate_tracker.core.records import SqlRecordStore
from estimate_tracker.core.security import create_access_token
from estimate_tracker.dependencies import (
    get_feed, get_object_store, get_patient_store, get_rate_limiter, get_session_registry
)
from estimate_tracker.exceptions import StoreError, StorageError
from estimate_tracker.patients.models import PatientRecord
from estimate_tracker.patients.state import PatientState, SessionRegistry

# Test database URL
TEST_DATABASE_URL = "sqlite:///./test.db"

# Create test database engine
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

OWNER_ID = "owner-1"


class InMemoryObjectStore:
    """
    Object store kept in a dict. Operations named in ``fail_on`` raise
    StorageError.
    """
    def __init__(self, public_buckets=()):
        self.buckets = {}
        self.public_buckets = set(public_buckets)
        self.fail_on = set()
        self.removed = []

    def _check(self, operation):
        if operation in self.fail_on:
            raise StorageError(f"{operation} failed")

    def objects(self, bucket):
        return self.buckets.setdefault(bucket, {})

    async def upload(self, bucket, key, data, content_type="application/octet-stream", upsert=False):
        self._check("upload")
        if key in self.objects(bucket) and not upsert:
            raise StorageError(f"Object {key} already exists in {bucket}")
        self.objects(bucket)[key] = data
        return key

    async def download(self, bucket, key):
        self._check("download")
        if key not in self.objects(bucket):
            raise StorageError(f"Object {key} not found")
        return self.objects(bucket)[key]

    async def remove(self, bucket, keys):
        self._check("remove")
        for key in keys:
            self.objects(bucket).pop(key, None)
            self.removed.append((bucket, key))

    async def create_signed_url(self, bucket, key, ttl_seconds):
        self._check("sign")
        return f"https://files.example.com/{bucket}/{key}?expires_in={ttl_seconds}"

    def get_public_url(self, bucket, key):
        return f"https://files.example.com/public/{bucket}/{key}"

    async def list(self, bucket):
        self._check("list")
        return [
            {"name": name, "size": len(data), "created_at": None}
            for name, data in sorted(self.objects(bucket).items())
        ]


class FlakyRecordStore(SqlRecordStore):
    """Record store whose operations named in ``fail_on`` raise StoreError."""
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on = set()
        self.calls = []

    def _check(self, operation):
        self.calls.append(operation)
        if operation in self.fail_on:
            raise StoreError(f"{operation} failed")

    async def select(self, *args, **kwargs):
        self._check("select")
        return await super().select(*args, **kwargs)

    async def insert(self, *args, **kwargs):
        self._check("insert")
        return await super().insert(*args, **kwargs)

    async def update(self, *args, **kwargs):
        self._check("update")
        return await super().update(*args, **kwargs)

    async def delete(self, *args, **kwargs):
        self._check("delete")
        return await super().delete(*args, **kwargs)


@pytest.fixture(scope="function")
def db():
    """
    Create a fresh database for each test.
    """
    # Create tables
    Base.metadata.create_all(bind=engine)

    # Create session
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    # Drop tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def object_store():
    return InMemoryObjectStore(public_buckets=["practice_assets"])


@pytest.fixture
def patient_store(db, feed):
    return FlakyRecordStore(PatientRecord, TestingSessionLocal, feed)


@pytest.fixture
def registry(patient_store, object_store, feed):
    return SessionRegistry(
        lambda owner_id: PatientState(owner_id, records=patient_store, objects=object_store, feed=feed)
    )


@pytest.fixture
def state(patient_store, object_store, feed):
    """A started PatientState for OWNER_ID."""
    patient_state = PatientState(OWNER_ID, records=patient_store, objects=object_store, feed=feed)
    patient_state.start()
    yield patient_state
    patient_state.stop()


@pytest.fixture
def rate_limiter():
    return SlidingWindowRateLimiter(limit=10, window_seconds=60)


@pytest.fixture(scope="function")
def client(db, feed, patient_store, object_store, registry, rate_limiter):
    """
    Create a test client with a test database session and in-memory services.
    """
    def override_get_db():
        try:
            yield db
        finally:
            pass

    # Override the service dependencies
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_feed] = lambda: feed
    app.dependency_overrides[get_patient_store] = lambda: patient_store
    app.dependency_overrides[get_object_store] = lambda: object_store
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_session_registry] = lambda: registry

    # Create test client
    with TestClient(app) as client:
        yield client

    # Remove dependency overrides
    registry.close_all()
    app.dependency_overrides = {}


def make_account(db, email, password="secret123", role=UserRole.USER, display_name=None):
    return create_account(db, AccountCreate(email=email, password=password, role=role, display_name=display_name))


def auth_headers(account):
    token = create_access_token({"sub": account.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(db):
    return make_account(db, "admin@example.com", role=UserRole.ADMIN, display_name="Dr. Admin")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def user(db):
    return make_account(db, "assistant@example.com")


@pytest.fixture
def user_headers(user):
    return auth_headers(user)
