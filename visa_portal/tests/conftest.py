"""
Shared fixtures for the case service tests.

Each test gets a fresh SQLite file database, a set of seeded users (one per
role plus spares), and an in-memory storage double.
"""

import os
from pathlib import Path

import pytest

# Add parent to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from visa_portal.auth import AuthContext
from visa_portal.db.models import User, UserRole
from visa_portal.errors import StorageError
from visa_portal.storage import StoredFile


REQUIRED_TYPES = [
    "passport", "visas", "work_permits", "certificates", "prior_applications", "tax_financials",
]


class FakeStorage:
    """In-memory FileStorage double"""

    provider = "memory"

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_store = False
        self.fail_delete = False
        self.fail_sign = False
        self._counter = 0

    def store(self, data, folder, file_name, content_type):
        if self.fail_store:
            raise StorageError(f"Failed to store {file_name}")
        self._counter += 1
        key = f"{folder}/{self._counter}-{file_name}"
        self.objects[key] = data
        return StoredFile(id=key, url=f"mem://{key}", size_bytes=len(data))

    def delete(self, storage_id):
        if self.fail_delete:
            raise StorageError(f"Failed to delete {storage_id}")
        self.deleted.append(storage_id)
        self.objects.pop(storage_id, None)

    def signed_url(self, storage_id, ttl_seconds):
        if self.fail_sign:
            raise StorageError(f"Failed to sign URL for {storage_id}")
        return f"https://signed.test/{storage_id}?ttl={ttl_seconds}"


class RecordingRunner:
    """Rule runner double that records every event it receives"""

    def __init__(self, error=None):
        self.events = []
        self.error = error

    def run(self, event_type, case, context):
        self.events.append((event_type.value, case.id, dict(context)))
        if self.error is not None:
            raise self.error


@pytest.fixture
def sqlalchemy_db(tmp_path):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    from visa_portal.db.session import reset_engine, init_db

    old_db_url = os.environ.get("DATABASE_URL")
    db_path = tmp_path / "visa_portal_test.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    reset_engine()
    init_db()

    yield

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


@pytest.fixture
def db(sqlalchemy_db):
    from visa_portal.db.session import SessionLocal, get_engine

    get_engine()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    """One active user per role, plus spares and an inactive account"""
    seed = {
        "client": ("client@example.com", "Ana Client", UserRole.CLIENT, True),
        "client2": ("client2@example.com", "Ben Client", UserRole.CLIENT, True),
        "coordinator": ("coord@example.com", "Cara Coordinator", UserRole.COORDINATOR, True),
        "coordinator2": ("coord2@example.com", "Dan Coordinator", UserRole.COORDINATOR, True),
        "manager": ("manager@example.com", "Eve Manager", UserRole.MANAGER, True),
        "manager2": ("manager2@example.com", "Finn Manager", UserRole.MANAGER, True),
        "admin": ("admin@example.com", "Gil Admin", UserRole.ADMIN, True),
        "inactive": ("inactive@example.com", "Hal Inactive", UserRole.COORDINATOR, False),
    }
    created = {}
    for key, (email, name, role, active) in seed.items():
        created[key] = User(email=email, name=name, role=role, is_active=active)
    db.add_all(created.values())
    db.commit()
    return created


@pytest.fixture
def auth(users):
    """AuthContext per seeded user key"""
    return {key: AuthContext.from_user(user) for key, user in users.items()}


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def make_case(db, auth):
    """Create a case through the case service for a client key"""
    from visa_portal.cases import create_case

    def _make(client_key="client", **payload):
        payload.setdefault("visaType", "work")
        return create_case(db, auth[client_key], payload)

    return _make


@pytest.fixture
def upload(db, storage):
    """Upload a small PDF of the given type as the given principal"""
    from visa_portal.documents import upload_document

    def _upload(principal, case, document_type, data=b"%PDF-1.4 test", file_name=None):
        return upload_document(
            db,
            principal,
            case.id,
            document_type,
            file_name or f"{document_type}.pdf",
            "application/pdf",
            data,
            storage,
        )

    return _upload


@pytest.fixture
def complete_case(make_case, upload, auth):
    """A draft case with every required document uploaded by its client"""
    case = make_case()
    for doc_type in REQUIRED_TYPES:
        upload(auth["client"], case, doc_type)
    return case
