"""
Shared fixtures: in-memory SQLite database, local blob store, principals.
"""

import os

# must be set before medportal.config builds its settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-0123456789-abcdefghijklmnop"
os.environ["BLOB_BACKEND"] = "local"
os.environ["REQUIRE_EMAIL_CONFIRMATION"] = "false"

import pytest

import medportal.models  # noqa: F401,E402
from medportal.database.connection import Base, SessionLocal, engine  # noqa: E402
from medportal.services import identity  # noqa: E402
from medportal.services.blob_store import LocalBlobStore  # noqa: E402
from medportal.services.profile_service import get_principal  # noqa: E402


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"), "http://testserver", os.environ["SECRET_KEY"])


@pytest.fixture
def make_patient(db):
    counter = {"n": 0}

    def factory(name: str = None, email: str = None):
        counter["n"] += 1
        name = name or f"Patient {counter['n']}"
        email = email or f"patient{counter['n']}@example.com"
        result = identity.sign_up(db, email, "secret-pass", {"role": "patient", "name": name})
        return get_principal(db, result.principal_id)

    return factory


@pytest.fixture
def make_hospital(db):
    counter = {"n": 0}

    def factory(hospital_name: str = None, email: str = None):
        counter["n"] += 1
        hospital_name = hospital_name or f"General Hospital {counter['n']}"
        email = email or f"hospital{counter['n']}@example.com"
        result = identity.sign_up(db, email, "secret-pass", {
            "role": "hospital",
            "name": f"Dr. Contact {counter['n']}",
            "hospital_name": hospital_name,
            "license_number": f"LIC-{counter['n']:04d}",
        })
        return get_principal(db, result.principal_id)

    return factory


@pytest.fixture
def patient(make_patient):
    return make_patient("Alice Patient", "alice@example.com")


@pytest.fixture
def hospital(make_hospital):
    return make_hospital("St. Mary's", "stmarys@example.com")
