import os

os.environ["ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from schemas import User
from security import create_access_token, hash_password

PASSWORD = "Secret123"


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=True)["villasDB_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, username="jane", email="jane@example.com", role="user", is_active=True):
    user = User(username=username, email=email, password=hash_password(PASSWORD),
                role=role, is_active=is_active)
    return create_document(db, "user", user)


def bearer(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def admin(db):
    return make_user(db, username="admin", email="admin@example.com", role="admin")


@pytest.fixture
def member(db):
    return make_user(db)


def villa(villa_id, status="Available", size=250, villa_type="4BR"):
    return {"id": villa_id, "status": status, "size": size, "type": villa_type}


def cluster_payload(cluster_id="clusterA", name="Palm Grove", villas=None):
    return {
        "clusterId": cluster_id,
        "clusterName": name,
        "x": 12.5,
        "y": 40,
        "villas": villas if villas is not None else [
            villa("v1"),
            villa("v2", status="Sold"),
            villa("v3", status="Under Construction"),
        ],
    }
