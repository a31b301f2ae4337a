import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
import notifications
from auth import hash_password
from schemas import User

PASSWORD = "secret123"


class RecordingGateway:
    """Push gateway that keeps every message instead of sending it."""

    def __init__(self):
        self.sent = []

    def send(self, token, title, body, data):
        self.sent.append({"token": token, "title": title, "body": body, "data": data})
        return f"projects/test/messages/{len(self.sent)}"


@pytest.fixture(autouse=True)
def db(monkeypatch):
    test_db = mongomock.MongoClient()["leadcrm_test"]
    monkeypatch.setattr(database, "db", test_db)
    monkeypatch.setattr(database, "TRIGGER_MODE", "inline")
    return test_db


@pytest.fixture(autouse=True)
def push(monkeypatch):
    gateway = RecordingGateway()
    monkeypatch.setattr(notifications, "_gateway", gateway)
    return gateway


@pytest.fixture
def client(db):
    return TestClient(main.app)


def make_user(name, email, role="agent", **extra):
    data = User(name=name, email=email, password_hash=hash_password(PASSWORD), role=role, **extra)
    return database.create_document("users", data)


def login(client, email):
    response = client.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_id(db):
    return make_user("Asha Admin", "admin@leadcrm.io", role="admin")


@pytest.fixture
def agent_id(db):
    return make_user("Ravi Agent", "ravi@leadcrm.io", fcm_tokens=["device-ravi"])


@pytest.fixture
def other_agent_id(db):
    return make_user("Meera Agent", "meera@leadcrm.io", fcm_tokens=["device-meera"])


@pytest.fixture
def admin_headers(client, admin_id):
    return login(client, "admin@leadcrm.io")


@pytest.fixture
def agent_headers(client, agent_id):
    return login(client, "ravi@leadcrm.io")


@pytest.fixture
def other_agent_headers(client, other_agent_id):
    return login(client, "meera@leadcrm.io")
