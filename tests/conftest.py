"""Pytest configuration and fixtures for the club API tests."""

import copy
import operator
import os
import uuid
from datetime import datetime, timezone

import pytest

# Keep the module-level Mongo client out of the tests
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)

from database import DocumentStore
from errors import InvalidCredentialsError, NotFoundError, StoreError
from identity import Account, IdentityGateway

_COMPARE = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class MemoryDocumentStore(DocumentStore):
    """In-memory document store for testing without MongoDB."""

    def __init__(self, data=None):
        self.data = {name: {d["id"]: dict(d) for d in docs} for name, docs in (data or {}).items()}
        self.calls = []

    def _collection(self, name):
        return self.data.setdefault(name, {})

    def get(self, collection, doc_id):
        self.calls.append(("get", collection, doc_id))
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc else None

    def query(self, collection, filters=(), order_by=None, limit=None):
        self.calls.append(("query", collection, tuple(filters)))
        docs = list(self._collection(collection).values())
        for f in filters:
            docs = [d for d in docs if f.field in d and _COMPARE[f.op](d[f.field], f.value)]
        if order_by:
            field, direction = order_by
            docs.sort(key=lambda d: d.get(field), reverse=direction == "desc")
        if limit:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    def add(self, collection, document):
        doc_id = document.get("id") or uuid.uuid4().hex
        self._collection(collection)[doc_id] = dict(copy.deepcopy(document), id=doc_id)
        return doc_id

    def update(self, collection, doc_id, fields):
        docs = self._collection(collection)
        if doc_id not in docs:
            raise NotFoundError(f"No document '{doc_id}' in '{collection}'")
        docs[doc_id].update({k: v for k, v in copy.deepcopy(fields).items() if k != "id"})

    def delete(self, collection, doc_id):
        return self._collection(collection).pop(doc_id, None) is not None

    def queried(self, collection):
        return [c for c in self.calls if c[0] == "query" and c[1] == collection]


class FailingStore(MemoryDocumentStore):
    """Every read fails the way an unreachable database does."""

    def get(self, collection, doc_id):
        raise StoreError()

    def query(self, collection, filters=(), order_by=None, limit=None):
        raise StoreError()


class FakeIdentityGateway(IdentityGateway):
    """Accounts keyed by email with a fixed password."""

    def __init__(self, accounts=None):
        self.accounts = accounts or {}
        self.calls = []

    def authenticate(self, email, password):
        self.calls.append(email)
        entry = self.accounts.get(email)
        if entry is None or entry[0] != password:
            raise InvalidCredentialsError()
        return entry[1]


def _player(pid, name, number, goals, assists, appearances=10, position="Forward", user_id=None):
    return {
        "id": pid,
        "userId": user_id,
        "name": name,
        "position": position,
        "number": number,
        "imageUrl": "",
        "joinDate": "2024-08-01",
        "phone": "07700 900000",
        "address": "1 Ground Lane",
        "stats": {
            "season": {"appearances": appearances, "goals": goals, "assists": assists},
            "allTime": {"appearances": appearances * 3, "goals": goals * 2, "assists": assists * 2},
        },
    }


def sample_data():
    return {
        "players": [
            _player("p1", "Alice Archer", 9, 5, 1, user_id="u-player"),
            _player("p2", "Bea Bowen", 4, 5, 3, position="Midfielder"),
            _player("p3", "Cara Cole", 7, 3, 0),
            _player("p4", "Dana Doyle", 1, 0, 0, appearances=2, position="Goalkeeper"),
        ],
        "coaches": [
            {"id": "c1", "userId": "u-coach", "name": "Sam Stone", "role": "Head Coach",
             "imageUrl": "", "joinDate": "2023-01-01"},
            {"id": "c2", "userId": "u-staff", "name": "Jo Kerr", "role": "Assistant Coach",
             "imageUrl": "", "joinDate": "2023-06-01"},
        ],
        "matches": [
            {"id": "m1", "opponent": "Rovers", "date": utc(2026, 9, 1, 15), "venue": "Away",
             "competition": "League", "isPast": True, "score": {"home": 2, "away": 1},
             "goalScorers": [{"playerId": "p1", "minute": 12}, {"playerName": "Smith", "minute": 80},
                             {"playerId": "p2"}]},
            {"id": "m2", "opponent": "United", "date": utc(2030, 5, 1, 15), "venue": "Home",
             "competition": "League", "isPast": False, "score": None, "goalScorers": []},
            {"id": "m3", "opponent": "City", "date": utc(2030, 6, 1, 15), "venue": "Away",
             "competition": "Cup", "isPast": False, "score": None, "goalScorers": []},
        ],
        "news": [
            {"id": "n1", "title": "Pre-season", "summary": "Back in training", "date": utc(2026, 7, 1),
             "imageUrl": ""},
            {"id": "n2", "title": "Derby win", "summary": "Three points", "date": utc(2026, 9, 2),
             "imageUrl": ""},
        ],
        "training": [
            {"id": "t1", "date": utc(2030, 4, 1, 18), "focus": "Set pieces", "location": "Main pitch"},
        ],
        "users": [
            {"id": "u-admin", "email": "admin@ffc.test", "name": "Ada Admin", "isAdmin": True,
             "isPlayer": False, "isCoach": False},
            {"id": "u-coach", "email": "coach@ffc.test", "isAdmin": False, "isPlayer": False, "isCoach": True},
            {"id": "u-player", "email": "player@ffc.test", "isAdmin": False, "isPlayer": True, "isCoach": False},
            {"id": "u-staff", "email": "staff@ffc.test", "isAdmin": False, "isPlayer": False, "isCoach": False},
        ],
        "tactics": [],
    }


PASSWORD = "secret"


def sample_accounts():
    return {
        "admin@ffc.test": (PASSWORD, Account(uid="u-admin", email="admin@ffc.test", display_name="Ada Admin")),
        "coach@ffc.test": (PASSWORD, Account(uid="u-coach", email="coach@ffc.test", display_name="Sam Stone")),
        "player@ffc.test": (PASSWORD, Account(uid="u-player", email="player@ffc.test")),
        "staff@ffc.test": (PASSWORD, Account(uid="u-staff", email="staff@ffc.test")),
        "stranger@ffc.test": (PASSWORD, Account(uid="u-stranger", email="stranger@ffc.test")),
    }


@pytest.fixture
def store():
    """Store populated with a small squad, fixtures and role records."""
    return MemoryDocumentStore(sample_data())


@pytest.fixture
def empty_store():
    return MemoryDocumentStore()


@pytest.fixture
def gateway():
    return FakeIdentityGateway(sample_accounts())


@pytest.fixture
def services(store, gateway):
    from main import Services
    return Services(store, gateway)


@pytest.fixture
def client(services):
    """TestClient wired to the in-memory services."""
    from fastapi.testclient import TestClient
    from main import app, get_services

    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Sign in through the API and return bearer headers."""
    def _login(email, password=PASSWORD):
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}
    return _login
