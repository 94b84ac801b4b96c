"""
Pytest configuration and shared fixtures.
"""

import copy
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from travel_ease.auth import InvalidTokenError
from travel_ease.config import APIConfig
from travel_ease.database import DocumentCollection
from travel_ease.main import create_app
from travel_ease.models import AuthenticatedUser

ALLOWED_ORIGIN = "https://travel-ease.web.app"

USER_A = "alice@example.com"
USER_B = "bob@example.com"


def _matches(document: Dict[str, Any], filter_query: Dict[str, Any]) -> bool:
    return all(document.get(key) == value for key, value in filter_query.items())


class FakeCursor:
    """Subset of the motor cursor API used by DocumentCollection."""

    def __init__(self, documents: List[Dict[str, Any]]):
        self._documents = documents
        self._limit = 0

    def sort(self, keys: Sequence[Tuple[str, int]]):
        for field, direction in reversed(list(keys)):
            self._documents.sort(key=lambda doc: doc.get(field), reverse=direction < 0)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    async def to_list(self, length: Optional[int] = None):
        documents = self._documents[: self._limit] if self._limit else self._documents
        return [copy.deepcopy(doc) for doc in documents]


class FakeMotorCollection:
    """In-memory stand-in for an AsyncIOMotorCollection."""

    def __init__(self, name: str, unique_keys: Optional[Tuple[str, ...]] = None):
        self.name = name
        self.unique_keys = unique_keys
        self.documents: List[Dict[str, Any]] = []

    def find(self, filter_query: Dict[str, Any]):
        return FakeCursor([doc for doc in self.documents if _matches(doc, filter_query)])

    async def find_one(self, filter_query: Dict[str, Any]):
        for doc in self.documents:
            if _matches(doc, filter_query):
                return copy.deepcopy(doc)
        return None

    async def insert_one(self, document: Dict[str, Any]):
        if self.unique_keys:
            key = {k: document.get(k) for k in self.unique_keys}
            if any(_matches(doc, key) for doc in self.documents):
                raise DuplicateKeyError("E11000 duplicate key error", 11000)
        stored = copy.deepcopy(document)
        stored.setdefault("_id", ObjectId())
        self.documents.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def update_one(self, filter_query: Dict[str, Any], update: Dict[str, Any]):
        for doc in self.documents:
            if _matches(doc, filter_query):
                changes = update["$set"]
                modified = any(doc.get(k) != v for k, v in changes.items())
                doc.update(copy.deepcopy(changes))
                return SimpleNamespace(matched_count=1, modified_count=int(modified))
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, filter_query: Dict[str, Any]):
        for index, doc in enumerate(self.documents):
            if _matches(doc, filter_query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class InMemoryStore:
    """Store client double that records every collection access."""

    def __init__(self):
        self.vehicle_collection = FakeMotorCollection("vehicleDB")
        self.booking_collection = FakeMotorCollection("carBookings", unique_keys=("email", "booking_id"))
        self.accessed: List[str] = []
        self.connected = False
        self.healthy = True

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def ping(self) -> bool:
        return self.healthy

    def vehicles(self) -> DocumentCollection:
        self.accessed.append("vehicles")
        return DocumentCollection(self.vehicle_collection)

    def bookings(self) -> DocumentCollection:
        self.accessed.append("bookings")
        return DocumentCollection(self.booking_collection)


class FakeTokenVerifier:
    """Accepts tokens of the form 'token-<email>'."""

    def __init__(self):
        self.verified: List[str] = []

    def verify(self, token: str) -> AuthenticatedUser:
        if not token.startswith("token-"):
            raise InvalidTokenError("unknown token")
        email = token[len("token-"):]
        self.verified.append(email)
        return AuthenticatedUser(uid=f"uid-{email}", email=email, claims={"email": email})


def auth_headers(email: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer token-{email}"}


@pytest.fixture
def api_config():
    """Settings for tests, independent of any .env file."""
    return APIConfig(
        _env_file=None,
        mongodb_url="mongodb://localhost:27017",
        firebase_project_id="travel-ease-test",
        cors_origins=f"{ALLOWED_ORIGIN},http://localhost:5173",
        log_format="console",
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def token_verifier():
    return FakeTokenVerifier()


@pytest.fixture
def app(api_config, store, token_verifier):
    return create_app(api_config=api_config, store=store, token_verifier=token_verifier)


@pytest.fixture
def client(app):
    """Create test client with the lifespan running."""
    with TestClient(app) as test_client:
        yield test_client
