from collections import defaultdict
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from main import app
from callit.config import SESSION_COOKIE_NAME
from callit.database import get_session
from callit.models import Prediction
from callit.services.auth import create_session, create_user
from callit.client.backend import FeedSubscription
from callit.client.context import ClientContext
from callit.client.errors import BackendError

# Create in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(name="session")
def session_fixture():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="alice")
def alice_fixture(session: Session):
    return create_user(session, "alice@example.com", "password123", display_name="Alice")


@pytest.fixture(name="bob")
def bob_fixture(session: Session):
    return create_user(session, "bob@example.com", "password123", display_name="Bob")


@pytest.fixture(name="admin")
def admin_fixture(session: Session):
    return create_user(session, "admin@example.com", "password123", display_name="Admin", is_admin=True)


@pytest.fixture(name="sign_in")
def sign_in_fixture(client: TestClient, session: Session):
    """Switch the test client to a session of the given user (None signs out)."""
    def sign_in(user):
        client.cookies.clear()
        if user is not None:
            client.cookies.set(SESSION_COOKIE_NAME, create_session(session, user.id))
        return client
    return sign_in


@pytest.fixture(name="make_prediction")
def make_prediction_fixture(session: Session):
    """Insert a prediction straight into the database."""
    def make_prediction(user, content="It will rain tomorrow", locked=False, **fields):
        prediction = Prediction(
            content=content,
            user_id=user.id,
            end_date=datetime.utcnow() + timedelta(days=30),
            is_locked=locked,
            locked_at=datetime.utcnow() if locked else None,
            **fields
        )
        session.add(prediction)
        session.commit()
        session.refresh(prediction)
        return prediction
    return make_prediction


# Client core fixtures

ALICE = {
    "id": "alice-id",
    "email": "alice@example.com",
    "display_name": "Alice",
    "is_admin": False,
    "created_at": "2026-01-01T00:00:00",
    "updated_at": "2026-01-01T00:00:00",
}


def prediction_row(**overrides) -> dict:
    """A predictions_with_profiles row as the backend returns it."""
    row = {
        "id": str(uuid4()),
        "content": "Someone will call it",
        "user_id": "bob-id",
        "display_name": "Bob",
        "category_id": None,
        "category_name": None,
        "category_icon": None,
        "created_at": "2026-01-01T00:00:00",
        "updated_at": "2026-01-01T00:00:00",
        "end_date": "2026-12-31T00:00:00",
        "is_locked": True,
        "locked_at": "2026-01-02T00:00:00",
        "result_text": None,
        "is_correct": None,
        "result_added_at": None,
        "agree_count": 0,
        "disagree_count": 0,
        "comment_count": 0,
    }
    row.update(overrides)
    return row


class FakeBackend:
    """In-memory stand-in for HttpBackend. `fail(method)` makes the next such call raise."""

    def __init__(self):
        self.tables = defaultdict(list)
        self.calls = []
        self.failures = {}
        self.user = None
        self.subscription = None

    def fail(self, method: str, message: str = "Backend unavailable") -> None:
        self.failures[method] = BackendError(message, 500)

    def _call(self, method: str, *args) -> None:
        self.calls.append((method,) + args)
        if method in self.failures:
            raise self.failures.pop(method)

    def writes(self) -> list:
        return [call for call in self.calls if call[0] != "select"]

    def _matching(self, table: str, eq: dict) -> list:
        return [row for row in self.tables[table] if all(row.get(k) == v for k, v in eq.items())]

    async def current_user(self):
        self._call("current_user")
        return self.user

    async def sign_in(self, email, password):
        self._call("sign_in", email)
        return self.user

    async def sign_up(self, email, password, display_name=None):
        self._call("sign_up", email)
        return self.user

    async def sign_out(self):
        self._call("sign_out")
        self.user = None

    async def select(self, table, *, eq=None, is_null=(), order=None, limit=None):
        self._call("select", table, eq)
        return [dict(row) for row in self._matching(table, eq or {})]

    async def insert(self, table, row):
        self._call("insert", table, row)
        stored = {"id": str(uuid4()), **row}
        self.tables[table].append(stored)
        return dict(stored)

    async def update(self, table, values, *, eq):
        self._call("update", table, values, eq)
        rows = self._matching(table, eq)
        for row in rows:
            row.update(values)
        return [dict(row) for row in rows]

    async def delete(self, table, *, eq):
        self._call("delete", table, eq)
        rows = self._matching(table, eq)
        self.tables[table] = [row for row in self.tables[table] if row not in rows]
        return [dict(row) for row in rows]

    async def subscribe(self, tables):
        self._call("subscribe", tuple(tables))
        self.subscription = FeedSubscription(tables)
        return self.subscription


@pytest.fixture(name="backend")
def backend_fixture():
    backend = FakeBackend()
    backend.user = dict(ALICE)
    backend.tables["profiles"].append({"id": "alice-id", "display_name": "Alice"})
    return backend


@pytest_asyncio.fixture(name="context")
async def context_fixture(backend: FakeBackend):
    context = ClientContext(backend)
    await context.init()
    return context
