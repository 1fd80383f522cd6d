import uuid

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from gradebook.server import app, get_db


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return client[f"gradebook_test_{uuid.uuid4().hex}"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()
