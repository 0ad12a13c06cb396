import importlib
import os

import pytest
from fastapi.testclient import TestClient

import database
from cache_manager import cache_manager
from library import Library


@pytest.fixture
def lib(tmp_path, request):
    # Unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    cache_manager.clear()
    lib = Library(db_file=db_file)
    yield lib
    lib.close()
    cache_manager.clear()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def client(tmp_path, request, monkeypatch):
    # Create a unique per-test DB and make sure api picks it up at import time
    db_file = str(tmp_path / f"api_test_{request.node.name}.db")
    monkeypatch.setenv("LIBRARY_DB_FILE", db_file)
    monkeypatch.setattr(database, "DATABASE_FILE", db_file)
    cache_manager.clear()

    import api as api_module
    # Reload api so its global Library() and rate limiters start fresh
    importlib.reload(api_module)

    test_client = TestClient(api_module.app)
    try:
        yield test_client
    finally:
        cache_manager.clear()
        if os.path.exists(db_file):
            try:
                os.remove(db_file)
            except OSError:
                pass


def register_and_login(client, email="member@example.com", password="secret123", name="Member", role="member"):
    """Register a user through the API and return an Authorization header for it."""
    response = client.post(
        "/auth/register",
        json={"name": name, "email": email, "password": password, "role": role},
    )
    assert response.status_code == 201, response.text
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def member_headers(client):
    return register_and_login(client)


@pytest.fixture
def admin_headers(client):
    return register_and_login(client, email="admin@example.com", name="Admin", role="admin")
