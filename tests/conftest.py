"""
Test fixtures for the portal tests.
"""

import copy
import os
import tempfile

import pytest
from click.testing import CliRunner

from portal.config import DEFAULT_CONFIG, MIGRATIONS_DIR
from portal.database import Database
from portal.mailer import PreviewMailer
from portal.migrations import Migrator


@pytest.fixture
def runner():
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_db_path():
    """Return a path to a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix='.sqlite', delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def temp_db(temp_db_path):
    """Create a migrated temporary database.

    Uses check_same_thread=False to allow use with FastAPI TestClient
    which runs in a different thread.
    """
    db = Database(temp_db_path, check_same_thread=False)
    Migrator(db, MIGRATIONS_DIR).migrate()

    yield db

    db.close()


@pytest.fixture
def test_config(temp_db_path):
    """A full configuration pointing at the temporary database."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["database"]["path"] = temp_db_path
    config["database"]["migrations_dir"] = str(MIGRATIONS_DIR)
    config["app_base_url"] = "http://portal.company.com"
    return config


@pytest.fixture
def mock_config(monkeypatch, test_config):
    """Mock the config loading to use the temporary database."""
    def mock_load_config():
        return test_config

    monkeypatch.setattr("portal.cli.load_config", mock_load_config)

    return test_config


@pytest.fixture
def mailer():
    """In-memory mail transport."""
    return PreviewMailer()


@pytest.fixture
def app(test_config, mailer):
    """API application over the temporary database."""
    from web.api.main import create_app

    return create_app(test_config, mailer=mailer)


@pytest.fixture
def client(app):
    """FastAPI test client; entering it runs the startup sequence."""
    from fastapi.testclient import TestClient

    with TestClient(app) as client:
        yield client


@pytest.fixture
def login(client):
    """Sign in through the API and return the session token."""
    def _login(email="employee@company.com", password="password123") -> str:
        response = client.post(
            "/api/auth/login", json={"email": email, "password": password}
        )
        assert response.status_code == 200, response.text
        return response.json()["token"]

    return _login


@pytest.fixture
def employee_token(login):
    return login()


@pytest.fixture
def admin_token(login):
    return login("admin@company.com", "admin12345")
