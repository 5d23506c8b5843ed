"""
Shared pytest fixtures and test utilities for the NYC visitor guide tests.

This module provides:
- Database setup/teardown with isolation
- Factories for users, sessions and attractions
- TestClient setup with proper environment configuration
"""
import os
import sqlite3
import sys
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

# ─────────────────────────── PATH SETUP ───────────────────────────

TEST_ROOT = Path(__file__).resolve().parent
DATA_DIR = TEST_ROOT / "tmp_data"
DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_FILE = DATA_DIR / "app.db"

# ─────────────────────────── ENVIRONMENT ───────────────────────────

def configure_test_environment():
    """Configure environment variables for testing."""
    os.environ["DB_PATH"] = str(DB_FILE)
    os.environ["LOG_FILE"] = str(DATA_DIR / "nycguide.log")
    os.environ.setdefault("BASE_URL", "http://testserver")
    os.environ.setdefault("LOG_LEVEL", "WARNING")
    os.environ["SMTP_HOST"] = ""  # Never send real email
    os.environ["ADMIN_EMAILS"] = "boss@example.com"

configure_test_environment()

sys.path.insert(0, str(TEST_ROOT.parent))

from app.main import app  # noqa: E402
from app.auth import init_db, ensure_migrations, ensure_user, create_user_session, set_user_role  # noqa: E402
from app.attractions import create_attraction, seed_catalog  # noqa: E402
from app.models import UserRole  # noqa: E402
from app.security import reset_rate_limits  # noqa: E402

# ─────────────────────────── DATABASE HELPERS ───────────────────────────

TABLES = [
    "scheduled_attractions", "trip_schedules", "schedule_storage",
    "user_sessions", "users", "attractions", "categories", "audit_log",
]


def init_test_db():
    """Initialize the test database schema."""
    init_db()
    ensure_migrations()


def get_test_db():
    """Get a database connection for test operations."""
    conn = sqlite3.connect(DB_FILE)
    conn.row_factory = sqlite3.Row
    return conn


def clear_all_test_data():
    """Clear all test data from database tables."""
    init_test_db()
    conn = get_test_db()
    for table in TABLES:
        try:
            conn.execute(f"DELETE FROM {table}")
        except sqlite3.OperationalError:
            pass  # Table may not exist
    conn.commit()
    conn.close()
    reset_rate_limits()


def count_rows(table: str, where: str = "1=1", params: tuple = ()) -> int:
    conn = get_test_db()
    count = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]
    conn.close()
    return count

# ─────────────────────────── TEST DATA FACTORIES ───────────────────────────

def create_test_user(
    user_id: str = "u1",
    email: str = "visitor@example.com",
    role: UserRole = UserRole.USER,
) -> Tuple[str, str]:
    """Create a user with a live session. Returns (user_id, session_token)."""
    user = ensure_user(user_id, email)
    if user.role != role:
        set_user_role(user.id, role)
    token = create_user_session(user.id, device_info="pytest", ip_address="127.0.0.1")
    return user.id, token


def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def attraction_payload(**overrides) -> Dict[str, Any]:
    data = {
        "name": "Tiny Cupcake Shop",
        "category": "Food",
        "location": "Bleecker St, West Village",
        "tags": ["dessert", "cheap eats"],
        "price_range": "$",
        "resources": [{"text": "Menu", "url": "https://example.com/menu"}],
    }
    data.update(overrides)
    return data


def create_test_attraction(user_id: str = "u1", **overrides) -> Any:
    """Create a pending attraction owned by user_id. Returns the Attraction."""
    result = create_attraction(attraction_payload(**overrides), user_id)
    assert result.success, result.error
    return result.data

# ─────────────────────────── PYTEST FIXTURES ───────────────────────────

@pytest.fixture
def fresh_db():
    """Clean schema and empty tables, no HTTP client."""
    clear_all_test_data()
    yield


@pytest.fixture
def seeded(fresh_db):
    """Fresh database holding the bundled catalog."""
    seed_catalog()
    yield


@pytest.fixture
def client():
    """
    Function-scoped test client with clean database state.
    Startup seeds the catalog.
    """
    clear_all_test_data()
    with TestClient(app) as client:
        yield client


@pytest.fixture
def user_session(client) -> Tuple[str, str]:
    return create_test_user("u1", "visitor@example.com")


@pytest.fixture
def other_session(client) -> Tuple[str, str]:
    return create_test_user("u2", "someone-else@example.com")


@pytest.fixture
def admin_session(client) -> Tuple[str, str]:
    return create_test_user("admin-1", "admin@example.com", role=UserRole.ADMIN)

# ─────────────────────────── ASSERTION HELPERS ───────────────────────────

def assert_json_success(response, expected_status: int = 200):
    """Assert JSON response indicates success."""
    assert response.status_code == expected_status, response.text
    data = response.json()
    assert data.get("success") is True
    return data


def assert_json_error(response, expected_status: int = 400):
    """Assert JSON response indicates error."""
    assert response.status_code == expected_status, response.text
    data = response.json()
    assert data.get("success") is False or "error" in data or "detail" in data
    return data


def day_ids(days) -> list:
    """Per-day attraction id lists from ScheduleDay objects or dicts."""
    result = []
    for day in days:
        items = day.items if hasattr(day, "items") and not isinstance(day, dict) else day["items"]
        result.append([item["id"] for item in items])
    return result
