"""
tests/integration/conftest.py — Fixtures for all integration tests.

Design:
  - Tests run against create_app("testing"): in-memory SQLite by default,
    or whatever TEST_DATABASE_URL points at.
  - The app is created once per session with a FakeEmailService injected
    through the factory, so no test ever reaches an SMTP server.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted so tests are isolated, the fake
    outbox is emptied and the login rate limiter is reset.
"""

from __future__ import annotations

import pytest
from sqlalchemy import event, text

from backend.app import create_app
from backend.app.extensions import db as _db
from backend.tests.integration.helpers import FakeEmailService


def _enable_sqlite_savepoints(engine) -> None:
    """
    pysqlite starts transactions lazily, which breaks SAVEPOINT. Hand
    transaction control to SQLAlchemy (recipe from the SQLAlchemy SQLite docs).
    """

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def email_outbox():
    return FakeEmailService()


@pytest.fixture(scope="session")
def app(email_outbox):
    """
    Creates the Flask application in 'testing' mode once for the entire test session.
    """
    flask_app = create_app("testing", email_service=email_outbox)

    with flask_app.app_context():
        if _db.engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(_db.engine)
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_state(app, email_outbox):
    """
    Deletes all rows between tests and resets in-process state.

    refresh_tokens are deleted before users (CASCADE would handle it on
    PostgreSQL, but SQLite does not enforce foreign keys by default).
    """
    app.extensions["auth_service"].rate_limiter.reset()
    email_outbox.outbox.clear()
    email_outbox.fail = False

    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM audit_logs"))
            conn.execute(text("DELETE FROM refresh_tokens"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def admin(app, client):
    """
    A seeded SUPER_ADMIN, logged in.
    Returns: {"id": ..., "email": ..., "access_token": ...}
    """
    from backend.scripts.create_admin import create_admin

    with app.app_context():
        user, _ = create_admin(
            _db.session,
            email="root@test.com",
            password="Admin123!",
            bcrypt_rounds=app.config["BCRYPT_LOG_ROUNDS"],
        )
        _db.session.commit()
        admin_id = user.id

    resp = client.post("/api/v1/auth/login", json={"email": "root@test.com", "password": "Admin123!"})
    assert resp.status_code == 200, resp.get_json()
    return {
        "id": admin_id,
        "email": "root@test.com",
        "access_token": resp.get_json()["data"]["access_token"],
    }
