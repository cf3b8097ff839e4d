"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and marshmallow as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

    from backend.app.extensions import db, ma

Stateful domain services (token issuer, rate limiter, email, OAuth verifier)
are NOT module-level singletons. They are constructed per app inside
create_app() and stored on app.extensions["auth_service"], so every test app
gets its own isolated instances.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Marshmallow instance, available for SQLAlchemy model serialization helpers.
#
# IMPORTANT: schema inheritance rule:
#   All validation Schema classes (in app/schemas/) must inherit from
#   marshmallow.Schema directly, NOT from ma.Schema.
#
#   Reason: ma.Schema requires an active Flask application context. Unit tests
#   in tests/unit/ run without a Flask app.
ma = Marshmallow()
