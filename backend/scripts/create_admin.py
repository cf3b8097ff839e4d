"""
scripts/create_admin.py — Seed the first SUPER_ADMIN account.

Usage:
    FLASK_ENV=development python -m backend.scripts.create_admin

Reads FIRST_ADMIN_EMAIL, FIRST_ADMIN_PASSWORD, FIRST_ADMIN_FIRST_NAME and
FIRST_ADMIN_LAST_NAME. Does nothing if a SUPER_ADMIN already exists.
"""

from __future__ import annotations

import os

import click
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.constants import AuditAction, Provider, Role
from backend.app.models.types import utcnow
from backend.app.models.user import User
from backend.app.repositories import user_repository
from backend.app.services import audit_service
from backend.app.services.passwords import set_password

DEFAULT_EMAIL = "admin@example.com"
DEFAULT_PASSWORD = "Admin123!"


def create_admin(
        session: Session,
        email: str,
        password: str,
        first_name: str = "Admin",
        last_name: str = "User",
        bcrypt_rounds: int = 12,
) -> tuple[User, bool]:
    """Returns (admin, created). An existing SUPER_ADMIN is returned untouched."""
    existing = session.execute(
        select(User).where(User.role == Role.SUPER_ADMIN).limit(1)
    ).scalar_one_or_none()
    if existing is not None:
        return existing, False

    if user_repository.email_in_use(email, session):
        raise click.ClickException(f"{email} is already registered to a non-admin account.")

    admin = User(
        first_name=first_name,
        last_name=last_name,
        email=user_repository.normalize_email(email),
        provider=Provider.EMAIL,
        role=Role.SUPER_ADMIN,
        is_email_verified=True,
        email_verified_at=utcnow(),
    )
    set_password(admin, password, bcrypt_rounds)
    session.add(admin)
    session.flush()
    audit_service.record(
        session,
        AuditAction.USER_CREATE,
        performed_by=admin.id,
        target=admin.id,
        details="SUPER_ADMIN seeded from the command line",
    )
    return admin, True


@click.command()
def main() -> None:
    from backend.app import create_app
    from backend.app.extensions import db

    app = create_app(os.getenv("FLASK_ENV", "development"))
    email = os.getenv("FIRST_ADMIN_EMAIL") or DEFAULT_EMAIL
    password = os.getenv("FIRST_ADMIN_PASSWORD") or DEFAULT_PASSWORD

    with app.app_context():
        admin, created = create_admin(
            db.session,
            email=email,
            password=password,
            first_name=os.getenv("FIRST_ADMIN_FIRST_NAME") or "Admin",
            last_name=os.getenv("FIRST_ADMIN_LAST_NAME") or "User",
            bcrypt_rounds=app.config.get("BCRYPT_LOG_ROUNDS", 12),
        )
        db.session.commit()
        admin_email, admin_name = admin.email, admin.full_name

    if not created:
        click.echo(f"Admin user already exists: {admin_email}")
        return

    click.echo(f"Admin user created: {admin_email} ({admin_name})")
    if password == DEFAULT_PASSWORD:
        click.echo("IMPORTANT: the default password is in use. Change it after first login!")


if __name__ == "__main__":
    main()
