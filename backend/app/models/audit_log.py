"""
models/audit_log.py — AuditLog table definition.

Append-only trail of privileged and security-relevant actions. The
application inserts rows and never updates or deletes them (hard-deleting a
user only scrubs the personal fields inside `metadata`).

`performed_by` is not a foreign key: the trail must survive the deletion of
the actor's account.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Enum, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.constants import AuditAction
from backend.app.extensions import db
from backend.app.models.types import UTCDateTime, utcnow


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)

    action: Mapped[AuditAction] = mapped_column(
        Enum(
            AuditAction,
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
            length=32,
        ),
        nullable=False,
        index=True,
    )

    performed_by: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Id of the affected record, kept as text so non-user resources fit too.
    target_resource: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    details: Mapped[str] = mapped_column(Text, nullable=False)

    # "metadata" is reserved on declarative classes; the column keeps the name.
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    ip:         Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<AuditLog id={self.id} action={self.action} "
            f"performed_by={self.performed_by} target={self.target_resource!r}>"
        )
