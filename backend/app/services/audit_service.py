"""
services/audit_service.py — Append-only audit trail.

record() writes one AuditLog row inside a SAVEPOINT. A failed write is
rolled back to the savepoint and logged; it never propagates, so the
operation being audited always completes.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.constants import AuditAction
from backend.app.context import RequestContext
from backend.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

# Personal data scrubbed from audit metadata when an account is hard-deleted.
PERSONAL_METADATA_KEYS = ("email", "first_name", "last_name", "name", "ip", "user_agent")


def record(
        session: Session,
        action: AuditAction,
        performed_by: int | None,
        target: int | str | None,
        details: str,
        metadata: dict | None = None,
        ctx: RequestContext | None = None,
) -> AuditLog | None:
    """
    Appends an audit entry. Returns the row, or None if the write failed.

    `performed_by` falls back to the target id for self-service actions
    where no other actor exists (login, password reset).
    """
    actor_id = performed_by if performed_by is not None else target
    entry = AuditLog(
        action=action,
        performed_by=int(actor_id) if actor_id is not None else 0,
        target_resource=str(target) if target is not None else "",
        details=details,
        metadata_=dict(metadata or {}),
        ip=ctx.ip if ctx is not None else None,
        user_agent=(ctx.user_agent[:512] if ctx is not None and ctx.user_agent else None),
    )
    try:
        with session.begin_nested():
            session.add(entry)
            session.flush()
    except SQLAlchemyError as exc:
        logger.error(
            "Audit write failed: action=%s target=%s error=%s",
            action.value,
            target,
            exc,
        )
        return None
    return entry


def list_for_target(session: Session, target: int | str) -> list[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(AuditLog.target_resource == str(target))
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def anonymize_target(session: Session, target: int | str) -> int:
    """
    Removes personal fields from the metadata of every entry about `target`.
    The entries themselves stay. Returns the number of entries touched.
    """
    touched = 0
    for entry in list_for_target(session, target):
        metadata = dict(entry.metadata_ or {})
        scrubbed = {k: v for k, v in metadata.items() if k not in PERSONAL_METADATA_KEYS}
        scrubbed["anonymized"] = True
        entry.metadata_ = scrubbed
        entry.ip = None
        entry.user_agent = None
        touched += 1
    session.flush()
    return touched
