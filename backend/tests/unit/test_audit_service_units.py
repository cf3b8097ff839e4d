"""
Unit tests for audit_service: a failed audit write never propagates, and
anonymisation only scrubs personal fields.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from backend.app.constants import AuditAction
from backend.app.context import RequestContext
from backend.app.services import audit_service


def test_record_writes_inside_a_savepoint():
    session = MagicMock()
    ctx = RequestContext(actor=None, ip="10.0.0.7", user_agent="pytest")

    entry = audit_service.record(
        session,
        AuditAction.USER_UPDATE,
        performed_by=3,
        target=9,
        details="changed",
        metadata={"k": "v"},
        ctx=ctx,
    )

    session.begin_nested.assert_called_once()
    session.add.assert_called_once_with(entry)
    assert entry.performed_by == 3
    assert entry.target_resource == "9"
    assert entry.metadata_ == {"k": "v"}
    assert (entry.ip, entry.user_agent) == ("10.0.0.7", "pytest")


def test_record_falls_back_to_target_as_actor():
    entry = audit_service.record(MagicMock(), AuditAction.LOGIN_SUCCESS, None, 4, "login")
    assert entry.performed_by == 4
    assert entry.ip is None


def test_failed_write_is_logged_and_swallowed(caplog):
    session = MagicMock()
    session.flush.side_effect = OperationalError("INSERT", {}, Exception("disk full"))

    result = audit_service.record(session, AuditAction.USER_DELETE, 1, 2, "gone")

    assert result is None
    assert "Audit write failed" in caplog.text
    assert "USER_DELETE" in caplog.text


def test_anonymize_target_scrubs_personal_metadata(monkeypatch):
    entries = [
        SimpleNamespace(
            metadata_={"email": "a@b.com", "provider": "email", "first_name": "Al"},
            ip="1.2.3.4",
            user_agent="ua",
        ),
        SimpleNamespace(metadata_={}, ip=None, user_agent=None),
    ]
    monkeypatch.setattr(audit_service, "list_for_target", lambda session, target: entries)
    session = MagicMock()

    touched = audit_service.anonymize_target(session, 7)

    assert touched == 2
    assert entries[0].metadata_ == {"provider": "email", "anonymized": True}
    assert entries[0].ip is None and entries[0].user_agent is None
    assert entries[1].metadata_ == {"anonymized": True}
    session.flush.assert_called_once()
