"""
context.py — Per-request caller context.

RequestContext is built once at the HTTP boundary (require_auth, or the
public auth routes) and handed to services as a plain argument. Services
never reach into flask.request or flask.g themselves.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import request

from backend.app.models.user import User


@dataclass(frozen=True)
class RequestContext:
    actor: User | None
    ip: str = "unknown"
    user_agent: str = "unknown"

    @property
    def actor_id(self) -> int | None:
        return self.actor.id if self.actor is not None else None

    @classmethod
    def from_request(cls, actor: User | None = None) -> "RequestContext":
        """Captures client IP and User-Agent from the current Flask request."""
        return cls(
            actor=actor,
            ip=request.remote_addr or "unknown",
            user_agent=request.headers.get("User-Agent") or "unknown",
        )
