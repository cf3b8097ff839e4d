"""
Unit tests for password hashing helpers.
"""

from __future__ import annotations

from types import SimpleNamespace

from backend.app.services.passwords import (
    generate_internal_password,
    hash_password,
    set_password,
    verify_password,
)


def test_hash_is_bcrypt_and_salted():
    first = hash_password("Password1!", rounds=4)
    second = hash_password("Password1!", rounds=4)
    assert first.startswith("$2b$04$")
    assert first != second
    assert "Password1!" not in first


def test_verify_password():
    hashed = hash_password("Password1!", rounds=4)
    assert verify_password("Password1!", hashed)
    assert not verify_password("password1!", hashed)


def test_malformed_or_missing_hash_is_a_mismatch():
    assert not verify_password("Password1!", "not-a-bcrypt-hash")
    assert not verify_password("Password1!", None)


def test_set_password_stamps_change_time():
    user = SimpleNamespace(password_hash=None, password_changed_at=None)
    set_password(user, "Password1!", rounds=4)
    assert verify_password("Password1!", user.password_hash)
    assert user.password_changed_at is not None
    assert user.password_changed_at.tzinfo is not None


def test_internal_passwords_are_random():
    assert generate_internal_password() != generate_internal_password()
    assert len(generate_internal_password()) >= 32
