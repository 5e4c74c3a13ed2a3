"""Unit tests for auth/validation.py and the request models in api/models.py.

Covers:
- email normalization (trim + lowercase)
- password policy boundaries: 7/8 and 72/73 characters, whitespace-only
- email format and length rules
- pydantic request models apply the same rules and normalize email
"""

import pytest
from pydantic import ValidationError

from api.models import LoginRequest, PasswordResetConfirmBody, RegisterRequest
from auth.exceptions import InvalidError
from auth.validation import (
    email_problem,
    normalize_email,
    password_problem,
    validate_email,
    validate_password,
)


def test_normalize_email():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"


@pytest.mark.parametrize(
    ("password", "ok"),
    [
        ("a" * 7, False),
        ("a" * 8, True),
        ("a" * 72, True),
        ("a" * 73, False),
        ("        ", False),
        ("", False),
    ],
)
def test_password_policy_boundaries(password, ok):
    assert (password_problem(password) is None) is ok


def test_validate_password_raises_invalid():
    with pytest.raises(InvalidError) as exc_info:
        validate_password("short")
    assert exc_info.value.status_code == 400
    assert "at least 8" in exc_info.value.message


@pytest.mark.parametrize(
    "email",
    ["plain", "no-at.example.com", "a@b", "a b@example.com", "@example.com", ""],
)
def test_bad_emails_rejected(email):
    assert email_problem(email) is not None


def test_email_length_limit():
    local = "a" * 250
    assert email_problem(f"{local}@example.com") is not None


def test_validate_email_returns_canonical_form():
    assert validate_email(" Bob@Example.com ") == "bob@example.com"


def test_register_request_normalizes_email():
    body = RegisterRequest(email="  Carol@Example.com", password="Passw0rd!")
    assert body.email == "carol@example.com"


def test_register_request_rejects_short_password():
    with pytest.raises(ValidationError):
        RegisterRequest(email="carol@example.com", password="short")


def test_login_request_only_requires_password_presence():
    assert LoginRequest(email="dave@example.com", password="x").password == "x"
    with pytest.raises(ValidationError):
        LoginRequest(email="dave@example.com", password="")


def test_reset_confirm_token_length_bounds():
    with pytest.raises(ValidationError):
        PasswordResetConfirmBody(token="short", new_password="Passw0rd!")
    with pytest.raises(ValidationError):
        PasswordResetConfirmBody(token="t" * 129, new_password="Passw0rd!")
    assert PasswordResetConfirmBody(token="t" * 43, new_password="Passw0rd!").token == "t" * 43
