"""
Tests for email validation, normalization and ledger hashing.

Run with: pytest test_email_validation.py -v
"""

import hashlib

import pytest

from services.email_service import mask_email
from services.email_validation import (
    DISPOSABLE_ERROR,
    hash_email,
    normalize_email,
    validate_email,
)


class TestNormalizeEmail:

    @pytest.mark.parametrize("raw", [
        "John.Doe@gmail.com",
        "johndoe+promo@gmail.com",
        "j.o.h.n.d.o.e@googlemail.com",
        "  JOHNDOE@GMAIL.COM  ",
    ])
    def test_gmail_aliases_collapse(self, raw):
        assert normalize_email(raw) == "johndoe@gmail.com"

    def test_plus_stripped_elsewhere(self):
        assert normalize_email("jane+games@example.com") == "jane@example.com"

    def test_dots_kept_elsewhere(self):
        assert normalize_email("jane.doe@example.com") == "jane.doe@example.com"

    @pytest.mark.parametrize("raw", [
        "John.Doe+x@GoogleMail.com",
        "a.b+c@example.org",
        "plain@example.com",
        "no-at-sign",
    ])
    def test_idempotent(self, raw):
        once = normalize_email(raw)
        assert normalize_email(once) == once


class TestValidateEmail:

    def test_valid(self):
        result = validate_email("Player.One+x@Gmail.com")
        assert result.valid
        assert result.normalized == "playerone@gmail.com"
        assert result.address == "player.one+x@gmail.com"

    @pytest.mark.parametrize("value", [None, "", 42])
    def test_required(self, value):
        result = validate_email(value)
        assert not result.valid
        assert result.error == "Email is required"

    @pytest.mark.parametrize("value", ["nope", "a@b", "a b@example.com", "@example.com"])
    def test_bad_format(self, value):
        result = validate_email(value)
        assert not result.valid
        assert result.error == "Invalid email format"

    def test_empty_mailbox_after_normalization(self):
        result = validate_email("+promo@example.com")
        assert not result.valid
        assert result.error == "Invalid email format"

    @pytest.mark.parametrize("domain", ["mailinator.com", "yopmail.com", "10minutemail.com"])
    def test_disposable_rejected(self, domain):
        result = validate_email(f"someone@{domain}")
        assert not result.valid
        assert result.error == DISPOSABLE_ERROR


class TestHashing:

    def test_sha256_hex_of_normalized(self):
        normalized = normalize_email("John.Doe@gmail.com")
        assert hash_email(normalized) == hashlib.sha256(b"johndoe@gmail.com").hexdigest()

    def test_aliases_share_a_hash(self):
        a = hash_email(validate_email("john.doe+1@gmail.com").normalized)
        b = hash_email(validate_email("JohnDoe@googlemail.com").normalized)
        assert a == b

    def test_mask_email(self):
        assert mask_email("johndoe@gmail.com") == "j***@gmail.com"
        assert mask_email("broken") == "***"
