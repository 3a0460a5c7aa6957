"""
Email validation, normalization and hashing for the discount ledger.

Normalization collapses the common aliasing tricks so one mailbox maps to
one ledger entry:
    - case and surrounding whitespace are ignored
    - Gmail ignores dots and everything after "+", and googlemail.com is gmail.com
    - other providers ignore everything after "+"
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Optional


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

GMAIL_DOMAINS = {"gmail.com", "googlemail.com"}

DISPOSABLE_DOMAINS = frozenset({
    # Temporary/disposable services
    "guerrillamail.com", "guerrillamail.net", "guerrillamail.org", "guerrillamail.biz",
    "sharklasers.com", "grr.la", "guerrillamail.de",
    "mailinator.com", "mailinator2.com", "mailinator.net",
    "temp-mail.org", "temp-mail.io", "tempmail.com", "tempmail.net",
    "10minutemail.com", "10minutemail.net", "10minutemail.org",
    "throwaway.email", "throwawaymail.com",
    "yopmail.com", "yopmail.fr", "yopmail.net",
    "maildrop.cc", "mailnator.com", "mailsac.com",
    "trashmail.com", "trashmail.net", "trash-mail.com",
    "getnada.com", "fakeinbox.com", "fake-mail.com",
    "discard.email", "spamgourmet.com", "mintemail.com",
    "emailondeck.com", "mytemp.email", "mohmal.com",
    "gmx.net", "gmx.de", "gmx.at", "gmx.ch", "gmx.com",
    "burnermail.io", "getairmail.com", "anonymousemail.me",
})

DISPOSABLE_ERROR = "Disposable email addresses are not allowed. Please use a permanent email address."


@dataclass(frozen=True)
class EmailValidation:
    """
    Result of validate_email. Both addresses are set only when valid.

    `address` is the trimmed, lowercased mailbox the player typed and is
    where mail goes. `normalized` collapses aliases and keys the ledger.
    """
    valid: bool
    error: Optional[str] = None
    normalized: Optional[str] = None
    address: Optional[str] = None


def normalize_email(email: str) -> str:
    """
    Canonical form of an address for duplicate detection.

    Idempotent: normalize_email(normalize_email(e)) == normalize_email(e).
    """
    email = email.strip().lower()
    if "@" not in email:
        return email
    local, domain = email.rsplit("@", 1)

    if domain in GMAIL_DOMAINS:
        local = local.replace(".", "").split("+", 1)[0]
        return f"{local}@gmail.com"

    return f"{local.split('+', 1)[0]}@{domain}"


def validate_email(email) -> EmailValidation:
    """Check format, block disposable domains and normalize."""
    if not email or not isinstance(email, str):
        return EmailValidation(valid=False, error="Email is required")

    trimmed = email.strip().lower()
    if not EMAIL_PATTERN.match(trimmed):
        return EmailValidation(valid=False, error="Invalid email format")

    domain = trimmed.rsplit("@", 1)[1]
    if domain in DISPOSABLE_DOMAINS:
        return EmailValidation(valid=False, error=DISPOSABLE_ERROR)

    normalized = normalize_email(trimmed)
    if normalized.startswith("@"):
        # Nothing left of the mailbox once aliases are stripped
        return EmailValidation(valid=False, error="Invalid email format")

    return EmailValidation(valid=True, normalized=normalized, address=trimmed)


def hash_email(email: str) -> str:
    """Hex SHA-256 of an (already normalized) address."""
    return hashlib.sha256(email.encode()).hexdigest()
