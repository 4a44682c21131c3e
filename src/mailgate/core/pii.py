"""PII helpers for audit logging.

Ledger and gate logs carry trace ids, not people. User ids are logged as a
salted HMAC and free text (recipients, subjects, digests) is masked before
it reaches a log line.

Usage:
    from mailgate.core.pii import hash_user_id, mask_email_and_phone

    logger.info("execution_proposed", user=hash_user_id(user_id, salt))
"""

from __future__ import annotations

import hashlib
import hmac

import regex

EMAIL_PATTERN = regex.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", regex.IGNORECASE)

# Loose match for international and domestic phone numbers; only runs of
# 8+ digits are treated as phones (see _mask_phone)
PHONE_PATTERN = regex.compile(r"(?:(?:\+?\d{1,3}[\s-]?)?(?:\(?\d{2,4}\)?[\s-]?)\d{2,4}[\s-]?\d{3,4})")

NEWLINES_PATTERN = regex.compile(r"[\r\n]+")

# Regex timeout (seconds) to prevent catastrophic backtracking on hostile input
REGEX_TIMEOUT = 1.0


def _mask_phone(match: regex.Match) -> str:
    digits = "".join(ch for ch in match.group(0) if ch.isdigit())
    return "[PHONE]" if len(digits) >= 8 else match.group(0)


def mask_email_and_phone(text: str | None) -> str | None:
    """Replace email addresses and phone numbers with placeholders.

    Newlines are collapsed so masked values stay on one log line.

    Args:
        text: Free text that may contain PII

    Returns:
        Masked text, or None when text is None
    """
    if text is None:
        return None
    try:
        out = EMAIL_PATTERN.sub("[EMAIL]", str(text), timeout=REGEX_TIMEOUT)
        out = PHONE_PATTERN.sub(_mask_phone, out, timeout=REGEX_TIMEOUT)
    except TimeoutError:
        return "[REDACTED]"
    return NEWLINES_PATTERN.sub(" ", out).strip()


def hash_user_id(user_id: str | None, salt: str | None) -> str | None:
    """Return a salted HMAC-SHA256 of a user id, or None.

    Without a salt the id is not logged at all; an unsalted hash of a short
    chat user id is trivially reversible.
    """
    if not user_id or not salt:
        return None
    return hmac.new(salt.encode("utf-8"), user_id.encode("utf-8"), hashlib.sha256).hexdigest()
