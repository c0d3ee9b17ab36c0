"""PII handling utilities: nothing that identifies a member reaches the logs.

User and coach identifiers are hashed before logging. Flagged content kept on
an alert is sanitized (contact details masked, control characters removed)
and truncated before it is stored or sent to a notification channel.
"""
import hashlib
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)


# Loaded from the PII_HASH_SALT secret at service startup
_PII_SALT: Optional[str] = None

_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_PHONE_PATTERN = re.compile(r"(?<!\d)(?:\+?1[\s.-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}(?!\d)")
_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def configure_pii_salt(salt: str) -> None:
    """Configure the PII hashing salt.

    Must be called during application startup before any PII hashing.

    Args:
        salt: Secret salt value

    Raises:
        ValueError: If salt is empty or too short
    """
    global _PII_SALT
    if not salt or len(salt) < 32:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": 32}
        )
        raise ValueError("PII salt must be at least 32 characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def hash_pii(value: str) -> str:
    """Hash a PII value for safe logging.

    Uses SHA-256 with a secret salt to create a consistent,
    non-reversible hash of user identifiers.

    Args:
        value: The PII value to hash (user ID, email, etc.)

    Returns:
        64-char hex digest safe for logging

    Raises:
        RuntimeError: If PII salt has not been configured
    """
    if _PII_SALT is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")

    salted = f"{_PII_SALT}{value}"
    return hashlib.sha256(salted.encode()).hexdigest()


def hash_text_for_audit(text: str) -> str:
    """Fingerprint message text for the audit trail without exposing content."""
    return hashlib.sha256(text.encode("utf-8", errors="replace")).hexdigest()


def sanitize_excerpt(text: str, max_chars: int = 500) -> str:
    """Produce a storable excerpt of user-submitted text.

    Masks email addresses and phone numbers, drops control characters,
    collapses whitespace and truncates to max_chars (with a trailing
    ellipsis when cut).

    Args:
        text: Raw user text
        max_chars: Maximum excerpt length

    Returns:
        Sanitized excerpt
    """
    if not text:
        return ""

    cleaned = _CONTROL_PATTERN.sub("", text)
    cleaned = _EMAIL_PATTERN.sub("[email]", cleaned)
    cleaned = _PHONE_PATTERN.sub("[phone]", cleaned)
    cleaned = " ".join(cleaned.split())

    if len(cleaned) > max_chars:
        return cleaned[:max_chars].rstrip() + "..."
    return cleaned
