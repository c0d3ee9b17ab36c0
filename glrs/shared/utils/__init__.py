"""Shared utilities for the GLRS safety platform."""
from .pii import hash_pii, hash_text_for_audit, configure_pii_salt, sanitize_excerpt

__all__ = ["hash_pii", "hash_text_for_audit", "configure_pii_salt", "sanitize_excerpt"]
