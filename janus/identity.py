"""Helpers for opaque identity strings (wallet / user addresses)."""

from __future__ import annotations

import hashlib


def identity_digest(identity: str) -> str:
    """Stable, filesystem-safe key for an identity."""
    return hashlib.sha256(identity.encode()).hexdigest()[:32]


def short(identity: str | None) -> str:
    """Truncate an identity for log readability."""
    if not identity:
        return "none"
    return identity[:16]


__all__ = ["identity_digest", "short"]
