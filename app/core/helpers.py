"""
Small, dependency-free helpers shared across apps.

Raw IP addresses and raw emails are personal data. Anything that is stored
or logged goes through these helpers first.
"""

from __future__ import annotations

import hashlib


def hash_ip(ip_address: str, salt: str | None = None) -> str:
    """
    Hash an IP address for storage and comparison.

    The salt defaults to ``settings.IP_HASH_SALT`` so every component that
    hashes an IP produces the same digest for the same address.

    Args:
        ip_address: IPv4 or IPv6 address as received
        salt: Optional explicit salt

    Returns:
        64-character hex SHA-256 digest

    Example:
        hash_ip("203.0.113.7")  # '5b1e...'
    """
    if salt is None:
        from django.conf import settings

        salt = getattr(settings, "IP_HASH_SALT", "")

    normalized = ip_address.strip().lower()
    return hashlib.sha256(f"{salt}{normalized}".encode("utf-8")).hexdigest()


def normalize_email(email: str | None) -> str | None:
    """
    Normalize an email for equality matching.

    Returns None for empty input so callers can branch on truthiness.

    Example:
        normalize_email("  Jane.Doe@Example.COM ")  # 'jane.doe@example.com'
    """
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None
