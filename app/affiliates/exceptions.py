"""
Affiliate-specific exceptions.

Exception Hierarchy:
    AffiliateError (base for the affiliates domain)
    └── CommissionConflictError - A commission insert conflicted and no row matched

    IpIntelligenceError - The IP reputation provider failed (inherits ExternalServiceError)

IpIntelligenceError never leaves the IP intelligence cache: every provider
failure falls back to the local heuristic. It exists so the circuit breaker
sees a failure and the log line carries a stable code.
"""

from __future__ import annotations

from core.exceptions import BaseApplicationError, ExternalServiceError


class AffiliateError(BaseApplicationError):
    """Base exception for the affiliates domain."""

    default_error_code: str = "AFFILIATE_ERROR"


class CommissionConflictError(AffiliateError):
    """
    Raised when a commission insert hit a unique constraint but neither
    natural key finds the winning row.
    """

    default_error_code: str = "COMMISSION_CONFLICT"


class IpIntelligenceError(ExternalServiceError):
    """Raised when the IP reputation provider fails or answers with an error."""

    default_error_code: str = "IP_INTEL_UNAVAILABLE"
