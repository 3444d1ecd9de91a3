"""
Affiliate services.

Services:
    IpIntelligenceCache: IP reputation lookups with a database cache
    FraudScorer: Concurrent fraud checks for a referred payment
    CommissionEngine: Commission accrual, reversal and maturation
"""

from affiliates.services.commission_engine import AttributionResult, CommissionEngine
from affiliates.services.fraud_scorer import FraudCheck, FraudCheckResult, FraudScorer
from affiliates.services.ip_intelligence import (
    IpIntelligenceCache,
    IpReputation,
    default_ip_intelligence,
    ip_intel_circuit_breaker,
)

__all__ = [
    "AttributionResult",
    "CommissionEngine",
    "FraudCheck",
    "FraudCheckResult",
    "FraudScorer",
    "IpIntelligenceCache",
    "IpReputation",
    "default_ip_intelligence",
    "ip_intel_circuit_breaker",
]
