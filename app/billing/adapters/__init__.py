"""
Billing adapters for external services.

All Stripe API calls go through StripeAdapter. The Stripe circuit breaker
is built per caller by ``stripe_circuit_breaker()``; instances share state
through the cache, so every process sees the same circuit.

Usage:
    from billing.adapters import StripeAdapter, stripe_circuit_breaker

    breaker = stripe_circuit_breaker()
    with breaker.call():
        customer = StripeAdapter.retrieve_customer("cus_123")
"""

from core.circuit_breaker import CircuitBreaker

from billing.adapters.stripe_adapter import CustomerResult, EventPage, StripeAdapter


def stripe_circuit_breaker() -> CircuitBreaker:
    """Circuit breaker guarding Stripe API reads, configured from settings."""
    return CircuitBreaker.from_settings("stripe", prefix="STRIPE_CIRCUIT")


__all__ = [
    "CustomerResult",
    "EventPage",
    "StripeAdapter",
    "stripe_circuit_breaker",
]
