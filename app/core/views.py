"""
Infrastructure endpoints that are not part of the billing domain.
"""

from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse


def health_check(request):
    """
    Health check endpoint for load balancers and orchestration.

    Reports database and cache connectivity plus the state of the circuit
    breakers guarding Stripe and the IP reputation provider. Only the
    database decides the HTTP status: an open breaker or a cache outage is
    degraded operation, not an outage.

    Returns:
        200 when the database is reachable, 503 otherwise

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "circuits": {"stripe": "closed", "ip-intel": "open"}
        }
    """
    from affiliates.services.ip_intelligence import ip_intel_circuit_breaker
    from billing.adapters import stripe_circuit_breaker

    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "circuits": {},
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        cache.set("health_check", "ok", timeout=1)
        ok = cache.get("health_check") == "ok"
        health_status["cache"] = "connected" if ok else "disconnected"
    except Exception:
        health_status["cache"] = "disconnected"

    for breaker in (stripe_circuit_breaker(), ip_intel_circuit_breaker()):
        health_status["circuits"][breaker.name] = breaker.get_status()["state"]

    return JsonResponse(health_status, status=200 if is_healthy else 503)
