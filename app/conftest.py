"""
Project-wide pytest configuration and fixtures.

Test-only settings are applied in pytest_configure, before Django is set
up, so every module sees the same values:

- A local-memory cache (circuit breakers need a working cache)
- An in-memory stand-in for the Redis connection behind distributed locks
- Eager Celery tasks
- Fixed webhook and cron secrets
"""

from unittest.mock import patch

import django
import pytest

TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_CRON_SECRET = "cron-test-secret"


def pytest_configure():
    """Configure Django settings before tests run."""
    from django.conf import settings

    settings.CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "billing-tests",
        }
    }
    settings.STRIPE_WEBHOOK_SECRET = TEST_WEBHOOK_SECRET
    settings.STRIPE_SECRET_KEY = "sk_test_dummy"
    settings.CRON_SECRET = TEST_CRON_SECRET
    settings.IP_INTEL_API_KEY = ""
    settings.IP_HASH_SALT = "test-salt"
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = True
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    django.setup()


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (webhook in, ledger and queue state out)
    - test_views.py, test_services.py, test_tasks.py, etc. → integration
    - test_models.py, test_events.py, test_helpers.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_dispatcher.py",
        "test_resolver.py",
        "test_matcher.py",
        "test_commission_engine.py",
        "test_fraud_scorer.py",
        "test_ip_intelligence.py",
        "test_subscription_sync.py",
        "test_reconciliation_service.py",
        "test_circuit_breaker.py",
        "test_db.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_events.py",
        "test_helpers.py",
        "test_adapters.py",
        "test_alerts.py",
        "test_locks.py",
        "test_state_transitions.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def _clear_cache():
    """Start every test with empty circuit breaker state."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


class InMemoryLockStore:
    """
    Stand-in for the Redis connection behind core.locks.

    Supports SET NX and the release script's check-and-delete; TTLs are
    recorded but never expire.
    """

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.ttls[key] = ex
        return True

    def get(self, key):
        return self.values.get(key)

    def eval(self, script, numkeys, key, token):
        if self.values.get(key) != token:
            return 0
        del self.values[key]
        self.ttls.pop(key, None)
        return 1


@pytest.fixture(autouse=True)
def lock_store():
    """Serve distributed locks from memory instead of Redis."""
    store = InMemoryLockStore()
    with patch("core.locks.get_redis_connection", return_value=store):
        yield store
