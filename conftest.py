"""
Root pytest configuration for the Django project.

Sets the environment the settings module needs before pytest-django loads
it. Values already present in the environment win, so the suite can run
against PostgreSQL and Redis in docker-compose as well as against SQLite.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")
os.environ.setdefault("DEBUG", "False")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")
os.environ.setdefault("LOG_FILE_NAME", "test.log")
