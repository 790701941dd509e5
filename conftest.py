"""
Root pytest configuration for the Django project.

This module puts the ``app/`` source root on the import path and configures
pytest-django. App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os
import sys
from pathlib import Path

import django

# Django apps live under app/ (config, core, ledger, escrow)
APP_DIR = Path(__file__).resolve().parent / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
