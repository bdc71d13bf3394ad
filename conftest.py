"""
Root pytest configuration for the Django project.

pytest-django reads DJANGO_SETTINGS_MODULE and the app/ import path from
pyproject.toml. Project-wide hooks live in app/conftest.py; app-specific
fixtures are defined in each app's tests/conftest.py.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
