"""
Pytest configuration shared by every test module.
The environment switches must be set before the app's settings are imported.
"""
import os

import pytest

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("PLATFORM_BASE_DOMAIN", "digitaldukandar.in")

from services.tenant_directory import tenant_directory  # noqa: E402


@pytest.fixture(autouse=True)
def clear_tenant_cache():
    """Cached store lookups must not leak between test databases."""
    tenant_directory.clear()
    yield
    tenant_directory.clear()
