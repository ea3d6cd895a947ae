"""
Pytest configuration and shared fixtures for admin gate tests.
"""

import pytest

from admingate.bundled.memory import MemoryAdminStore
from tests.helpers import make_config


@pytest.fixture
def store():
    return MemoryAdminStore()


@pytest.fixture
def config():
    return make_config()
