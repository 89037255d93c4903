"""
Unit test fixtures.

Unit tests work on in-memory models only and never open a database.
"""

import pytest

from compliance_engine.services.compliance.condition_cache import ConditionCache


@pytest.fixture
def condition_cache() -> ConditionCache:
    return ConditionCache(max_entries=3)
