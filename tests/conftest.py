"""Shared pytest fixtures for booking engine tests."""
import sys
sys.dont_write_bytecode = True

from datetime import date  # noqa: E402

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_dependency_caches():
    """Reset cached dependency providers between tests.

    The providers in vilo.api.deps are lru_cached per process; without a
    reset a collaborator built in one test leaks into the next.
    """
    from vilo.api import deps

    for provider in (deps.get_tasks_client, deps.get_orchestrator, deps.get_retry_resolver):
        provider.cache_clear()
    yield
    for provider in (deps.get_tasks_client, deps.get_orchestrator, deps.get_retry_resolver):
        provider.cache_clear()


@pytest.fixture
def today():
    return date(2026, 3, 1)


@pytest.fixture
def check_in():
    return date(2026, 4, 10)


@pytest.fixture
def check_out(check_in):
    return date(2026, 4, 13)  # 3 nights
