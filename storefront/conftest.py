# storefront/conftest.py
import sys
import os
import pytest
from pathlib import Path

# Add repository root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

os.environ.setdefault("ENV", "test")


@pytest.fixture(scope="session")
def db_url():
    """
    Provide DATABASE_URL for tests.

    Returns the URL from environment, or None if not set.
    Tests can use this to conditionally enable persistence tests.
    """
    return os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL")


@pytest.fixture(scope="session", autouse=True)
def create_tables(db_url):
    """
    Create the replay ledger table before running tests.

    Runs once per test session if a database URL is set.
    """
    if not db_url:
        yield
        return

    from storefront.core.database import create_all_tables
    create_all_tables()
    yield


@pytest.fixture(scope="function", autouse=True)
def clear_replay_ledger():
    """Each test starts with an empty replay ledger."""
    from storefront.core.idempotency import clear_all_keys

    clear_all_keys()
    yield
    clear_all_keys()


@pytest.fixture
def catalog():
    from storefront.features.catalog.service import load_catalog

    return load_catalog()


@pytest.fixture
def profile(catalog):
    """profile1: membership 999, promotion 17%, video3 paid 699, video4 paid 799."""
    return catalog.require("profile1")


@pytest.fixture
def free_profile(catalog):
    """profile2: zero-price membership."""
    return catalog.require("profile2")


@pytest.fixture
def fake_provider():
    from storefront.tests.mocks import FakeBackendProvider

    return FakeBackendProvider()
