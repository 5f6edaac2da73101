"""
Shared test configuration for pageidentity.

Provides fixtures for identities, stored records and a throwaway SQLite store.
"""

# Standard library imports
import os
import tempfile
from pathlib import Path

# Third-party imports
import pytest

# Local imports
from pageidentity.config import MatchingConfig, SQLiteConfig
from pageidentity.protocols import PageIdentity
from pageidentity.service import PageIdentityService
from pageidentity.storage import SQLitePageIdentityStore

from tests.helpers.identity_data import BASE_LAYOUT_TOKENS, BASE_SIGNATURE

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep PAGEID_* settings from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("PAGEID_"):
            monkeypatch.delenv(key, raising=False)


# ============================================================================
# Core Test Fixtures
# ============================================================================


@pytest.fixture
def make_identity():
    """Factory for identities with sensible defaults."""

    def _make(**overrides) -> PageIdentity:
        fields = {
            "normalized_url": "https://a.com/x",
            "content_signature": str(BASE_SIGNATURE),
            "layout_signature": str(BASE_SIGNATURE),
            "layout_tokens": BASE_LAYOUT_TOKENS,
            "text_token_sample": 50,
            "generated_at": "2024-01-01T00:00:00+00:00",
        }
        fields.update(overrides)
        return PageIdentity(**fields)

    return _make


@pytest.fixture
def payload_dict():
    """Factory for camelCase wire payloads."""

    def _make(**overrides) -> dict:
        payload = {
            "normalizedUrl": "https://a.com/x",
            "contentSignature": str(BASE_SIGNATURE),
            "layoutSignature": str(BASE_SIGNATURE),
            "layoutTokens": list(BASE_LAYOUT_TOKENS),
            "textTokenSample": 50,
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def temp_dir():
    """Temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def sqlite_config(temp_dir):
    return SQLiteConfig(db_path=temp_dir / "identities.db", pool_size=2)


@pytest.fixture
async def store(sqlite_config):
    """Initialized SQLite page identity store."""
    identity_store = SQLitePageIdentityStore(sqlite_config)
    await identity_store.initialize()
    yield identity_store
    await identity_store.close()


@pytest.fixture
def service(store):
    return PageIdentityService(store, matching=MatchingConfig())
