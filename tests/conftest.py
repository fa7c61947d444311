"""Pytest configuration and fixtures."""

import os

import pytest

from tests.fakes.fake_memo_store import FakeMemoStore


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["MEMO_ENGINE_ENV"] = "test"


@pytest.fixture
def store() -> FakeMemoStore:
    """Fresh in-memory memo store with one memo and its deal."""
    return FakeMemoStore.with_memo()
