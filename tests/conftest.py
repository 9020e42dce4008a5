"""Test configuration and fixtures for the entire test suite."""

import os
import sys
from pathlib import Path

import pytest
from dotenv import load_dotenv


# Add the project root to the Python path
@pytest.fixture(scope="session", autouse=True)
def setup_path() -> None:
    """Add the project root to the Python path."""
    project_root = Path(__file__).parent.parent
    sys.path.insert(0, str(project_root))

    # Load environment variables from .env file (e.g. a Redis URL)
    load_dotenv()


@pytest.fixture
def redis_url() -> str:
    """Redis URL for integration tests; skip when none is configured."""
    url = os.environ.get("MARKETFEED_STORE_REDIS_URL")
    if not url:
        pytest.skip("MARKETFEED_STORE_REDIS_URL is not set")
    return url
