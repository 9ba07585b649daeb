"""Test configuration."""

import os
from collections.abc import Generator
from pathlib import Path
from typing import List

import pytest
from pytest import Config

from address_resolver.core.logging import configure_logging

fixture = pytest.fixture


@fixture(scope="session")
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


pytest_plugins: List[str] = [
    "tests.fixtures.geocoding",
]


@fixture(scope="session", name="test_environment", autouse=True)
def test_environment_fixture() -> Generator[None, None, None]:
    """Keep tests away from real Redis and real configuration files."""
    saved = {key: os.environ.get(key) for key in ("REDIS_URL", "GEOCODING_CONFIG_PATH")}
    os.environ.pop("REDIS_URL", None)
    os.environ.pop("GEOCODING_CONFIG_PATH", None)
    os.environ["TESTING"] = "true"

    yield

    for key, value in saved.items():
        if value is not None:
            os.environ[key] = value


def pytest_configure(config: Config) -> None:
    """Configure pytest.

    Args:
        config: Pytest configuration object
    """
    # Configure logging for test environment
    configure_logging(testing=True)
    config.addinivalue_line("markers", "integration: mark test as an integration test")
