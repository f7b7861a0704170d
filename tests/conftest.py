"""Shared pytest fixtures and configuration."""

import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.settings import ExporterSettings, RequestSettings

PROJECT_A = {"id": "6ce954b1-ce1f-45d1-b94d-e6bf2464ba2c", "name": "alpha"}
PROJECT_B = {"id": "2d6c5e1b-99e3-4a57-8b4b-6c8c9a4b1e00", "name": "beta"}


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_settings():
    """Factory for settings with an access token and optional overrides per section."""

    def _make(**sections) -> ExporterSettings:
        azure_devops = {"organisation": "test-org", "access_token": "test-pat"}
        azure_devops.update(sections.pop("azure_devops", {}))
        return ExporterSettings(azure_devops=azure_devops, **sections)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def mock_auth_provider():
    """Mock authentication provider for testing."""
    provider = Mock()
    provider.get_auth_token.return_value = "test-auth-token"
    provider.get_auth_header.return_value = {"Authorization": "Bearer test-auth-token"}
    return provider


@pytest.fixture
def client(mock_auth_provider):
    """Client against the cloud service with a small retry budget."""
    return AzureDevopsClient(
        organisation="test-org",
        auth_provider=mock_auth_provider,
        request_settings=RequestSettings(retries=2, retry_wait=1, retry_max_wait=10),
    )


@pytest.fixture
def mock_client():
    """Stand-in for the API client, for collectors and discovery."""
    return Mock(spec=AzureDevopsClient)


@pytest.fixture
def mock_discovery():
    discovery = Mock()
    discovery.projects.return_value = [PROJECT_A, PROJECT_B]
    discovery.agent_pools.return_value = []
    return discovery
