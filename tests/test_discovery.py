"""Tests for azure_devops_exporter.discovery module."""

import threading
import time
from unittest.mock import Mock

import pytest
import requests

from azure_devops_exporter.azure_devops_client import RemoteUnavailable
from azure_devops_exporter.discovery import ServiceDiscovery

PROJECTS = [
    {"id": "id-alpha", "name": "alpha"},
    {"id": "id-beta", "name": "beta"},
    {"id": "id-gamma", "name": "gamma"},
]
POOLS = [{"id": 1, "name": "Azure Pipelines"}, {"id": 9, "name": "self-hosted"}]


@pytest.fixture
def clock():
    return Mock(return_value=0.0)


@pytest.fixture
def discovery_client(mock_client):
    mock_client.list_projects.return_value = PROJECTS
    mock_client.list_agent_pools.return_value = POOLS
    return mock_client


def outage():
    return RemoteUnavailable("gave up", requests.ConnectionError("down"))


class TestServiceDiscovery:
    """Test cases for ServiceDiscovery."""

    def test_all_projects(self, discovery_client, settings):
        discovery = ServiceDiscovery(discovery_client, settings)

        assert discovery.projects() == PROJECTS

    def test_filter_projects_by_id_or_name(self, discovery_client, make_settings):
        settings = make_settings(azure_devops={"filter_projects": ["alpha", "id-gamma"]})

        projects = ServiceDiscovery(discovery_client, settings).projects()

        assert [p["name"] for p in projects] == ["alpha", "gamma"]

    def test_blacklist_projects(self, discovery_client, make_settings):
        settings = make_settings(azure_devops={"blacklist_projects": ["id-beta"]})

        projects = ServiceDiscovery(discovery_client, settings).projects()

        assert [p["name"] for p in projects] == ["alpha", "gamma"]

    def test_blacklist_applies_after_filter(self, discovery_client, make_settings):
        settings = make_settings(
            azure_devops={"filter_projects": ["alpha", "beta"], "blacklist_projects": ["beta"]}
        )

        projects = ServiceDiscovery(discovery_client, settings).projects()

        assert [p["name"] for p in projects] == ["alpha"]

    def test_filter_agent_pools(self, discovery_client, make_settings):
        settings = make_settings(azure_devops={"filter_agentpool": [9]})

        pools = ServiceDiscovery(discovery_client, settings).agent_pools()

        assert pools == [{"id": 9, "name": "self-hosted"}]

    def test_lists_are_cached(self, discovery_client, settings, clock):
        """Test that lists are only refreshed after the refresh interval."""
        discovery = ServiceDiscovery(discovery_client, settings, clock=clock)

        discovery.projects()
        clock.return_value = 1799.0
        discovery.projects()
        assert discovery_client.list_projects.call_count == 1

        clock.return_value = 1800.0
        discovery.projects()
        assert discovery_client.list_projects.call_count == 2

    def test_failed_refresh_keeps_previous_list(self, discovery_client, settings, clock):
        discovery = ServiceDiscovery(discovery_client, settings, clock=clock)
        discovery.projects()

        discovery_client.list_projects.side_effect = outage()
        clock.return_value = 5000.0

        assert discovery.projects() == PROJECTS

    def test_failure_without_previous_list_propagates(
        self, discovery_client, settings
    ):
        discovery_client.list_agent_pools.side_effect = outage()
        discovery = ServiceDiscovery(discovery_client, settings)

        with pytest.raises(RemoteUnavailable):
            discovery.agent_pools()

    def test_returned_list_is_a_copy(self, discovery_client, settings):
        discovery = ServiceDiscovery(discovery_client, settings)

        discovery.projects().clear()

        assert len(discovery.projects()) == 3


class TestConcurrentRefresh:
    """Test cases for callers arriving while a refresh is in flight."""

    @pytest.fixture
    def blocked_refresh(self, discovery_client):
        """Make list_projects block until released."""
        started = threading.Event()
        release = threading.Event()

        def slow_list_projects():
            started.set()
            release.wait(5)
            return PROJECTS

        discovery_client.list_projects.side_effect = slow_list_projects
        yield started, release
        release.set()

    def test_agent_pools_not_blocked_by_project_refresh(
        self, discovery_client, settings, blocked_refresh
    ):
        started, release = blocked_refresh
        discovery = ServiceDiscovery(discovery_client, settings)
        worker = threading.Thread(target=discovery.projects)
        worker.start()
        assert started.wait(5)

        begin = time.monotonic()
        pools = discovery.agent_pools()

        assert pools == POOLS
        assert time.monotonic() - begin < 1
        release.set()
        worker.join(5)

    def test_previous_list_served_during_refresh(
        self, discovery_client, settings, clock, blocked_refresh
    ):
        """Test that an expired list is still returned while another thread refreshes it."""
        started, release = blocked_refresh
        discovery_client.list_projects.side_effect = None
        discovery = ServiceDiscovery(discovery_client, settings, clock=clock)
        discovery.projects()

        def slow_refresh():
            started.set()
            release.wait(5)
            return PROJECTS[:1]

        discovery_client.list_projects.side_effect = slow_refresh
        clock.return_value = 5000.0
        worker = threading.Thread(target=discovery.projects)
        worker.start()
        assert started.wait(5)

        assert discovery.projects() == PROJECTS

        release.set()
        worker.join(5)
        assert discovery.projects() == PROJECTS[:1]
        assert discovery_client.list_projects.call_count == 2
