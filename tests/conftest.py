"""
Shared test fixtures.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fieldtrack.config import AgentStatus
from fieldtrack.tracking.application import AgentTrackingService, LocationUpdateService
from fieldtrack.tracking.domain import (
    AgentPosition,
    AgentRoute,
    DeviceInfo,
    FieldAgent,
    LocationPoint,
    TrackingConfig,
)
from fieldtrack.tracking.infrastructure import InMemoryFieldAgentRepository, StaticConfigProvider

TENANT = "tenant-1"
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

# Downtown Madrid, used as the default position for agents
BASE_LAT = 40.4168
BASE_LNG = -3.7038


def make_agent(agent_id: str = "agent-1", **overrides) -> FieldAgent:
    """An online, on-duty, stationary agent unless overridden."""
    values = dict(
        id=agent_id,
        name=f"Tech {agent_id}",
        team="north",
        skills=frozenset({"hvac"}),
        status=AgentStatus.AVAILABLE,
        status_since=NOW - timedelta(hours=1),
        is_on_duty=True,
        position=AgentPosition(
            point=LocationPoint(BASE_LAT, BASE_LNG, 10.0),
            timestamp=NOW - timedelta(minutes=1),
            speed=0.0,
        ),
        device=DeviceInfo(battery_level=80, signal_strength=70, last_ping_at=NOW - timedelta(minutes=1)),
    )
    values.update(overrides)
    return FieldAgent(**values)


def make_route(eta_seconds: int = 600, route_id: str = "route-1") -> AgentRoute:
    return AgentRoute(id=route_id, eta_seconds=eta_seconds, distance_meters=5000)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def config():
    return TrackingConfig()


@pytest.fixture
def config_provider(config):
    return StaticConfigProvider(config)


@pytest.fixture
def repository():
    return InMemoryFieldAgentRepository()


@pytest.fixture
def update_service(repository, config_provider, clock):
    return LocationUpdateService(repository, config_provider, clock=clock)


@pytest.fixture
def tracking_service(repository, config_provider, clock):
    return AgentTrackingService(repository, config_provider, clock=clock)
