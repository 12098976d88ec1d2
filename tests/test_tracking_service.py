from datetime import timedelta

import pytest

from fieldtrack.config import AgentStatus, RiskLevel
from fieldtrack.core import ConfigurationException
from fieldtrack.tracking.application import AgentTrackingService
from fieldtrack.tracking.domain import (
    AgentPosition,
    AgentSearchCriteria,
    DeviceInfo,
    LocationPoint,
    MapBounds,
)
from fieldtrack.tracking.infrastructure import StaticConfigProvider
from tests.conftest import BASE_LAT, BASE_LNG, NOW, TENANT, make_agent, make_route


@pytest.mark.asyncio
async def test_agent_stats(repository, tracking_service):
    repository.save_agent(TENANT, make_agent("a1", device=DeviceInfo(battery_level=10, last_ping_at=NOW)))
    repository.save_agent(TENANT, make_agent("a2", device=DeviceInfo(battery_level=90, signal_strength=10, last_ping_at=NOW)))
    repository.save_agent(TENANT, make_agent(
        "a3",
        status=AgentStatus.OFFLINE,
        device=DeviceInfo(battery_level=50, last_ping_at=NOW - timedelta(hours=2)),
    ))
    repository.save_agent(TENANT, make_agent("a4", status=AgentStatus.SLA_AT_RISK, device=DeviceInfo()))
    repository.save_agent("tenant-2", make_agent("other"))

    stats = await tracking_service.get_agent_stats(TENANT)

    assert stats.total_agents == 4
    assert stats.status_breakdown["available"] == 2
    assert stats.status_breakdown["offline"] == 1
    assert stats.status_breakdown["in_transit"] == 0
    assert stats.online_count == 2
    assert stats.sla_risk_count == 1
    assert stats.low_battery_count == 1
    assert stats.weak_signal_count == 1
    assert stats.avg_battery_level == 50
    assert stats.last_updated == NOW


@pytest.mark.asyncio
async def test_stats_for_empty_tenant(tracking_service):
    stats = await tracking_service.get_agent_stats(TENANT)
    assert stats.total_agents == 0
    assert stats.avg_battery_level == 0


@pytest.mark.asyncio
async def test_agents_in_sla_risk_worst_first(repository, tracking_service):
    deadline = NOW + timedelta(minutes=10)
    repository.save_agent(TENANT, make_agent("mild", current_route=make_route(1200), sla_deadline_at=deadline))
    repository.save_agent(TENANT, make_agent("severe", current_route=make_route(4200), sla_deadline_at=deadline))
    repository.save_agent(TENANT, make_agent("fine", current_route=make_route(300), sla_deadline_at=deadline))
    repository.save_agent(TENANT, make_agent("no-deadline", current_route=make_route(9000)))

    at_risk = await tracking_service.find_agents_in_sla_risk(TENANT)

    assert [r.agent_id for r in at_risk] == ["severe", "mild"]
    assert at_risk[0].risk_level == RiskLevel.HIGH.value
    assert at_risk[1].risk_level == RiskLevel.LOW.value


@pytest.mark.asyncio
async def test_search_agents_reads_tenant_snapshot(repository, tracking_service):
    repository.save_agent(TENANT, make_agent("a1"))
    repository.save_agent(TENANT, make_agent("a2", is_on_duty=False, status=AgentStatus.ON_BREAK))

    results = await tracking_service.search_agents(TENANT, AgentSearchCriteria(on_duty_only=True))

    assert [a.id for a in results] == ["a1"]


def test_what_if_status_uses_supplied_position(tracking_service):
    agent = make_agent(current_route=make_route())
    driving = AgentPosition(point=LocationPoint(BASE_LAT, BASE_LNG), timestamp=NOW, speed=50)

    assert tracking_service.determine_agent_status(agent, driving) == AgentStatus.IN_TRANSIT
    assert tracking_service.determine_agent_status(agent) == AgentStatus.AVAILABLE
    assert agent.status == AgentStatus.AVAILABLE


def test_calculate_sla_risk_for_agent(tracking_service):
    agent = make_agent(current_route=make_route(1200), sla_deadline_at=NOW + timedelta(minutes=10))
    risk = tracking_service.calculate_sla_risk(agent)
    assert risk.is_at_risk
    assert risk.risk_level == RiskLevel.LOW


def test_clusters_and_nearest_without_repository(config_provider, clock):
    service = AgentTrackingService(None, config_provider, clock=clock)
    agents = [make_agent(f"a{i}") for i in range(3)]
    bounds = MapBounds(north=BASE_LAT + 1, south=BASE_LAT - 1, east=BASE_LNG + 1, west=BASE_LNG - 1)

    clusters = service.create_agent_clusters(agents, bounds, zoom_level=14)
    nearest = service.find_nearest_agents(LocationPoint(BASE_LAT, BASE_LNG), agents, max_count=1)

    assert [c.count for c in clusters] == [3]
    assert len(nearest) == 1


@pytest.mark.asyncio
async def test_tenant_queries_need_a_repository(config_provider, clock):
    service = AgentTrackingService(None, config_provider, clock=clock)
    with pytest.raises(ConfigurationException):
        await service.get_agent_stats(TENANT)


def test_working_hours_uses_service_clock(repository):
    day = NOW.replace(hour=0)
    agent = make_agent(shift_start_at=day.replace(hour=9), shift_end_at=day.replace(hour=17))
    service = AgentTrackingService(repository, StaticConfigProvider(), clock=lambda: NOW)
    assert service.is_within_working_hours(agent)


def test_agent_derived_flags():
    agent = make_agent(
        device=DeviceInfo(battery_level=12, last_ping_at=NOW - timedelta(minutes=90)),
        position=AgentPosition(point=LocationPoint(BASE_LAT, BASE_LNG, 250.0), timestamp=NOW, speed=12),
    )
    assert agent.battery_warning()
    assert not agent.signal_warning()
    assert make_agent(device=DeviceInfo(signal_strength=15)).signal_warning()
    assert not make_agent(device=DeviceInfo(signal_strength=15)).signal_warning(weak_signal_percent=10)
    assert not agent.has_accurate_position()
    assert agent.is_moving()
    assert agent.last_seen_text(NOW) == "1h ago"
    assert make_agent().last_seen_text(NOW) == "1min ago"
    assert make_agent(device=DeviceInfo()).last_seen_text(NOW) is None
