"""
SQLAlchemy repository tests against a file-backed SQLite database (aiosqlite).
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from fieldtrack.config import AgentStatus, GeofenceShape
from fieldtrack.core import RepositoryException
from fieldtrack.infrastructure.database import (
    close_database,
    create_tables,
    get_session,
    get_session_maker,
    init_database,
)
from fieldtrack.tracking.application import LocationReport, LocationUpdateService
from fieldtrack.tracking.domain import AgentPosition, AgentRoute, DeviceInfo, Geofence, LocationPoint, Waypoint
from fieldtrack.tracking.infrastructure import (
    AgentPositionHistoryModel,
    SQLAlchemyFieldAgentRepository,
    StaticConfigProvider,
)
from tests.conftest import BASE_LAT, BASE_LNG, NOW, TENANT, make_agent


@pytest.fixture
async def sql_repository(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'fieldtrack.db'}")
    await create_tables()
    yield SQLAlchemyFieldAgentRepository(get_session_maker())
    await close_database()


@pytest.mark.asyncio
async def test_agent_round_trip(sql_repository):
    route = AgentRoute(
        id="route-9",
        eta_seconds=900,
        distance_meters=7000,
        waypoints=(Waypoint(40.5, -3.6, order=1), Waypoint(40.45, -3.65, order=0, is_completed=True)),
    )
    agent = make_agent(
        skills=frozenset({"hvac", "gas"}),
        current_route=route,
        assigned_ticket_id="T-77",
        customer_site_id="S-3",
        sla_deadline_at=NOW + timedelta(hours=2),
    )
    await sql_repository.save_agent(TENANT, agent)

    loaded = await sql_repository.find_agent_by_id(TENANT, "agent-1")

    assert loaded == agent
    assert loaded.position.timestamp.tzinfo is not None
    assert loaded.current_route.next_waypoint.order == 1


@pytest.mark.asyncio
async def test_unknown_agent_returns_none(sql_repository):
    assert await sql_repository.find_agent_by_id(TENANT, "ghost") is None
    assert await sql_repository.list_agents(TENANT) == []


@pytest.mark.asyncio
async def test_list_agents_is_tenant_scoped(sql_repository):
    await sql_repository.save_agent(TENANT, make_agent("b"))
    await sql_repository.save_agent(TENANT, make_agent("a"))
    await sql_repository.save_agent("tenant-2", make_agent("c"))

    assert [a.id for a in await sql_repository.list_agents(TENANT)] == ["a", "b"]


@pytest.mark.asyncio
async def test_updates_for_unknown_agent_fail(sql_repository):
    with pytest.raises(RepositoryException):
        await sql_repository.update_agent_status(TENANT, "ghost", AgentStatus.ON_BREAK, NOW)


@pytest.mark.asyncio
async def test_status_device_and_route_updates(sql_repository):
    await sql_repository.save_agent(TENANT, make_agent())

    await sql_repository.update_agent_status(TENANT, "agent-1", AgentStatus.ON_BREAK, NOW)
    await sql_repository.update_device_info(TENANT, "agent-1", DeviceInfo(battery_level=5, last_ping_at=NOW))
    await sql_repository.update_agent_route(TENANT, "agent-1", AgentRoute(id="r", eta_seconds=60, distance_meters=100))

    loaded = await sql_repository.find_agent_by_id(TENANT, "agent-1")
    assert loaded.status == AgentStatus.ON_BREAK
    assert loaded.status_since == NOW
    assert loaded.device == DeviceInfo(battery_level=5, last_ping_at=NOW)
    assert loaded.current_route.id == "r"

    await sql_repository.update_agent_route(TENANT, "agent-1", None)
    assert (await sql_repository.find_agent_by_id(TENANT, "agent-1")).current_route is None


@pytest.mark.asyncio
async def test_position_history_window_and_uniqueness(sql_repository):
    await sql_repository.save_agent(TENANT, make_agent())
    for minutes in (90, 30, 10):
        await sql_repository.append_position_history(
            TENANT, "agent-1", LocationPoint(BASE_LAT + minutes / 1000, BASE_LNG), NOW - timedelta(minutes=minutes)
        )

    history = await sql_repository.get_position_history(TENANT, "agent-1", NOW - timedelta(hours=1), NOW)

    assert [p.lat for p in history] == [pytest.approx(BASE_LAT + 0.03), pytest.approx(BASE_LAT + 0.01)]
    with pytest.raises(RepositoryException):
        await sql_repository.append_position_history(
            TENANT, "agent-1", LocationPoint(BASE_LAT, BASE_LNG), NOW - timedelta(minutes=10)
        )


@pytest.mark.asyncio
async def test_geofences_match_stored_position(sql_repository):
    await sql_repository.save_agent(TENANT, make_agent())
    await sql_repository.save_geofence(TENANT, Geofence(
        id="block", name="City block", shape=GeofenceShape.POLYGON,
        vertices=((BASE_LAT - 0.01, BASE_LNG - 0.01), (BASE_LAT - 0.01, BASE_LNG + 0.01),
                  (BASE_LAT + 0.01, BASE_LNG + 0.01), (BASE_LAT + 0.01, BASE_LNG - 0.01)),
    ))
    await sql_repository.save_geofence(TENANT, Geofence(
        id="far", name="Far away", shape=GeofenceShape.CIRCLE,
        center=LocationPoint(BASE_LAT + 1, BASE_LNG), radius_meters=100,
    ))

    assert await sql_repository.check_geofences(TENANT, "agent-1") == {"block"}
    assert await sql_repository.check_geofences(TENANT, "ghost") == set()


@pytest.mark.asyncio
async def test_pipeline_against_database(sql_repository):
    await sql_repository.save_agent(TENANT, make_agent(is_on_duty=False))
    service = LocationUpdateService(sql_repository, StaticConfigProvider(), clock=lambda: NOW)
    report = LocationReport(agent_id="agent-1", lat=BASE_LAT, lng=BASE_LNG + 0.001, timestamp=NOW, speed=0)

    result = await service.update_location(TENANT, report)
    repeat = await service.update_location(TENANT, report)

    loaded = await sql_repository.find_agent_by_id(TENANT, "agent-1")
    assert result.new_status == AgentStatus.ON_BREAK
    assert repeat.ignored is True
    assert loaded.status == AgentStatus.ON_BREAK
    assert loaded.position.timestamp == NOW
    assert len(await service.get_agent_location_history(TENANT, "agent-1", hours=1)) == 1


@pytest.mark.asyncio
async def test_history_rows_visible_through_session_helper(sql_repository):
    await sql_repository.save_agent(TENANT, make_agent())
    await sql_repository.append_position_history(TENANT, "agent-1", LocationPoint(BASE_LAT, BASE_LNG), NOW)

    async with get_session() as session:
        rows = (await session.execute(select(AgentPositionHistoryModel))).scalars().all()

    assert [(r.tenant_id, r.agent_id) for r in rows] == [(TENANT, "agent-1")]


@pytest.mark.asyncio
async def test_failed_history_insert_rolls_back_the_update(sql_repository):
    agent = make_agent(is_on_duty=False)
    await sql_repository.save_agent(TENANT, agent)
    # Occupies the history slot the report below needs
    await sql_repository.append_position_history(TENANT, "agent-1", LocationPoint(BASE_LAT, BASE_LNG), NOW)
    service = LocationUpdateService(sql_repository, StaticConfigProvider(), clock=lambda: NOW)
    report = LocationReport(agent_id="agent-1", lat=BASE_LAT + 0.01, lng=BASE_LNG, timestamp=NOW, battery_level=20)

    with pytest.raises(RepositoryException):
        await service.update_location(TENANT, report)

    loaded = await sql_repository.find_agent_by_id(TENANT, "agent-1")
    assert loaded.position.timestamp == NOW - timedelta(minutes=1)
    assert loaded.location == agent.location
    assert loaded.device == agent.device
    assert loaded.status == AgentStatus.AVAILABLE


@pytest.mark.asyncio
async def test_update_agent_position(sql_repository):
    await sql_repository.save_agent(TENANT, make_agent())
    position = AgentPosition(point=LocationPoint(BASE_LAT + 0.02, BASE_LNG, 5.0), timestamp=NOW, heading=45.0, speed=12.0)

    await sql_repository.update_agent_position(TENANT, "agent-1", position)

    assert (await sql_repository.find_agent_by_id(TENANT, "agent-1")).position == position
