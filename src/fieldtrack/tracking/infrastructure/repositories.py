"""
Tracking Infrastructure Repositories
====================================

Concrete implementations of the tracking repository interfaces.

- SQLAlchemyFieldAgentRepository: async SQLAlchemy persistence
- InMemoryFieldAgentRepository: dictionary-backed store for what-if runs and tests
- YAMLConfigProvider / StaticConfigProvider: tracking configuration sources
"""

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional, Set, Tuple

import yaml
from pydantic import ValidationError
from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fieldtrack.config import AgentStatus, GeofenceShape
from fieldtrack.core import ConfigurationException, RepositoryException
from fieldtrack.shared.infrastructure.logging import get_logger
from fieldtrack.tracking.application import IFieldAgentRepository, ITrackingConfigProvider
from fieldtrack.tracking.domain import (
    AgentPosition,
    AgentRoute,
    DeviceInfo,
    FieldAgent,
    Geofence,
    LocationPoint,
    TrackingConfig,
    Waypoint,
)
from fieldtrack.tracking.domain.value_objects import ensure_utc
from fieldtrack.tracking.infrastructure.models import (
    AgentPositionHistoryModel,
    FieldAgentModel,
    GeofenceModel,
)

logger = get_logger(__name__)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return ensure_utc(value) if value is not None else None


class SQLAlchemyFieldAgentRepository(IFieldAgentRepository):
    """
    SQLAlchemy implementation of the field agent repository.

    Every call runs in its own short session so updates for different
    agents can proceed concurrently. ``SQLAlchemyError`` is wrapped in
    ``RepositoryException``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._session_factory() as session:
                yield session
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Field agent storage failure: {e}") from e

    # ========== Provisioning (outside the tracking interface) ==========

    async def save_agent(self, tenant_id: str, agent: FieldAgent) -> None:
        """Insert or replace an agent row."""
        async with self._session() as session:
            await session.merge(self._to_model(tenant_id, agent))

    async def save_geofence(self, tenant_id: str, geofence: Geofence) -> None:
        """Insert or replace a geofence definition."""
        async with self._session() as session:
            await session.merge(GeofenceModel(
                tenant_id=tenant_id,
                id=geofence.id,
                name=geofence.name,
                shape=geofence.shape.value,
                center_lat=geofence.center.lat if geofence.center else None,
                center_lng=geofence.center.lng if geofence.center else None,
                radius_meters=geofence.radius_meters,
                vertices=[list(v) for v in geofence.vertices] or None,
                is_active=True,
            ))

    # ========== IFieldAgentRepository ==========

    async def find_agent_by_id(self, tenant_id: str, agent_id: str) -> Optional[FieldAgent]:
        async with self._session() as session:
            model = await session.get(FieldAgentModel, (tenant_id, agent_id))
            if model is None or not model.is_active:
                return None
            return self._to_domain(model)

    async def list_agents(self, tenant_id: str) -> List[FieldAgent]:
        stmt = (
            select(FieldAgentModel)
            .where(and_(FieldAgentModel.tenant_id == tenant_id, FieldAgentModel.is_active.is_(True)))
            .order_by(FieldAgentModel.id)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [self._to_domain(model) for model in result.scalars().all()]

    async def update_agent_position(
        self, tenant_id: str, agent_id: str, position: AgentPosition
    ) -> None:
        await self._update(tenant_id, agent_id, self._position_values(position))

    async def apply_location_update(
        self,
        tenant_id: str,
        agent_id: str,
        position: AgentPosition,
        device: DeviceInfo,
        status: Optional[AgentStatus] = None,
        status_since: Optional[datetime] = None,
    ) -> None:
        values = {
            **self._position_values(position),
            **self._device_values(device),
        }
        if status is not None:
            values.update(status=status.value, status_since=status_since)

        async with self._session() as session:
            await self._execute_update(session, tenant_id, agent_id, values)
            session.add(AgentPositionHistoryModel(
                tenant_id=tenant_id,
                agent_id=agent_id,
                lat=position.point.lat,
                lng=position.point.lng,
                accuracy=position.point.accuracy_meters,
                recorded_at=position.timestamp,
            ))

    async def update_device_info(self, tenant_id: str, agent_id: str, device: DeviceInfo) -> None:
        await self._update(tenant_id, agent_id, self._device_values(device))

    async def update_agent_status(
        self, tenant_id: str, agent_id: str, status: AgentStatus, status_since: datetime
    ) -> None:
        await self._update(tenant_id, agent_id, {
            "status": status.value,
            "status_since": status_since,
        })

    async def update_agent_route(
        self, tenant_id: str, agent_id: str, route: Optional[AgentRoute]
    ) -> None:
        if route is None:
            values = {
                "route_id": None,
                "route_eta_seconds": None,
                "route_distance_meters": None,
                "route_waypoints": None,
            }
        else:
            values = {
                "route_id": route.id,
                "route_eta_seconds": route.eta_seconds,
                "route_distance_meters": route.distance_meters,
                "route_waypoints": [
                    {"lat": w.lat, "lng": w.lng, "order": w.order, "is_completed": w.is_completed}
                    for w in route.waypoints
                ],
            }
        await self._update(tenant_id, agent_id, values)

    async def append_position_history(
        self, tenant_id: str, agent_id: str, point: LocationPoint, timestamp: datetime
    ) -> None:
        async with self._session() as session:
            session.add(AgentPositionHistoryModel(
                tenant_id=tenant_id,
                agent_id=agent_id,
                lat=point.lat,
                lng=point.lng,
                accuracy=point.accuracy_meters,
                recorded_at=timestamp,
            ))

    async def check_geofences(self, tenant_id: str, agent_id: str) -> Set[str]:
        async with self._session() as session:
            agent = await session.get(FieldAgentModel, (tenant_id, agent_id))
            if agent is None or agent.lat is None or agent.lng is None:
                return set()
            result = await session.execute(
                select(GeofenceModel).where(and_(
                    GeofenceModel.tenant_id == tenant_id,
                    GeofenceModel.is_active.is_(True),
                ))
            )
            geofences = [self._geofence_to_domain(model) for model in result.scalars().all()]

        point = LocationPoint(agent.lat, agent.lng)
        return {geofence.id for geofence in geofences if geofence.contains(point)}

    async def get_position_history(
        self, tenant_id: str, agent_id: str, from_time: datetime, to_time: datetime
    ) -> List[LocationPoint]:
        stmt = (
            select(AgentPositionHistoryModel)
            .where(and_(
                AgentPositionHistoryModel.tenant_id == tenant_id,
                AgentPositionHistoryModel.agent_id == agent_id,
                AgentPositionHistoryModel.recorded_at >= from_time,
                AgentPositionHistoryModel.recorded_at <= to_time,
            ))
            .order_by(AgentPositionHistoryModel.recorded_at.asc())
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [
                LocationPoint(row.lat, row.lng, row.accuracy)
                for row in result.scalars().all()
            ]

    # ========== Mapping ==========

    async def _update(self, tenant_id: str, agent_id: str, values: dict) -> None:
        async with self._session() as session:
            await self._execute_update(session, tenant_id, agent_id, values)

    @staticmethod
    async def _execute_update(
        session: AsyncSession, tenant_id: str, agent_id: str, values: dict
    ) -> None:
        stmt = (
            update(FieldAgentModel)
            .where(and_(FieldAgentModel.tenant_id == tenant_id, FieldAgentModel.id == agent_id))
            .values(**values)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            raise RepositoryException(f"Field agent {agent_id} not found")

    @staticmethod
    def _position_values(position: AgentPosition) -> dict:
        return {
            "lat": position.point.lat,
            "lng": position.point.lng,
            "accuracy": position.point.accuracy_meters,
            "heading": position.heading,
            "speed": position.speed,
            "position_at": position.timestamp,
        }

    @staticmethod
    def _device_values(device: DeviceInfo) -> dict:
        return {
            "battery_level": device.battery_level,
            "signal_strength": device.signal_strength,
            "last_ping_at": device.last_ping_at,
        }

    @staticmethod
    def _to_model(tenant_id: str, agent: FieldAgent) -> FieldAgentModel:
        position = agent.position
        route = agent.current_route
        return FieldAgentModel(
            tenant_id=tenant_id,
            id=agent.id,
            name=agent.name,
            team=agent.team,
            skills=sorted(agent.skills),
            is_active=True,
            status=agent.status.value,
            status_since=agent.status_since,
            is_on_duty=agent.is_on_duty,
            shift_start_at=agent.shift_start_at,
            shift_end_at=agent.shift_end_at,
            lat=position.point.lat if position else None,
            lng=position.point.lng if position else None,
            accuracy=position.point.accuracy_meters if position else None,
            heading=position.heading if position else None,
            speed=position.speed if position else None,
            position_at=position.timestamp if position else None,
            route_id=route.id if route else None,
            route_eta_seconds=route.eta_seconds if route else None,
            route_distance_meters=route.distance_meters if route else None,
            route_waypoints=[
                {"lat": w.lat, "lng": w.lng, "order": w.order, "is_completed": w.is_completed}
                for w in route.waypoints
            ] if route else None,
            battery_level=agent.device.battery_level,
            signal_strength=agent.device.signal_strength,
            last_ping_at=agent.device.last_ping_at,
            assigned_ticket_id=agent.assigned_ticket_id,
            customer_site_id=agent.customer_site_id,
            sla_deadline_at=agent.sla_deadline_at,
        )

    @staticmethod
    def _to_domain(model: FieldAgentModel) -> FieldAgent:
        position = None
        if model.lat is not None and model.lng is not None and model.position_at is not None:
            position = AgentPosition(
                point=LocationPoint(model.lat, model.lng, model.accuracy),
                timestamp=_utc(model.position_at),
                heading=model.heading,
                speed=model.speed,
            )

        route = None
        if model.route_id:
            route = AgentRoute(
                id=model.route_id,
                eta_seconds=model.route_eta_seconds or 0,
                distance_meters=model.route_distance_meters or 0,
                waypoints=tuple(Waypoint(**w) for w in (model.route_waypoints or [])),
            )

        return FieldAgent(
            id=model.id,
            name=model.name,
            team=model.team or "",
            skills=frozenset(model.skills or []),
            status=AgentStatus(model.status),
            status_since=_utc(model.status_since),
            is_on_duty=model.is_on_duty,
            shift_start_at=_utc(model.shift_start_at),
            shift_end_at=_utc(model.shift_end_at),
            position=position,
            current_route=route,
            device=DeviceInfo(
                battery_level=model.battery_level,
                signal_strength=model.signal_strength,
                last_ping_at=_utc(model.last_ping_at),
            ),
            assigned_ticket_id=model.assigned_ticket_id,
            customer_site_id=model.customer_site_id,
            sla_deadline_at=_utc(model.sla_deadline_at),
        )

    @staticmethod
    def _geofence_to_domain(model: GeofenceModel) -> Geofence:
        center = None
        if model.center_lat is not None and model.center_lng is not None:
            center = LocationPoint(model.center_lat, model.center_lng)
        return Geofence(
            id=model.id,
            name=model.name,
            shape=GeofenceShape(model.shape),
            center=center,
            radius_meters=model.radius_meters,
            vertices=tuple((lat, lng) for lat, lng in (model.vertices or [])),
        )


class InMemoryFieldAgentRepository(IFieldAgentRepository):
    """
    Dictionary-backed repository.

    Hands out copies so callers never mutate stored state directly.
    """

    def __init__(self):
        self._agents: Dict[Tuple[str, str], FieldAgent] = {}
        self._history: Dict[Tuple[str, str], List[Tuple[datetime, LocationPoint]]] = {}
        self._geofences: Dict[str, List[Geofence]] = {}

    def save_agent(self, tenant_id: str, agent: FieldAgent) -> None:
        self._agents[(tenant_id, agent.id)] = replace(agent)

    def save_geofence(self, tenant_id: str, geofence: Geofence) -> None:
        fences = [g for g in self._geofences.get(tenant_id, []) if g.id != geofence.id]
        fences.append(geofence)
        self._geofences[tenant_id] = fences

    def _stored(self, tenant_id: str, agent_id: str) -> FieldAgent:
        agent = self._agents.get((tenant_id, agent_id))
        if agent is None:
            raise RepositoryException(f"Field agent {agent_id} not found")
        return agent

    async def find_agent_by_id(self, tenant_id: str, agent_id: str) -> Optional[FieldAgent]:
        agent = self._agents.get((tenant_id, agent_id))
        return replace(agent) if agent else None

    async def list_agents(self, tenant_id: str) -> List[FieldAgent]:
        return [
            replace(agent)
            for (tenant, _), agent in sorted(self._agents.items())
            if tenant == tenant_id
        ]

    async def update_agent_position(
        self, tenant_id: str, agent_id: str, position: AgentPosition
    ) -> None:
        self._stored(tenant_id, agent_id).position = position

    async def apply_location_update(
        self,
        tenant_id: str,
        agent_id: str,
        position: AgentPosition,
        device: DeviceInfo,
        status: Optional[AgentStatus] = None,
        status_since: Optional[datetime] = None,
    ) -> None:
        agent = self._stored(tenant_id, agent_id)
        # History goes first, it is the only write that can fail
        await self.append_position_history(tenant_id, agent_id, position.point, position.timestamp)
        agent.position = position
        agent.device = device
        if status is not None:
            agent.status = status
            agent.status_since = status_since

    async def update_device_info(self, tenant_id: str, agent_id: str, device: DeviceInfo) -> None:
        self._stored(tenant_id, agent_id).device = device

    async def update_agent_status(
        self, tenant_id: str, agent_id: str, status: AgentStatus, status_since: datetime
    ) -> None:
        agent = self._stored(tenant_id, agent_id)
        agent.status = status
        agent.status_since = status_since

    async def update_agent_route(
        self, tenant_id: str, agent_id: str, route: Optional[AgentRoute]
    ) -> None:
        self._stored(tenant_id, agent_id).current_route = route

    async def append_position_history(
        self, tenant_id: str, agent_id: str, point: LocationPoint, timestamp: datetime
    ) -> None:
        entries = self._history.setdefault((tenant_id, agent_id), [])
        if any(recorded_at == timestamp for recorded_at, _ in entries):
            raise RepositoryException(
                f"Position history entry for {agent_id} at {timestamp.isoformat()} already exists"
            )
        entries.append((timestamp, point))

    async def check_geofences(self, tenant_id: str, agent_id: str) -> Set[str]:
        agent = self._stored(tenant_id, agent_id)
        if agent.location is None:
            return set()
        return {g.id for g in self._geofences.get(tenant_id, []) if g.contains(agent.location)}

    async def get_position_history(
        self, tenant_id: str, agent_id: str, from_time: datetime, to_time: datetime
    ) -> List[LocationPoint]:
        entries = self._history.get((tenant_id, agent_id), [])
        return [
            point
            for recorded_at, point in sorted(entries, key=lambda entry: entry[0])
            if from_time <= recorded_at <= to_time
        ]


class YAMLConfigProvider(ITrackingConfigProvider):
    """
    Tracking configuration provider that loads from YAML.

    Falls back to defaults when the file does not exist.
    """

    def __init__(self, config_path: str | Path):
        self._config_path = Path(config_path)
        self._config: Optional[TrackingConfig] = None
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            logger.warning(f"Tracking config file not found: {self._config_path}, using defaults")
            self._config = TrackingConfig()
            return

        try:
            with open(self._config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            self._config = TrackingConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid tracking config {self._config_path}: {e}",
                {"path": str(self._config_path)}
            ) from e

        logger.info("Tracking configuration loaded", extra={"path": str(self._config_path)})

    def get_config(self) -> TrackingConfig:
        """Get current tracking configuration."""
        return self._config

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()


class StaticConfigProvider(ITrackingConfigProvider):
    """Serves a fixed configuration, e.g. a tenant override."""

    def __init__(self, config: Optional[TrackingConfig] = None):
        self._config = config or TrackingConfig()

    def get_config(self) -> TrackingConfig:
        return self._config
