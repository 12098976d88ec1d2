"""
Tracking Application Services
=============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: ingestion and read-side queries are separate services
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

Concurrency: updates for the same agent are serialized through
``AgentLockRegistry``; different agents never share a lock.
"""

import asyncio
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, FrozenSet, List, Optional, Sequence, Set, Tuple

from fieldtrack.config import AgentStatus
from fieldtrack.core import (
    ApplicationException,
    ConfigurationException,
    RepositoryException,
    ResourceNotFoundException,
    StaleReportException,
    ValidationException,
)
from fieldtrack.shared.infrastructure.logging import get_logger, log_latency
from fieldtrack.tracking.application.dto import (
    AgentStatsResponse,
    AgentUpdateOutcome,
    BatchUpdateResponse,
    LocationReport,
    SlaRiskResponse,
)
from fieldtrack.tracking.domain import (
    AgentCluster,
    AgentPosition,
    AgentRoute,
    AgentSearchCriteria,
    AgentStatusChange,
    ClusteringEngine,
    DeviceInfo,
    FieldAgent,
    LocationAuditEvent,
    LocationPoint,
    MapBounds,
    NearestAgent,
    SLARiskCalculator,
    SlaRisk,
    StatusInferenceEngine,
    TrackingConfig,
    find_nearest_agents,
    search_agents,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IFieldAgentRepository(ABC):
    """Interface for field agent data access."""

    @abstractmethod
    async def find_agent_by_id(self, tenant_id: str, agent_id: str) -> Optional[FieldAgent]:
        """Get an agent snapshot, or None if the id is unknown."""

    @abstractmethod
    async def list_agents(self, tenant_id: str) -> List[FieldAgent]:
        """Snapshot of every active agent of a tenant."""

    @abstractmethod
    async def update_agent_position(
        self, tenant_id: str, agent_id: str, position: AgentPosition
    ) -> None:
        """Store the agent's current position."""

    @abstractmethod
    async def apply_location_update(
        self,
        tenant_id: str,
        agent_id: str,
        position: AgentPosition,
        device: DeviceInfo,
        status: Optional[AgentStatus] = None,
        status_since: Optional[datetime] = None,
    ) -> None:
        """
        Store an accepted report in one unit of work: current position,
        device telemetry, the position history entry and, when given, the
        new status. Nothing is stored if any part fails.
        """

    @abstractmethod
    async def update_device_info(self, tenant_id: str, agent_id: str, device: DeviceInfo) -> None:
        """Store device telemetry (battery, signal, last ping)."""

    @abstractmethod
    async def update_agent_status(
        self, tenant_id: str, agent_id: str, status: AgentStatus, status_since: datetime
    ) -> None:
        """Store a status change."""

    @abstractmethod
    async def update_agent_route(
        self, tenant_id: str, agent_id: str, route: Optional[AgentRoute]
    ) -> None:
        """Replace (or clear) the agent's active route."""

    @abstractmethod
    async def append_position_history(
        self, tenant_id: str, agent_id: str, point: LocationPoint, timestamp: datetime
    ) -> None:
        """Append an immutable entry to the position history log."""

    @abstractmethod
    async def check_geofences(self, tenant_id: str, agent_id: str) -> Set[str]:
        """Ids of the geofences containing the agent's stored position."""

    @abstractmethod
    async def get_position_history(
        self, tenant_id: str, agent_id: str, from_time: datetime, to_time: datetime
    ) -> List[LocationPoint]:
        """History points within [from_time, to_time], oldest first."""


class ITrackingConfigProvider(ABC):
    """Interface for tracking configuration access."""

    @abstractmethod
    def get_config(self) -> TrackingConfig:
        """Get current tracking configuration."""


class AgentLockRegistry:
    """
    One ``asyncio.Lock`` per (tenant, agent).

    Locks are weakly held, so an agent's lock disappears once no update
    is using or waiting on it.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, tenant_id: str, agent_id: str) -> asyncio.Lock:
        key = (tenant_id, agent_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


# ========== Results ==========

@dataclass(frozen=True)
class LocationUpdateResult:
    """Outcome of a single location report."""

    agent: FieldAgent
    status_changed: bool
    new_status: Optional[AgentStatus]
    geofence_events: FrozenSet[str]
    audit_event: LocationAuditEvent
    ignored: bool = False


# ========== Application Services ==========

class LocationUpdateService:
    """
    Location update pipeline.

    validate -> staleness guard -> apply -> recompute status ->
    persist (one unit of work) -> geofence check -> audit event
    """

    def __init__(
        self,
        agent_repository: IFieldAgentRepository,
        config_provider: ITrackingConfigProvider,
        lock_registry: Optional[AgentLockRegistry] = None,
        clock: Clock = utc_now,
    ):
        self._agent_repo = agent_repository
        self._config_provider = config_provider
        self._locks = lock_registry or AgentLockRegistry()
        self._clock = clock

    async def update_location(
        self,
        tenant_id: str,
        report: LocationReport,
        has_active_route: Optional[bool] = None,
    ) -> LocationUpdateResult:
        """
        Process one position report.

        Args:
            tenant_id: Tenant owning the agent
            report: Position report from the device
            has_active_route: Route state from the routing concern; defaults
                to whether the stored agent carries a route

        Returns:
            LocationUpdateResult; ``ignored`` is set for stale reports

        Raises:
            ValidationException: Malformed report (nothing is written)
            ResourceNotFoundException: Unknown agent
            RepositoryException: Storage failure, propagated unchanged
        """
        position, telemetry = self._validate_report(tenant_id, report)
        config = self._config_provider.get_config()
        engine = StatusInferenceEngine(config)

        async with self._locks.lock_for(tenant_id, report.agent_id):
            try:
                agent = await self._load_agent(tenant_id, report.agent_id)
                now = self._clock()
                old_location = agent.location

                # Receive time, not capture time
                agent.record_ping(now, telemetry.battery_level, telemetry.signal_strength)

                try:
                    agent.apply_position(position)
                except StaleReportException as e:
                    await self._agent_repo.update_device_info(tenant_id, agent.id, agent.device)
                    logger.info(
                        "Stale location report ignored",
                        extra={
                            "tenant_id": tenant_id,
                            "agent_id": agent.id,
                            "reported_at": e.reported_at.isoformat(),
                            "stored_at": e.stored_at.isoformat(),
                        },
                    )
                    return LocationUpdateResult(
                        agent=agent,
                        status_changed=False,
                        new_status=None,
                        geofence_events=frozenset(),
                        audit_event=self._audit_event(
                            agent, old_location, position, now, ignored=True
                        ),
                        ignored=True,
                    )

                decision = engine.evaluate(agent, now, has_active_route=has_active_route)
                previous_status = agent.status
                status_changed = agent.change_status(decision.status, now)

                await self._agent_repo.apply_location_update(
                    tenant_id,
                    agent.id,
                    position,
                    agent.device,
                    status=agent.status if status_changed else None,
                    status_since=agent.status_since if status_changed else None,
                )

                status_change = None
                if status_changed:
                    status_change = AgentStatusChange(
                        agent_id=agent.id,
                        from_status=previous_status,
                        to_status=agent.status,
                        change_reason=decision.reason,
                        changed_at=now,
                        location=position.point,
                    )
                    logger.info(
                        "Agent status changed",
                        extra={
                            "tenant_id": tenant_id,
                            "agent_id": agent.id,
                            "from_status": previous_status.value,
                            "to_status": agent.status.value,
                            "reason": decision.reason,
                        },
                    )

                geofence_ids = frozenset(await self._agent_repo.check_geofences(tenant_id, agent.id))
            except RepositoryException as e:
                logger.error(
                    "Repository failure during location update",
                    extra={"tenant_id": tenant_id, "agent_id": report.agent_id, "error": e.message},
                )
                raise

        return LocationUpdateResult(
            agent=agent,
            status_changed=status_change is not None,
            new_status=agent.status if status_change else None,
            geofence_events=geofence_ids,
            audit_event=self._audit_event(
                agent, old_location, position, now, status_change=status_change
            ),
        )

    async def update_multiple_agent_locations(
        self,
        tenant_id: str,
        reports: Sequence[LocationReport],
    ) -> BatchUpdateResponse:
        """
        Apply each report independently; one failure never aborts the batch.

        Reports run in the given order and the batch always runs to
        completion. Stale reports count as successes with ``ignored`` set.
        """
        outcomes: List[AgentUpdateOutcome] = []

        with log_latency(logger, "batch_location_update", tenant_id=tenant_id, size=len(reports)):
            for report in reports:
                try:
                    result = await self.update_location(tenant_id, report)
                except ApplicationException as e:
                    # Storage internals stay in the logs
                    message = "Storage failure" if isinstance(e, RepositoryException) else e.message
                    logger.warning(
                        "Batch location report failed",
                        extra={
                            "tenant_id": tenant_id,
                            "agent_id": report.agent_id,
                            "error_type": type(e).__name__,
                            "error": e.message,
                        },
                    )
                    outcomes.append(AgentUpdateOutcome(
                        agent_id=report.agent_id,
                        success=False,
                        error=message,
                        error_type=type(e).__name__,
                    ))
                    continue

                outcomes.append(AgentUpdateOutcome(
                    agent_id=report.agent_id,
                    success=True,
                    ignored=result.ignored,
                    status_changed=result.status_changed,
                    new_status=result.new_status.value if result.new_status else None,
                    geofence_ids=sorted(result.geofence_events),
                ))

        success_count = sum(1 for outcome in outcomes if outcome.success)
        return BatchUpdateResponse(
            success_count=success_count,
            failure_count=len(outcomes) - success_count,
            per_agent_results=outcomes,
        )

    async def change_agent_status(
        self,
        tenant_id: str,
        agent_id: str,
        status: AgentStatus,
        reason: str = "manual",
    ) -> Optional[AgentStatusChange]:
        """
        Explicit status command (e.g. a dispatcher putting an agent on break).

        Returns:
            The change record, or None if the agent already had that status
        """
        async with self._locks.lock_for(tenant_id, agent_id):
            agent = await self._load_agent(tenant_id, agent_id)
            now = self._clock()
            previous_status = agent.status
            if not agent.change_status(status, now):
                return None
            await self._agent_repo.update_agent_status(tenant_id, agent_id, agent.status, agent.status_since)

        logger.info(
            "Agent status set by command",
            extra={"tenant_id": tenant_id, "agent_id": agent_id, "to_status": status.value, "reason": reason},
        )
        return AgentStatusChange(
            agent_id=agent_id,
            from_status=previous_status,
            to_status=status,
            change_reason=reason,
            changed_at=now,
            location=agent.location,
        )

    async def assign_route(
        self,
        tenant_id: str,
        agent_id: str,
        route: Optional[AgentRoute],
    ) -> Optional[AgentStatusChange]:
        """
        Replace the agent's route wholesale and re-infer its status.

        Returns:
            The status change caused by the new route, if any
        """
        engine = StatusInferenceEngine(self._config_provider.get_config())

        async with self._locks.lock_for(tenant_id, agent_id):
            agent = await self._load_agent(tenant_id, agent_id)
            now = self._clock()
            agent.assign_route(route)
            await self._agent_repo.update_agent_route(tenant_id, agent_id, route)

            decision = engine.evaluate(agent, now)
            previous_status = agent.status
            if not agent.change_status(decision.status, now):
                return None
            await self._agent_repo.update_agent_status(tenant_id, agent_id, agent.status, agent.status_since)

        return AgentStatusChange(
            agent_id=agent_id,
            from_status=previous_status,
            to_status=agent.status,
            change_reason=decision.reason,
            changed_at=now,
            location=agent.location,
        )

    async def get_agent_location_history(
        self,
        tenant_id: str,
        agent_id: str,
        hours: int = 24,
    ) -> List[LocationPoint]:
        """Position history for the last ``hours`` hours, oldest first."""
        max_hours = self._config_provider.get_config().max_history_hours
        if not 1 <= hours <= max_hours:
            raise ValidationException(
                f"hours must be between 1 and {max_hours}",
                {"hours": hours}
            )
        await self._load_agent(tenant_id, agent_id)

        to_time = self._clock()
        from_time = to_time - timedelta(hours=hours)
        return await self._agent_repo.get_position_history(tenant_id, agent_id, from_time, to_time)

    # ========== Helpers ==========

    @staticmethod
    def _validate_report(
        tenant_id: str, report: LocationReport
    ) -> Tuple[AgentPosition, DeviceInfo]:
        """Build the value objects up front so nothing is written for a bad report."""
        if not tenant_id:
            raise ValidationException("tenant_id is required")
        if not report.agent_id:
            raise ValidationException("agent_id is required")

        point = LocationPoint(report.lat, report.lng, report.accuracy)
        position = AgentPosition(
            point=point,
            timestamp=report.timestamp,
            heading=report.heading,
            speed=report.speed,
        )
        telemetry = DeviceInfo(
            battery_level=report.battery_level,
            signal_strength=report.signal_strength,
        )
        return position, telemetry

    async def _load_agent(self, tenant_id: str, agent_id: str) -> FieldAgent:
        agent = await self._agent_repo.find_agent_by_id(tenant_id, agent_id)
        if agent is None:
            raise ResourceNotFoundException("FieldAgent", agent_id)
        return agent

    @staticmethod
    def _audit_event(
        agent: FieldAgent,
        old_location: Optional[LocationPoint],
        position: AgentPosition,
        now: datetime,
        ignored: bool = False,
        status_change: Optional[AgentStatusChange] = None,
    ) -> LocationAuditEvent:
        return LocationAuditEvent(
            agent_id=agent.id,
            old_location=old_location,
            new_location=old_location if ignored else position.point,
            status_changed=status_change is not None,
            new_status=status_change.to_status if status_change else None,
            accuracy=position.point.accuracy_meters,
            speed=position.speed,
            heading=position.heading,
            recorded_at=now,
            ignored=ignored,
            status_change=status_change,
        )


class AgentTrackingService:
    """
    Read-side operations: status what-ifs, SLA risk, clustering,
    proximity search and fleet statistics.
    """

    def __init__(
        self,
        agent_repository: Optional[IFieldAgentRepository],
        config_provider: ITrackingConfigProvider,
        clock: Clock = utc_now,
    ):
        self._agent_repo = agent_repository
        self._config_provider = config_provider
        self._clock = clock

    @property
    def _config(self) -> TrackingConfig:
        return self._config_provider.get_config()

    def determine_agent_status(
        self,
        agent: FieldAgent,
        current_position: Optional[AgentPosition] = None,
        has_active_route: Optional[bool] = None,
    ) -> AgentStatus:
        """Dry-run status inference; nothing is stored."""
        return StatusInferenceEngine(self._config).determine_agent_status(
            agent, self._clock(), current_position, has_active_route
        )

    def is_within_working_hours(self, agent: FieldAgent) -> bool:
        return StatusInferenceEngine.is_within_working_hours(agent, self._clock())

    def calculate_sla_risk(self, agent: FieldAgent) -> SlaRisk:
        return SLARiskCalculator(self._config).calculate_for_agent(agent, self._clock())

    def create_agent_clusters(
        self,
        agents: Sequence[FieldAgent],
        bounds: Optional[MapBounds],
        zoom_level: int,
        canonical_order: bool = False,
    ) -> List[AgentCluster]:
        return ClusteringEngine(self._config).create_agent_clusters(
            agents, zoom_level, bounds=bounds, now=self._clock(), canonical_order=canonical_order
        )

    def find_nearest_agents(
        self,
        target: LocationPoint,
        agents: Sequence[FieldAgent],
        max_count: int = 10,
        max_distance_meters: Optional[float] = None,
    ) -> List[NearestAgent]:
        return find_nearest_agents(target, agents, max_count, max_distance_meters)

    async def search_agents(self, tenant_id: str, criteria: AgentSearchCriteria) -> List[FieldAgent]:
        return search_agents(await self._list_agents(tenant_id), criteria)

    async def find_agents_in_sla_risk(self, tenant_id: str) -> List[SlaRiskResponse]:
        """Agents whose live ETA overruns their deadline, worst first."""
        calculator = SLARiskCalculator(self._config)
        now = self._clock()

        at_risk = []
        for agent in await self._list_agents(tenant_id):
            risk = calculator.calculate_for_agent(agent, now)
            if risk.is_at_risk:
                at_risk.append((risk.overrun_minutes, SlaRiskResponse(agent_id=agent.id, **risk.to_dict())))

        at_risk.sort(key=lambda item: item[0], reverse=True)
        return [response for _, response in at_risk]

    async def get_agent_stats(self, tenant_id: str) -> AgentStatsResponse:
        """Status breakdown plus connectivity and battery figures."""
        config = self._config
        now = self._clock()
        offline_threshold = timedelta(minutes=config.offline_threshold_minutes)
        agents = await self._list_agents(tenant_id)

        breakdown = {status.value: 0 for status in AgentStatus}
        battery_levels = []
        online_count = 0
        low_battery_count = 0
        weak_signal_count = 0

        for agent in agents:
            breakdown[agent.status.value] += 1
            if agent.device.battery_level is not None:
                battery_levels.append(agent.device.battery_level)
            if agent.battery_warning(config.low_battery_percent):
                low_battery_count += 1
            if agent.signal_warning(config.weak_signal_percent):
                weak_signal_count += 1
            if agent.is_online(now, offline_threshold):
                online_count += 1

        return AgentStatsResponse(
            total_agents=len(agents),
            status_breakdown=breakdown,
            online_count=online_count,
            sla_risk_count=breakdown[AgentStatus.SLA_AT_RISK.value],
            low_battery_count=low_battery_count,
            weak_signal_count=weak_signal_count,
            avg_battery_level=round(sum(battery_levels) / len(battery_levels)) if battery_levels else 0,
            last_updated=now,
        )

    async def _list_agents(self, tenant_id: str) -> List[FieldAgent]:
        if self._agent_repo is None:
            raise ConfigurationException("Agent repository not configured")
        return await self._agent_repo.list_agents(tenant_id)
