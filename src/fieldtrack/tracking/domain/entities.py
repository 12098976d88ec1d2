"""
Tracking Domain Entities
========================

Pure Python domain entities for field agent tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import FrozenSet, List, Optional

from fieldtrack.config import AgentStatus, ClusterSeverity, RiskLevel
from fieldtrack.core import DomainException, StaleReportException
from fieldtrack.tracking.domain.value_objects import (
    AgentPosition,
    AgentRoute,
    DeviceInfo,
    LocationPoint,
    ensure_utc,
)


@dataclass
class FieldAgent:
    """
    Field technician aggregate root.

    Mutated only through the location pipeline and explicit status or
    assignment commands. ``status_since`` moves only on a real status
    change, never on a no-op write.
    """

    # Identity
    id: str
    name: str
    team: str = ""
    skills: FrozenSet[str] = frozenset()

    # Status & availability
    status: AgentStatus = AgentStatus.OFFLINE
    status_since: Optional[datetime] = None
    is_on_duty: bool = False
    shift_start_at: Optional[datetime] = None
    shift_end_at: Optional[datetime] = None

    # Location & navigation
    position: Optional[AgentPosition] = None
    current_route: Optional[AgentRoute] = None

    # Device & connectivity
    device: DeviceInfo = field(default_factory=DeviceInfo)

    # Work context
    assigned_ticket_id: Optional[str] = None
    customer_site_id: Optional[str] = None
    sla_deadline_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise DomainException("Agent id is required")
        self.skills = frozenset(self.skills)
        if self.status_since is not None:
            self.status_since = ensure_utc(self.status_since)
        if self.sla_deadline_at is not None:
            self.sla_deadline_at = ensure_utc(self.sla_deadline_at)
        if self.status == AgentStatus.IN_TRANSIT and self.current_route is None:
            raise DomainException(f"Agent {self.id} cannot be in transit without a route")

    # ========== Derived properties ==========

    @property
    def location(self) -> Optional[LocationPoint]:
        return self.position.point if self.position else None

    @property
    def has_location(self) -> bool:
        return self.position is not None

    @property
    def speed_kmh(self) -> float:
        return self.position.speed_kmh if self.position else 0.0

    def is_moving(self, moving_speed_kmh: float = 5.0) -> bool:
        return self.speed_kmh > moving_speed_kmh

    def is_online(self, now: datetime, offline_threshold: timedelta) -> bool:
        last_ping = self.device.last_ping_at
        if last_ping is None:
            return False
        return ensure_utc(now) - ensure_utc(last_ping) <= offline_threshold

    def battery_warning(self, low_battery_percent: int = 15) -> bool:
        level = self.device.battery_level
        return level is not None and level < low_battery_percent

    def signal_warning(self, weak_signal_percent: int = 20) -> bool:
        level = self.device.signal_strength
        return level is not None and level < weak_signal_percent

    def has_accurate_position(self, max_accuracy_meters: float = 100) -> bool:
        if self.position is None:
            return False
        accuracy = self.position.point.accuracy_meters
        return accuracy is None or accuracy < max_accuracy_meters

    def last_seen_text(self, now: datetime) -> Optional[str]:
        """Human friendly age of the last device ping."""
        if self.device.last_ping_at is None:
            return None
        minutes = int((ensure_utc(now) - ensure_utc(self.device.last_ping_at)).total_seconds() // 60)
        if minutes < 60:
            return f"{max(minutes, 0)}min ago"
        if minutes < 24 * 60:
            return f"{minutes // 60}h ago"
        return self.device.last_ping_at.date().isoformat()

    # ========== Commands ==========

    def apply_position(self, position: AgentPosition) -> None:
        """
        Advance the current position.

        Raises:
            StaleReportException: If the fix is not newer than the stored one
        """
        if self.position is not None and position.timestamp <= self.position.timestamp:
            raise StaleReportException(self.id, position.timestamp, self.position.timestamp)
        self.position = position

    def record_ping(
        self,
        at: datetime,
        battery_level: Optional[int] = None,
        signal_strength: Optional[int] = None,
    ) -> None:
        """Refresh device telemetry. ``last_ping_at`` never moves backwards."""
        at = ensure_utc(at)
        last_ping = self.device.last_ping_at
        if last_ping is not None and ensure_utc(last_ping) > at:
            at = ensure_utc(last_ping)
        self.device = DeviceInfo(
            battery_level=battery_level if battery_level is not None else self.device.battery_level,
            signal_strength=signal_strength if signal_strength is not None else self.device.signal_strength,
            last_ping_at=at,
        )

    def change_status(self, status: AgentStatus, at: datetime) -> bool:
        """
        Set a new status.

        Returns:
            True if the status actually changed (and ``status_since`` moved)
        """
        if status == AgentStatus.IN_TRANSIT and self.current_route is None:
            raise DomainException(f"Agent {self.id} cannot be in transit without a route")
        if status == self.status:
            return False
        self.status = status
        self.status_since = ensure_utc(at)
        return True

    def assign_route(self, route: Optional[AgentRoute]) -> None:
        """Replace the active route wholesale (``None`` clears it)."""
        self.current_route = route


@dataclass(frozen=True)
class SlaRisk:
    """Outcome of comparing the live ETA against the SLA deadline."""

    is_at_risk: bool
    risk_level: RiskLevel
    minutes_remaining: Optional[float] = None
    eta_minutes: Optional[float] = None

    @property
    def overrun_minutes(self) -> float:
        if not self.is_at_risk:
            return 0.0
        return self.eta_minutes - self.minutes_remaining

    def to_dict(self) -> dict:
        return {
            "is_at_risk": self.is_at_risk,
            "risk_level": self.risk_level.value,
            "minutes_remaining": self.minutes_remaining,
            "eta_minutes": self.eta_minutes,
        }


@dataclass(frozen=True)
class StatusDecision:
    """Inferred status plus the name of the rule that produced it."""

    status: AgentStatus
    reason: str


@dataclass(frozen=True)
class AgentStatusChange:
    agent_id: str
    from_status: AgentStatus
    to_status: AgentStatus
    change_reason: str
    changed_at: datetime
    location: Optional[LocationPoint] = None


@dataclass(frozen=True)
class LocationAuditEvent:
    """
    Audit record describing one processed location report.

    The core only builds it; persisting or publishing is the caller's job.
    """

    agent_id: str
    old_location: Optional[LocationPoint]
    new_location: Optional[LocationPoint]
    status_changed: bool
    new_status: Optional[AgentStatus]
    accuracy: Optional[float]
    speed: Optional[float]
    heading: Optional[float]
    recorded_at: datetime
    ignored: bool = False
    status_change: Optional[AgentStatusChange] = None


@dataclass
class AgentCluster:
    """Rendering-time group of nearby agents."""

    lat: float
    lng: float
    count: int
    max_severity: ClusterSeverity
    agents: List[FieldAgent] = field(default_factory=list)

    @property
    def agent_ids(self) -> List[str]:
        return [agent.id for agent in self.agents]


@dataclass(frozen=True)
class NearestAgent:
    agent: FieldAgent
    distance_meters: float
