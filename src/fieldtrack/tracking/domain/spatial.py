"""
Spatial Domain Services
=======================

Map-oriented operations over a snapshot of agents:
- ClusteringEngine: zoom-dependent greedy clustering with severity roll-up
- find_nearest_agents: proximity ranking of available agents
- search_agents: criteria filtering used by dashboards and dispatch
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence

from fieldtrack.config import AgentStatus, ClusterSeverity
from fieldtrack.core import ValidationException
from fieldtrack.tracking.domain.entities import AgentCluster, FieldAgent, NearestAgent
from fieldtrack.tracking.domain.services import SLARiskCalculator
from fieldtrack.tracking.domain.value_objects import (
    LocationPoint,
    MapBounds,
    TrackingConfig,
    ensure_utc,
)

AttentionPredicate = Callable[[FieldAgent, datetime], bool]


def make_attention_predicate(config: Optional[TrackingConfig] = None) -> AttentionPredicate:
    """
    Default "needs attention" rule: the device is offline while its SLA
    is breached or the route ETA already overruns the deadline.
    """
    calculator = SLARiskCalculator(config)

    def needs_attention(agent: FieldAgent, now: datetime) -> bool:
        if agent.status != AgentStatus.OFFLINE or agent.sla_deadline_at is None:
            return False
        if agent.sla_deadline_at <= ensure_utc(now):
            return True
        return calculator.calculate_for_agent(agent, now).is_at_risk

    return needs_attention


class ClusteringEngine:
    """
    Greedy single-pass clustering.

    Each unassigned agent seeds a cluster and absorbs every remaining
    unassigned agent within the zoom radius of the seed. Clusters are not
    re-centred while growing, so the partition depends on input order.
    Pass ``canonical_order=True`` to sort by agent id first when a stable
    partition is needed.
    """

    def __init__(
        self,
        config: Optional[TrackingConfig] = None,
        needs_attention: Optional[AttentionPredicate] = None,
    ):
        self._config = config or TrackingConfig()
        self._needs_attention = needs_attention or make_attention_predicate(self._config)

    def cluster_radius(self, zoom_level: int) -> float:
        return self._config.cluster_radius_for_zoom(zoom_level)

    def create_agent_clusters(
        self,
        agents: Sequence[FieldAgent],
        zoom_level: int,
        bounds: Optional[MapBounds] = None,
        now: Optional[datetime] = None,
        canonical_order: bool = False,
    ) -> List[AgentCluster]:
        """
        Group agents for map rendering.

        Args:
            agents: Agent snapshot, iterated in the given order
            zoom_level: Map zoom level selecting the cluster radius
            bounds: Optional viewport; agents outside it are left out
            now: Evaluation time for the severity roll-up
            canonical_order: Sort by agent id before clustering

        Returns:
            Clusters whose counts add up to the number of located agents
            inside the viewport
        """
        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        radius = self.cluster_radius(zoom_level)

        candidates = [
            agent for agent in agents
            if agent.has_location and (bounds is None or bounds.contains(agent.location))
        ]
        if canonical_order:
            candidates.sort(key=lambda a: a.id)

        assigned = [False] * len(candidates)
        clusters: List[AgentCluster] = []

        for i, seed in enumerate(candidates):
            if assigned[i]:
                continue
            assigned[i] = True
            members = [seed]

            for j in range(i + 1, len(candidates)):
                if assigned[j]:
                    continue
                if seed.location.distance_to(candidates[j].location) <= radius:
                    assigned[j] = True
                    members.append(candidates[j])

            clusters.append(self._build_cluster(members, now))

        return clusters

    def _build_cluster(self, members: List[FieldAgent], now: datetime) -> AgentCluster:
        count = len(members)
        lat = sum(agent.location.lat for agent in members) / count
        lng = sum(agent.location.lng for agent in members) / count

        if any(self._needs_attention(agent, now) for agent in members):
            severity = ClusterSeverity.CRITICAL
        elif any(agent.status == AgentStatus.SLA_AT_RISK for agent in members):
            severity = ClusterSeverity.WARNING
        else:
            severity = ClusterSeverity.NORMAL

        return AgentCluster(lat=lat, lng=lng, count=count, max_severity=severity, agents=members)


def find_nearest_agents(
    target: LocationPoint,
    agents: Iterable[FieldAgent],
    max_count: int = 10,
    max_distance_meters: Optional[float] = None,
) -> List[NearestAgent]:
    """
    Available agents with a known location, closest first.

    Args:
        target: Point to measure from
        agents: Candidate agents
        max_count: Maximum number of results
        max_distance_meters: Drop agents farther than this

    Returns:
        NearestAgent entries sorted ascending by distance
    """
    if max_count < 1:
        raise ValidationException("max_count must be at least 1", {"max_count": max_count})

    ranked = []
    for agent in agents:
        if agent.status != AgentStatus.AVAILABLE or not agent.has_location:
            continue
        meters = target.distance_to(agent.location)
        if max_distance_meters is not None and meters > max_distance_meters:
            continue
        ranked.append(NearestAgent(agent=agent, distance_meters=meters))

    ranked.sort(key=lambda item: item.distance_meters)
    return ranked[:max_count]


@dataclass(frozen=True)
class AgentSearchCriteria:
    """Filters for agent listings; empty collections mean "any"."""

    statuses: FrozenSet[AgentStatus] = frozenset()
    teams: FrozenSet[str] = frozenset()
    skills: FrozenSet[str] = frozenset()
    on_duty_only: bool = False
    sla_risk_only: bool = False
    bounds: Optional[MapBounds] = None
    proximity_location: Optional[LocationPoint] = None
    proximity_radius_meters: Optional[float] = None
    include_offline: bool = True

    def __post_init__(self):
        if (self.proximity_location is None) != (self.proximity_radius_meters is None):
            raise ValidationException(
                "proximity_location and proximity_radius_meters must be given together"
            )


def search_agents(agents: Iterable[FieldAgent], criteria: AgentSearchCriteria) -> List[FieldAgent]:
    """Agents matching every filter in ``criteria``, in input order."""
    results = []
    for agent in agents:
        if criteria.statuses and agent.status not in criteria.statuses:
            continue
        if not criteria.include_offline and agent.status == AgentStatus.OFFLINE:
            continue
        if criteria.teams and agent.team not in criteria.teams:
            continue
        if criteria.skills and not (agent.skills & criteria.skills):
            continue
        if criteria.on_duty_only and not agent.is_on_duty:
            continue
        if criteria.sla_risk_only and agent.status != AgentStatus.SLA_AT_RISK:
            continue
        if criteria.bounds is not None:
            if not agent.has_location or not criteria.bounds.contains(agent.location):
                continue
        if criteria.proximity_location is not None:
            if not agent.has_location:
                continue
            if criteria.proximity_location.distance_to(agent.location) > criteria.proximity_radius_meters:
                continue
        results.append(agent)
    return results
