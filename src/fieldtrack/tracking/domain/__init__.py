"""
Tracking Domain Layer
=====================

Domain layer for field agent tracking.

Contains:
- Entities: Objects with identity (FieldAgent) and result records
- Value Objects: Immutable geo and telemetry values, TrackingConfig
- Domain Services: Stateless rules (StatusInferenceEngine, SLARiskCalculator,
  ClusteringEngine, proximity and search helpers)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from fieldtrack.tracking.domain.entities import (
    FieldAgent,
    SlaRisk,
    StatusDecision,
    AgentStatusChange,
    LocationAuditEvent,
    AgentCluster,
    NearestAgent,
)
from fieldtrack.tracking.domain.value_objects import (
    LocationPoint,
    MapBounds,
    DeviceInfo,
    Waypoint,
    AgentRoute,
    AgentPosition,
    Geofence,
    ClusterRadiusStep,
    TrackingConfig,
    distance,
    contains,
    haversine_meters,
)
from fieldtrack.tracking.domain.services import StatusInferenceEngine, SLARiskCalculator
from fieldtrack.tracking.domain.spatial import (
    ClusteringEngine,
    AgentSearchCriteria,
    find_nearest_agents,
    search_agents,
    make_attention_predicate,
)

__all__ = [
    # Entities
    "FieldAgent",
    "SlaRisk",
    "StatusDecision",
    "AgentStatusChange",
    "LocationAuditEvent",
    "AgentCluster",
    "NearestAgent",
    # Value Objects
    "LocationPoint",
    "MapBounds",
    "DeviceInfo",
    "Waypoint",
    "AgentRoute",
    "AgentPosition",
    "Geofence",
    "ClusterRadiusStep",
    "TrackingConfig",
    "distance",
    "contains",
    "haversine_meters",
    # Domain Services
    "StatusInferenceEngine",
    "SLARiskCalculator",
    "ClusteringEngine",
    "AgentSearchCriteria",
    "find_nearest_agents",
    "search_agents",
    "make_attention_predicate",
]
