"""
Tracking Application Layer
==========================

Application layer for field agent tracking.

Contains:
- Services: Location pipeline and read-side tracking queries
- DTOs: Data transfer objects for callers of the core

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from fieldtrack.tracking.application.dto import (
    LocationReport,
    AgentUpdateOutcome,
    BatchUpdateResponse,
    SlaRiskResponse,
    AgentStatsResponse,
)
from fieldtrack.tracking.application.services import (
    LocationUpdateService,
    AgentTrackingService,
    LocationUpdateResult,
    AgentLockRegistry,
    IFieldAgentRepository,
    ITrackingConfigProvider,
)

__all__ = [
    # DTOs
    "LocationReport",
    "AgentUpdateOutcome",
    "BatchUpdateResponse",
    "SlaRiskResponse",
    "AgentStatsResponse",
    # Services
    "LocationUpdateService",
    "AgentTrackingService",
    "LocationUpdateResult",
    "AgentLockRegistry",
    # Repository Interfaces
    "IFieldAgentRepository",
    "ITrackingConfigProvider",
]
