"""
Tracking Infrastructure Layer
=============================

Concrete implementations for the tracking module:
- SQLAlchemy models and repository
- In-memory repository
- Tracking configuration providers
"""

from fieldtrack.tracking.infrastructure.models import (
    FieldAgentModel,
    AgentPositionHistoryModel,
    GeofenceModel,
)
from fieldtrack.tracking.infrastructure.repositories import (
    SQLAlchemyFieldAgentRepository,
    InMemoryFieldAgentRepository,
    YAMLConfigProvider,
    StaticConfigProvider,
)

__all__ = [
    # Models
    "FieldAgentModel",
    "AgentPositionHistoryModel",
    "GeofenceModel",
    # Repositories
    "SQLAlchemyFieldAgentRepository",
    "InMemoryFieldAgentRepository",
    # Config providers
    "YAMLConfigProvider",
    "StaticConfigProvider",
]
