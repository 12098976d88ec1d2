"""
Tracking Application DTOs
=========================

Data Transfer Objects crossing the tracking core boundary.

Request DTOs only coerce types; range and identity checks happen in the
application service so they surface as ``ValidationException`` rather
than transport-level errors.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

# ========== Type Aliases for Literals ==========
AgentStatusStr = Literal["available", "in_transit", "in_service", "on_break", "sla_at_risk", "offline"]
RiskLevelStr = Literal["none", "low", "medium", "high"]


# ========== Request DTOs ==========

class LocationReport(BaseModel):
    """A single position report sent by a technician's mobile device."""
    agent_id: str = Field(..., description="Reporting agent ID")
    lat: float = Field(..., description="Latitude in degrees")
    lng: float = Field(..., description="Longitude in degrees")
    timestamp: datetime = Field(..., description="When the device captured the fix")
    accuracy: Optional[float] = Field(None, description="Horizontal accuracy in meters")
    heading: Optional[float] = Field(None, description="Heading in degrees (0-360)")
    speed: Optional[float] = Field(None, description="Speed in km/h")
    battery_level: Optional[int] = Field(None, description="Device battery percentage")
    signal_strength: Optional[int] = Field(None, description="Signal strength percentage")


# ========== Response DTOs ==========

class AgentUpdateOutcome(BaseModel):
    """Per-report outcome inside a batch update."""
    agent_id: str
    success: bool
    error: Optional[str] = Field(None, description="Failure message, if any")
    error_type: Optional[str] = Field(None, description="Exception class name, if any")
    ignored: bool = Field(default=False, description="Report was older than the stored position")
    status_changed: bool = False
    new_status: Optional[AgentStatusStr] = None
    geofence_ids: List[str] = Field(default_factory=list)


class BatchUpdateResponse(BaseModel):
    """Aggregate result of a batch location update."""
    success_count: int = Field(..., description="Reports applied or ignored as stale")
    failure_count: int = Field(..., description="Reports rejected")
    per_agent_results: List[AgentUpdateOutcome] = Field(default_factory=list)


class SlaRiskResponse(BaseModel):
    """SLA risk for a single agent."""
    agent_id: str
    is_at_risk: bool
    risk_level: RiskLevelStr
    minutes_remaining: Optional[float] = None
    eta_minutes: Optional[float] = None


class AgentStatsResponse(BaseModel):
    """Fleet-wide statistics for a tenant."""
    total_agents: int
    status_breakdown: Dict[AgentStatusStr, int]
    online_count: int
    sla_risk_count: int
    low_battery_count: int
    weak_signal_count: int
    avg_battery_level: int = Field(..., description="Rounded mean of known battery levels")
    last_updated: datetime
