"""
Tracking Infrastructure Models
==============================

SQLAlchemy ORM models for the tracking module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from fieldtrack.config import AgentStatus, GeofenceShape
from fieldtrack.infrastructure.database import Base


class FieldAgentModel(Base):
    """
    Database model for the FieldAgent aggregate.

    Maps to the 'field_agents' table. Current position, device telemetry
    and the active route are flattened onto the agent row.
    """
    __tablename__ = "field_agents"

    # Primary key
    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Identity
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    team: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    skills: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Status & availability
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=AgentStatus.OFFLINE.value)
    status_since: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_on_duty: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    shift_start_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    shift_end_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Current position
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    accuracy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    heading: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    position_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Active route
    route_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    route_eta_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    route_distance_meters: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    route_waypoints: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Device & connectivity
    battery_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    signal_strength: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_ping_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Work context
    assigned_ticket_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    customer_site_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sla_deadline_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<FieldAgentModel(tenant_id={self.tenant_id}, id={self.id}, status={self.status})>"


class AgentPositionHistoryModel(Base):
    """
    Append-only position log.

    Maps to the 'agent_position_history' table. Rows are never updated.
    """
    __tablename__ = "agent_position_history"
    __table_args__ = (
        UniqueConstraint("tenant_id", "agent_id", "recorded_at", name="uq_position_history_entry"),
        Index("ix_position_history_agent_time", "tenant_id", "agent_id", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(64), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<AgentPositionHistoryModel(agent_id={self.agent_id}, recorded_at={self.recorded_at})>"


class GeofenceModel(Base):
    """
    Database model for geofence definitions owned by the collaborator.

    Maps to the 'geofences' table.
    """
    __tablename__ = "geofences"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    shape: Mapped[str] = mapped_column(String(16), nullable=False, default=GeofenceShape.CIRCLE.value)
    center_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    center_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    radius_meters: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vertices: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # [[lat, lng], ...]
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<GeofenceModel(id={self.id}, shape={self.shape})>"
