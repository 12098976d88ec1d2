"""
Tracking Value Objects
======================

Immutable value objects for the tracking domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared between concurrent updates.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from shapely.geometry import Point, Polygon

from fieldtrack.config import GeofenceShape, settings
from fieldtrack.core import ValidationException

EARTH_RADIUS_METERS = 6_371_000.0


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters between two coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def validate_coordinates(lat: float, lng: float) -> None:
    """
    Check a latitude/longitude pair.

    Raises:
        ValidationException: If either value is non-finite or out of range
    """
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise ValidationException(
            "Coordinates must be finite numbers",
            {"lat": lat, "lng": lng}
        )
    if not -90.0 <= lat <= 90.0:
        raise ValidationException(f"Latitude {lat} outside [-90, 90]", {"lat": lat})
    if not -180.0 <= lng <= 180.0:
        raise ValidationException(f"Longitude {lng} outside [-180, 180]", {"lng": lng})


@dataclass(frozen=True)
class LocationPoint:
    """A WGS84 coordinate with optional horizontal accuracy in meters."""

    lat: float
    lng: float
    accuracy_meters: Optional[float] = None

    def __post_init__(self):
        validate_coordinates(self.lat, self.lng)
        if self.accuracy_meters is not None and self.accuracy_meters < 0:
            raise ValidationException(
                "accuracy_meters cannot be negative",
                {"accuracy_meters": self.accuracy_meters}
            )

    def distance_to(self, other: "LocationPoint") -> float:
        """Haversine distance to another point, in meters."""
        return haversine_meters(self.lat, self.lng, other.lat, other.lng)


def distance(a: LocationPoint, b: LocationPoint) -> float:
    """Great-circle distance between two points in meters."""
    return a.distance_to(b)


@dataclass(frozen=True)
class MapBounds:
    """
    Rectangular viewport.

    Containment is a plain min/max comparison, so a box that crosses the
    antimeridian (west > east) contains nothing.
    """

    north: float
    south: float
    east: float
    west: float

    def __post_init__(self):
        validate_coordinates(self.north, self.east)
        validate_coordinates(self.south, self.west)
        if self.south > self.north:
            raise ValidationException(
                "south cannot be greater than north",
                {"north": self.north, "south": self.south}
            )

    def contains(self, point: LocationPoint) -> bool:
        return (
            self.south <= point.lat <= self.north
            and self.west <= point.lng <= self.east
        )


def contains(bounds: MapBounds, point: LocationPoint) -> bool:
    """Whether the point lies inside the bounds (edges included)."""
    return bounds.contains(point)


@dataclass(frozen=True)
class DeviceInfo:
    """Device telemetry; ``last_ping_at`` drives offline detection."""

    battery_level: Optional[int] = None
    signal_strength: Optional[int] = None
    last_ping_at: Optional[datetime] = None

    def __post_init__(self):
        for name in ("battery_level", "signal_strength"):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 100:
                raise ValidationException(f"{name} must be between 0 and 100", {name: value})


@dataclass(frozen=True)
class Waypoint:
    lat: float
    lng: float
    order: int
    is_completed: bool = False


@dataclass(frozen=True)
class AgentRoute:
    """Active route owned by an agent. Replaced wholesale on reassignment."""

    id: str
    eta_seconds: int
    distance_meters: int
    waypoints: Tuple[Waypoint, ...] = ()

    def __post_init__(self):
        if not self.id:
            raise ValidationException("Route id is required")
        if self.eta_seconds < 0 or self.distance_meters < 0:
            raise ValidationException(
                "Route eta_seconds and distance_meters cannot be negative",
                {"eta_seconds": self.eta_seconds, "distance_meters": self.distance_meters}
            )
        # Keep waypoints in route order regardless of how they were supplied
        object.__setattr__(
            self, "waypoints", tuple(sorted(self.waypoints, key=lambda w: w.order))
        )

    @property
    def next_waypoint(self) -> Optional[Waypoint]:
        for waypoint in self.waypoints:
            if not waypoint.is_completed:
                return waypoint
        return None


@dataclass(frozen=True)
class AgentPosition:
    """A location fix plus motion data, as captured by the device."""

    point: LocationPoint
    timestamp: datetime
    heading: Optional[float] = None
    speed: Optional[float] = None  # km/h

    def __post_init__(self):
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        if self.speed is not None and self.speed < 0:
            raise ValidationException("speed cannot be negative", {"speed": self.speed})

    @property
    def speed_kmh(self) -> float:
        return self.speed or 0.0


@dataclass(frozen=True)
class Geofence:
    """
    A named region checked for agent containment.

    Circles are measured with Haversine distance; polygons are evaluated
    with shapely on (lng, lat) planar coordinates.
    """

    id: str
    name: str
    shape: GeofenceShape
    center: Optional[LocationPoint] = None
    radius_meters: Optional[float] = None
    vertices: Tuple[Tuple[float, float], ...] = field(default=())  # (lat, lng)

    def __post_init__(self):
        if self.shape == GeofenceShape.CIRCLE:
            if self.center is None or self.radius_meters is None or self.radius_meters <= 0:
                raise ValidationException(
                    f"Circle geofence {self.id} needs a center and a positive radius"
                )
        elif len(self.vertices) < 3:
            raise ValidationException(f"Polygon geofence {self.id} needs at least 3 vertices")

    def contains(self, point: LocationPoint) -> bool:
        if self.shape == GeofenceShape.CIRCLE:
            return self.center.distance_to(point) <= self.radius_meters
        polygon = Polygon([(lng, lat) for lat, lng in self.vertices])
        return polygon.covers(Point(point.lng, point.lat))


# ========== Engine Configuration ==========

class ClusterRadiusStep(BaseModel):
    """Cluster radius used from ``min_zoom`` upwards."""
    min_zoom: int = Field(ge=0, le=30)
    radius_meters: float = Field(gt=0)


def _default_radius_table() -> List[ClusterRadiusStep]:
    return [
        ClusterRadiusStep(min_zoom=16, radius_meters=50),
        ClusterRadiusStep(min_zoom=14, radius_meters=100),
        ClusterRadiusStep(min_zoom=12, radius_meters=500),
        ClusterRadiusStep(min_zoom=10, radius_meters=1000),
    ]


class TrackingConfig(BaseModel):
    """
    Tracking engine configuration loaded from YAML.

    Passed explicitly to the inference, risk and clustering engines so
    every tenant can be configured independently.
    """
    offline_threshold_minutes: float = Field(
        default_factory=lambda: settings.offline_threshold_minutes,
        gt=0,
        description="Minutes without a ping before an agent is offline"
    )
    moving_speed_kmh: float = Field(
        default_factory=lambda: settings.moving_speed_kmh,
        ge=0,
        description="Speed above which an agent is moving"
    )
    stationary_speed_kmh: float = Field(
        default_factory=lambda: settings.stationary_speed_kmh,
        ge=0,
        description="Speed below which an agent is stopped"
    )
    cluster_radius_table: List[ClusterRadiusStep] = Field(
        default_factory=_default_radius_table,
        description="Zoom steps, highest zoom first"
    )
    fallback_cluster_radius_meters: float = Field(default=5000, gt=0)
    risk_medium_overrun_minutes: float = Field(default=15, ge=0)
    risk_high_overrun_minutes: float = Field(default=30, ge=0)
    low_battery_percent: int = Field(default=15, ge=0, le=100)
    weak_signal_percent: int = Field(default=20, ge=0, le=100)
    accurate_position_meters: float = Field(default=100, gt=0)
    max_history_hours: int = Field(default=24, ge=1)

    @field_validator("cluster_radius_table")
    @classmethod
    def sort_radius_table(cls, v: List[ClusterRadiusStep]) -> List[ClusterRadiusStep]:
        """Order steps by descending zoom so the first match wins."""
        return sorted(v, key=lambda step: step.min_zoom, reverse=True)

    def cluster_radius_for_zoom(self, zoom_level: int) -> float:
        """Step function from zoom level to cluster radius in meters."""
        for step in self.cluster_radius_table:
            if zoom_level >= step.min_zoom:
                return step.radius_meters
        return self.fallback_cluster_radius_meters
