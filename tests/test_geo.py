import math

import pytest

from fieldtrack.config import GeofenceShape
from fieldtrack.core import ValidationException
from fieldtrack.tracking.domain import (
    AgentRoute,
    DeviceInfo,
    Geofence,
    LocationPoint,
    MapBounds,
    Waypoint,
    contains,
    distance,
)


def test_distance_is_zero_for_same_point():
    point = LocationPoint(40.4168, -3.7038)
    assert distance(point, point) == 0


def test_distance_is_symmetric():
    madrid = LocationPoint(40.4168, -3.7038)
    paris = LocationPoint(48.8566, 2.3522)
    assert distance(madrid, paris) == pytest.approx(distance(paris, madrid))


def test_one_degree_of_latitude():
    a = LocationPoint(0.0, 0.0)
    b = LocationPoint(1.0, 0.0)
    assert distance(a, b) == pytest.approx(6_371_000 * math.pi / 180, rel=1e-9)


def test_madrid_to_paris_is_about_1050_km():
    madrid = LocationPoint(40.4168, -3.7038)
    paris = LocationPoint(48.8566, 2.3522)
    assert distance(madrid, paris) == pytest.approx(1_053_000, rel=0.01)


@pytest.mark.parametrize(
    "lat, lng",
    [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.5), (0.0, -181.0), (float("nan"), 0.0), (0.0, float("inf"))],
)
def test_invalid_coordinates_are_rejected(lat, lng):
    with pytest.raises(ValidationException):
        LocationPoint(lat, lng)


def test_negative_accuracy_is_rejected():
    with pytest.raises(ValidationException):
        LocationPoint(10.0, 10.0, accuracy_meters=-1)


def test_bounds_contains_edges_and_interior():
    bounds = MapBounds(north=41.0, south=40.0, east=-3.0, west=-4.0)
    assert contains(bounds, LocationPoint(40.5, -3.5))
    assert contains(bounds, LocationPoint(41.0, -4.0))
    assert not contains(bounds, LocationPoint(41.01, -3.5))
    assert not contains(bounds, LocationPoint(40.5, -2.99))


def test_bounds_reject_inverted_latitudes():
    with pytest.raises(ValidationException):
        MapBounds(north=40.0, south=41.0, east=1.0, west=0.0)


def test_antimeridian_box_contains_nothing():
    bounds = MapBounds(north=10.0, south=-10.0, east=-170.0, west=170.0)
    assert not bounds.contains(LocationPoint(0.0, 175.0))
    assert not bounds.contains(LocationPoint(0.0, -175.0))


def test_circle_geofence():
    fence = Geofence(
        id="depot",
        name="Depot",
        shape=GeofenceShape.CIRCLE,
        center=LocationPoint(40.4168, -3.7038),
        radius_meters=200,
    )
    assert fence.contains(LocationPoint(40.4170, -3.7040))
    assert not fence.contains(LocationPoint(40.4300, -3.7038))


def test_polygon_geofence_includes_boundary():
    fence = Geofence(
        id="site",
        name="Customer site",
        shape=GeofenceShape.POLYGON,
        vertices=((40.0, -4.0), (40.0, -3.0), (41.0, -3.0), (41.0, -4.0)),
    )
    assert fence.contains(LocationPoint(40.5, -3.5))
    assert fence.contains(LocationPoint(40.0, -3.5))
    assert not fence.contains(LocationPoint(41.5, -3.5))


def test_geofence_shape_requirements():
    with pytest.raises(ValidationException):
        Geofence(id="c", name="c", shape=GeofenceShape.CIRCLE, center=LocationPoint(0, 0))
    with pytest.raises(ValidationException):
        Geofence(id="p", name="p", shape=GeofenceShape.POLYGON, vertices=((0, 0), (1, 1)))


def test_route_orders_waypoints_and_finds_next():
    route = AgentRoute(
        id="r1",
        eta_seconds=900,
        distance_meters=4000,
        waypoints=(
            Waypoint(40.2, -3.2, order=2),
            Waypoint(40.0, -3.0, order=0, is_completed=True),
            Waypoint(40.1, -3.1, order=1),
        ),
    )
    assert [w.order for w in route.waypoints] == [0, 1, 2]
    assert route.next_waypoint.order == 1


def test_route_rejects_negative_eta():
    with pytest.raises(ValidationException):
        AgentRoute(id="r1", eta_seconds=-1, distance_meters=0)


def test_device_levels_must_be_percentages():
    with pytest.raises(ValidationException):
        DeviceInfo(battery_level=101)
    with pytest.raises(ValidationException):
        DeviceInfo(signal_strength=-5)
