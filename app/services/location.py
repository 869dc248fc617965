from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_M = 6371000.0


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return EARTH_RADIUS_M * c


def geofence_confidence(distance: float, radius_m: float, floor: float) -> float:
    """Linear falloff from 1.0 at the center to ``floor`` at the geofence edge."""
    if radius_m <= 0:
        return 0.0
    ratio = min(max(distance, 0.0) / radius_m, 1.0)
    return round(1.0 - (1.0 - floor) * ratio, 4)


def evaluate_geofence(
    *,
    center_lat: float,
    center_lon: float,
    radius_m: float,
    lat: float,
    lon: float,
    accuracy_m: float | None,
    floor: float,
) -> tuple[bool, float, dict[str, float]]:
    distance_value = distance_m(center_lat, center_lon, lat, lon)
    accuracy = max(accuracy_m or 0.0, 0.0)
    flags = {
        "distance_m": round(distance_value, 2),
        "radius_m": float(radius_m),
        "accuracy_m": round(accuracy, 2),
    }

    if distance_value - accuracy > radius_m:
        return False, 0.0, flags
    return True, geofence_confidence(distance_value, radius_m, floor), flags
