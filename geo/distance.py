import math

EARTH_RADIUS_METRES = 6_371_000


def distance_metres(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle (haversine) distance between two (lat, lon) points in metres.

    Inputs must be finite decimal degrees within range; callers validate.
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push a a hair past 1.0 for antipodal points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_METRES * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """True when lat/lon are finite and within [-90, 90] / [-180, 180]."""
    return (
        math.isfinite(lat) and math.isfinite(lon)
        and -90 <= lat <= 90 and -180 <= lon <= 180
    )
