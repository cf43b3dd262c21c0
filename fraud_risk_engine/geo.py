"""Great-circle and time helpers used by the location and travel checks."""

from __future__ import annotations

from datetime import datetime, timezone
from math import asin, cos, radians, sin, sqrt
from typing import Iterable, List, Optional, Tuple

from .models import HomeCluster

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance in kilometres between two points."""
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # clamp rounding noise for antipodal points
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(a, 1.0)))


def elapsed_hours(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600.0


def required_speed_kmh(distance_km: float, hours: float) -> Optional[float]:
    """Average speed needed to cover ``distance_km`` in ``hours``.

    Returns ``None`` when the elapsed time is not positive.
    """
    if hours <= 0:
        return None
    return distance_km / hours


def as_utc(timestamp: datetime) -> datetime:
    # naive timestamps are stored as UTC
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def cluster_points(points: Iterable[Tuple[float, float]], radius_km: float) -> List[HomeCluster]:
    """Greedy single-pass clustering, most populated cluster first.

    Each point joins the first cluster whose running centroid is closer than
    ``radius_km``; otherwise it starts a new one.
    """
    clusters: List[HomeCluster] = []
    for lat, lon in points:
        for cluster in clusters:
            if haversine_km(lat, lon, cluster.lat, cluster.lon) < radius_km:
                cluster.lat = (cluster.lat * cluster.count + lat) / (cluster.count + 1)
                cluster.lon = (cluster.lon * cluster.count + lon) / (cluster.count + 1)
                cluster.count += 1
                break
        else:
            clusters.append(HomeCluster(lat=lat, lon=lon, count=1))
    clusters.sort(key=lambda cluster: cluster.count, reverse=True)
    return clusters


def nearest_cluster_km(lat: float, lon: float, clusters: Iterable[HomeCluster]) -> Optional[float]:
    distances = [haversine_km(lat, lon, cluster.lat, cluster.lon) for cluster in clusters]
    return min(distances) if distances else None
