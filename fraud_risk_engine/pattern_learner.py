from __future__ import annotations

import re
from collections import Counter, OrderedDict
from threading import Lock
from typing import Any, Callable, Dict, FrozenSet, Hashable, List, Optional, Sequence, Tuple

from .geo import as_utc, cluster_points, elapsed_hours
from .models import LoginEvent, UserPattern

# Order matters: Edge and Opera user agents also carry "Chrome", Chrome carries "Safari".
_BROWSERS = [
    ("Edge", re.compile(r"Edg(e|A|iOS)?/")),
    ("Opera", re.compile(r"OPR/|Opera")),
    ("Firefox", re.compile(r"Firefox/|FxiOS/")),
    ("Chrome", re.compile(r"Chrome/|CriOS/")),
    ("Safari", re.compile(r"Safari/")),
]

_PLATFORMS = [
    ("Android", re.compile(r"Android")),
    ("iOS", re.compile(r"iPhone|iPad|iPod")),
    ("Windows", re.compile(r"Windows")),
    ("macOS", re.compile(r"Mac OS X|Macintosh")),
    ("Linux", re.compile(r"Linux|X11")),
]


def _first_match(user_agent: str, table: List[Tuple[str, "re.Pattern[str]"]], default: str) -> str:
    for name, pattern in table:
        if pattern.search(user_agent):
            return name
    return default


def normalize_device(user_agent: Optional[str]) -> str:
    """Collapse a raw user-agent string into a ``Browser/Platform`` signature."""
    if not user_agent or not user_agent.strip():
        return "Unknown"
    browser = _first_match(user_agent, _BROWSERS, "Other")
    platform = _first_match(user_agent, _PLATFORMS, "Other")
    return f"{browser}/{platform}"


def _consistency(counter: Counter[str], total: int) -> float:
    if not total:
        return 0.0
    return counter.most_common(1)[0][1] / total


def _frequent_values(values: Sequence[Hashable], ratio: float) -> FrozenSet[Any]:
    """Values that make up at least ``ratio`` of ``values``."""
    if not values:
        return frozenset()
    cutoff = len(values) * ratio
    return frozenset(value for value, count in Counter(values).items() if count >= cutoff)


def _average_interval_hours(ordered: Sequence[LoginEvent]) -> Optional[float]:
    if len(ordered) < 2:
        return None
    gaps = [elapsed_hours(a.timestamp, b.timestamp) for a, b in zip(ordered, ordered[1:])]
    return sum(gaps) / len(gaps)


class PatternLearner:
    """Builds a per-user baseline from chronologically ordered logins."""

    def __init__(
        self,
        min_logins: int = 3,
        typical_time_ratio: float = 0.2,
        common_ip_ratio: float = 0.3,
        cluster_radius_km: float = 50.0,
    ):
        self.min_logins = min_logins
        self.typical_time_ratio = typical_time_ratio
        self.common_ip_ratio = common_ip_ratio
        self.cluster_radius_km = cluster_radius_km

    def learn(self, events: Sequence[LoginEvent]) -> Optional[UserPattern]:
        ordered = sorted(events, key=lambda event: event.timestamp)
        resolved = [event for event in ordered if event.location is not None and event.location.country]
        if len(resolved) < self.min_logins:
            return None

        # Counter keeps insertion order, and most_common is a stable sort,
        # so ties resolve to the first-seen value.
        countries: Counter[str] = Counter(event.location.country for event in resolved)
        devices: Counter[str] = Counter(normalize_device(event.user_agent) for event in ordered)
        ips = [event.ip_address for event in ordered if event.ip_address]
        moments = [as_utc(event.timestamp) for event in ordered]
        coordinates = [
            (event.location.lat, event.location.lon) for event in resolved if event.location.has_coordinates
        ]

        return UserPattern(
            home_locations=countries.most_common(),
            device_consistency=_consistency(devices, len(ordered)),
            location_consistency=_consistency(countries, len(resolved)),
            dominant_device=devices.most_common(1)[0][0],
            resolved_logins=len(resolved),
            total_logins=len(ordered),
            home_clusters=cluster_points(coordinates, self.cluster_radius_km),
            typical_hours=_frequent_values([moment.hour for moment in moments], self.typical_time_ratio),
            typical_days=_frequent_values([moment.weekday() for moment in moments], self.typical_time_ratio),
            avg_login_interval_hours=_average_interval_hours(ordered),
            common_ips=_frequent_values(ips, self.common_ip_ratio),
            ip_consistency=_consistency(Counter(ips), len(ips)),
        )


def _cache_key(user_id: str, events: Sequence[LoginEvent]) -> Tuple[Any, ...]:
    # A pattern depends on the resolved locations as well as the login ids:
    # the same history learned after a failed lookup must not be reused.
    latest = max(events, key=lambda event: event.timestamp)
    locations = tuple(sorted(((event.id, event.location) for event in events), key=lambda item: item[0]))
    return user_id, latest.id, locations


class PatternCache:
    """LRU memo of learned patterns keyed by the latest login and the resolved locations."""

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._entries: "OrderedDict[Tuple[Any, ...], Optional[UserPattern]]" = OrderedDict()
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    def get_or_learn(
        self,
        user_id: str,
        events: Sequence[LoginEvent],
        learn: Callable[[Sequence[LoginEvent]], Optional[UserPattern]],
    ) -> Optional[UserPattern]:
        if not events or self.maxsize <= 0:
            return learn(events)
        key = _cache_key(user_id, events)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
        pattern = learn(events)
        with self._lock:
            self.misses += 1
            self._entries[key] = pattern
            self._entries.move_to_end(key)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)
        return pattern

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}
