from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .config import EngineConfig
from .geo import as_utc, elapsed_hours, haversine_km, nearest_cluster_km, required_speed_kmh
from .models import AnomalyScore, LoginEvent, UserPattern
from .pattern_learner import normalize_device


class AnomalyScorer:
    """Scores a login against the user's baseline and the preceding login.

    Checks run in a fixed order: impossible travel, country rarity, device,
    distance from the home clusters, time of day and weekday, then IP. Every
    check adds a fixed penalty, so a larger deviation can never lower the
    total. The sum is clamped to ``[0, 100]``.
    """

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()

    def score(
        self,
        event: LoginEvent,
        pattern: UserPattern,
        previous: Optional[LoginEvent] = None,
    ) -> AnomalyScore:
        weights = self.config.anomaly_weights
        reasons: List[str] = []
        total = 0

        impossible_travel = False
        travel_reason = self._impossible_travel(event, previous)
        if travel_reason:
            impossible_travel = True
            total += weights.impossible_travel
            reasons.append(travel_reason)

        rarity_reason = self._rare_location(event, pattern)
        if rarity_reason:
            total += weights.rare_location
            reasons.append(rarity_reason)

        device = normalize_device(event.user_agent)
        if device != pattern.dominant_device:
            total += weights.device_mismatch
            reasons.append(f"New or unusual device: {device} (usually {pattern.dominant_device})")

        distance_reason = self._distant_location(event, pattern)
        if distance_reason:
            total += weights.distant_location
            reasons.append(distance_reason)

        moment = as_utc(event.timestamp)
        if pattern.typical_hours and moment.hour not in pattern.typical_hours:
            total += weights.unusual_hour
            reasons.append(f"Login at unusual time ({moment:%H:00} UTC)")
        if pattern.typical_days and moment.weekday() not in pattern.typical_days:
            total += weights.unusual_day
            reasons.append(f"Login on unusual day ({moment:%A})")

        if pattern.common_ips and event.ip_address not in pattern.common_ips:
            total += weights.new_ip
            reasons.append(f"New IP address: {event.ip_address}")

        return AnomalyScore(
            login_event_id=event.id,
            overall=max(0, min(total, 100)),
            is_impossible_travel=impossible_travel,
            reasons=reasons,
        )

    def score_history(
        self, events: Sequence[LoginEvent], pattern: UserPattern
    ) -> List[Tuple[LoginEvent, AnomalyScore]]:
        ordered = sorted(events, key=lambda event: event.timestamp)
        scored: List[Tuple[LoginEvent, AnomalyScore]] = []
        previous: Optional[LoginEvent] = None
        for event in ordered:
            scored.append((event, self.score(event, pattern, previous)))
            previous = event
        return scored

    def _impossible_travel(self, event: LoginEvent, previous: Optional[LoginEvent]) -> Optional[str]:
        if previous is None or event.location is None or previous.location is None:
            return None
        if not (event.location.has_coordinates and previous.location.has_coordinates):
            return None

        hours = elapsed_hours(previous.timestamp, event.timestamp)
        distance = haversine_km(
            previous.location.lat,
            previous.location.lon,
            event.location.lat,
            event.location.lon,
        )
        speed = required_speed_kmh(distance, hours)
        if speed is None or speed <= self.config.max_travel_speed_kmh:
            return None
        return (
            f"Impossible travel: {previous.location.label()} to {event.location.label()} "
            f"({distance:.0f} km in {hours:.1f} h, {speed:.0f} km/h)"
        )

    def _rare_location(self, event: LoginEvent, pattern: UserPattern) -> Optional[str]:
        if event.location is None or not event.location.country:
            return None
        country = event.location.country
        if pattern.home_country is None or country == pattern.home_country:
            return None
        frequency = pattern.country_frequency(country)
        if frequency >= self.config.rare_country_ratio:
            return None
        return f"Login from unusual country: {country} ({frequency:.0%} of logins)"

    def _distant_location(self, event: LoginEvent, pattern: UserPattern) -> Optional[str]:
        if event.location is None or not event.location.has_coordinates:
            return None
        distance = nearest_cluster_km(event.location.lat, event.location.lon, pattern.home_clusters)
        if distance is None or distance <= self.config.distant_location_km:
            return None
        return f"Login {distance:.0f} km from typical location"
