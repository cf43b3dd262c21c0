from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .config import risk_band


@dataclass(frozen=True, slots=True)
class GeoLocation:
    city: str
    country: str
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def label(self) -> str:
        if self.city:
            return f"{self.city}, {self.country}"
        return self.country


@dataclass(frozen=True, slots=True)
class LoginEvent:
    id: str
    user_id: str
    timestamp: datetime
    ip_address: str
    user_agent: str
    location: Optional[GeoLocation] = None


@dataclass(slots=True)
class HomeCluster:
    """Centroid of logins that fall within the clustering radius of each other."""

    lat: float
    lon: float
    count: int


@dataclass(slots=True)
class UserPattern:
    """Behavioral baseline learned from a user's recent logins.

    ``home_locations`` holds ``(country, count)`` pairs ordered by descending
    count, ties kept in first-seen order. ``home_clusters`` groups login
    coordinates the same way. Typical hours and weekdays (Monday is 0) are UTC; an empty
    set means the history shows no preference and the check is skipped.
    """

    home_locations: List[Tuple[str, int]]
    device_consistency: float
    location_consistency: float
    dominant_device: str
    resolved_logins: int
    total_logins: int
    home_clusters: List[HomeCluster] = field(default_factory=list)
    typical_hours: FrozenSet[int] = frozenset()
    typical_days: FrozenSet[int] = frozenset()
    avg_login_interval_hours: Optional[float] = None
    common_ips: FrozenSet[str] = frozenset()
    ip_consistency: float = 0.0

    @property
    def home_country(self) -> Optional[str]:
        if not self.home_locations:
            return None
        return self.home_locations[0][0]

    def country_frequency(self, country: str) -> float:
        if not self.resolved_logins:
            return 0.0
        count = dict(self.home_locations).get(country, 0)
        return count / self.resolved_logins


@dataclass(slots=True)
class AnomalyScore:
    login_event_id: str
    overall: int
    is_impossible_travel: bool = False
    reasons: List[str] = field(default_factory=list)


@dataclass(slots=True)
class LoginAnalysis:
    user_id: str
    pattern: Optional[UserPattern]
    logins: List[Tuple[LoginEvent, Optional[AnomalyScore]]]

    @property
    def insufficient_data(self) -> bool:
        return self.pattern is None


@dataclass(frozen=True, slots=True)
class FingerprintRecord:
    hash: str
    collected_at: datetime
    user_id: Optional[str] = None
    device_attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class BehavioralSignal:
    session_id: str
    bot_likelihood_score: int
    user_id: Optional[str] = None
    indicators: Tuple[str, ...] = ()
    collected_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class IPReputationRecord:
    ip_address: str
    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    country_code: Optional[str] = None
    fraud_score: Optional[int] = None
    associated_user_id: Optional[str] = None
    observed_at: Optional[datetime] = None

    def anonymizers(self) -> List[str]:
        flags = [("VPN", self.is_vpn), ("Proxy", self.is_proxy), ("Tor", self.is_tor)]
        return [name for name, enabled in flags if enabled]


@dataclass(slots=True)
class CollisionResult:
    collision: bool = False
    collision_count: int = 0


@dataclass(slots=True)
class FingerprintCollision:
    fingerprint_hash: str
    user_ids: List[str]
    total_collections: int
    last_seen: datetime
    device_attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def user_count(self) -> int:
        return len(self.user_ids)

    @property
    def severity(self) -> str:
        if self.user_count >= 5:
            return "high"
        if self.user_count >= 3:
            return "medium"
        return "low"


@dataclass(slots=True)
class RiskSignal:
    user_id: str
    risk_score: int
    risk_factors: List[str]
    fingerprint_collision: bool = False
    collision_count: int = 0
    bot_score: int = 0
    high_bot_score: bool = False
    fraud_score: Optional[int] = None
    high_fraud_score: bool = False
    vpn_detected: bool = False
    auto_banned: bool = False

    @property
    def band(self) -> str:
        return risk_band(self.risk_score)

    def audit_metadata(self, weights_version: str) -> Dict[str, Any]:
        return {
            "automated": True,
            "risk_score": self.risk_score,
            "risk_factors": list(self.risk_factors),
            "fingerprint_collision": self.fingerprint_collision,
            "collision_count": self.collision_count,
            "high_bot_score": self.high_bot_score,
            "bot_score": self.bot_score,
            "high_fraud_score": self.high_fraud_score,
            "fraud_score": self.fraud_score,
            "vpn_detected": self.vpn_detected,
            "weights_version": weights_version,
        }


@dataclass(slots=True)
class BatchSummary:
    started_at: datetime
    weights_version: str
    finished_at: Optional[datetime] = None
    evaluated_count: int = 0
    auto_banned_user_ids: List[str] = field(default_factory=list)
    risk_signals: List[RiskSignal] = field(default_factory=list)
    failed_user_ids: List[str] = field(default_factory=list)
    audit_failed_user_ids: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def auto_banned_count(self) -> int:
        return len(self.auto_banned_user_ids)

    @property
    def risk_signals_count(self) -> int:
        return len(self.risk_signals)

    @property
    def failed_count(self) -> int:
        return len(self.failed_user_ids)

    @property
    def audit_failed_count(self) -> int:
        return len(self.audit_failed_user_ids)

    def top_risk_signals(self, limit: int) -> List[RiskSignal]:
        ranked = sorted(self.risk_signals, key=lambda signal: signal.risk_score, reverse=True)
        return ranked[:limit]


@dataclass(frozen=True, slots=True)
class AuditEntry:
    user_id: str
    category: str
    description: str
    metadata: Mapping[str, Any]
    created_at: datetime
