from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional


@dataclass(frozen=True, slots=True)
class RiskWeights:
    """Versioned weights and thresholds for the composite risk score."""

    version: str = "2025.1"
    fingerprint_collision: int = 30
    high_bot_score: int = 40
    high_fraud_score: int = 20
    anonymized_network: int = 15
    bot_score_threshold: int = 70
    fraud_score_threshold: int = 75


@dataclass(frozen=True, slots=True)
class AnomalyWeights:
    impossible_travel: int = 50
    rare_location: int = 30
    device_mismatch: int = 20
    distant_location: int = 20
    unusual_hour: int = 10
    unusual_day: int = 5
    new_ip: int = 10


@dataclass(slots=True)
class EngineConfig:
    """Configuration for the risk engine thresholds and behavior."""

    risk_weights: RiskWeights = field(default_factory=RiskWeights)
    anomaly_weights: AnomalyWeights = field(default_factory=AnomalyWeights)
    ban_threshold: int = 70
    report_threshold: int = 30
    min_pattern_logins: int = 3
    max_travel_speed_kmh: float = 900.0
    rare_country_ratio: float = 0.2
    typical_time_ratio: float = 0.2
    common_ip_ratio: float = 0.3
    home_cluster_radius_km: float = 50.0
    distant_location_km: float = 500.0
    history_window: int = 50
    fingerprint_window: Optional[timedelta] = None
    max_workers: int = 8
    top_signals_preview: int = 10
    pattern_cache_size: int = 256

    def evaluate_action(self, risk_score: int) -> str:
        if risk_score >= self.ban_threshold:
            return "auto_ban"
        if risk_score > self.report_threshold:
            return "review"
        return "none"


def risk_band(risk_score: int) -> str:
    if risk_score < 30:
        return "low"
    if risk_score < 60:
        return "medium"
    return "high"


def mongodb_uri() -> str:
    return os.getenv("MONGODB_URI", "mongodb://mongo:27017/")


def mongodb_database() -> str:
    return os.getenv("MONGODB_DATABASE", "fraud_risk")


def analysis_interval_seconds() -> float:
    return float(os.getenv("RISK_ANALYSIS_INTERVAL_SECONDS", "3600"))


def geolocation_base_url() -> str:
    return os.getenv("GEOLOCATION_BASE_URL", "http://ip-api.com/json")
