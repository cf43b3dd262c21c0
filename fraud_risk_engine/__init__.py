"""Fraud and anomaly risk engine."""

from .anomaly_scorer import AnomalyScorer
from .config import AnomalyWeights, EngineConfig, RiskWeights
from .enforcement import EnforcementEngine
from .fingerprinting import FingerprintCollisionDetector
from .models import (
    AnomalyScore,
    BatchSummary,
    BehavioralSignal,
    FingerprintRecord,
    GeoLocation,
    IPReputationRecord,
    LoginEvent,
    RiskSignal,
    UserPattern,
)
from .pattern_learner import PatternLearner
from .persistence import InMemorySignalStore
from .risk_aggregator import RiskAggregator
from .risk_engine import RiskEngine

__all__ = [
    "AnomalyScore",
    "AnomalyScorer",
    "AnomalyWeights",
    "BatchSummary",
    "BehavioralSignal",
    "EngineConfig",
    "EnforcementEngine",
    "FingerprintCollisionDetector",
    "FingerprintRecord",
    "GeoLocation",
    "InMemorySignalStore",
    "IPReputationRecord",
    "LoginEvent",
    "PatternLearner",
    "RiskAggregator",
    "RiskEngine",
    "RiskSignal",
    "RiskWeights",
    "UserPattern",
]
