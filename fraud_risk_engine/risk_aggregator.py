from __future__ import annotations

from typing import List, Optional

from .config import RiskWeights
from .models import BehavioralSignal, CollisionResult, IPReputationRecord, RiskSignal


class RiskAggregator:
    """Combines independent per-user signals into one composite risk score.

    A missing signal contributes nothing; it never averages down the others.
    """

    def __init__(self, weights: RiskWeights | None = None):
        self.weights = weights or RiskWeights()

    def aggregate(
        self,
        user_id: str,
        collision: Optional[CollisionResult] = None,
        behavior: Optional[BehavioralSignal] = None,
        ip_reputation: Optional[IPReputationRecord] = None,
    ) -> RiskSignal:
        weights = self.weights
        score = 0
        factors: List[str] = []
        signal = RiskSignal(user_id=user_id, risk_score=0, risk_factors=factors)

        if collision is not None and collision.collision:
            signal.fingerprint_collision = True
            signal.collision_count = collision.collision_count
            score += weights.fingerprint_collision
            factors.append(f"Fingerprint shared with {collision.collision_count} other user(s)")

        if behavior is not None:
            signal.bot_score = behavior.bot_likelihood_score
            if behavior.bot_likelihood_score >= weights.bot_score_threshold:
                signal.high_bot_score = True
                score += weights.high_bot_score
                factors.append(f"High bot likelihood score: {behavior.bot_likelihood_score}%")

        if ip_reputation is not None:
            signal.fraud_score = ip_reputation.fraud_score
            if ip_reputation.fraud_score is not None and ip_reputation.fraud_score >= weights.fraud_score_threshold:
                signal.high_fraud_score = True
                score += weights.high_fraud_score
                factors.append(f"Fraud score: {ip_reputation.fraud_score}")

            anonymizers = ip_reputation.anonymizers()
            if anonymizers:
                signal.vpn_detected = True
                score += weights.anonymized_network
                factors.append(
                    f"{'/'.join(anonymizers)} detected from {ip_reputation.country_code or 'unknown'}"
                )

        signal.risk_score = max(0, min(score, 100))
        return signal
