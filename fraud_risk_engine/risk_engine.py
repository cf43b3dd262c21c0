from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from threading import Event
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .anomaly_scorer import AnomalyScorer
from .config import EngineConfig
from .enforcement import BANNED, BANNED_AUDIT_FAILED, EnforcementEngine, utcnow
from .fingerprinting import FingerprintCollisionDetector
from .geolocation import GeoLocator, resolve_locations
from .models import BatchSummary, CollisionResult, FingerprintCollision, LoginAnalysis, RiskSignal
from .pattern_learner import PatternCache, PatternLearner
from .persistence import SignalStore, serialize_summary
from .risk_aggregator import RiskAggregator

logger = logging.getLogger(__name__)


class RiskEngine:
    """Entry point for the on-demand login analysis and the periodic batch run."""

    def __init__(
        self,
        store: SignalStore,
        config: EngineConfig | None = None,
        geolocator: GeoLocator | None = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or EngineConfig()
        self.store = store
        self.geolocator = geolocator
        self.clock = clock or utcnow
        self.learner = PatternLearner(
            self.config.min_pattern_logins,
            typical_time_ratio=self.config.typical_time_ratio,
            common_ip_ratio=self.config.common_ip_ratio,
            cluster_radius_km=self.config.home_cluster_radius_km,
        )
        self.scorer = AnomalyScorer(self.config)
        self.aggregator = RiskAggregator(self.config.risk_weights)
        self.enforcement = EnforcementEngine(store, self.config, self.clock)
        self.pattern_cache = PatternCache(self.config.pattern_cache_size)

    def analyze_logins(self, user_id: str) -> LoginAnalysis:
        events = self.store.login_events(user_id, self.config.history_window)
        events = resolve_locations(events, self.geolocator)
        pattern = self.pattern_cache.get_or_learn(user_id, events, self.learner.learn)
        if pattern is None:
            return LoginAnalysis(user_id=user_id, pattern=None, logins=[(event, None) for event in events])
        scored = self.scorer.score_history(events, pattern)
        return LoginAnalysis(user_id=user_id, pattern=pattern, logins=list(scored))

    def collision_for(self, user_id: str) -> Optional[CollisionResult]:
        latest = self.store.latest_fingerprint(user_id)
        if latest is None:
            return None
        detector = FingerprintCollisionDetector(self.store.fingerprints_with_hash(latest.hash))
        return detector.for_user(user_id, [latest.hash])

    def evaluate_user(self, user_id: str) -> RiskSignal:
        return self.aggregator.aggregate(
            user_id,
            collision=self.collision_for(user_id),
            behavior=self.store.latest_behavioral_signal(user_id),
            ip_reputation=self.store.latest_ip_reputation(user_id),
        )

    def _process_user(self, user_id: str, cancel_event: Optional[Event]) -> Optional[Tuple[RiskSignal, str]]:
        if cancel_event is not None and cancel_event.is_set():
            return None
        signal = self.evaluate_user(user_id)
        outcome = self.enforcement.enforce(signal)
        return signal, outcome

    def run_batch(self, cancel_event: Optional[Event] = None) -> BatchSummary:
        summary = BatchSummary(started_at=self.clock(), weights_version=self.config.risk_weights.version)
        user_ids = self.store.active_user_ids()
        logger.info("Starting security risk analysis for %d active users", len(user_ids))

        results: Dict[str, Tuple[RiskSignal, str]] = {}
        failed: Set[str] = set()
        with ThreadPoolExecutor(
            max_workers=max(1, self.config.max_workers), thread_name_prefix="RiskWorker"
        ) as executor:
            futures = {executor.submit(self._process_user, user_id, cancel_event): user_id for user_id in user_ids}
            for future in as_completed(futures):
                user_id = futures[future]
                try:
                    result = future.result()
                except Exception:
                    logger.exception("Risk evaluation failed for user %s; skipping", user_id)
                    failed.add(user_id)
                    continue
                if result is not None:
                    results[user_id] = result

        for user_id in user_ids:
            if user_id in failed:
                summary.failed_user_ids.append(user_id)
                continue
            if user_id not in results:
                continue
            signal, outcome = results[user_id]
            summary.evaluated_count += 1
            if outcome in (BANNED, BANNED_AUDIT_FAILED):
                summary.auto_banned_user_ids.append(user_id)
            if outcome == BANNED_AUDIT_FAILED:
                summary.audit_failed_user_ids.append(user_id)
            if signal.risk_score > self.config.report_threshold:
                summary.risk_signals.append(signal)

        summary.cancelled = cancel_event is not None and cancel_event.is_set()
        summary.finished_at = self.clock()
        logger.info(
            "Analysis complete: %d evaluated, %d banned, %d elevated, %d failed, %d missing audit%s",
            summary.evaluated_count,
            summary.auto_banned_count,
            summary.risk_signals_count,
            summary.failed_count,
            summary.audit_failed_count,
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    def fingerprint_collisions(self) -> List[FingerprintCollision]:
        since = None
        if self.config.fingerprint_window is not None:
            since = self.clock() - self.config.fingerprint_window
        return FingerprintCollisionDetector(self.store.fingerprints(since)).collisions()

    def summary_payload(self, summary: BatchSummary) -> Dict[str, Any]:
        return serialize_summary(summary, self.config.top_signals_preview)
