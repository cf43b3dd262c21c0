from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import EngineConfig
from .models import AuditEntry, RiskSignal
from .persistence import SignalStore

logger = logging.getLogger(__name__)

BANNED = "banned"
ALREADY_BANNED = "already_banned"
NOT_TRIGGERED = "not_triggered"
ACCOUNT_MISSING = "account_missing"
BANNED_AUDIT_FAILED = "banned_audit_failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ban_reason(signal: RiskSignal) -> str:
    return (
        "Automated ban: Multiple risk signals detected "
        f"(Risk Score: {signal.risk_score}/100). Factors: {'; '.join(signal.risk_factors)}"
    )


class EnforcementEngine:
    """Applies automated bans for signals at or above the ban threshold.

    The ban is a conditional update on accounts that are not banned yet, and
    the audit entry is written only when that update changed the account, so
    repeated or overlapping runs never duplicate either.
    """

    def __init__(
        self,
        store: SignalStore,
        config: EngineConfig | None = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.clock = clock or utcnow

    def should_ban(self, signal: RiskSignal) -> bool:
        return self.config.evaluate_action(signal.risk_score) == "auto_ban"

    def enforce(self, signal: RiskSignal) -> str:
        if not self.should_ban(signal):
            return NOT_TRIGGERED

        reason = ban_reason(signal)
        now = self.clock()
        if not self.store.ban_user(signal.user_id, reason, now):
            if not self.store.account_exists(signal.user_id):
                logger.warning("No account record for user %s, ban not applied", signal.user_id)
                return ACCOUNT_MISSING
            logger.info("User %s already banned, skipping audit entry", signal.user_id)
            return ALREADY_BANNED

        signal.auto_banned = True
        logger.warning("Auto-banned user %s with risk score %s", signal.user_id, signal.risk_score)
        entry = AuditEntry(
            user_id=signal.user_id,
            category="admin_change",
            description=reason,
            metadata=signal.audit_metadata(self.config.risk_weights.version),
            created_at=now,
        )
        try:
            self.store.record_audit(entry)
        except Exception:
            # the ban stands; the run summary lists the user for follow-up
            logger.exception("Audit entry for banned user %s could not be written", signal.user_id)
            return BANNED_AUDIT_FAILED
        return BANNED
