from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Protocol

from pymongo import ASCENDING, DESCENDING, MongoClient

from .models import (
    AuditEntry,
    BatchSummary,
    BehavioralSignal,
    FingerprintRecord,
    IPReputationRecord,
    LoginEvent,
    RiskSignal,
)

LOGIN_ACTIVITY = "login"


class SignalStore(Protocol):
    def active_user_ids(self) -> List[str]: ...

    def login_events(self, user_id: str, limit: int) -> List[LoginEvent]: ...

    def latest_fingerprint(self, user_id: str) -> Optional[FingerprintRecord]: ...

    def fingerprints_with_hash(self, fingerprint_hash: str) -> List[FingerprintRecord]: ...

    def fingerprints(self, since: Optional[datetime] = None) -> List[FingerprintRecord]: ...

    def latest_behavioral_signal(self, user_id: str) -> Optional[BehavioralSignal]: ...

    def latest_ip_reputation(self, user_id: str) -> Optional[IPReputationRecord]: ...

    def ban_user(self, user_id: str, reason: str, banned_at: datetime) -> bool: ...

    def account_exists(self, user_id: str) -> bool: ...

    def record_audit(self, entry: AuditEntry) -> None: ...

    def save_run_summary(self, task_id: str, summary: Mapping[str, Any]) -> None: ...

    def get_run_summary(self, task_id: str) -> Optional[Dict[str, Any]]: ...


def _require(document: Mapping[str, Any], key: str) -> Any:
    value = document.get(key)
    if value is None:
        raise ValueError(f"signal record is missing required field {key!r}")
    return value


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def to_login_event(document: Mapping[str, Any]) -> LoginEvent:
    return LoginEvent(
        id=str(_require(document, "_id")),
        user_id=str(_require(document, "user_id")),
        timestamp=_require(document, "created_at"),
        ip_address=str(document.get("ip_address") or ""),
        user_agent=str(document.get("user_agent") or ""),
    )


def to_fingerprint(document: Mapping[str, Any]) -> FingerprintRecord:
    ignored = {"_id", "user_id", "fingerprint_hash", "collected_at", "session_id", "metadata"}
    return FingerprintRecord(
        hash=str(_require(document, "fingerprint_hash")),
        collected_at=_require(document, "collected_at"),
        user_id=_optional_str(document.get("user_id")),
        device_attributes={k: v for k, v in document.items() if k not in ignored},
    )


def to_behavioral_signal(document: Mapping[str, Any]) -> BehavioralSignal:
    return BehavioralSignal(
        session_id=str(_require(document, "session_id")),
        bot_likelihood_score=int(document.get("bot_likelihood_score") or 0),
        user_id=_optional_str(document.get("user_id")),
        indicators=tuple(str(item) for item in document.get("bot_indicators") or ()),
        collected_at=document.get("collected_at"),
    )


def to_ip_reputation(document: Mapping[str, Any]) -> IPReputationRecord:
    return IPReputationRecord(
        ip_address=str(_require(document, "ip_address")),
        is_vpn=bool(document.get("is_vpn")),
        is_proxy=bool(document.get("is_proxy")),
        is_tor=bool(document.get("is_tor")),
        country_code=_optional_str(document.get("country_code")),
        fraud_score=_optional_int(document.get("fraud_score")),
        associated_user_id=_optional_str(document.get("associated_user_id")),
        observed_at=document.get("blocked_at"),
    )


def serialize_signal(signal: RiskSignal) -> Dict[str, Any]:
    return {
        "user_id": signal.user_id,
        "risk_score": signal.risk_score,
        "risk_band": signal.band,
        "risk_factors": list(signal.risk_factors),
        "fingerprint_collision": signal.fingerprint_collision,
        "collision_count": signal.collision_count,
        "bot_score": signal.bot_score,
        "high_bot_score": signal.high_bot_score,
        "fraud_score": signal.fraud_score,
        "high_fraud_score": signal.high_fraud_score,
        "vpn_detected": signal.vpn_detected,
        "auto_banned": signal.auto_banned,
    }


def serialize_summary(summary: BatchSummary, preview: int) -> Dict[str, Any]:
    return {
        "started_at": summary.started_at,
        "finished_at": summary.finished_at,
        "weights_version": summary.weights_version,
        "evaluated_count": summary.evaluated_count,
        "auto_banned_count": summary.auto_banned_count,
        "auto_banned_user_ids": list(summary.auto_banned_user_ids),
        "risk_signals_count": summary.risk_signals_count,
        "top_risk_signals": [serialize_signal(signal) for signal in summary.top_risk_signals(preview)],
        "failed_count": summary.failed_count,
        "failed_user_ids": list(summary.failed_user_ids),
        "audit_failed_count": summary.audit_failed_count,
        "audit_failed_user_ids": list(summary.audit_failed_user_ids),
        "cancelled": summary.cancelled,
    }


class MongoSignalStore:
    """MongoDB-backed access to the signal collections and account state."""

    def __init__(
        self,
        uri: str = "mongodb://mongo:27017/",
        database: str = "fraud_risk",
        client: MongoClient | None = None,
    ) -> None:
        self.client = client or MongoClient(uri, tz_aware=True)
        self.db = self.client[database]
        self.activity_logs = self.db["activity_logs"]
        self.fingerprint_records = self.db["user_fingerprints"]
        self.behavioral_signals = self.db["behavioral_signals"]
        self.ip_reputation = self.db["blocked_ips"]
        self.accounts = self.db["user_usage"]
        self.runs = self.db["risk_analysis_runs"]

    def ensure_indexes(self) -> None:
        self.activity_logs.create_index(
            [("user_id", ASCENDING), ("activity_type", ASCENDING), ("created_at", DESCENDING)]
        )
        self.fingerprint_records.create_index("fingerprint_hash")
        self.fingerprint_records.create_index([("user_id", ASCENDING), ("collected_at", DESCENDING)])
        self.behavioral_signals.create_index([("user_id", ASCENDING), ("collected_at", DESCENDING)])
        self.ip_reputation.create_index([("associated_user_id", ASCENDING), ("blocked_at", DESCENDING)])
        self.accounts.create_index("user_id", unique=True)
        self.runs.create_index("task_id", unique=True)

    def active_user_ids(self) -> List[str]:
        cursor = self.accounts.find({"is_banned": {"$ne": True}}, {"user_id": 1})
        return [str(document["user_id"]) for document in cursor]

    def login_events(self, user_id: str, limit: int) -> List[LoginEvent]:
        cursor = (
            self.activity_logs.find(
                {
                    "user_id": user_id,
                    "activity_type": LOGIN_ACTIVITY,
                    "ip_address": {"$nin": [None, ""]},
                }
            )
            .sort("created_at", DESCENDING)
            .limit(limit)
        )
        events = [to_login_event(document) for document in cursor]
        events.reverse()
        return events

    def latest_fingerprint(self, user_id: str) -> Optional[FingerprintRecord]:
        document = self.fingerprint_records.find_one(
            {"user_id": user_id}, sort=[("collected_at", DESCENDING)]
        )
        return to_fingerprint(document) if document else None

    def fingerprints_with_hash(self, fingerprint_hash: str) -> List[FingerprintRecord]:
        cursor = self.fingerprint_records.find(
            {"fingerprint_hash": fingerprint_hash, "user_id": {"$ne": None}}
        )
        return [to_fingerprint(document) for document in cursor]

    def fingerprints(self, since: Optional[datetime] = None) -> List[FingerprintRecord]:
        query: MutableMapping[str, Any] = {"user_id": {"$ne": None}}
        if since is not None:
            query["collected_at"] = {"$gte": since}
        cursor = self.fingerprint_records.find(query).sort("collected_at", DESCENDING)
        return [to_fingerprint(document) for document in cursor]

    def latest_behavioral_signal(self, user_id: str) -> Optional[BehavioralSignal]:
        document = self.behavioral_signals.find_one(
            {"user_id": user_id}, sort=[("collected_at", DESCENDING)]
        )
        return to_behavioral_signal(document) if document else None

    def latest_ip_reputation(self, user_id: str) -> Optional[IPReputationRecord]:
        document = self.ip_reputation.find_one(
            {"associated_user_id": user_id}, sort=[("blocked_at", DESCENDING)]
        )
        return to_ip_reputation(document) if document else None

    def ban_user(self, user_id: str, reason: str, banned_at: datetime) -> bool:
        result = self.accounts.update_one(
            {"user_id": user_id, "is_banned": {"$ne": True}},
            {"$set": {"is_banned": True, "banned_at": banned_at, "ban_reason": reason}},
        )
        return result.modified_count == 1

    def account_exists(self, user_id: str) -> bool:
        return self.accounts.count_documents({"user_id": user_id}, limit=1) > 0

    def record_audit(self, entry: AuditEntry) -> None:
        self.activity_logs.insert_one(
            {
                "user_id": entry.user_id,
                "activity_type": entry.category,
                "description": entry.description,
                "metadata": dict(entry.metadata),
                "created_at": entry.created_at,
            }
        )

    def save_run_summary(self, task_id: str, summary: Mapping[str, Any]) -> None:
        document: MutableMapping[str, Any] = {"task_id": task_id, "summary": dict(summary)}
        self.runs.replace_one({"task_id": task_id}, document, upsert=True)

    def get_run_summary(self, task_id: str) -> Optional[Dict[str, Any]]:
        document = self.runs.find_one({"task_id": task_id})
        if document is None:
            return None
        return document["summary"]


class InMemorySignalStore:
    """Process-local store with the same contract as :class:`MongoSignalStore`."""

    def __init__(self) -> None:
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.logins: List[LoginEvent] = []
        self.fingerprint_records: List[FingerprintRecord] = []
        self.behavioral: Dict[str, BehavioralSignal] = {}
        self.ip_records: List[IPReputationRecord] = []
        self.audit_entries: List[AuditEntry] = []
        self.runs: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()

    def add_user(self, user_id: str, is_banned: bool = False) -> None:
        self.accounts[user_id] = {"is_banned": is_banned, "banned_at": None, "ban_reason": None}

    def add_login(self, event: LoginEvent) -> None:
        self.accounts.setdefault(event.user_id, {"is_banned": False, "banned_at": None, "ban_reason": None})
        self.logins.append(event)

    def add_fingerprint(self, record: FingerprintRecord) -> None:
        self.fingerprint_records.append(record)

    def add_behavioral_signal(self, signal: BehavioralSignal) -> None:
        # upserted by session id, as the collector does
        self.behavioral[signal.session_id] = signal

    def add_ip_reputation(self, record: IPReputationRecord) -> None:
        self.ip_records.append(record)

    def active_user_ids(self) -> List[str]:
        return [user_id for user_id, account in self.accounts.items() if not account["is_banned"]]

    def is_banned(self, user_id: str) -> bool:
        return bool(self.accounts.get(user_id, {}).get("is_banned"))

    def login_events(self, user_id: str, limit: int) -> List[LoginEvent]:
        events = [event for event in self.logins if event.user_id == user_id and event.ip_address]
        events.sort(key=lambda event: event.timestamp)
        return events[-limit:] if limit > 0 else []

    def latest_fingerprint(self, user_id: str) -> Optional[FingerprintRecord]:
        records = [record for record in self.fingerprint_records if record.user_id == user_id]
        return max(records, key=lambda record: record.collected_at, default=None)

    def fingerprints_with_hash(self, fingerprint_hash: str) -> List[FingerprintRecord]:
        return [
            record
            for record in self.fingerprint_records
            if record.hash == fingerprint_hash and record.user_id is not None
        ]

    def fingerprints(self, since: Optional[datetime] = None) -> List[FingerprintRecord]:
        return [
            record
            for record in self.fingerprint_records
            if record.user_id is not None and (since is None or record.collected_at >= since)
        ]

    def latest_behavioral_signal(self, user_id: str) -> Optional[BehavioralSignal]:
        signals = [signal for signal in self.behavioral.values() if signal.user_id == user_id]
        if not signals:
            return None
        # signals without a timestamp sort first
        return max(signals, key=lambda signal: (signal.collected_at is not None, signal.collected_at or 0))

    def latest_ip_reputation(self, user_id: str) -> Optional[IPReputationRecord]:
        records = [record for record in self.ip_records if record.associated_user_id == user_id]
        if not records:
            return None
        return max(records, key=lambda record: (record.observed_at is not None, record.observed_at or 0))

    def ban_user(self, user_id: str, reason: str, banned_at: datetime) -> bool:
        with self._lock:
            account = self.accounts.get(user_id)
            if account is None or account["is_banned"]:
                return False
            account.update(is_banned=True, banned_at=banned_at, ban_reason=reason)
            return True

    def account_exists(self, user_id: str) -> bool:
        return user_id in self.accounts

    def record_audit(self, entry: AuditEntry) -> None:
        with self._lock:
            self.audit_entries.append(entry)

    def save_run_summary(self, task_id: str, summary: Mapping[str, Any]) -> None:
        self.runs[task_id] = dict(summary)

    def get_run_summary(self, task_id: str) -> Optional[Dict[str, Any]]:
        return self.runs.get(task_id)
