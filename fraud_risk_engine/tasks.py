from __future__ import annotations

import os
from typing import Any, Mapping, MutableMapping, Optional
from uuid import uuid4

from celery import Celery
from fastapi.encoders import jsonable_encoder

from .config import analysis_interval_seconds, mongodb_database, mongodb_uri
from .persistence import MongoSignalStore
from .risk_engine import RiskEngine
from .webhook import deliver_webhook, resolve_webhook_url


def _broker_url() -> str:
    return os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")


def _result_backend() -> str:
    return os.getenv("CELERY_RESULT_BACKEND", _broker_url())


celery_app = Celery("fraud_risk_engine", broker=_broker_url(), backend=_result_backend())
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "periodic-security-risk-analysis": {
            "task": "fraud_risk_engine.run_risk_analysis",
            "schedule": analysis_interval_seconds(),
        },
    },
)

_ENGINE: Optional[RiskEngine] = None
_STORE: Optional[MongoSignalStore] = None


def _get_store() -> MongoSignalStore:
    global _STORE
    if _STORE is None:
        _STORE = MongoSignalStore(uri=mongodb_uri(), database=mongodb_database())
        _STORE.ensure_indexes()
    return _STORE


def _get_engine() -> RiskEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = RiskEngine(store=_get_store())
    return _ENGINE


def build_summary_payload(
    *, summary: Mapping[str, Any], task_id: Optional[str] = None, source: str = "sync"
) -> MutableMapping[str, Any]:
    """Webhook body announcing a completed run, with datetimes as ISO strings."""
    return jsonable_encoder(
        {"event": "risk_analysis.completed", "task_id": task_id, "source": source, "summary": summary}
    )


@celery_app.task(name="fraud_risk_engine.run_risk_analysis")
def run_risk_analysis(task_id: Optional[str] = None) -> MutableMapping[str, Any]:
    engine = _get_engine()
    task_id = task_id or str(uuid4())
    summary = engine.summary_payload(engine.run_batch())
    engine.store.save_run_summary(task_id, summary)
    payload = build_summary_payload(summary=summary, task_id=task_id, source="celery")
    deliver_webhook(resolve_webhook_url(), payload)
    return payload["summary"]


def enqueue_risk_analysis() -> str:
    task_id = str(uuid4())
    run_risk_analysis.apply_async(args=[task_id], task_id=task_id)
    return task_id
