from datetime import datetime, timezone

import httpx

from fraud_risk_engine import BehavioralSignal, InMemorySignalStore, IPReputationRecord, RiskEngine
from fraud_risk_engine import tasks, webhook
from fraud_risk_engine.tasks import build_summary_payload

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_run_risk_analysis_persists_and_publishes(monkeypatch):
    store = InMemorySignalStore()
    store.add_user("user-1")
    store.add_behavioral_signal(BehavioralSignal(session_id="s", bot_likelihood_score=88, user_id="user-1"))
    store.add_ip_reputation(IPReputationRecord(ip_address="203.0.113.5", is_tor=True, fraud_score=91, associated_user_id="user-1"))
    delivered = []
    monkeypatch.setattr(tasks, "_ENGINE", RiskEngine(store, clock=lambda: NOW))
    monkeypatch.setattr(tasks, "resolve_webhook_url", lambda: "http://hooks.test/risk")
    monkeypatch.setattr(tasks, "deliver_webhook", lambda url, payload: delivered.append((url, payload)))

    result = tasks.run_risk_analysis("task-1")

    assert result["auto_banned_user_ids"] == ["user-1"]
    assert result["finished_at"] == NOW.isoformat()
    assert store.get_run_summary("task-1")["auto_banned_count"] == 1
    [(url, payload)] = delivered
    assert url == "http://hooks.test/risk"
    assert payload["task_id"] == "task-1"
    assert payload["source"] == "celery"


def test_beat_schedule_registers_periodic_analysis():
    entry = tasks.celery_app.conf.beat_schedule["periodic-security-risk-analysis"]
    assert entry["task"] == "fraud_risk_engine.run_risk_analysis"


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_summary_payload_is_json_ready():
    payload = build_summary_payload(summary={"finished_at": NOW, "audit_failed_user_ids": []}, task_id="t")

    assert payload["event"] == "risk_analysis.completed"
    assert payload["source"] == "sync"
    assert payload["summary"]["finished_at"] == NOW.isoformat()


def test_deliver_webhook_posts_payload():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(204)

    payload = build_summary_payload(summary={"finished_at": NOW}, task_id="t")

    assert webhook.deliver_webhook("http://hooks.test/risk", payload, client=mock_client(handler)) is True
    assert received[0].method == "POST"
    assert str(received[0].url) == "http://hooks.test/risk"


def test_deliver_webhook_reports_rejected_delivery():
    client = mock_client(lambda request: httpx.Response(500))

    assert webhook.deliver_webhook("http://hooks.test/risk", {"summary": {}}, client=client) is False
    assert webhook.deliver_webhook(None, {"summary": {}}) is False


def test_deliver_webhook_reports_transport_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert webhook.deliver_webhook("http://hooks.test/risk", {"summary": {}}, client=mock_client(handler)) is False
