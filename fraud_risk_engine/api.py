from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI
from pydantic import BaseModel

from .config import mongodb_database, mongodb_uri
from .geolocation import GeoLocator
from .models import AnomalyScore, FingerprintCollision, LoginAnalysis, LoginEvent, UserPattern
from .persistence import MongoSignalStore, SignalStore
from .risk_engine import RiskEngine
from .tasks import build_summary_payload, enqueue_risk_analysis
from .webhook import deliver_webhook, resolve_webhook_url


class GeoLocationResponse(BaseModel):
    city: str
    country: str
    lat: Optional[float] = None
    lon: Optional[float] = None


class LoginEventResponse(BaseModel):
    id: str
    user_id: str
    timestamp: datetime
    ip_address: str
    user_agent: str
    location: Optional[GeoLocationResponse] = None


class AnomalyScoreResponse(BaseModel):
    login_event_id: str
    overall: int
    is_impossible_travel: bool
    reasons: List[str]


class LoginRecordResponse(BaseModel):
    event: LoginEventResponse
    anomaly: Optional[AnomalyScoreResponse] = None


class CountryFrequencyResponse(BaseModel):
    country: str
    count: int


class HomeClusterResponse(BaseModel):
    lat: float
    lon: float
    count: int


class UserPatternResponse(BaseModel):
    home_locations: List[CountryFrequencyResponse]
    device_consistency: float
    location_consistency: float
    dominant_device: str
    resolved_logins: int
    total_logins: int
    home_clusters: List[HomeClusterResponse]
    typical_hours: List[int]
    typical_days: List[int]
    avg_login_interval_hours: Optional[float] = None
    common_ips: List[str]
    ip_consistency: float


class LoginAnalysisResponse(BaseModel):
    user_id: str
    insufficient_data: bool
    pattern: Optional[UserPatternResponse] = None
    logins: List[LoginRecordResponse]


class RiskSignalResponse(BaseModel):
    user_id: str
    risk_score: int
    risk_band: str
    risk_factors: List[str]
    fingerprint_collision: bool
    collision_count: int
    bot_score: int
    high_bot_score: bool
    fraud_score: Optional[int] = None
    high_fraud_score: bool
    vpn_detected: bool
    auto_banned: bool


class BatchSummaryResponse(BaseModel):
    task_id: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    weights_version: str
    evaluated_count: int
    auto_banned_count: int
    auto_banned_user_ids: List[str]
    risk_signals_count: int
    top_risk_signals: List[RiskSignalResponse]
    failed_count: int
    failed_user_ids: List[str]
    audit_failed_count: int = 0
    audit_failed_user_ids: List[str] = []
    cancelled: bool


class TaskEnqueueResponse(BaseModel):
    task_id: str
    status: str


class TaskStatusResponse(BaseModel):
    task_id: str
    status: str
    summary: Optional[BatchSummaryResponse] = None


class FingerprintCollisionResponse(BaseModel):
    fingerprint_hash: str
    user_ids: List[str]
    user_count: int
    severity: str
    total_collections: int
    last_seen: datetime
    device_attributes: Dict[str, Any]


def _serialize_event(event: LoginEvent) -> LoginEventResponse:
    location = None
    if event.location is not None:
        location = GeoLocationResponse(
            city=event.location.city,
            country=event.location.country,
            lat=event.location.lat,
            lon=event.location.lon,
        )
    return LoginEventResponse(
        id=event.id,
        user_id=event.user_id,
        timestamp=event.timestamp,
        ip_address=event.ip_address,
        user_agent=event.user_agent,
        location=location,
    )


def _serialize_anomaly(score: AnomalyScore | None) -> AnomalyScoreResponse | None:
    if score is None:
        return None
    return AnomalyScoreResponse(
        login_event_id=score.login_event_id,
        overall=score.overall,
        is_impossible_travel=score.is_impossible_travel,
        reasons=list(score.reasons),
    )


def _serialize_pattern(pattern: UserPattern | None) -> UserPatternResponse | None:
    if pattern is None:
        return None
    return UserPatternResponse(
        home_locations=[
            CountryFrequencyResponse(country=country, count=count) for country, count in pattern.home_locations
        ],
        device_consistency=pattern.device_consistency,
        location_consistency=pattern.location_consistency,
        dominant_device=pattern.dominant_device,
        resolved_logins=pattern.resolved_logins,
        total_logins=pattern.total_logins,
        home_clusters=[
            HomeClusterResponse(lat=cluster.lat, lon=cluster.lon, count=cluster.count)
            for cluster in pattern.home_clusters
        ],
        typical_hours=sorted(pattern.typical_hours),
        typical_days=sorted(pattern.typical_days),
        avg_login_interval_hours=pattern.avg_login_interval_hours,
        common_ips=sorted(pattern.common_ips),
        ip_consistency=pattern.ip_consistency,
    )


def _serialize_analysis(analysis: LoginAnalysis) -> LoginAnalysisResponse:
    return LoginAnalysisResponse(
        user_id=analysis.user_id,
        insufficient_data=analysis.insufficient_data,
        pattern=_serialize_pattern(analysis.pattern),
        logins=[
            LoginRecordResponse(event=_serialize_event(event), anomaly=_serialize_anomaly(score))
            for event, score in analysis.logins
        ],
    )


def _serialize_collision(collision: FingerprintCollision) -> FingerprintCollisionResponse:
    return FingerprintCollisionResponse(
        fingerprint_hash=collision.fingerprint_hash,
        user_ids=list(collision.user_ids),
        user_count=collision.user_count,
        severity=collision.severity,
        total_collections=collision.total_collections,
        last_seen=collision.last_seen,
        device_attributes=dict(collision.device_attributes),
    )


def create_app(
    engine: RiskEngine | None = None,
    store: SignalStore | None = None,
    mongodb_uri_override: str | None = None,
    mongodb_database_override: str | None = None,
) -> FastAPI:
    app = FastAPI(title="Fraud Risk Engine API", version="1.0.0")
    if engine is None:
        store = store or MongoSignalStore(
            uri=mongodb_uri_override or mongodb_uri(),
            database=mongodb_database_override or mongodb_database(),
        )
        engine = RiskEngine(store=store, geolocator=GeoLocator())
    app.state.engine = engine

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/users/{user_id}/logins", response_model=LoginAnalysisResponse)
    def login_analysis(user_id: str) -> LoginAnalysisResponse:
        return _serialize_analysis(app.state.engine.analyze_logins(user_id))

    @app.post("/analysis/run", response_model=BatchSummaryResponse)
    def run_analysis() -> BatchSummaryResponse:
        engine: RiskEngine = app.state.engine
        task_id = str(uuid4())
        summary = engine.summary_payload(engine.run_batch())
        engine.store.save_run_summary(task_id, summary)
        deliver_webhook(resolve_webhook_url(), build_summary_payload(summary=summary, task_id=task_id))
        return BatchSummaryResponse.model_validate({**summary, "task_id": task_id})

    @app.post("/analysis/run/async", response_model=TaskEnqueueResponse, status_code=202)
    def queue_analysis() -> TaskEnqueueResponse:
        return TaskEnqueueResponse(task_id=enqueue_risk_analysis(), status="queued")

    @app.get("/analysis/runs/{task_id}", response_model=TaskStatusResponse)
    def run_status(task_id: str) -> TaskStatusResponse:
        record = app.state.engine.store.get_run_summary(task_id)
        if record is None:
            return TaskStatusResponse(task_id=task_id, status="pending", summary=None)
        summary = BatchSummaryResponse.model_validate({**record, "task_id": task_id})
        return TaskStatusResponse(task_id=task_id, status="completed", summary=summary)

    @app.get("/fingerprints/collisions", response_model=List[FingerprintCollisionResponse])
    def fingerprint_collisions() -> List[FingerprintCollisionResponse]:
        return [_serialize_collision(collision) for collision in app.state.engine.fingerprint_collisions()]

    return app


app = create_app()
