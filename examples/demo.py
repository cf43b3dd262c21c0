from datetime import datetime, timedelta, timezone

from fraud_risk_engine import (
    BehavioralSignal,
    EngineConfig,
    FingerprintRecord,
    GeoLocation,
    InMemorySignalStore,
    IPReputationRecord,
    LoginEvent,
    RiskEngine,
)

CHROME = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
FIREFOX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


def build_store(now: datetime) -> InMemorySignalStore:
    store = InMemorySignalStore()
    madrid = GeoLocation(city="Madrid", country="Spain", lat=40.4168, lon=-3.7038)
    singapore = GeoLocation(city="Singapore", country="Singapore", lat=1.3521, lon=103.8198)

    history = [
        (now - timedelta(days=4), madrid, CHROME),
        (now - timedelta(days=3), madrid, CHROME),
        (now - timedelta(days=2), madrid, CHROME),
        (now - timedelta(days=2) + timedelta(hours=2), singapore, FIREFOX),
    ]
    for index, (when, location, user_agent) in enumerate(history):
        store.add_login(
            LoginEvent(
                id=f"alice-{index}",
                user_id="alice",
                timestamp=when,
                ip_address="203.0.113.20",
                user_agent=user_agent,
                location=location,
            )
        )

    store.add_user("mallory")
    store.add_fingerprint(FingerprintRecord(hash="fp-7d1c", collected_at=now - timedelta(days=10), user_id="alice"))
    store.add_fingerprint(FingerprintRecord(hash="fp-7d1c", collected_at=now - timedelta(hours=5), user_id="mallory"))
    store.add_behavioral_signal(
        BehavioralSignal(
            session_id="sess-9",
            bot_likelihood_score=92,
            user_id="mallory",
            indicators=("Low mouse velocity variance (robotic movement)",),
        )
    )
    store.add_ip_reputation(
        IPReputationRecord(ip_address="198.51.100.66", is_vpn=True, fraud_score=81, country_code="RO", associated_user_id="mallory")
    )
    return store


def main() -> None:
    now = datetime.now(timezone.utc)
    store = build_store(now)
    engine = RiskEngine(store, EngineConfig())

    analysis = engine.analyze_logins("alice")
    print("Home country:", analysis.pattern.home_country)
    print(f"Location consistency: {analysis.pattern.location_consistency:.2f}")
    for event, score in analysis.logins:
        print(f"- {event.timestamp:%Y-%m-%d %H:%M} {event.location.label()}: {score.overall}")
        for reason in score.reasons:
            print(f"    {reason}")

    summary = engine.run_batch()
    print("Auto-banned:", summary.auto_banned_user_ids)
    for signal in summary.top_risk_signals(10):
        print(f"- {signal.user_id}: {signal.risk_score}/100 ({signal.band})")
        for factor in signal.risk_factors:
            print(f"    {factor}")
    print("Audit entries:", len(store.audit_entries))


if __name__ == "__main__":
    main()
