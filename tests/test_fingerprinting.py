from datetime import datetime, timedelta, timezone

from fraud_risk_engine import FingerprintCollisionDetector, FingerprintRecord

START = datetime(2025, 1, 1, tzinfo=timezone.utc)


def fp(fingerprint_hash: str, user_id: str | None, minutes: int = 0, **attributes) -> FingerprintRecord:
    return FingerprintRecord(
        hash=fingerprint_hash,
        collected_at=START + timedelta(minutes=minutes),
        user_id=user_id,
        device_attributes=attributes,
    )


def test_shared_hash_flags_both_users():
    detector = FingerprintCollisionDetector([fp("H", "user-a"), fp("H", "user-b"), fp("solo", "user-c")])

    a = detector.for_user("user-a")
    b = detector.for_user("user-b")
    c = detector.for_user("user-c")

    assert a.collision and a.collision_count == 1
    assert b.collision and b.collision_count == 1
    assert not c.collision and c.collision_count == 0


def test_anonymous_and_repeat_records_are_not_collisions():
    detector = FingerprintCollisionDetector(
        [fp("H", "user-a"), fp("H", "user-a", minutes=5), fp("H", None), fp("H", None, minutes=9)]
    )

    assert not detector.for_user("user-a").collision
    assert detector.collisions() == []


def test_collision_count_is_distinct_other_users_across_hashes():
    detector = FingerprintCollisionDetector(
        [
            fp("H1", "user-a"),
            fp("H1", "user-b"),
            fp("H2", "user-a"),
            fp("H2", "user-b"),
            fp("H2", "user-c"),
        ]
    )

    assert detector.for_user("user-a").collision_count == 2
    assert detector.for_user("user-a", hashes=["H1"]).collision_count == 1
    assert detector.for_user("unknown").collision_count == 0


def test_collision_report_orders_by_user_count():
    records = [fp("small", "user-a"), fp("small", "user-b", minutes=3, screen_resolution="1920x1080")]
    records += [fp("big", f"user-{i}", minutes=i) for i in range(5)]
    detector = FingerprintCollisionDetector(records)

    report = detector.collisions()

    assert [item.fingerprint_hash for item in report] == ["big", "small"]
    assert report[0].user_count == 5
    assert report[0].severity == "high"
    assert report[1].severity == "low"
    assert report[1].user_ids == ["user-a", "user-b"]
    assert report[1].total_collections == 2
    assert report[1].last_seen == START + timedelta(minutes=3)
    assert report[1].device_attributes == {"screen_resolution": "1920x1080"}
