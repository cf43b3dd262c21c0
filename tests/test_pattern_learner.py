from datetime import datetime, timedelta, timezone

from fraud_risk_engine import GeoLocation, LoginEvent, PatternLearner
from fraud_risk_engine.pattern_learner import PatternCache, normalize_device

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/120.0.0.0"
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)

START = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)


def make_login(index: int, country: str | None, user_agent: str = CHROME_WINDOWS) -> LoginEvent:
    location = GeoLocation(city="", country=country) if country else None
    return LoginEvent(
        id=f"login-{index}",
        user_id="user-1",
        timestamp=START + timedelta(days=index),
        ip_address=f"203.0.113.{index}",
        user_agent=user_agent,
        location=location,
    )


def test_normalize_device_signatures():
    assert normalize_device(CHROME_WINDOWS) == "Chrome/Windows"
    assert normalize_device(EDGE_WINDOWS) == "Edge/Windows"
    assert normalize_device(FIREFOX_LINUX) == "Firefox/Linux"
    assert normalize_device(SAFARI_IPHONE) == "Safari/iOS"
    assert normalize_device(CHROME_ANDROID) == "Chrome/Android"
    assert normalize_device("curl/8.4.0") == "Other/Other"
    assert normalize_device("") == "Unknown"
    assert normalize_device(None) == "Unknown"


def test_fewer_than_three_resolved_logins_yields_no_pattern():
    learner = PatternLearner()
    logins = [make_login(0, "DE"), make_login(1, None), make_login(2, "DE"), make_login(3, None)]
    assert learner.learn(logins) is None
    assert learner.learn([]) is None


def test_home_country_and_location_consistency():
    learner = PatternLearner()
    logins = [make_login(0, "DE"), make_login(1, "DE"), make_login(2, "FR"), make_login(3, "DE")]

    pattern = learner.learn(logins)

    assert pattern is not None
    assert pattern.home_country == "DE"
    assert pattern.home_locations == [("DE", 3), ("FR", 1)]
    assert pattern.location_consistency == 0.75
    assert pattern.country_frequency("FR") == 0.25
    assert pattern.country_frequency("US") == 0.0


def test_home_country_ties_resolve_to_first_seen():
    learner = PatternLearner()
    logins = [make_login(0, "FR"), make_login(1, "DE"), make_login(2, "FR"), make_login(3, "DE")]

    pattern = learner.learn(logins)

    assert pattern.home_country == "FR"
    assert pattern.location_consistency == 0.5


def test_input_order_does_not_matter():
    learner = PatternLearner()
    logins = [make_login(0, "FR"), make_login(1, "DE"), make_login(2, "FR"), make_login(3, "DE")]

    assert learner.learn(list(reversed(logins))).home_country == "FR"


def test_unresolved_logins_still_count_toward_device_consistency():
    learner = PatternLearner()
    logins = [
        make_login(0, "DE"),
        make_login(1, "DE"),
        make_login(2, "DE"),
        make_login(3, None, user_agent=FIREFOX_LINUX),
    ]

    pattern = learner.learn(logins)

    assert pattern.resolved_logins == 3
    assert pattern.total_logins == 4
    assert pattern.dominant_device == "Chrome/Windows"
    assert pattern.device_consistency == 0.75
    assert pattern.location_consistency == 1.0


def test_pattern_cache_reuses_pattern_until_a_new_login_arrives():
    learner = PatternLearner()
    cache = PatternCache(maxsize=4)
    calls = []

    def learn(events):
        calls.append(len(events))
        return learner.learn(events)

    logins = [make_login(i, "DE") for i in range(3)]
    first = cache.get_or_learn("user-1", logins, learn)
    second = cache.get_or_learn("user-1", logins, learn)
    third = cache.get_or_learn("user-1", logins + [make_login(3, "FR")], learn)

    assert first is second
    assert third is not first
    assert calls == [3, 4]
    assert cache.stats() == {"size": 2, "hits": 1, "misses": 2}


def test_pattern_cache_evicts_least_recently_used():
    learner = PatternLearner()
    cache = PatternCache(maxsize=1)
    logins = [make_login(i, "DE") for i in range(3)]

    cache.get_or_learn("user-1", logins, learner.learn)
    cache.get_or_learn("user-2", logins, learner.learn)

    assert cache.stats()["size"] == 1


def test_learns_time_ip_and_cluster_baselines():
    berlin = GeoLocation(city="Berlin", country="DE", lat=52.52, lon=13.405)
    potsdam = GeoLocation(city="Potsdam", country="DE", lat=52.3906, lon=13.0645)
    paris = GeoLocation(city="Paris", country="FR", lat=48.8566, lon=2.3522)
    entries = [
        (0, berlin, "198.51.100.7"),
        (24, potsdam, "198.51.100.7"),
        (48, berlin, "198.51.100.8"),
        (72, berlin, "198.51.100.7"),
        (96, berlin, "198.51.100.7"),
        (110, paris, "192.0.2.1"),
    ]
    logins = [
        LoginEvent(
            id=f"login-{index}",
            user_id="user-1",
            timestamp=START + timedelta(hours=hours),
            ip_address=ip,
            user_agent=CHROME_WINDOWS,
            location=location,
        )
        for index, (hours, location, ip) in enumerate(entries)
    ]

    pattern = PatternLearner().learn(logins)

    assert pattern.typical_hours == {8}
    # 2025-01-05 is a Sunday
    assert pattern.typical_days == {6}
    assert pattern.avg_login_interval_hours == 22.0
    assert pattern.common_ips == {"198.51.100.7"}
    assert pattern.ip_consistency == 4 / 6
    assert [cluster.count for cluster in pattern.home_clusters] == [5, 1]
    assert abs(pattern.home_clusters[1].lat - paris.lat) < 1e-9


def test_pattern_cache_relearns_when_locations_resolve():
    learner = PatternLearner()
    cache = PatternCache(maxsize=4)
    unresolved = [make_login(i, None) for i in range(3)]
    resolved = [make_login(i, "DE") for i in range(3)]

    assert cache.get_or_learn("user-1", unresolved, learner.learn) is None
    pattern = cache.get_or_learn("user-1", resolved, learner.learn)

    assert pattern is not None
    assert pattern.home_country == "DE"
    assert cache.stats()["misses"] == 2
