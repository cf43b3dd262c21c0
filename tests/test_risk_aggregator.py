from itertools import product

import pytest

from fraud_risk_engine import BehavioralSignal, IPReputationRecord, RiskAggregator, RiskWeights
from fraud_risk_engine.models import CollisionResult

COLLISION = CollisionResult(collision=True, collision_count=2)


def bot(score: int) -> BehavioralSignal:
    return BehavioralSignal(session_id="s-1", bot_likelihood_score=score, user_id="user-1")


def ip(fraud_score=None, vpn=False, proxy=False, tor=False, country="US") -> IPReputationRecord:
    return IPReputationRecord(
        ip_address="198.51.100.7",
        is_vpn=vpn,
        is_proxy=proxy,
        is_tor=tor,
        country_code=country,
        fraud_score=fraud_score,
        associated_user_id="user-1",
    )


def test_fraud_score_only():
    signal = RiskAggregator().aggregate("user-1", ip_reputation=ip(fraud_score=80))

    assert signal.risk_score == 20
    assert signal.risk_factors == ["Fraud score: 80"]
    assert signal.high_fraud_score
    assert not signal.vpn_detected


def test_bot_and_vpn():
    signal = RiskAggregator().aggregate("user-1", behavior=bot(85), ip_reputation=ip(vpn=True))

    assert signal.risk_score == 55
    assert signal.risk_factors == ["High bot likelihood score: 85%", "VPN detected from US"]
    assert signal.band == "medium"


def test_collision_bot_and_vpn():
    signal = RiskAggregator().aggregate(
        "user-1", collision=COLLISION, behavior=bot(90), ip_reputation=ip(vpn=True, country="NL")
    )

    assert signal.risk_score == 85
    assert signal.risk_factors == [
        "Fingerprint shared with 2 other user(s)",
        "High bot likelihood score: 90%",
        "VPN detected from NL",
    ]
    assert signal.fingerprint_collision and signal.collision_count == 2
    assert signal.band == "high"


@pytest.mark.parametrize("score, expected", [(69, 0), (70, 40), (100, 40)])
def test_bot_threshold_is_inclusive(score, expected):
    assert RiskAggregator().aggregate("user-1", behavior=bot(score)).risk_score == expected


@pytest.mark.parametrize("score, expected", [(None, 0), (74, 0), (75, 20)])
def test_fraud_threshold_is_inclusive(score, expected):
    assert RiskAggregator().aggregate("user-1", ip_reputation=ip(fraud_score=score)).risk_score == expected


def test_anonymizers_count_once_and_are_named():
    signal = RiskAggregator().aggregate("user-1", ip_reputation=ip(vpn=True, tor=True, country=None))

    assert signal.risk_score == 15
    assert signal.risk_factors == ["VPN/Tor detected from unknown"]


def test_missing_signals_do_not_dilute_present_ones():
    assert RiskAggregator().aggregate("user-1", behavior=bot(95)).risk_score == 40
    assert RiskAggregator().aggregate("user-1").risk_score == 0


def test_score_is_clamped():
    weights = RiskWeights(fingerprint_collision=60, high_bot_score=60)
    signal = RiskAggregator(weights).aggregate("user-1", collision=COLLISION, behavior=bot(99))

    assert signal.risk_score == 100


def test_adding_a_factor_never_lowers_the_score():
    aggregator = RiskAggregator()

    def score(collision, high_bot, high_fraud, vpn):
        return aggregator.aggregate(
            "user-1",
            collision=COLLISION if collision else CollisionResult(),
            behavior=bot(90 if high_bot else 10),
            ip_reputation=ip(fraud_score=90 if high_fraud else 10, vpn=vpn),
        ).risk_score

    for flags in product([False, True], repeat=4):
        base = score(*flags)
        for index, enabled in enumerate(flags):
            if enabled:
                continue
            raised = list(flags)
            raised[index] = True
            assert score(*raised) >= base
