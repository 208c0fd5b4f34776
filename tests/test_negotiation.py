"""Tests for offer analysis, counteroffers and the negotiation state machine."""
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from valuation.errors import InvalidInputError, OfferNotFoundError, StaleNegotiationRoundError
from valuation.models import (
    EventKind, OfferComparison, OfferOrigin, OfferRecommendation, OfferStatus, SettlementRange,
)
from valuation.negotiation import analyze_offer, classify_offer, counteroffer_amount
from valuation.risk import RangeCalculator, liability_adjusted_total


# =============================================================================
# Offer analysis
# =============================================================================

def test_end_to_end_low_offer_is_rejected(calculation):
    adjusted = liability_adjusted_total(500000, 80)
    rng = RangeCalculator().calculate(adjusted, [], 0.8)
    calc = replace(calculation, total_damages=adjusted, settlement_range=rng,
                   recommended_demand=rng.high * 1.2)

    analysis = analyze_offer(calc, 150000)

    assert calc.recommended_demand == pytest.approx(432000)
    assert analysis.percentage_of_demand == pytest.approx(34.72, abs=0.01)
    assert analysis.percentage_of_value == pytest.approx(37.5)
    assert analysis.comparison is OfferComparison.BELOW_RANGE
    assert analysis.recommendation is OfferRecommendation.REJECT


def test_percentage_of_demand_bounds(calculation):
    assert analyze_offer(calculation, 0).percentage_of_demand == 0.0
    assert analyze_offer(calculation, calculation.recommended_demand).percentage_of_demand == pytest.approx(100.0)


def test_zero_demand_yields_zero_percentages(calculation):
    calc = replace(calculation, recommended_demand=0.0, total_damages=0.0)
    analysis = analyze_offer(calc, 1000)
    assert analysis.percentage_of_demand == 0.0
    assert analysis.percentage_of_value == 0.0


def test_net_recovery_and_time_value(calculation):
    analysis = analyze_offer(calculation, 500000)
    assert analysis.net_recovery == pytest.approx(500000 - calculation.risk_assessment.trial_cost_estimate)
    assert "18-month trial delay" in analysis.time_value_analysis
    assert "$36,000.00" in analysis.time_value_analysis


@pytest.mark.parametrize("amount,comparison,recommendation", [
    (400, OfferComparison.ABOVE_HIGH, OfferRecommendation.ACCEPT),
    (360, OfferComparison.ABOVE_HIGH, OfferRecommendation.ACCEPT),
    (300, OfferComparison.IN_TARGET, OfferRecommendation.NEEDS_CLIENT_INPUT),
    (250, OfferComparison.AT_LOW, OfferRecommendation.COUNTER),
    (219, OfferComparison.BELOW_RANGE, OfferRecommendation.REJECT),
])
def test_classify_offer(amount, comparison, recommendation):
    rng = SettlementRange(low=220, mid=300, high=360, confidence=0.6)
    assert classify_offer(amount, rng) == (comparison, recommendation)


def test_negative_offer_rejected(calculation):
    with pytest.raises(InvalidInputError):
        analyze_offer(calculation, -5)


@pytest.mark.parametrize("amount", [float('nan'), float('inf'), float('-inf')])
def test_non_finite_offer_rejected(calculator, calculation, amount):
    with pytest.raises(InvalidInputError):
        calculator.record_offer(calculation.id, amount)
    assert calculator.negotiation_state(calculation.id).version == 0


# =============================================================================
# Counteroffer arithmetic
# =============================================================================

def test_counteroffer_formula():
    amount, reduction, clamped = counteroffer_amount(432000, 150000, 1, floor=198000)
    assert reduction == pytest.approx(282000 * 0.15)
    assert amount == pytest.approx(432000 - 42300)
    assert not clamped


def test_counteroffer_gap_shrinks_each_round():
    demand, offer = 432000, 150000
    gaps = []
    for round_number in range(1, 6):
        amount, _, clamped = counteroffer_amount(demand, offer, round_number, floor=0)
        assert not clamped
        assert amount <= demand
        gaps.append(amount - offer)
    assert all(later < earlier for earlier, later in zip(gaps, gaps[1:]))


def test_counteroffer_clamped_to_floor():
    amount, reduction, clamped = counteroffer_amount(432000, 0, 6, floor=198000)
    assert clamped
    assert amount == 198000
    assert reduction == pytest.approx(234000)


def test_counteroffer_never_exceeds_demand():
    amount, _, _ = counteroffer_amount(432000, 500000, 1, floor=198000)
    assert amount == 432000


def test_counteroffer_requires_positive_round():
    with pytest.raises(InvalidInputError):
        counteroffer_amount(432000, 150000, 0, floor=0)


# =============================================================================
# State machine
# =============================================================================

def test_first_offer_opens_round_one(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000, "defendant")

    assert offer.round_number == 1
    assert offer.status is OfferStatus.PENDING
    assert offer.origin is OfferOrigin.DEFENDANT
    assert offer.analysis.recommendation is OfferRecommendation.REJECT
    assert offer.expires_at - offer.offered_at == timedelta(days=30)

    state = calculator.negotiation_state(calculation.id)
    assert state.current_round == 1
    assert state.version == 1
    assert not state.closed


def test_counteroffer_next_round_then_next_offer(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    counter = calculator.generate_counteroffer(calculation.id, offer, offer.round_number + 1)

    assert counter.round_number == 2
    assert counter.responds_to == offer.id
    gap = calculation.recommended_demand - 150000
    assert counter.amount == pytest.approx(calculation.recommended_demand - gap * 0.15 * 2)

    state = calculator.negotiation_state(calculation.id)
    assert state.find_offer(offer.id).status is OfferStatus.COUNTERED

    # The answering offer shares round 2 with the counteroffer
    second = calculator.record_offer(calculation.id, 300000)
    assert second.round_number == 2
    state = calculator.negotiation_state(calculation.id)
    assert state.find_counteroffer(counter.id).status is OfferStatus.COUNTERED
    assert [o.round_number for o in state.offers] == [1, 2]

    third = calculator.generate_counteroffer(calculation.id, second)
    assert third.round_number == 3
    gap = calculation.recommended_demand - 300000
    assert third.amount == pytest.approx(max(calculation.recommended_demand - gap * 0.15 * 3,
                                             calculation.minimum_settlement))


def test_counteroffer_defaults_to_next_round(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    assert calculator.generate_counteroffer(calculation.id, offer.id).round_number == offer.round_number + 1


def test_counteroffer_to_superseded_offer_conflicts(calculator, calculation):
    first = calculator.record_offer(calculation.id, 150000)
    calculator.update_offer_status(calculation.id, first.id, OfferStatus.REJECTED)
    calculator.record_offer(calculation.id, 200000)
    with pytest.raises(StaleNegotiationRoundError):
        calculator.generate_counteroffer(calculation.id, first.id)


def test_explicit_stale_round_conflicts(calculator, calculation):
    calculator.record_offer(calculation.id, 150000, round_number=1)
    with pytest.raises(StaleNegotiationRoundError):
        calculator.record_offer(calculation.id, 160000, round_number=1)
    with pytest.raises(StaleNegotiationRoundError):
        calculator.record_offer(calculation.id, 160000, round_number=5)


def test_second_counteroffer_for_round_conflicts(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    calculator.generate_counteroffer(calculation.id, offer.id)
    with pytest.raises(StaleNegotiationRoundError):
        calculator.generate_counteroffer(calculation.id, offer.id)


def test_counteroffer_round_mismatch_conflicts(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    with pytest.raises(StaleNegotiationRoundError):
        calculator.generate_counteroffer(calculation.id, offer.id, offer.round_number)
    with pytest.raises(StaleNegotiationRoundError):
        calculator.generate_counteroffer(calculation.id, offer.id, offer.round_number + 2)


def test_counteroffer_to_decided_offer_conflicts(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    calculator.update_offer_status(calculation.id, offer.id, OfferStatus.REJECTED)
    with pytest.raises(StaleNegotiationRoundError):
        calculator.generate_counteroffer(calculation.id, offer.id)


def test_counteroffer_unknown_offer(calculator, calculation):
    with pytest.raises(OfferNotFoundError):
        calculator.generate_counteroffer(calculation.id, "missing")


def test_expected_version_mismatch_conflicts(calculator, calculation):
    calculator.record_offer(calculation.id, 150000, expected_version=0)
    with pytest.raises(StaleNegotiationRoundError):
        calculator.record_offer(calculation.id, 200000, expected_version=0)
    calculator.record_offer(calculation.id, 200000, expected_version=1)


def test_terminal_status_cannot_transition(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    calculator.update_offer_status(calculation.id, offer.id, "rejected")
    with pytest.raises(InvalidInputError):
        calculator.update_offer_status(calculation.id, offer.id, "countered")


def test_status_cannot_return_to_pending(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    with pytest.raises(InvalidInputError):
        calculator.update_offer_status(calculation.id, offer.id, OfferStatus.PENDING)


def test_acceptance_closes_negotiation(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 700000)
    updated = calculator.update_offer_status(calculation.id, offer.id, OfferStatus.ACCEPTED)
    assert updated.status is OfferStatus.ACCEPTED
    assert calculator.negotiation_state(calculation.id).closed

    with pytest.raises(StaleNegotiationRoundError):
        calculator.record_offer(calculation.id, 710000)


def test_accepting_counteroffer_closes_negotiation(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    counter = calculator.generate_counteroffer(calculation.id, offer)
    calculator.update_offer_status(calculation.id, counter.id, "accepted")

    state = calculator.negotiation_state(calculation.id)
    assert state.closed
    with pytest.raises(StaleNegotiationRoundError):
        calculator.update_offer_status(calculation.id, offer.id, "rejected")


def test_expire_offers(calculator, calculation):
    now = datetime.now(timezone.utc)
    stale = calculator.record_offer(calculation.id, 150000, expires_at=now - timedelta(days=1))
    calculator.update_offer_status(calculation.id, stale.id, "countered")
    fresh = calculator.record_offer(calculation.id, 160000, expires_at=now + timedelta(days=1))

    assert calculator.expire_offers(calculation.id, now) == []
    expired = calculator.expire_offers(calculation.id, now + timedelta(days=2))

    assert [o.id for o in expired] == [fresh.id]
    assert calculator.negotiation_state(calculation.id).find_offer(fresh.id).status is OfferStatus.EXPIRED


def test_state_is_a_copy(calculator, calculation):
    calculator.record_offer(calculation.id, 150000)
    state = calculator.negotiation_state(calculation.id)
    state.offers.clear()
    assert len(calculator.negotiation_state(calculation.id).offers) == 1


def test_event_log_is_append_only(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    calculator.generate_counteroffer(calculation.id, offer)

    events = calculator.tracker.events(calculation.id)
    assert [e.kind for e in events] == [EventKind.OFFER, EventKind.COUNTEROFFER, EventKind.STATUS]
    assert [e.sequence for e in events] == [1, 2, 3]
    # The original offer event still records the offer as pending
    assert events[0].offer.status is OfferStatus.PENDING


def test_concurrent_round_claims_produce_one_winner(calculator, calculation):
    results = []
    barrier = threading.Barrier(8)

    def claim():
        barrier.wait()
        try:
            calculator.record_offer(calculation.id, 150000, round_number=1)
            results.append("ok")
        except StaleNegotiationRoundError:
            results.append("stale")

    threads = [threading.Thread(target=claim) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert results.count("stale") == 7
    assert calculator.negotiation_state(calculation.id).current_round == 1
