"""End-to-end tests for SettlementCalculator.calculate and friends."""
from datetime import date

import pytest

from valuation.calculator import SettlementCalculator
from valuation.config import EngineConfig
from valuation.errors import CalculationNotFoundError, InvalidInputError
from valuation.models import (
    CaseProfile, CaseType, DamageItem, InjuryDetails, InjurySeverity, InjuryType,
    LiabilityStrength, NoteType,
)

from conftest import FailingPrecedentIndex


def _notes(calc, note_type):
    return [n.text for n in calc.notes if n.note_type is note_type]


def test_severe_personal_injury_valuation(calculation):
    assert calculation.economic_damages.total_economic == pytest.approx(100000)
    assert calculation.non_economic_damages.total == pytest.approx(620000)
    assert calculation.punitive_damages is None
    assert calculation.raw_total == pytest.approx(720000)
    assert calculation.capped_total == pytest.approx(720000)
    assert calculation.total_damages == pytest.approx(720000)
    assert not calculation.adjusted_for_caps
    assert calculation.jurisdiction == "PA"
    assert not calculation.jurisdiction_fallback

    rng = calculation.settlement_range
    assert rng.low == pytest.approx(396000)
    assert rng.mid == pytest.approx(540000)
    assert rng.high == pytest.approx(648000)
    assert calculation.recommended_demand == pytest.approx(777600)
    assert calculation.minimum_settlement == pytest.approx(356400)
    assert calculation.target_settlement == pytest.approx(540000)
    assert calculation.liability_analysis.strength is LiabilityStrength.CLEAR
    assert calculation.version == 1


def test_comparables_drive_confidence(calculation):
    comparables = calculation.comparable_verdicts
    assert len(comparables) == 5
    assert all(v.jurisdiction == "PA" and v.case_type == "personal_injury" for v in comparables[:3])
    assert calculation.settlement_range.confidence == pytest.approx(0.7)
    assert not calculation.comparables_unavailable


def test_liability_adjusts_totals_once(calculator, pi_damages):
    profile = CaseProfile(CaseType.CONTRACT_BREACH, "PA", defendant_liability=80)
    # Contract breach without injury: economic x (1 + 1.0 + 0.3 + 0.5) = 2.8x
    economic = 500000 / 2.8
    calc = calculator.calculate(profile, [DamageItem("lost_profits", economic)])

    assert calc.capped_total == pytest.approx(500000)
    assert calc.total_damages == pytest.approx(400000)
    assert calc.settlement_range.low == pytest.approx(220000)
    assert calc.settlement_range.mid == pytest.approx(300000)
    assert calc.settlement_range.high == pytest.approx(360000)
    assert calc.recommended_demand == pytest.approx(432000)
    assert calc.liability_analysis.strength is LiabilityStrength.STRONG

    analysis = calculator.analyze_offer(calc.id, 150000)
    assert analysis.percentage_of_demand == pytest.approx(34.72, abs=0.01)
    assert analysis.recommendation.value == "reject"


def test_caps_recorded_in_calculation(calculator):
    profile = CaseProfile(
        CaseType.MEDICAL_MALPRACTICE, "CA",
        injury=InjuryDetails(InjurySeverity.MODERATE, InjuryType.ORGAN_DAMAGE),
    )
    calc = calculator.calculate(profile, {"past_medical_expenses": 200000})

    assert calc.adjusted_for_caps
    adj = calc.cap_adjustments.non_economic
    assert adj.original == pytest.approx(calc.non_economic_damages.total)
    assert adj.capped == 250000
    assert calc.capped_total == pytest.approx(450000)
    assert _notes(calc, NoteType.ADJUSTMENT)


def test_unknown_jurisdiction_falls_back_with_warning(calculator, pi_damages, severe_injury):
    profile = CaseProfile(CaseType.PERSONAL_INJURY, "Atlantis", injury=severe_injury)
    calc = calculator.calculate(profile, pi_damages)

    assert calc.jurisdiction_fallback
    assert calc.jurisdiction == "PA"
    assert any("Atlantis" in text for text in _notes(calc, NoteType.WARNING))


def test_lookup_failure_means_zero_comparables(config, registry, pi_profile, pi_damages):
    calculator = SettlementCalculator(config, registry=registry, precedent_index=FailingPrecedentIndex())
    calc = calculator.calculate(pi_profile, pi_damages)

    assert calc.comparable_verdicts == []
    assert calc.comparables_unavailable
    assert calc.settlement_range.confidence == config.range.default_confidence
    assert any("unavailable" in text for text in _notes(calc, NoteType.WARNING))


def test_contributory_bar_is_flagged_not_applied(calculator, pi_damages, severe_injury):
    profile = CaseProfile(CaseType.PERSONAL_INJURY, "AL", defendant_liability=90, injury=severe_injury)
    calc = calculator.calculate(profile, pi_damages)

    assert calc.liability_analysis.recovery_barred
    assert calc.total_damages == pytest.approx(calc.capped_total * 0.9)
    assert any("bar recovery" in text for text in _notes(calc, NoteType.WARNING))


def test_multiplier_clamp_is_noted(calculator, pi_damages):
    injury = InjuryDetails(InjurySeverity.CATASTROPHIC, InjuryType.AMPUTATION, permanent=True)
    calc = calculator.calculate(CaseProfile(CaseType.PERSONAL_INJURY, "NY"), pi_damages, injury=injury)

    assert calc.non_economic_damages.multiplier == 5.0
    assert calc.profile.injury == injury
    assert any("clamped" in text for text in _notes(calc, NoteType.ADJUSTMENT))


def test_punitive_claim_capped_in_texas(calculator, pi_damages):
    injury = InjuryDetails(InjurySeverity.CATASTROPHIC, InjuryType.BURNS)
    profile = CaseProfile(CaseType.PRODUCT_LIABILITY, "TX", injury=injury)
    calc = calculator.calculate(profile, pi_damages, punitive_claim=50000000)

    assert calc.punitive_damages.amount == 50000000
    compensatory = calc.economic_damages.total_economic + calc.non_economic_damages.total
    expected_limit = max(2 * compensatory, 750000)
    assert calc.cap_adjustments.punitive.capped == pytest.approx(expected_limit)
    assert calc.capped_total == pytest.approx(compensatory + expected_limit)


def test_ineligible_punitive_claim_is_noted(calculation, calculator, pi_profile, pi_damages):
    calc = calculator.calculate(pi_profile, pi_damages, punitive_claim=100000)
    assert calc.punitive_damages is None
    assert calc.raw_total == pytest.approx(calculation.raw_total)
    assert any("Punitive claim" in text for text in _notes(calc, NoteType.WARNING))


@pytest.mark.parametrize("claim", [-5000, float('nan')])
def test_invalid_punitive_claim_rejected_before_valuation(calculator, pi_profile, pi_damages, claim):
    with pytest.raises(InvalidInputError):
        calculator.calculate(pi_profile, pi_damages, punitive_claim=claim)
    assert calculator._calculations == {}


def test_fees_interest_and_limitations(calculator, pi_damages, severe_injury):
    profile = CaseProfile(CaseType.PERSONAL_INJURY, "PA", injury=severe_injury, incident_date=date(2020, 1, 1))
    as_of = date(2022, 6, 1)
    calc = calculator.calculate(profile, pi_damages, as_of=as_of)

    assert calc.prejudgment_interest == pytest.approx(calc.total_damages * 0.06 * 882 / 365.25)
    assert calc.estimated_attorney_fees == pytest.approx(calc.target_settlement * 0.3333)
    assert calc.net_to_client == pytest.approx(calc.target_settlement - calc.estimated_attorney_fees)
    assert any("Statute of limitations" in text for text in _notes(calc, NoteType.WARNING))


def test_bucket_and_dict_inputs(calculator, pi_profile):
    from_buckets = calculator.calculate(pi_profile, {"past_medical_expenses": 60000, "past_lost_wages": 40000})
    from_dicts = calculator.calculate(pi_profile, [
        {"category": "medical", "amount": 60000},
        {"category": "lost_wages", "amount": 40000, "timing": "past"},
    ])
    assert from_buckets.total_damages == pytest.approx(from_dicts.total_damages)


@pytest.mark.parametrize("kwargs", [
    {"defendant_liability": 120},
    {"defendant_liability": -5},
    {"defendant_liability": 70, "plaintiff_liability": 20},
])
def test_invalid_liability_rejected(kwargs):
    with pytest.raises(InvalidInputError):
        CaseProfile(CaseType.PERSONAL_INJURY, "PA", **kwargs)


def test_unknown_case_type_rejected():
    with pytest.raises(InvalidInputError):
        CaseProfile("space_law", "PA")


def test_invalid_damages_rejected(calculator, pi_profile):
    with pytest.raises(InvalidInputError):
        calculator.calculate(pi_profile, [{"category": "medical", "amount": -100}])
    with pytest.raises(InvalidInputError):
        calculator.calculate(pi_profile, [{"category": "medical", "amount": 100, "colour": "red"}])
    with pytest.raises(InvalidInputError):
        calculator.calculate(pi_profile, [DamageItem("medical", 100)], discount_rate=-0.01)


def test_recalculate_creates_new_version(calculator, calculation):
    revised = calculator.recalculate(calculation.id, discount_rate=0.05)

    assert revised.id != calculation.id
    assert revised.version == 2
    assert revised.supersedes == calculation.id
    assert calculator.get_calculation(calculation.id).version == 1


def test_get_unknown_calculation(calculator):
    with pytest.raises(CalculationNotFoundError):
        calculator.get_calculation("nope")
    with pytest.raises(CalculationNotFoundError):
        calculator.record_offer("nope", 1000)


def test_summary_renders(calculation):
    text = calculation.summary()
    assert "Personal Injury (PA)" in text
    assert "$777.6K" in text


def test_default_calculator_builds_from_config():
    config = EngineConfig()
    calc = SettlementCalculator(config)
    assert len(calc.registry) >= 5
    assert calc.config is config
