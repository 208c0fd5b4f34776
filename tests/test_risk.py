"""Tests for the settlement range, liability tiers and trial risk."""
import pytest

from valuation.config import RangeConfig
from valuation.models import (
    CapAdjustment, CapAdjustments, CaseProfile, CaseType, ComparableVerdict,
    ComparativeNegligence, ImpactLevel, LiabilityFactor, LiabilityStrength,
)
from valuation.risk import LiabilityAnalyzer, RangeCalculator, RiskAnalyzer, liability_adjusted_total


def _comparables(*scores):
    return [
        ComparableVerdict(f"Case {i}", "PA", 2022, "personal_injury", "", 100000, similarity_score=s)
        for i, s in enumerate(scores)
    ]


# =============================================================================
# Range
# =============================================================================

@pytest.mark.parametrize("total", [0.0, 1.0, 500000.0, 12345678.9])
def test_adjusted_total_is_monotonic_in_liability(total):
    previous = -1.0
    for p in range(0, 101, 5):
        adjusted = liability_adjusted_total(total, p)
        assert adjusted == pytest.approx(total * p / 100)
        assert adjusted >= previous
        previous = adjusted


def test_range_end_to_end_figures():
    adjusted = liability_adjusted_total(500000, 80)
    rng = RangeCalculator().calculate(adjusted, [], 0.8)

    assert adjusted == pytest.approx(400000)
    assert rng.low == pytest.approx(220000)
    assert rng.mid == pytest.approx(300000)
    assert rng.high == pytest.approx(360000)


@pytest.mark.parametrize("total", [0.0, 10.0, 75000.0, 3e7])
def test_range_is_ordered(total):
    rng = RangeCalculator().calculate(total, [], 1.0)
    assert rng.low <= rng.mid <= rng.high


def test_confidence_defaults_without_enough_comparables():
    calc = RangeCalculator(RangeConfig(default_confidence=0.6))
    assert calc.calculate(100000, _comparables(0.9, 0.9), 1.0).confidence == 0.6


def test_confidence_from_top_three_comparables():
    rng = RangeCalculator().calculate(100000, _comparables(0.9, 0.8, 0.7, 0.1), 0.5)
    assert rng.confidence == pytest.approx(0.8 * 0.5)
    assert "4 comparable verdicts" in rng.explanation


# =============================================================================
# Liability
# =============================================================================

@pytest.mark.parametrize("fault,tier", [
    (100, LiabilityStrength.CLEAR),
    (90, LiabilityStrength.CLEAR),
    (89.9, LiabilityStrength.STRONG),
    (80, LiabilityStrength.STRONG),
    (75, LiabilityStrength.STRONG),
    (50, LiabilityStrength.MODERATE),
    (25, LiabilityStrength.WEAK),
    (24.9, LiabilityStrength.DISPUTED),
    (0, LiabilityStrength.DISPUTED),
])
def test_liability_tiers(fault, tier):
    assert LiabilityAnalyzer.classify(fault) is tier


@pytest.mark.parametrize("model,plaintiff,barred", [
    (ComparativeNegligence.PURE, 99, False),
    (ComparativeNegligence.CONTRIBUTORY, 0, False),
    (ComparativeNegligence.CONTRIBUTORY, 1, True),
    (ComparativeNegligence.MODIFIED_50, 49, False),
    (ComparativeNegligence.MODIFIED_50, 50, True),
    (ComparativeNegligence.MODIFIED_51, 50, False),
    (ComparativeNegligence.MODIFIED_51, 51, True),
])
def test_recovery_bar(model, plaintiff, barred):
    assert LiabilityAnalyzer.recovery_barred(model, plaintiff) is barred


def test_liability_analysis(registry):
    profile = CaseProfile(CaseType.PERSONAL_INJURY, "AL", defendant_liability=80,
                          liability_factors=[LiabilityFactor("Ran red light")])
    analysis = LiabilityAnalyzer().analyze(profile, registry.get("AL"))

    assert analysis.plaintiff_liability == 20
    assert analysis.comparative_negligence_applies
    assert analysis.recovery_barred
    assert analysis.strength is LiabilityStrength.STRONG
    assert analysis.key_factors[0].factor == "Ran red light"


# =============================================================================
# Risk
# =============================================================================

def test_risk_assessment_figures(registry):
    profile = CaseProfile(CaseType.PERSONAL_INJURY, "PA", defendant_liability=80)
    liability = LiabilityAnalyzer().analyze(profile, registry.get("PA"))

    risk = RiskAnalyzer().assess(profile, liability, 400000)

    assert risk.probability_of_win == pytest.approx(0.8)
    assert risk.trial_risk_score == pytest.approx(0.2)
    assert risk.expected_trial_value == pytest.approx(320000)
    assert risk.trial_cost_estimate == pytest.approx(60000)
    assert risk.expected_trial_duration_months == 18


@pytest.mark.parametrize("case_type,fraction", [
    (CaseType.MEDICAL_MALPRACTICE, 0.25),
    (CaseType.PERSONAL_INJURY, 0.15),
    (CaseType.EMPLOYMENT, 0.10),
])
def test_trial_cost_fraction(case_type, fraction):
    assert RiskAnalyzer().trial_cost_fraction(case_type) == fraction


def test_strengths_and_weaknesses(registry):
    profile = CaseProfile(CaseType.PERSONAL_INJURY, "PA", defendant_liability=30, liability_factors=[
        LiabilityFactor("Dashcam footage", favors="plaintiff"),
        LiabilityFactor("Plaintiff was speeding", favors="defendant"),
    ])
    liability = LiabilityAnalyzer().analyze(profile, registry.get("PA"))
    caps = CapAdjustments([CapAdjustment("non_economic", 10, 5, "cap")])

    risk = RiskAnalyzer().assess(profile, liability, 100000, [], caps)

    strengths = [s.description for s in risk.strengths]
    weaknesses = {w.description: w for w in risk.weaknesses}
    assert "Dashcam footage" in strengths
    assert "Plaintiff was speeding" in weaknesses
    assert "Statutory caps reduce recoverable damages" in weaknesses
    barred = [w for w in risk.weaknesses if w.impact is ImpactLevel.CRITICAL]
    assert len(barred) == 1 and barred[0].mitigation
