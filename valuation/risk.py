"""
Settlement range, liability classification and trial risk.
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from .config import RangeConfig, RiskConfig
from .models import (
    CapAdjustments, CaseProfile, CaseStrength, CaseWeakness, ComparableVerdict,
    ComparativeNegligence, ImpactLevel, JurisdictionRules, LiabilityAnalysis,
    LiabilityStrength, RiskAssessment, SettlementRange,
)

logger = logging.getLogger(__name__)


def liability_adjusted_total(total: float, defendant_liability: float) -> float:
    """Scale a damages total by defendant fault percentage."""
    return total * (defendant_liability / 100.0)


class RangeCalculator:
    """Low/mid/high settlement range with a comparables-based confidence."""

    def __init__(self, config: Optional[RangeConfig] = None):
        self.config = config or RangeConfig()

    def confidence(self, comparables: Sequence[ComparableVerdict], liability_fraction: float) -> float:
        if len(comparables) < self.config.min_comparables:
            return self.config.default_confidence
        top = comparables[:self.config.min_comparables]
        avg_similarity = float(np.mean([c.similarity_score for c in top]))
        return avg_similarity * liability_fraction

    def calculate(
        self,
        adjusted_total: float,
        comparables: Sequence[ComparableVerdict],
        liability_fraction: float,
    ) -> SettlementRange:
        """
        Compute the settlement range.

        Args:
            adjusted_total: Liability-adjusted damages (capped total x fault fraction)
            comparables: Scored comparables, best first
            liability_fraction: Defendant fault in [0, 1]

        Returns:
            SettlementRange with low <= mid <= high
        """
        cfg = self.config
        low = adjusted_total * cfg.low_factor
        mid = adjusted_total * cfg.mid_factor
        high = adjusted_total * cfg.high_factor
        confidence = self.confidence(comparables, liability_fraction)

        explanation = (
            f"Settlement range based on {liability_fraction * 100:.0f}% liability strength "
            f"and {len(comparables)} comparable verdicts. "
            f"Low: ${low:,.2f}, Mid: ${mid:,.2f}, High: ${high:,.2f}"
        )
        return SettlementRange(low=low, mid=mid, high=high, confidence=confidence, explanation=explanation)


class LiabilityAnalyzer:
    """Classifies defendant fault and applies the comparative-negligence model."""

    # (minimum defendant fault %, tier), checked in order
    TIERS = [
        (90.0, LiabilityStrength.CLEAR),
        (75.0, LiabilityStrength.STRONG),
        (50.0, LiabilityStrength.MODERATE),
        (25.0, LiabilityStrength.WEAK),
    ]

    @classmethod
    def classify(cls, defendant_liability: float) -> LiabilityStrength:
        for threshold, tier in cls.TIERS:
            if defendant_liability >= threshold:
                return tier
        return LiabilityStrength.DISPUTED

    @staticmethod
    def recovery_barred(model: ComparativeNegligence, plaintiff_liability: float) -> bool:
        if model is ComparativeNegligence.CONTRIBUTORY:
            return plaintiff_liability > 0
        if model is ComparativeNegligence.MODIFIED_50:
            return plaintiff_liability >= 50
        if model is ComparativeNegligence.MODIFIED_51:
            return plaintiff_liability >= 51
        return False

    def analyze(self, profile: CaseProfile, rules: JurisdictionRules) -> LiabilityAnalysis:
        model = rules.comparative_negligence
        barred = self.recovery_barred(model, profile.plaintiff_liability)
        if barred:
            logger.warning(
                f"Plaintiff fault {profile.plaintiff_liability:.0f}% bars recovery under "
                f"{model.value} negligence in {rules.code}"
            )
        return LiabilityAnalysis(
            plaintiff_liability=profile.plaintiff_liability,
            defendant_liability=profile.defendant_liability,
            comparative_negligence=model,
            comparative_negligence_applies=profile.plaintiff_liability > 0,
            recovery_barred=barred,
            jurisdiction=rules.code,
            strength=self.classify(profile.defendant_liability),
            key_factors=list(profile.liability_factors),
        )


class RiskAnalyzer:
    """Win probability, expected trial value and trial cost."""

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or RiskConfig()

    def trial_cost_fraction(self, case_type) -> float:
        return self.config.trial_cost_fractions.get(case_type.value, self.config.default_trial_cost_fraction)

    def assess(
        self,
        profile: CaseProfile,
        liability: LiabilityAnalysis,
        adjusted_total: float,
        comparables: Sequence[ComparableVerdict] = (),
        cap_adjustments: Optional[CapAdjustments] = None,
    ) -> RiskAssessment:
        probability_of_win = liability.defendant_liability / 100.0
        trial_cost = adjusted_total * self.trial_cost_fraction(profile.case_type)

        return RiskAssessment(
            trial_risk_score=1.0 - probability_of_win,
            probability_of_win=probability_of_win,
            expected_trial_value=adjusted_total * probability_of_win,
            trial_cost_estimate=trial_cost,
            expected_trial_duration_months=self.config.expected_trial_duration_months,
            strengths=self._strengths(profile, liability, comparables),
            weaknesses=self._weaknesses(liability, comparables, cap_adjustments),
        )

    def _strengths(
        self,
        profile: CaseProfile,
        liability: LiabilityAnalysis,
        comparables: Sequence[ComparableVerdict],
    ) -> List[CaseStrength]:
        strengths = []
        if liability.strength in (LiabilityStrength.CLEAR, LiabilityStrength.STRONG):
            strengths.append(CaseStrength(
                f"{liability.strength.label} liability ({liability.defendant_liability:.0f}% defendant fault)",
                ImpactLevel.MAJOR,
            ))
        injury = profile.injury
        if injury is not None and (injury.permanent or injury.disfigurement):
            strengths.append(CaseStrength("Permanent or visible injury", ImpactLevel.MAJOR))
        if len(comparables) >= 3:
            strengths.append(CaseStrength("Supported by comparable verdicts", ImpactLevel.MODERATE))
        for factor in liability.key_factors:
            if factor.favors.lower() == "plaintiff":
                strengths.append(CaseStrength(factor.factor, ImpactLevel.MODERATE))
        return strengths

    def _weaknesses(
        self,
        liability: LiabilityAnalysis,
        comparables: Sequence[ComparableVerdict],
        cap_adjustments: Optional[CapAdjustments],
    ) -> List[CaseWeakness]:
        weaknesses = []
        if liability.recovery_barred:
            weaknesses.append(CaseWeakness(
                f"Recovery barred under {liability.comparative_negligence.value} negligence",
                ImpactLevel.CRITICAL,
                "Contest plaintiff fault allocation before trial",
            ))
        elif liability.comparative_negligence_applies:
            weaknesses.append(CaseWeakness(
                f"Plaintiff comparative fault of {liability.plaintiff_liability:.0f}%",
                ImpactLevel.MODERATE,
                "Emphasize defendant's primary fault",
            ))
        if liability.strength in (LiabilityStrength.WEAK, LiabilityStrength.DISPUTED):
            weaknesses.append(CaseWeakness(
                f"{liability.strength.label} liability", ImpactLevel.MAJOR,
                "Develop additional liability evidence and expert support",
            ))
        if cap_adjustments is not None:
            weaknesses.append(CaseWeakness(
                "Statutory caps reduce recoverable damages", ImpactLevel.MODERATE,
            ))
        if len(comparables) < 3:
            weaknesses.append(CaseWeakness(
                "Limited comparable verdict support", ImpactLevel.MINOR,
            ))
        for factor in liability.key_factors:
            if factor.favors.lower() == "defendant":
                weaknesses.append(CaseWeakness(factor.factor, ImpactLevel.MODERATE))
        return weaknesses
