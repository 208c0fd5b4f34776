"""
Demand, floor and target figures plus the narrative that goes with them.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .config import NegotiationConfig
from .models import (
    ComparableVerdict, LiabilityAnalysis, LiabilityStrength, RiskAssessment,
    SettlementRange,
)


@dataclass
class Recommendation:
    recommended_demand: float
    minimum_settlement: float
    target_settlement: float
    rationale: str
    negotiation_strategy: List[str]


class RecommendationGenerator:
    """Turns a settlement range into negotiating positions."""

    LEVERAGE_TIERS = (LiabilityStrength.CLEAR, LiabilityStrength.STRONG)

    def __init__(self, config: Optional[NegotiationConfig] = None):
        self.config = config or NegotiationConfig()

    def positions(self, settlement_range: SettlementRange):
        """(demand, floor, target) for a range."""
        demand = settlement_range.high * self.config.demand_multiplier
        floor = settlement_range.low * self.config.floor_multiplier
        return demand, floor, settlement_range.mid

    def rationale(
        self,
        settlement_range: SettlementRange,
        liability: LiabilityAnalysis,
        risk: RiskAssessment,
        comparables: Sequence[ComparableVerdict],
    ) -> str:
        parts = [
            f"Settlement analysis indicates a value range of "
            f"${settlement_range.low:,.2f} to ${settlement_range.high:,.2f}.",
            f"Liability is {liability.strength.label} "
            f"({liability.defendant_liability:.0f}% defendant fault).",
            f"Trial risk analysis shows {risk.probability_of_win * 100:.0f}% probability of "
            f"favorable verdict with expected value of ${risk.expected_trial_value:,.2f}.",
        ]
        if comparables:
            average = float(np.mean([c.verdict_amount for c in comparables]))
            parts.append(f"Comparable verdicts averaged ${average:,.2f}.")
        if liability.recovery_barred:
            parts.append(
                f"Caution: plaintiff fault may bar recovery under "
                f"{liability.comparative_negligence.value} negligence."
            )
        parts.append("Settlement avoids trial costs and delay while securing fair compensation.")
        return " ".join(parts)

    def strategy(
        self,
        liability: LiabilityAnalysis,
        comparables: Sequence[ComparableVerdict],
        demand: float,
        floor: float,
    ) -> List[str]:
        steps = [f"Open with demand of ${demand:,.2f}, supported by liability and damages evidence"]
        if comparables:
            steps.append("Reference comparable verdicts showing similar or higher awards")
        else:
            steps.append("Reference comparable verdicts once precedent research is available")
        if liability.strength in self.LEVERAGE_TIERS:
            steps.append(
                f"Leverage {liability.strength.label.lower()} liability: low risk of a defense "
                f"verdict justifies a premium settlement"
            )
        steps.append(
            f"Anchor high and concede gradually; do not settle below ${floor:,.2f}, "
            f"where trial is more favorable"
        )
        steps.append("Time pressure: emphasize the approaching trial date and rising defense costs")
        return steps

    def generate(
        self,
        settlement_range: SettlementRange,
        liability: LiabilityAnalysis,
        risk: RiskAssessment,
        comparables: Sequence[ComparableVerdict],
    ) -> Recommendation:
        demand, floor, target = self.positions(settlement_range)
        return Recommendation(
            recommended_demand=demand,
            minimum_settlement=floor,
            target_settlement=target,
            rationale=self.rationale(settlement_range, liability, risk, comparables),
            negotiation_strategy=self.strategy(liability, comparables, demand, floor),
        )
