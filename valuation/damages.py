"""
Damages calculators.

- DamageAggregator: itemized past/future economic losses with present-value
  discounting of future losses
- NonEconomicEstimator: pain and suffering, emotional distress and loss of
  enjoyment via the multiplier method
- PunitiveAssessor: gates punitive exposure on case type and severity
"""
import logging
import math
from typing import Dict, Iterable, List, Optional, Tuple

from .config import DamagesConfig
from .errors import InvalidInputError
from .models import (
    CaseType, DamageItem, DamageTiming, EconomicDamages, InjuryDetails,
    InjurySeverity, InjuryType, NonEconomicDamages, PunitiveDamages,
    PunitiveLikelihood, require_non_negative,
)

logger = logging.getLogger(__name__)


def present_value(future_value: float, discount_rate: float, periods: int) -> float:
    """PV = FV / (1 + r)^n."""
    if not math.isfinite(discount_rate) or discount_rate < 0:
        raise InvalidInputError(
            f"discount_rate must be non-negative, got {discount_rate}",
            {'field': 'discount_rate'},
        )
    if periods < 0:
        raise InvalidInputError(f"periods must be non-negative, got {periods}", {'field': 'periods'})
    if discount_rate == 0 or periods == 0:
        return future_value
    return future_value / (1.0 + discount_rate) ** periods


class DamageAggregator:
    """Combines itemized economic losses into past/future/present-value totals."""

    # Legacy bucket layout -> (category, timing)
    BUCKETS = {
        'past_medical_expenses': ('medical', DamageTiming.PAST),
        'future_medical_expenses': ('medical', DamageTiming.FUTURE),
        'past_lost_wages': ('lost_wages', DamageTiming.PAST),
        'future_lost_earning_capacity': ('lost_earning_capacity', DamageTiming.FUTURE),
        'lost_benefits': ('lost_benefits', DamageTiming.PAST),
        'property_damage': ('property_damage', DamageTiming.PAST),
        'other_expenses': ('other', DamageTiming.PAST),
        'rehabilitation_costs': ('rehabilitation', DamageTiming.FUTURE),
        'home_modification_costs': ('home_modification', DamageTiming.FUTURE),
        'assistive_device_costs': ('assistive_devices', DamageTiming.FUTURE),
        'transportation_costs': ('transportation', DamageTiming.FUTURE),
    }

    def __init__(self, config: Optional[DamagesConfig] = None):
        self.config = config or DamagesConfig()

    @classmethod
    def items_from_buckets(cls, buckets: Dict[str, float]) -> List[DamageItem]:
        """Translate bucket totals (e.g. ``past_medical_expenses``) into items."""
        items = []
        for name, amount in buckets.items():
            if name not in cls.BUCKETS:
                raise InvalidInputError(
                    f"Unknown damages bucket {name!r}",
                    {'field': name, 'allowed': sorted(cls.BUCKETS)},
                )
            if not amount:
                continue
            category, timing = cls.BUCKETS[name]
            items.append(DamageItem(category=category, amount=amount, timing=timing))
        return items

    def aggregate(
        self,
        items: Iterable[DamageItem],
        discount_rate: Optional[float] = None,
    ) -> EconomicDamages:
        """
        Total the itemized losses.

        Args:
            items: Itemized past/future losses
            discount_rate: Rate for discounting future items (config default if None)

        Returns:
            EconomicDamages where total_economic = total_past + PV(future items)
        """
        rate = self.config.default_discount_rate if discount_rate is None else discount_rate
        if not math.isfinite(rate) or rate < 0:
            raise InvalidInputError(
                f"discount_rate must be non-negative, got {rate}",
                {'field': 'discount_rate'},
            )

        items = list(items)
        category_totals: Dict[str, float] = {}
        total_past = 0.0
        total_future = 0.0
        pv_future = 0.0

        for item in items:
            category_totals[item.category] = category_totals.get(item.category, 0.0) + item.amount
            if item.is_future:
                horizon = self.config.default_horizon if item.horizon is None else item.horizon
                total_future += item.amount
                pv_future += present_value(item.amount, rate, horizon)
            else:
                total_past += item.amount

        damages = EconomicDamages(
            items=items,
            discount_rate=rate,
            category_totals=category_totals,
            total_past=total_past,
            total_future=total_future,
            present_value_future=pv_future,
            total_economic=total_past + pv_future,
        )
        logger.debug(
            f"Economic damages: past=${total_past:,.2f} future=${total_future:,.2f} "
            f"pv_future=${pv_future:,.2f} rate={rate}"
        )
        return damages


class NonEconomicEstimator:
    """Multiplier-method estimate of non-economic damages."""

    SEVERITY_MULTIPLIERS = {
        InjurySeverity.CATASTROPHIC: 5.0,
        InjurySeverity.SEVERE: 4.0,
        InjurySeverity.MODERATE: 2.5,
        InjurySeverity.MINOR: 1.5,
    }

    INJURY_ADJUSTMENTS = {
        InjuryType.TRAUMATIC_BRAIN_INJURY: 0.5,
        InjuryType.SPINAL_CORD_INJURY: 0.5,
        InjuryType.AMPUTATION: 0.4,
        InjuryType.BURNS: 0.4,
        InjuryType.FRACTURES: 0.2,
    }

    PERMANENCE_ADJUSTMENT = 0.5
    DISFIGUREMENT_ADJUSTMENT = 0.3

    # Multipliers for cases without an injury descriptor
    CASE_TYPE_MULTIPLIERS = {
        CaseType.EMPLOYMENT: 2.0,
        CaseType.CONTRACT_BREACH: 1.0,
    }
    DEFAULT_MULTIPLIER = 2.5

    LOSS_OF_ENJOYMENT_FACTORS = {
        InjurySeverity.CATASTROPHIC: 2.0,
        InjurySeverity.SEVERE: 1.0,
        InjurySeverity.MODERATE: 0.5,
        InjurySeverity.MINOR: 0.2,
    }
    DEFAULT_LOSS_OF_ENJOYMENT = 0.5

    EMOTIONAL_DISTRESS_SHARE = 0.3

    MIN_MULTIPLIER = 1.0
    MAX_MULTIPLIER = 5.0

    def multiplier(
        self,
        injury: Optional[InjuryDetails],
        case_type: CaseType,
    ) -> Tuple[float, Optional[float]]:
        """
        Determine the pain multiplier.

        Returns:
            (multiplier clamped to [1.0, 5.0], unclamped value if clamping applied)
        """
        if injury is None:
            return self.CASE_TYPE_MULTIPLIERS.get(case_type, self.DEFAULT_MULTIPLIER), None

        raw = self.SEVERITY_MULTIPLIERS[injury.severity]
        raw += self.INJURY_ADJUSTMENTS.get(injury.injury_type, 0.0)
        if injury.permanent:
            raw += self.PERMANENCE_ADJUSTMENT
        if injury.disfigurement:
            raw += self.DISFIGUREMENT_ADJUSTMENT

        clamped = max(self.MIN_MULTIPLIER, min(self.MAX_MULTIPLIER, raw))
        return clamped, (raw if clamped != raw else None)

    def estimate(
        self,
        economic_total: float,
        injury: Optional[InjuryDetails],
        case_type: CaseType,
    ) -> Tuple[NonEconomicDamages, Optional[float]]:
        """
        Estimate non-economic damages from the economic total.

        Returns:
            (NonEconomicDamages, unclamped multiplier when the ceiling applied)
        """
        multiplier, unclamped = self.multiplier(injury, case_type)
        if unclamped is not None:
            logger.debug(f"Pain multiplier {unclamped:.2f} clamped to {multiplier:.2f}")

        pain_and_suffering = economic_total * multiplier
        emotional_distress = pain_and_suffering * self.EMOTIONAL_DISTRESS_SHARE
        if injury is not None:
            enjoyment_factor = self.LOSS_OF_ENJOYMENT_FACTORS[injury.severity]
        else:
            enjoyment_factor = self.DEFAULT_LOSS_OF_ENJOYMENT
        loss_of_enjoyment = economic_total * enjoyment_factor

        damages = NonEconomicDamages(
            pain_and_suffering=pain_and_suffering,
            emotional_distress=emotional_distress,
            loss_of_enjoyment=loss_of_enjoyment,
            multiplier=multiplier,
            total=pain_and_suffering + emotional_distress + loss_of_enjoyment,
        )
        return damages, unclamped


class PunitiveAssessor:
    """Flags punitive exposure; the amount is settled later during capping."""

    ELIGIBLE_CASE_TYPES = {
        CaseType.PERSONAL_INJURY,
        CaseType.MEDICAL_MALPRACTICE,
        CaseType.PRODUCT_LIABILITY,
    }

    def assess(
        self,
        case_type: CaseType,
        injury: Optional[InjuryDetails],
        claimed_amount: Optional[float] = None,
    ) -> Optional[PunitiveDamages]:
        amount = 0.0
        if claimed_amount is not None:
            amount = require_non_negative(claimed_amount, 'punitive_claim')

        if case_type not in self.ELIGIBLE_CASE_TYPES:
            return None
        if injury is None or injury.severity is not InjurySeverity.CATASTROPHIC:
            return None

        return PunitiveDamages(
            basis="Gross negligence or willful misconduct",
            likelihood=PunitiveLikelihood.POSSIBLE,
            reprehensibility_score=0.8,
            amount=amount,
        )
