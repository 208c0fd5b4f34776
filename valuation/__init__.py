"""
Settlement valuation and negotiation engine.

Modules:
- damages: Economic, non-economic and punitive damages
- jurisdiction: Jurisdiction rules, statutory caps, fees and interest
- comparables: Precedent indexes and comparable-verdict scoring
- risk: Settlement range, liability tiers and trial risk
- recommendation: Demand, floor and target with rationale
- negotiation: Offer analysis and negotiation round tracking
- calculator: SettlementCalculator orchestrating all of the above
"""

from .calculator import SettlementCalculator
from .config import EngineConfig, default_config
from .errors import (
    SettlementError, InvalidInputError, StaleNegotiationRoundError,
    CalculationNotFoundError, OfferNotFoundError, PrecedentLookupError,
    ConfigurationError,
)
from .jurisdiction import apply_damage_caps, calculate_attorney_fees
from .models import (
    CaseProfile, CaseType, DamageItem, DamageTiming, InjuryDetails,
    InjurySeverity, InjuryType, OfferOrigin, OfferStatus, SettlementCalculation,
)

__all__ = [
    'SettlementCalculator',
    'EngineConfig',
    'default_config',
    'SettlementError',
    'InvalidInputError',
    'StaleNegotiationRoundError',
    'CalculationNotFoundError',
    'OfferNotFoundError',
    'PrecedentLookupError',
    'ConfigurationError',
    'apply_damage_caps',
    'calculate_attorney_fees',
    'CaseProfile',
    'CaseType',
    'DamageItem',
    'DamageTiming',
    'InjuryDetails',
    'InjurySeverity',
    'InjuryType',
    'OfferOrigin',
    'OfferStatus',
    'SettlementCalculation',
]
