"""
Data model for settlement valuation and negotiation.

Calculation records are built once by the calculator and treated as
immutable afterwards; a revised valuation is a new record (new version)
that points at the one it supersedes.
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional, Type, TypeVar
import math
import uuid

from pydantic import TypeAdapter

from .errors import InvalidInputError


E = TypeVar('E', bound=Enum)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_enum(enum_cls: Type[E], value: Any, field_name: str) -> E:
    """Coerce a string (value or member name, any case) into an enum member."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip().lower().replace('-', '_').replace(' ', '_')
        for member in enum_cls:
            if key == member.value or key == member.name.lower():
                return member
    allowed = ', '.join(m.value for m in enum_cls)
    raise InvalidInputError(
        f"Unknown {field_name} {value!r}; expected one of: {allowed}",
        {'field': field_name, 'value': str(value)},
    )


def require_non_negative(value: float, field_name: str) -> float:
    if value is None or not math.isfinite(value) or value < 0:
        raise InvalidInputError(
            f"{field_name} must be a finite, non-negative amount, got {value!r}",
            {'field': field_name, 'value': value if value is None or math.isfinite(value) else str(value)},
        )
    return float(value)


@lru_cache(maxsize=None)
def _adapter(record_type: type) -> TypeAdapter:
    return TypeAdapter(record_type)


def to_json_dict(record: Any) -> Dict[str, Any]:
    """Dump a record to plain JSON-compatible structures."""
    return _adapter(type(record)).dump_python(record, mode='json')


def from_json_dict(record_type: type, data: Dict[str, Any]) -> Any:
    """Rebuild a record of ``record_type`` from :func:`to_json_dict` output."""
    return _adapter(record_type).validate_python(data)


# =========================================================================
# ENUMERATIONS
# =========================================================================

class CaseType(Enum):
    PERSONAL_INJURY = "personal_injury"
    MEDICAL_MALPRACTICE = "medical_malpractice"
    EMPLOYMENT = "employment"
    CONTRACT_BREACH = "contract_breach"
    WRONGFUL_DEATH = "wrongful_death"
    PRODUCT_LIABILITY = "product_liability"
    PREMISES_LIABILITY = "premises_liability"
    PROFESSIONAL_MALPRACTICE = "professional_malpractice"
    CIVIL_RIGHTS = "civil_rights"
    INSURANCE_BAD_FAITH = "insurance_bad_faith"
    TOXIC_TORT = "toxic_tort"
    COMMERCIAL_DISPUTE = "commercial_dispute"

    @property
    def label(self) -> str:
        return self.value.replace('_', ' ').title()


class InjurySeverity(Enum):
    CATASTROPHIC = "catastrophic"   # Permanent, life-altering
    SEVERE = "severe"               # Long-term impact, major treatment
    MODERATE = "moderate"           # Recovery expected, significant treatment
    MINOR = "minor"                 # Full recovery, minimal treatment


class InjuryType(Enum):
    TRAUMATIC_BRAIN_INJURY = "traumatic_brain_injury"
    SPINAL_CORD_INJURY = "spinal_cord_injury"
    AMPUTATION = "amputation"
    BURNS = "burns"
    FRACTURES = "fractures"
    SOFT_TISSUE = "soft_tissue"
    WHIPLASH = "whiplash"
    ORGAN_DAMAGE = "organ_damage"
    PSYCHOLOGICAL = "psychological"
    MULTIPLE = "multiple"


class DamageTiming(Enum):
    PAST = "past"
    FUTURE = "future"


class PunitiveLikelihood(Enum):
    UNLIKELY = "unlikely"
    POSSIBLE = "possible"
    PROBABLE = "probable"
    HIGHLY_LIKELY = "highly_likely"


class ComparativeNegligence(Enum):
    PURE = "pure"                   # No bar
    MODIFIED_50 = "modified_50"     # Barred at 50% plaintiff fault
    MODIFIED_51 = "modified_51"     # Barred at 51% plaintiff fault
    CONTRIBUTORY = "contributory"   # Any plaintiff fault bars recovery


class LiabilityStrength(Enum):
    CLEAR = "clear"          # >= 90% defendant fault
    STRONG = "strong"        # 75-89%
    MODERATE = "moderate"    # 50-74%
    WEAK = "weak"            # 25-49%
    DISPUTED = "disputed"    # < 25%

    @property
    def label(self) -> str:
        return self.value.title()


class ImpactLevel(Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MODERATE = "moderate"
    MINOR = "minor"


class NoteType(Enum):
    ASSUMPTION = "assumption"
    ADJUSTMENT = "adjustment"
    WARNING = "warning"
    GENERAL = "general"


class OfferStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not OfferStatus.PENDING


class OfferOrigin(Enum):
    PLAINTIFF = "plaintiff"
    DEFENDANT = "defendant"


class OfferComparison(Enum):
    ABOVE_HIGH = "above_high"
    IN_TARGET = "in_target"
    AT_LOW = "at_low"
    BELOW_RANGE = "below_range"


class OfferRecommendation(Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"
    NEEDS_CLIENT_INPUT = "needs_client_input"


class EventKind(Enum):
    OFFER = "offer"
    COUNTEROFFER = "counteroffer"
    STATUS = "status"


# =========================================================================
# CASE FACTS
# =========================================================================

@dataclass(frozen=True)
class InjuryDetails:
    """Injury descriptor used for multipliers, punitive gating and matching."""
    severity: InjurySeverity
    injury_type: Optional[InjuryType] = None
    permanent: bool = False
    disfigurement: bool = False
    disability_percentage: Optional[float] = None
    treatment_ongoing: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'severity', parse_enum(InjurySeverity, self.severity, 'injury severity'))
        if self.injury_type is not None:
            object.__setattr__(self, 'injury_type', parse_enum(InjuryType, self.injury_type, 'injury type'))
        if self.disability_percentage is not None and not 0 <= self.disability_percentage <= 100:
            raise InvalidInputError(
                f"disability_percentage must be within [0, 100], got {self.disability_percentage}",
                {'field': 'disability_percentage'},
            )


@dataclass(frozen=True)
class LiabilityFactor:
    factor: str
    favors: str = "plaintiff"
    weight: float = 0.5  # Importance (0.0-1.0)


@dataclass(frozen=True)
class CaseProfile:
    """
    Facts of one case at the time of a valuation.

    ``plaintiff_liability`` defaults to the complement of
    ``defendant_liability``; when both are given they must sum to 100.
    """
    case_type: CaseType
    jurisdiction: str
    defendant_liability: float = 100.0
    plaintiff_liability: Optional[float] = None
    injury: Optional[InjuryDetails] = None
    matter_id: str = ""
    plaintiff_name: str = ""
    defendant_name: str = ""
    incident_date: Optional[date] = None
    liability_factors: List[LiabilityFactor] = field(default_factory=list)

    def __post_init__(self):
        object.__setattr__(self, 'case_type', parse_enum(CaseType, self.case_type, 'case type'))
        if not self.jurisdiction or not str(self.jurisdiction).strip():
            raise InvalidInputError("jurisdiction is required", {'field': 'jurisdiction'})

        for name in ('defendant_liability', 'plaintiff_liability'):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 100:
                raise InvalidInputError(
                    f"{name} must be within [0, 100], got {value}",
                    {'field': name, 'value': value},
                )

        if self.plaintiff_liability is None:
            object.__setattr__(self, 'plaintiff_liability', 100.0 - self.defendant_liability)
        elif abs(self.plaintiff_liability + self.defendant_liability - 100.0) > 0.01:
            raise InvalidInputError(
                "plaintiff_liability and defendant_liability must sum to 100 "
                f"(got {self.plaintiff_liability} + {self.defendant_liability})",
                {'field': 'liability'},
            )

    @property
    def liability_fraction(self) -> float:
        """Defendant fault as a fraction in [0, 1]."""
        return self.defendant_liability / 100.0


# =========================================================================
# DAMAGES
# =========================================================================

@dataclass(frozen=True)
class DamageItem:
    """One itemized economic loss."""
    category: str
    amount: float
    timing: DamageTiming = DamageTiming.PAST
    horizon: Optional[int] = None  # Discount periods for future items
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'timing', parse_enum(DamageTiming, self.timing, 'damage timing'))
        object.__setattr__(self, 'amount', require_non_negative(self.amount, f"amount ({self.category})"))
        if self.horizon is not None and self.horizon < 0:
            raise InvalidInputError(
                f"horizon must be non-negative, got {self.horizon}",
                {'field': 'horizon', 'category': self.category},
            )

    @property
    def is_future(self) -> bool:
        return self.timing is DamageTiming.FUTURE


@dataclass
class EconomicDamages:
    items: List[DamageItem]
    discount_rate: float
    category_totals: Dict[str, float] = field(default_factory=dict)
    total_past: float = 0.0
    total_future: float = 0.0            # Nominal (undiscounted)
    present_value_future: float = 0.0
    total_economic: float = 0.0


@dataclass
class NonEconomicDamages:
    pain_and_suffering: float
    emotional_distress: float
    loss_of_enjoyment: float
    multiplier: float
    total: float
    methodology: str = "multiplier"


@dataclass
class PunitiveDamages:
    basis: str
    likelihood: PunitiveLikelihood
    reprehensibility_score: float
    amount: float = 0.0
    defendant_net_worth: Optional[float] = None


# =========================================================================
# JURISDICTION
# =========================================================================

@dataclass(frozen=True)
class PunitiveCap:
    multiplier_of_compensatory: Optional[float] = None  # e.g. 2x compensatory
    absolute_cap: Optional[float] = None                # e.g. $750,000
    greater_of: bool = False


@dataclass(frozen=True)
class DamageCaps:
    medical_malpractice_non_economic: Optional[float] = None
    wrongful_death_non_economic: Optional[float] = None
    general_non_economic: Optional[float] = None
    governmental_entity: Optional[float] = None


@dataclass(frozen=True)
class JurisdictionRules:
    code: str
    name: str
    comparative_negligence: ComparativeNegligence
    damage_caps: DamageCaps = field(default_factory=DamageCaps)
    punitive_allowed: bool = True
    punitive_cap: Optional[PunitiveCap] = None
    prejudgment_interest: bool = False
    prejudgment_interest_rate: Optional[float] = None
    contingency_fee_max: Optional[float] = None
    statute_of_limitations: Dict[str, int] = field(default_factory=dict)
    mediation_required: bool = False


@dataclass
class CapAdjustment:
    category: str  # "non_economic" or "punitive"
    original: float
    capped: float
    reason: str


@dataclass
class CapAdjustments:
    adjustments: List[CapAdjustment] = field(default_factory=list)

    def _find(self, category: str) -> Optional[CapAdjustment]:
        for adj in self.adjustments:
            if adj.category == category:
                return adj
        return None

    @property
    def non_economic(self) -> Optional[CapAdjustment]:
        return self._find('non_economic')

    @property
    def punitive(self) -> Optional[CapAdjustment]:
        return self._find('punitive')

    @property
    def reason(self) -> str:
        return ' '.join(adj.reason for adj in self.adjustments)

    @property
    def total_reduction(self) -> float:
        return sum(adj.original - adj.capped for adj in self.adjustments)


# =========================================================================
# ANALYSIS
# =========================================================================

@dataclass
class ComparableVerdict:
    case_name: str
    jurisdiction: str
    year: int
    case_type: str
    injury_type: str
    verdict_amount: float
    economic_damages: float = 0.0
    non_economic_damages: float = 0.0
    similarity_score: float = 0.0
    citation: Optional[str] = None


@dataclass
class SettlementRange:
    low: float
    mid: float
    high: float
    confidence: float
    explanation: str = ""


@dataclass
class LiabilityAnalysis:
    plaintiff_liability: float
    defendant_liability: float
    comparative_negligence: ComparativeNegligence
    comparative_negligence_applies: bool
    recovery_barred: bool
    jurisdiction: str
    strength: LiabilityStrength
    key_factors: List[LiabilityFactor] = field(default_factory=list)


@dataclass
class CaseStrength:
    description: str
    impact: ImpactLevel


@dataclass
class CaseWeakness:
    description: str
    impact: ImpactLevel
    mitigation: Optional[str] = None


@dataclass
class RiskAssessment:
    trial_risk_score: float  # 0.0 (low risk) to 1.0 (high risk)
    probability_of_win: float
    expected_trial_value: float
    trial_cost_estimate: float
    expected_trial_duration_months: int
    strengths: List[CaseStrength] = field(default_factory=list)
    weaknesses: List[CaseWeakness] = field(default_factory=list)


@dataclass
class CalculationNote:
    note_type: NoteType
    text: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class SettlementCalculation:
    """Full valuation of one case, bound to the facts it was computed from."""
    id: str
    profile: CaseProfile
    economic_damages: EconomicDamages
    non_economic_damages: NonEconomicDamages
    punitive_damages: Optional[PunitiveDamages]

    # Totals
    raw_total: float               # Economic + non-economic + punitive, before caps
    capped_total: float            # After jurisdiction caps
    total_damages: float           # Capped total x defendant fault

    # Jurisdiction
    jurisdiction: str
    jurisdiction_fallback: bool
    adjusted_for_caps: bool
    cap_adjustments: Optional[CapAdjustments]

    # Analysis
    settlement_range: SettlementRange
    liability_analysis: LiabilityAnalysis
    risk_assessment: RiskAssessment
    comparable_verdicts: List[ComparableVerdict]
    comparables_unavailable: bool

    # Recommendations
    recommended_demand: float
    minimum_settlement: float
    target_settlement: float
    rationale: str
    negotiation_strategy: List[str]

    # Interest and fees
    prejudgment_interest: float = 0.0
    estimated_attorney_fees: float = 0.0
    net_to_client: float = 0.0

    # Versioning
    version: int = 1
    supersedes: Optional[str] = None
    calculated_at: datetime = field(default_factory=utcnow)
    calculated_by: str = ""
    notes: List[CalculationNote] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return to_json_dict(self)

    def format_currency(self, amount: float) -> str:
        """Format dollar amount for display."""
        if amount >= 1_000_000_000:
            return f"${amount/1_000_000_000:.1f}B"
        elif amount >= 1_000_000:
            return f"${amount/1_000_000:.2f}M"
        elif amount >= 1_000:
            return f"${amount/1_000:.1f}K"
        return f"${amount:,.0f}"

    def summary(self) -> str:
        """Generate a printable summary of the valuation."""
        fmt = self.format_currency
        rng = self.settlement_range
        lines = [
            "",
            f"Settlement Valuation: {self.profile.case_type.label} ({self.jurisdiction})",
            "=" * 60,
            f"Calculation: {self.id} (v{self.version})",
            "",
            "Damages:",
            f"  Economic:       {fmt(self.economic_damages.total_economic):>12}",
            f"  Non-Economic:   {fmt(self.non_economic_damages.total):>12}"
            f"  ({self.non_economic_damages.multiplier:.1f}x multiplier)",
        ]
        if self.punitive_damages:
            lines.append(
                f"  Punitive:       {fmt(self.punitive_damages.amount):>12}"
                f"  ({self.punitive_damages.likelihood.value})"
            )
        lines.extend([
            f"  Raw Total:      {fmt(self.raw_total):>12}",
            f"  After Caps:     {fmt(self.capped_total):>12}",
            f"  Liability-Adj.: {fmt(self.total_damages):>12}"
            f"  ({self.profile.defendant_liability:.0f}% defendant fault)",
            "",
            "Settlement Range:",
            f"  Low:  {fmt(rng.low):>12}",
            f"  Mid:  {fmt(rng.mid):>12}",
            f"  High: {fmt(rng.high):>12}",
            f"  Confidence: {rng.confidence:.0%}",
            "",
            f"Liability: {self.liability_analysis.strength.label}",
            f"Win Probability: {self.risk_assessment.probability_of_win:.0%}",
            "",
            "Recommendations:",
            f"  Demand: {fmt(self.recommended_demand):>12}",
            f"  Target: {fmt(self.target_settlement):>12}",
            f"  Floor:  {fmt(self.minimum_settlement):>12}",
        ])
        if self.cap_adjustments:
            lines.extend(["", f"Caps: {self.cap_adjustments.reason}"])
        if self.jurisdiction_fallback:
            lines.append(
                f"Note: jurisdiction '{self.profile.jurisdiction}' unknown, "
                f"rules for {self.jurisdiction} applied"
            )
        lines.append("")
        return "\n".join(lines)


# =========================================================================
# NEGOTIATION
# =========================================================================

@dataclass
class OfferAnalysis:
    percentage_of_demand: float
    percentage_of_value: float
    net_recovery: float
    comparison: OfferComparison
    recommendation: OfferRecommendation
    time_value_analysis: str = ""


@dataclass
class SettlementOffer:
    id: str
    calculation_id: str
    round_number: int
    origin: OfferOrigin
    amount: float
    offered_at: datetime
    expires_at: Optional[datetime] = None
    status: OfferStatus = OfferStatus.PENDING
    analysis: Optional[OfferAnalysis] = None
    terms: List[str] = field(default_factory=list)


@dataclass
class CounterOffer:
    id: str
    calculation_id: str
    round_number: int
    responds_to: str
    amount: float
    reduction: float
    rationale: str
    created_at: datetime
    clamped_to_floor: bool = False
    status: OfferStatus = OfferStatus.PENDING


@dataclass
class StatusChange:
    target_id: str
    status: OfferStatus
    changed_at: datetime = field(default_factory=utcnow)


@dataclass
class NegotiationEvent:
    """One append-only entry in a calculation's negotiation log."""
    sequence: int
    calculation_id: str
    kind: EventKind
    round_number: int
    offer: Optional[SettlementOffer] = None
    counteroffer: Optional[CounterOffer] = None
    status_change: Optional[StatusChange] = None
    recorded_at: datetime = field(default_factory=utcnow)


@dataclass
class NegotiationState:
    """Current-state projection of a negotiation event log."""
    calculation_id: str
    offers: List[SettlementOffer] = field(default_factory=list)
    counteroffers: List[CounterOffer] = field(default_factory=list)
    version: int = 0

    @property
    def current_round(self) -> int:
        return max((o.round_number for o in self.offers), default=0)

    @property
    def closed(self) -> bool:
        return any(o.status is OfferStatus.ACCEPTED for o in self.offers) or \
            any(c.status is OfferStatus.ACCEPTED for c in self.counteroffers)

    def find_offer(self, offer_id: str) -> Optional[SettlementOffer]:
        for offer in self.offers:
            if offer.id == offer_id:
                return offer
        return None

    def find_counteroffer(self, counter_id: str) -> Optional[CounterOffer]:
        for counter in self.counteroffers:
            if counter.id == counter_id:
                return counter
        return None

    def offer_for_round(self, round_number: int) -> Optional[SettlementOffer]:
        for offer in self.offers:
            if offer.round_number == round_number:
                return offer
        return None

    def counteroffer_for_round(self, round_number: int) -> Optional[CounterOffer]:
        for counter in self.counteroffers:
            if counter.round_number == round_number:
                return counter
        return None

    def latest_counteroffer(self) -> Optional[CounterOffer]:
        return self.counteroffers[-1] if self.counteroffers else None

    def apply(self, event: NegotiationEvent) -> None:
        """Fold one event into the projection."""
        if event.kind is EventKind.OFFER:
            self.offers.append(replace(event.offer))
        elif event.kind is EventKind.COUNTEROFFER:
            self.counteroffers.append(replace(event.counteroffer))
        elif event.kind is EventKind.STATUS:
            change = event.status_change
            for records in (self.offers, self.counteroffers):
                for i, record in enumerate(records):
                    if record.id == change.target_id:
                        records[i] = replace(record, status=change.status)
        self.version = event.sequence
