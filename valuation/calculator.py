"""
Settlement Calculator

Orchestrates a full valuation: damages aggregation, jurisdiction caps,
comparable verdicts, settlement range, liability and trial risk, and
negotiating positions. Also the entry point for negotiation tracking on a
stored calculation.
"""
import logging
import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .comparables import ComparableMatcher, PrecedentIndex, build_precedent_index
from .config import EngineConfig, default_config
from .damages import DamageAggregator, NonEconomicEstimator, PunitiveAssessor
from .errors import CalculationNotFoundError, InvalidInputError, PrecedentLookupError
from .jurisdiction import (
    JurisdictionRegistry, apply_damage_caps, calculate_attorney_fees,
    limitations_deadline, load_registry, prejudgment_interest,
)
from .models import (
    CalculationNote, CaseProfile, CounterOffer, DamageItem, EconomicDamages,
    InjuryDetails, NegotiationState, NoteType, OfferAnalysis, OfferOrigin,
    OfferStatus, SettlementCalculation, SettlementOffer, new_id, require_non_negative, utcnow,
)
from .negotiation import NegotiationTracker, analyze_offer
from .recommendation import RecommendationGenerator
from .risk import LiabilityAnalyzer, RangeCalculator, RiskAnalyzer, liability_adjusted_total

logger = logging.getLogger(__name__)

DamagesInput = Union[EconomicDamages, Mapping[str, float], Iterable[Union[DamageItem, Dict[str, Any]]]]


class SettlementCalculator:
    """
    Settlement valuation and negotiation service.

    Usage:
        calculator = SettlementCalculator()
        calc = calculator.calculate(profile, {'past_medical_expenses': 50000})
        print(calc.summary())
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        registry: Optional[JurisdictionRegistry] = None,
        precedent_index: Optional[PrecedentIndex] = None,
        db=None,
    ):
        """
        Initialize the calculator.

        Args:
            config: Engine configuration (module default if None)
            registry: Jurisdiction rules (loaded from config.jurisdictions_path if None)
            precedent_index: Comparable-verdict source (built from config.precedents if None)
            db: Optional ``db.database.Database`` for persistence
        """
        self.config = config or default_config
        self.registry = registry or load_registry(
            self.config.jurisdictions_path, self.config.default_jurisdiction
        )
        self.precedent_index = precedent_index or build_precedent_index(self.config.precedents)
        self.db = db

        self.aggregator = DamageAggregator(self.config.damages)
        self.non_economic = NonEconomicEstimator()
        self.punitive = PunitiveAssessor()
        self.matcher = ComparableMatcher(self.precedent_index, self.config.precedents.top_n)
        self.ranges = RangeCalculator(self.config.range)
        self.liability = LiabilityAnalyzer()
        self.risk = RiskAnalyzer(self.config.risk)
        self.recommendations = RecommendationGenerator(self.config.negotiation)
        self.tracker = NegotiationTracker(self.config.negotiation, db)

        self._calculations: Dict[str, SettlementCalculation] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # VALUATION
    # =========================================================================

    def _economic_damages(self, damages: DamagesInput, discount_rate: Optional[float]) -> EconomicDamages:
        if isinstance(damages, EconomicDamages):
            rate = damages.discount_rate if discount_rate is None else discount_rate
            return self.aggregator.aggregate(damages.items, rate)
        if isinstance(damages, Mapping):
            return self.aggregator.aggregate(self.aggregator.items_from_buckets(damages), discount_rate)
        if damages is None:
            raise InvalidInputError("damages are required", {'field': 'damages'})

        items = []
        for item in damages:
            if isinstance(item, DamageItem):
                items.append(item)
            elif isinstance(item, Mapping):
                try:
                    items.append(DamageItem(**item))
                except TypeError as e:
                    raise InvalidInputError(f"Invalid damage item {dict(item)!r}: {e}", {'field': 'damages'}) from e
            else:
                raise InvalidInputError(f"Invalid damage item {item!r}", {'field': 'damages'})
        return self.aggregator.aggregate(items, discount_rate)

    def calculate(
        self,
        profile: CaseProfile,
        damages: DamagesInput,
        injury: Optional[InjuryDetails] = None,
        punitive_claim: Optional[float] = None,
        supersedes: Optional[str] = None,
        calculated_by: str = "",
        discount_rate: Optional[float] = None,
        as_of: Optional[date] = None,
    ) -> SettlementCalculation:
        """
        Value a case.

        Args:
            profile: Case facts
            damages: Itemized losses, bucket totals, or pre-built EconomicDamages
            injury: Injury descriptor (overrides profile.injury)
            punitive_claim: Punitive amount sought; ignored when the case is not eligible
            supersedes: Id of the calculation this one revises
            calculated_by: Free-text author
            discount_rate: Rate for discounting future losses
            as_of: Valuation date for interest and limitations checks (today if None)

        Returns:
            SettlementCalculation (stored before returning)

        Raises:
            InvalidInputError: bad amounts, rates or enum values; nothing is stored
            CalculationNotFoundError: ``supersedes`` names an unknown calculation
        """
        if punitive_claim is not None:
            punitive_claim = require_non_negative(punitive_claim, 'punitive_claim')
        if injury is not None:
            profile = replace(profile, injury=injury)
        injury = profile.injury
        case_type = profile.case_type
        as_of = as_of or date.today()
        notes: List[CalculationNote] = []

        version = 1
        if supersedes:
            version = self.get_calculation(supersedes).version + 1

        # Damages
        economic = self._economic_damages(damages, discount_rate)
        non_economic, unclamped = self.non_economic.estimate(economic.total_economic, injury, case_type)
        if unclamped is not None:
            notes.append(CalculationNote(
                NoteType.ADJUSTMENT,
                f"Pain multiplier {unclamped:.2f} clamped to {non_economic.multiplier:.2f}.",
            ))
        if injury is None:
            notes.append(CalculationNote(
                NoteType.ASSUMPTION,
                f"No injury details; {case_type.label} multiplier of {non_economic.multiplier:.1f} used.",
            ))

        punitive = self.punitive.assess(case_type, injury, punitive_claim)
        if punitive_claim and punitive is None:
            notes.append(CalculationNote(
                NoteType.WARNING,
                f"Punitive claim of ${punitive_claim:,.2f} ignored: requires catastrophic injury in an "
                f"eligible case type.",
            ))

        # Jurisdiction and caps
        resolved = self.registry.resolve(profile.jurisdiction)
        rules = resolved.rules
        if resolved.fallback:
            notes.append(CalculationNote(
                NoteType.WARNING,
                f"Unknown jurisdiction '{profile.jurisdiction}'; rules for {rules.name} ({rules.code}) applied.",
            ))

        punitive_amount = punitive.amount if punitive is not None else None
        raw_total = economic.total_economic + non_economic.total + (punitive_amount or 0.0)
        capped_total, cap_adjustments = apply_damage_caps(
            economic.total_economic, non_economic.total, punitive_amount, rules, case_type,
        )
        if cap_adjustments is not None:
            for adj in cap_adjustments.adjustments:
                notes.append(CalculationNote(NoteType.ADJUSTMENT, adj.reason))

        total_damages = liability_adjusted_total(capped_total, profile.defendant_liability)

        # Comparables
        comparables_unavailable = False
        try:
            comparables = self.matcher.find(case_type, injury, rules.code, raw_total, rules.name)
        except PrecedentLookupError as e:
            logger.warning(f"Comparable lookup failed for {rules.code} {case_type.value}: {e}")
            comparables = []
            comparables_unavailable = True
            notes.append(CalculationNote(
                NoteType.WARNING,
                "Comparable verdicts unavailable; default range confidence applied.",
            ))

        # Liability, range, risk, recommendations
        liability = self.liability.analyze(profile, rules)
        if liability.recovery_barred:
            notes.append(CalculationNote(
                NoteType.WARNING,
                f"Plaintiff fault of {profile.plaintiff_liability:.0f}% may bar recovery under "
                f"{rules.comparative_negligence.value} negligence in {rules.name}.",
            ))

        settlement_range = self.ranges.calculate(total_damages, comparables, profile.liability_fraction)
        risk = self.risk.assess(profile, liability, total_damages, comparables, cap_adjustments)
        recommendation = self.recommendations.generate(settlement_range, liability, risk, comparables)

        # Interest, fees, limitations
        interest = prejudgment_interest(total_damages, rules, profile.incident_date, as_of)
        fees, _, net_to_client = calculate_attorney_fees(
            recommendation.target_settlement, self.config.risk.default_contingency_fee, 0.0, rules,
        )
        deadline = limitations_deadline(rules, case_type, profile.incident_date)
        if deadline is not None and deadline < as_of:
            notes.append(CalculationNote(
                NoteType.WARNING,
                f"Statute of limitations in {rules.name} may have run on {deadline.isoformat()}.",
            ))
        if rules.mediation_required:
            notes.append(CalculationNote(NoteType.GENERAL, f"Mediation is required in {rules.name}."))

        calc = SettlementCalculation(
            id=new_id(),
            profile=profile,
            economic_damages=economic,
            non_economic_damages=non_economic,
            punitive_damages=punitive,
            raw_total=raw_total,
            capped_total=capped_total,
            total_damages=total_damages,
            jurisdiction=rules.code,
            jurisdiction_fallback=resolved.fallback,
            adjusted_for_caps=cap_adjustments is not None,
            cap_adjustments=cap_adjustments,
            settlement_range=settlement_range,
            liability_analysis=liability,
            risk_assessment=risk,
            comparable_verdicts=comparables,
            comparables_unavailable=comparables_unavailable,
            recommended_demand=recommendation.recommended_demand,
            minimum_settlement=recommendation.minimum_settlement,
            target_settlement=recommendation.target_settlement,
            rationale=recommendation.rationale,
            negotiation_strategy=recommendation.negotiation_strategy,
            prejudgment_interest=interest,
            estimated_attorney_fees=fees,
            net_to_client=net_to_client,
            version=version,
            supersedes=supersedes,
            calculated_by=calculated_by,
            notes=notes,
        )
        self._store(calc)

        logger.info(
            f"Calculation {calc.id} v{version}: {case_type.value} in {rules.code}, "
            f"total ${total_damages:,.2f}, range ${settlement_range.low:,.2f}-${settlement_range.high:,.2f}"
        )
        logger.debug(
            f"Calculation {calc.id}: economic=${economic.total_economic:,.2f} "
            f"non_economic=${non_economic.total:,.2f} raw=${raw_total:,.2f} capped=${capped_total:,.2f}"
        )
        return calc

    def recalculate(
        self,
        calculation_id: str,
        profile: Optional[CaseProfile] = None,
        damages: Optional[DamagesInput] = None,
        **kwargs,
    ) -> SettlementCalculation:
        """Produce a new version of a calculation; the prior record is left untouched."""
        prior = self.get_calculation(calculation_id)
        if profile is None:
            profile = prior.profile
        if damages is None:
            damages = prior.economic_damages
        if 'punitive_claim' not in kwargs and prior.punitive_damages is not None \
                and prior.punitive_damages.amount > 0:
            kwargs['punitive_claim'] = prior.punitive_damages.amount
        return self.calculate(profile, damages, supersedes=calculation_id, **kwargs)

    def _store(self, calc: SettlementCalculation):
        if self.db is not None:
            self.db.save_calculation(calc)
        with self._lock:
            self._calculations[calc.id] = calc

    def get_calculation(self, calculation_id: str) -> SettlementCalculation:
        with self._lock:
            calc = self._calculations.get(calculation_id)
        if calc is None and self.db is not None:
            calc = self.db.get_calculation(calculation_id)
            if calc is not None:
                with self._lock:
                    self._calculations[calculation_id] = calc
        if calc is None:
            raise CalculationNotFoundError(
                f"Calculation {calculation_id} not found",
                {'calculation_id': calculation_id},
            )
        return calc

    # =========================================================================
    # CAPS & OFFER ANALYSIS
    # =========================================================================

    def apply_damage_caps(self, economic, non_economic, punitive, rules, case_type):
        """See :func:`valuation.jurisdiction.apply_damage_caps`."""
        return apply_damage_caps(economic, non_economic, punitive, rules, case_type)

    def analyze_offer(self, calculation: Union[SettlementCalculation, str], amount: float) -> OfferAnalysis:
        if isinstance(calculation, str):
            calculation = self.get_calculation(calculation)
        return analyze_offer(calculation, amount, self.config.negotiation.time_value_discount)

    # =========================================================================
    # NEGOTIATION
    # =========================================================================

    def record_offer(
        self,
        calculation_id: str,
        amount: float,
        origin: Union[OfferOrigin, str] = OfferOrigin.DEFENDANT,
        round_number: Optional[int] = None,
        expected_version: Optional[int] = None,
        terms: Optional[List[str]] = None,
        expires_at: Optional[datetime] = None,
    ) -> SettlementOffer:
        calc = self.get_calculation(calculation_id)
        return self.tracker.record_offer(
            calc, amount, origin,
            round_number=round_number,
            expected_version=expected_version,
            terms=terms,
            expires_at=expires_at,
        )

    def generate_counteroffer(
        self,
        calculation_id: str,
        current_offer: Union[SettlementOffer, str],
        round_number: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> CounterOffer:
        calc = self.get_calculation(calculation_id)
        return self.tracker.generate_counteroffer(calc, current_offer, round_number, expected_version)

    def update_offer_status(
        self,
        calculation_id: str,
        offer_id: str,
        status: Union[OfferStatus, str],
        expected_version: Optional[int] = None,
    ):
        self.get_calculation(calculation_id)
        return self.tracker.update_offer_status(calculation_id, offer_id, status, expected_version)

    def negotiation_state(self, calculation_id: str) -> NegotiationState:
        self.get_calculation(calculation_id)
        return self.tracker.state(calculation_id)

    def expire_offers(self, calculation_id: str, as_of: Optional[datetime] = None) -> List[SettlementOffer]:
        self.get_calculation(calculation_id)
        return self.tracker.expire_offers(calculation_id, as_of or utcnow())
