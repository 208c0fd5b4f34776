"""
Negotiation tracking.

Each calculation owns an append-only log of offer, counteroffer and status
events; the current negotiation state is a projection of that log.

State machine for offers and counteroffers:
    PENDING -> ACCEPTED | REJECTED | COUNTERED | EXPIRED  (terminal)

An accepted offer or counteroffer closes the negotiation.

Rounds: the n-th received offer is round n; a counteroffer to it is round
n + 1, sharing that number with the offer that answers it.
"""
import threading
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple, Union

from .config import NegotiationConfig
from .errors import InvalidInputError, OfferNotFoundError, StaleNegotiationRoundError
from .models import (
    CounterOffer, EventKind, NegotiationEvent, NegotiationState, OfferAnalysis,
    OfferComparison, OfferOrigin, OfferRecommendation, OfferStatus,
    SettlementCalculation, SettlementOffer, SettlementRange, StatusChange,
    new_id, parse_enum, require_non_negative, utcnow,
)

logger = logging.getLogger(__name__)


# =========================================================================
# OFFER ANALYSIS
# =========================================================================

def classify_offer(amount: float, settlement_range: SettlementRange) -> Tuple[OfferComparison, OfferRecommendation]:
    """Place an offer against the settlement range."""
    if amount >= settlement_range.high:
        return OfferComparison.ABOVE_HIGH, OfferRecommendation.ACCEPT
    if amount >= settlement_range.mid:
        return OfferComparison.IN_TARGET, OfferRecommendation.NEEDS_CLIENT_INPUT
    if amount >= settlement_range.low:
        return OfferComparison.AT_LOW, OfferRecommendation.COUNTER
    return OfferComparison.BELOW_RANGE, OfferRecommendation.REJECT


def analyze_offer(
    calculation: SettlementCalculation,
    amount: float,
    time_value_discount: float = 0.05,
) -> OfferAnalysis:
    """
    Analyze an offer against a calculation.

    Args:
        calculation: Valuation the offer is measured against
        amount: Offer amount
        time_value_discount: Fraction of total damages attributed to trial delay

    Returns:
        OfferAnalysis (percentages are 0 when demand or value is 0)
    """
    amount = require_non_negative(amount, 'offer amount')
    demand = calculation.recommended_demand
    value = calculation.total_damages
    risk = calculation.risk_assessment

    comparison, recommendation = classify_offer(amount, calculation.settlement_range)
    time_value = (
        f"Immediate recovery vs. {risk.expected_trial_duration_months}-month trial delay. "
        f"Discount for time value: ${value * time_value_discount:,.2f}"
    )
    return OfferAnalysis(
        percentage_of_demand=(amount / demand * 100.0) if demand else 0.0,
        percentage_of_value=(amount / value * 100.0) if value else 0.0,
        net_recovery=amount - risk.trial_cost_estimate,
        comparison=comparison,
        recommendation=recommendation,
        time_value_analysis=time_value,
    )


def counteroffer_amount(
    demand: float,
    offer: float,
    round_number: int,
    floor: float,
    step: float = 0.15,
) -> Tuple[float, float, bool]:
    """
    Concede a fraction of the gap per round, never below the floor.

    Returns:
        (counter amount, reduction from demand, clamped to floor)
    """
    if round_number < 1:
        raise InvalidInputError(f"round must be >= 1, got {round_number}", {'field': 'round'})
    gap = max(demand - offer, 0.0)
    reduction = gap * step * round_number
    counter = demand - reduction
    if counter < floor:
        return floor, demand - floor, True
    return counter, reduction, False


# =========================================================================
# TRACKER
# =========================================================================

class NegotiationTracker:
    """
    Thread-safe negotiation log per calculation.

    Features:
    - Append-only event log; state is rebuilt from events on read
    - One lock per calculation, so independent negotiations never contend
    - Optional database persistence (round uniqueness enforced there too)
    """

    def __init__(self, config: Optional[NegotiationConfig] = None, db=None):
        """Initialize the tracker.

        Args:
            config: Negotiation pacing settings
            db: Optional ``db.database.Database`` for event persistence
        """
        self.config = config or NegotiationConfig()
        self.db = db
        self._logs: Dict[str, List[NegotiationEvent]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, calculation_id: str) -> threading.Lock:
        with self._locks_guard:
            if calculation_id not in self._locks:
                self._locks[calculation_id] = threading.Lock()
            return self._locks[calculation_id]

    def _log(self, calculation_id: str) -> List[NegotiationEvent]:
        # Caller holds the calculation lock
        if calculation_id not in self._logs:
            self._logs[calculation_id] = self.db.get_events(calculation_id) if self.db else []
        return self._logs[calculation_id]

    @staticmethod
    def _project(calculation_id: str, log: List[NegotiationEvent]) -> NegotiationState:
        state = NegotiationState(calculation_id=calculation_id)
        for event in log:
            state.apply(event)
        return state

    def _append(
        self,
        calculation_id: str,
        log: List[NegotiationEvent],
        kind: EventKind,
        round_number: int,
        **payload,
    ) -> NegotiationEvent:
        event = NegotiationEvent(
            sequence=len(log) + 1,
            calculation_id=calculation_id,
            kind=kind,
            round_number=round_number,
            **payload,
        )
        if self.db is not None:
            try:
                self.db.append_event(event)
            except StaleNegotiationRoundError:
                # Another writer got there first; reload from the database on next access
                self._logs.pop(calculation_id, None)
                logger.warning(f"Negotiation log for {calculation_id} was stale at sequence {event.sequence}")
                raise
        log.append(event)
        return event

    @staticmethod
    def _check_open(state: NegotiationState, expected_version: Optional[int]):
        if expected_version is not None and expected_version != state.version:
            raise StaleNegotiationRoundError(
                f"Negotiation for {state.calculation_id} is at version {state.version}, "
                f"expected {expected_version}",
                {'calculation_id': state.calculation_id, 'version': state.version},
            )
        if state.closed:
            raise StaleNegotiationRoundError(
                f"Negotiation for {state.calculation_id} is closed (settlement accepted)",
                {'calculation_id': state.calculation_id, 'version': state.version},
            )

    # === Reads ===

    def state(self, calculation_id: str) -> NegotiationState:
        """Current negotiation state (a copy; safe to mutate)."""
        with self._lock_for(calculation_id):
            return self._project(calculation_id, self._log(calculation_id))

    def events(self, calculation_id: str) -> List[NegotiationEvent]:
        with self._lock_for(calculation_id):
            return list(self._log(calculation_id))

    # === Transitions ===

    def record_offer(
        self,
        calculation: SettlementCalculation,
        amount: float,
        origin: Union[OfferOrigin, str] = OfferOrigin.DEFENDANT,
        round_number: Optional[int] = None,
        expected_version: Optional[int] = None,
        terms: Optional[List[str]] = None,
        offered_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> SettlementOffer:
        """
        Record a received offer, opening the next negotiation round.

        Raises:
            InvalidInputError: negative amount or unknown origin
            StaleNegotiationRoundError: explicit round is not the next round,
                version mismatch, or the negotiation is closed
        """
        amount = require_non_negative(amount, 'offer amount')
        origin = parse_enum(OfferOrigin, origin, 'offer origin')
        calculation_id = calculation.id

        with self._lock_for(calculation_id):
            log = self._log(calculation_id)
            state = self._project(calculation_id, log)
            self._check_open(state, expected_version)

            next_round = state.current_round + 1
            if round_number is not None and round_number != next_round:
                raise StaleNegotiationRoundError(
                    f"Round {round_number} is not open; next round is {next_round}",
                    {'calculation_id': calculation_id, 'round_number': round_number,
                     'next_round': next_round},
                )

            offered_at = offered_at or utcnow()
            if offered_at.tzinfo is None:
                offered_at = offered_at.replace(tzinfo=timezone.utc)
            if expires_at is not None and expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at is None and self.config.offer_expiration_days:
                expires_at = offered_at + timedelta(days=self.config.offer_expiration_days)

            offer = SettlementOffer(
                id=new_id(),
                calculation_id=calculation_id,
                round_number=next_round,
                origin=origin,
                amount=amount,
                offered_at=offered_at,
                expires_at=expires_at,
                analysis=analyze_offer(calculation, amount, self.config.time_value_discount),
                terms=list(terms or []),
            )
            self._append(calculation_id, log, EventKind.OFFER, next_round, offer=offer)

            outstanding = state.latest_counteroffer()
            if outstanding is not None and outstanding.status is OfferStatus.PENDING:
                self._append(
                    calculation_id, log, EventKind.STATUS, outstanding.round_number,
                    status_change=StatusChange(outstanding.id, OfferStatus.COUNTERED),
                )

        logger.info(
            f"Recorded {origin.value} offer ${amount:,.2f} for {calculation_id} "
            f"(round {next_round}, {offer.analysis.recommendation.value})"
        )
        return replace(offer)

    def generate_counteroffer(
        self,
        calculation: SettlementCalculation,
        current_offer: Union[SettlementOffer, str],
        round_number: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> CounterOffer:
        """
        Answer the latest pending offer with a counteroffer in the next round.

        Args:
            calculation: Valuation supplying demand and floor
            current_offer: Offer (or offer id) being answered
            round_number: Counteroffer round; defaults to the offer's round + 1

        Raises:
            OfferNotFoundError: offer not part of this negotiation
            StaleNegotiationRoundError: offer no longer pending, round mismatch,
                round already countered, version mismatch, or closed negotiation
        """
        offer_id = current_offer if isinstance(current_offer, str) else current_offer.id
        calculation_id = calculation.id

        with self._lock_for(calculation_id):
            log = self._log(calculation_id)
            state = self._project(calculation_id, log)
            self._check_open(state, expected_version)

            offer = state.find_offer(offer_id)
            if offer is None:
                raise OfferNotFoundError(
                    f"Offer {offer_id} not found for calculation {calculation_id}",
                    {'calculation_id': calculation_id, 'offer_id': offer_id},
                )
            counter_round = offer.round_number + 1
            if round_number is None:
                round_number = counter_round

            details = {'calculation_id': calculation_id, 'offer_id': offer_id, 'round_number': round_number}
            if offer.round_number != state.current_round:
                raise StaleNegotiationRoundError(
                    f"Offer {offer_id} (round {offer.round_number}) is superseded by round "
                    f"{state.current_round}",
                    details,
                )
            if round_number != counter_round:
                raise StaleNegotiationRoundError(
                    f"Counteroffer to round {offer.round_number} belongs in round {counter_round}, "
                    f"got {round_number}",
                    details,
                )
            if offer.status is not OfferStatus.PENDING:
                raise StaleNegotiationRoundError(
                    f"Offer {offer_id} is {offer.status.value}, not pending",
                    details,
                )
            if state.counteroffer_for_round(round_number) is not None:
                raise StaleNegotiationRoundError(
                    f"Round {round_number} already has a counteroffer",
                    details,
                )

            demand = calculation.recommended_demand
            amount, reduction, clamped = counteroffer_amount(
                demand, offer.amount, round_number,
                calculation.minimum_settlement, self.config.counter_step,
            )
            pct = (reduction / demand * 100.0) if demand else 0.0
            rationale = f"Counteroffer represents a {pct:.1f}% reduction from the demand of ${demand:,.2f}."
            if clamped:
                rationale += f" Held at the settlement floor of ${calculation.minimum_settlement:,.2f}."
                logger.warning(
                    f"Counteroffer for {calculation_id} round {round_number} clamped to floor "
                    f"${calculation.minimum_settlement:,.2f}"
                )

            counter = CounterOffer(
                id=new_id(),
                calculation_id=calculation_id,
                round_number=round_number,
                responds_to=offer_id,
                amount=amount,
                reduction=reduction,
                rationale=rationale,
                created_at=utcnow(),
                clamped_to_floor=clamped,
            )
            self._append(calculation_id, log, EventKind.COUNTEROFFER, round_number, counteroffer=counter)
            self._append(
                calculation_id, log, EventKind.STATUS, round_number,
                status_change=StatusChange(offer_id, OfferStatus.COUNTERED),
            )

        logger.info(f"Generated counteroffer ${amount:,.2f} for {calculation_id} (round {round_number})")
        return replace(counter)

    def update_offer_status(
        self,
        calculation_id: str,
        offer_id: str,
        status: Union[OfferStatus, str],
        expected_version: Optional[int] = None,
    ) -> Union[SettlementOffer, CounterOffer]:
        """
        Move an offer or counteroffer out of PENDING.

        Raises:
            InvalidInputError: target status is PENDING or the record is already terminal
            OfferNotFoundError: unknown offer/counteroffer id
            StaleNegotiationRoundError: version mismatch or closed negotiation
        """
        status = parse_enum(OfferStatus, status, 'offer status')
        if status is OfferStatus.PENDING:
            raise InvalidInputError("Cannot transition an offer back to pending", {'field': 'status'})

        with self._lock_for(calculation_id):
            log = self._log(calculation_id)
            state = self._project(calculation_id, log)
            self._check_open(state, expected_version)

            record = state.find_offer(offer_id) or state.find_counteroffer(offer_id)
            if record is None:
                raise OfferNotFoundError(
                    f"Offer {offer_id} not found for calculation {calculation_id}",
                    {'calculation_id': calculation_id, 'offer_id': offer_id},
                )
            if record.status.is_terminal:
                raise InvalidInputError(
                    f"Offer {offer_id} is already {record.status.value}",
                    {'offer_id': offer_id, 'status': record.status.value},
                )

            self._append(
                calculation_id, log, EventKind.STATUS, record.round_number,
                status_change=StatusChange(offer_id, status),
            )

        logger.info(f"Offer {offer_id} for {calculation_id}: {record.status.value} -> {status.value}")
        return replace(record, status=status)

    def expire_offers(self, calculation_id: str, as_of: Optional[datetime] = None) -> List[SettlementOffer]:
        """Expire pending offers whose deadline has passed. Returns the expired offers."""
        as_of = as_of or utcnow()
        if as_of.tzinfo is None:
            as_of = as_of.replace(tzinfo=timezone.utc)
        expired = []

        with self._lock_for(calculation_id):
            log = self._log(calculation_id)
            state = self._project(calculation_id, log)
            if state.closed:
                return expired

            for offer in state.offers:
                if offer.status is OfferStatus.PENDING and offer.expires_at is not None \
                        and offer.expires_at <= as_of:
                    self._append(
                        calculation_id, log, EventKind.STATUS, offer.round_number,
                        status_change=StatusChange(offer.id, OfferStatus.EXPIRED, changed_at=as_of),
                    )
                    expired.append(replace(offer, status=OfferStatus.EXPIRED))

        if expired:
            logger.info(f"Expired {len(expired)} offer(s) for {calculation_id}")
        return expired
