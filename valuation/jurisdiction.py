"""
Jurisdiction rules and statutory damage caps.

The jurisdiction table is loaded once from JSON reference data and shared
read-only between requests. Unknown codes resolve to the default
jurisdiction and are flagged rather than rejected.
"""
import json
import logging
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from pydantic import ValidationError

from .config import JURISDICTIONS_PATH
from .errors import ConfigurationError, InvalidInputError
from .models import (
    CapAdjustment, CapAdjustments, CaseType, JurisdictionRules, PunitiveCap,
    from_json_dict, require_non_negative,
)

logger = logging.getLogger(__name__)

# Used when a jurisdiction sets no contingency ceiling
DEFAULT_CONTINGENCY_CEILING = 0.40


@dataclass(frozen=True)
class ResolvedJurisdiction:
    rules: JurisdictionRules
    requested_code: str
    fallback: bool


class JurisdictionRegistry:
    """Read-only keyed lookup of jurisdiction rules."""

    def __init__(self, rules: Mapping[str, JurisdictionRules], default_code: str):
        normalized = {code.upper(): r for code, r in rules.items()}
        default_code = default_code.upper()
        if default_code not in normalized:
            raise ConfigurationError(
                f"Default jurisdiction {default_code!r} missing from rules table",
                {'default': default_code, 'codes': sorted(normalized)},
            )
        self._rules = MappingProxyType(normalized)
        self.default_code = default_code

    @classmethod
    def from_file(cls, path: Path = JURISDICTIONS_PATH, default_code: Optional[str] = None) -> 'JurisdictionRegistry':
        """Build the registry from a JSON rules file."""
        with open(path, 'r') as f:
            data = json.load(f)

        rules = {}
        for entry in data.get('jurisdictions', []):
            try:
                record = from_json_dict(JurisdictionRules, entry)
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid jurisdiction entry {entry.get('code')!r} in {path}: {e}",
                    {'code': entry.get('code')},
                ) from e
            rules[record.code.upper()] = record

        registry = cls(rules, default_code or data.get('default', 'PA'))
        logger.info(f"Loaded {len(rules)} jurisdictions from {path} (default={registry.default_code})")
        return registry

    def codes(self) -> List[str]:
        return sorted(self._rules)

    def get(self, code: str) -> Optional[JurisdictionRules]:
        return self._rules.get((code or '').strip().upper())

    def resolve(self, code: str) -> ResolvedJurisdiction:
        """Look up rules for ``code``, falling back to the default jurisdiction."""
        rules = self.get(code)
        if rules is not None:
            return ResolvedJurisdiction(rules=rules, requested_code=code, fallback=False)

        logger.warning(f"Unknown jurisdiction {code!r}, falling back to {self.default_code}")
        return ResolvedJurisdiction(
            rules=self._rules[self.default_code],
            requested_code=code,
            fallback=True,
        )

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, code: str) -> bool:
        return self.get(code) is not None


@lru_cache(maxsize=8)
def load_registry(path: Path = JURISDICTIONS_PATH, default_code: Optional[str] = None) -> JurisdictionRegistry:
    """Process-wide registry, loaded once per (path, default) pair."""
    return JurisdictionRegistry.from_file(Path(path), default_code)


# =========================================================================
# DAMAGE CAPS
# =========================================================================

def non_economic_cap(rules: JurisdictionRules, case_type: CaseType) -> Optional[Tuple[str, float]]:
    """Lowest non-economic cap applicable to ``case_type``, with its label."""
    caps = rules.damage_caps
    applicable = []
    if case_type is CaseType.MEDICAL_MALPRACTICE and caps.medical_malpractice_non_economic is not None:
        applicable.append(("Medical malpractice non-economic", caps.medical_malpractice_non_economic))
    if case_type is CaseType.WRONGFUL_DEATH and caps.wrongful_death_non_economic is not None:
        applicable.append(("Wrongful death non-economic", caps.wrongful_death_non_economic))
    if caps.general_non_economic is not None:
        applicable.append(("General non-economic", caps.general_non_economic))
    if not applicable:
        return None
    return min(applicable, key=lambda c: c[1])


def punitive_cap_limit(rule: PunitiveCap, compensatory: float) -> Optional[float]:
    """
    Derive the punitive ceiling from a cap rule.

    A rule with both a multiplier and an absolute figure uses the larger of
    the two when ``greater_of`` is set, the smaller otherwise. A rule with
    neither means no cap.
    """
    by_multiplier = None
    if rule.multiplier_of_compensatory is not None:
        by_multiplier = compensatory * rule.multiplier_of_compensatory

    if by_multiplier is not None and rule.absolute_cap is not None:
        if rule.greater_of:
            return max(by_multiplier, rule.absolute_cap)
        return min(by_multiplier, rule.absolute_cap)
    if by_multiplier is not None:
        return by_multiplier
    return rule.absolute_cap


def apply_damage_caps(
    economic: float,
    non_economic: float,
    punitive: Optional[float],
    rules: JurisdictionRules,
    case_type: CaseType,
) -> Tuple[float, Optional[CapAdjustments]]:
    """
    Apply statutory caps to non-economic and punitive damages.

    Args:
        economic: Total economic damages (never capped)
        non_economic: Total non-economic damages
        punitive: Punitive amount, or None when punitive damages are not in play
        rules: Jurisdiction rules
        case_type: Case type (selects case-specific non-economic caps)

    Returns:
        (adjusted total, CapAdjustments or None when nothing was clipped)
    """
    economic = require_non_negative(economic, 'economic')
    non_economic = require_non_negative(non_economic, 'non_economic')
    if punitive is not None:
        punitive = require_non_negative(punitive, 'punitive')

    adjustments: List[CapAdjustment] = []

    capped_non_economic = non_economic
    ne_cap = non_economic_cap(rules, case_type)
    if ne_cap is not None:
        label, cap = ne_cap
        if non_economic > cap:
            capped_non_economic = cap
            adjustments.append(CapAdjustment(
                category='non_economic',
                original=non_economic,
                capped=cap,
                reason=f"{label} cap of ${cap:,.0f} applied ({rules.name}).",
            ))

    capped_punitive = punitive
    if punitive is not None:
        if not rules.punitive_allowed:
            if punitive > 0:
                capped_punitive = 0.0
                adjustments.append(CapAdjustment(
                    category='punitive',
                    original=punitive,
                    capped=0.0,
                    reason=f"Punitive damages not recoverable in {rules.name}.",
                ))
        elif rules.punitive_cap is not None:
            compensatory = economic + capped_non_economic
            limit = punitive_cap_limit(rules.punitive_cap, compensatory)
            if limit is None:
                logger.debug(f"Punitive cap rule for {rules.code} sets no limit; treated as uncapped")
            elif punitive > limit:
                capped_punitive = limit
                adjustments.append(CapAdjustment(
                    category='punitive',
                    original=punitive,
                    capped=limit,
                    reason=f"Punitive damages cap of ${limit:,.0f} applied ({rules.name}).",
                ))

    total = economic + capped_non_economic + (capped_punitive or 0.0)
    if not adjustments:
        return total, None

    for adj in adjustments:
        logger.info(f"Cap applied: {adj.category} ${adj.original:,.2f} -> ${adj.capped:,.2f}")
    return total, CapAdjustments(adjustments=adjustments)


# =========================================================================
# FEES, INTEREST, LIMITATIONS
# =========================================================================

def calculate_attorney_fees(
    settlement_amount: float,
    contingency_percentage: float,
    costs_advanced: float,
    rules: JurisdictionRules,
) -> Tuple[float, float, float]:
    """
    Contingency fee and net recovery.

    Returns:
        (attorney fees, costs advanced, net to client)
    """
    require_non_negative(settlement_amount, 'settlement_amount')
    require_non_negative(costs_advanced, 'costs_advanced')
    if not 0 <= contingency_percentage <= 1:
        raise InvalidInputError(
            f"contingency_percentage must be a fraction in [0, 1], got {contingency_percentage}",
            {'field': 'contingency_percentage'},
        )

    ceiling = rules.contingency_fee_max
    if ceiling is None:
        ceiling = DEFAULT_CONTINGENCY_CEILING
    actual = min(contingency_percentage, ceiling)

    fees = settlement_amount * actual
    net_to_client = settlement_amount - fees - costs_advanced
    return fees, costs_advanced, net_to_client


def prejudgment_interest(
    amount: float,
    rules: JurisdictionRules,
    incident_date: Optional[date],
    as_of: Optional[date] = None,
) -> float:
    """Simple prejudgment interest from the incident date to ``as_of``."""
    if not rules.prejudgment_interest or not rules.prejudgment_interest_rate or incident_date is None:
        return 0.0
    as_of = as_of or date.today()
    years = (as_of - incident_date).days / 365.25
    if years <= 0:
        return 0.0
    return amount * rules.prejudgment_interest_rate * years


def _add_years(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return d.replace(year=d.year + years, day=28)


def limitations_deadline(
    rules: JurisdictionRules,
    case_type: CaseType,
    incident_date: Optional[date],
) -> Optional[date]:
    """Filing deadline under the jurisdiction's statute of limitations."""
    if incident_date is None:
        return None
    years = rules.statute_of_limitations.get(case_type.value)
    if years is None:
        return None
    return _add_years(incident_date, years)
