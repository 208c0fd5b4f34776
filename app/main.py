from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import date, datetime
import logging

from db.database import Database
from valuation.calculator import SettlementCalculator
from valuation.config import EngineConfig
from valuation.damages import DamageAggregator
from valuation.errors import SettlementError
from valuation.models import (
    CaseProfile, CaseType, DamageItem, InjuryDetails, LiabilityFactor,
    parse_enum, to_json_dict,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Settlement Valuation & Negotiation Engine")

# Error kind -> HTTP status
STATUS_BY_KIND = {
    "invalid_input": 422,
    "not_found": 404,
    "stale_negotiation_round": 409,
    "precedent_lookup_failed": 502,
    "configuration_error": 500,
}

_calculator: Optional[SettlementCalculator] = None


def get_calculator() -> SettlementCalculator:
    """Lazily build the process-wide calculator from environment config."""
    global _calculator
    if _calculator is None:
        config = EngineConfig.from_env()
        _calculator = SettlementCalculator(config, db=Database(config.db_path))
        logger.info(f"Settlement engine initialized (db={config.db_path})")
    return _calculator


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=True)
    return JSONResponse(status_code=status, content=exc.to_dict())


# === Request bodies ===

class InjuryBody(BaseModel):
    severity: str
    injury_type: Optional[str] = None
    permanent: bool = False
    disfigurement: bool = False
    disability_percentage: Optional[float] = None
    treatment_ongoing: bool = False


class LiabilityFactorBody(BaseModel):
    factor: str
    favors: str = "plaintiff"
    weight: float = 0.5


class DamageItemBody(BaseModel):
    category: str
    amount: float
    timing: str = "past"
    horizon: Optional[int] = None
    description: str = ""


class CalculationBody(BaseModel):
    case_type: str
    jurisdiction: str
    defendant_liability: float = 100.0
    plaintiff_liability: Optional[float] = None
    injury: Optional[InjuryBody] = None
    damages: List[DamageItemBody] = []
    damage_buckets: Dict[str, float] = {}
    discount_rate: Optional[float] = None
    punitive_claim: Optional[float] = None
    supersedes: Optional[str] = None
    matter_id: str = ""
    plaintiff_name: str = ""
    defendant_name: str = ""
    incident_date: Optional[date] = None
    liability_factors: List[LiabilityFactorBody] = []
    calculated_by: str = ""


class OfferBody(BaseModel):
    amount: float
    origin: str = "defendant"
    round_number: Optional[int] = None
    expected_version: Optional[int] = None
    terms: List[str] = []
    expires_at: Optional[datetime] = None


class CounterofferBody(BaseModel):
    offer_id: str
    round_number: Optional[int] = None
    expected_version: Optional[int] = None


class OfferStatusBody(BaseModel):
    status: str
    expected_version: Optional[int] = None


class DamageCapsBody(BaseModel):
    economic: float
    non_economic: float
    punitive: Optional[float] = None
    jurisdiction: str
    case_type: str


def _profile(body: CalculationBody) -> CaseProfile:
    injury = None
    if body.injury is not None:
        injury = InjuryDetails(**body.injury.model_dump())
    return CaseProfile(
        case_type=body.case_type,
        jurisdiction=body.jurisdiction,
        defendant_liability=body.defendant_liability,
        plaintiff_liability=body.plaintiff_liability,
        injury=injury,
        matter_id=body.matter_id,
        plaintiff_name=body.plaintiff_name,
        defendant_name=body.defendant_name,
        incident_date=body.incident_date,
        liability_factors=[LiabilityFactor(**f.model_dump()) for f in body.liability_factors],
    )


def _damages(body: CalculationBody) -> List[DamageItem]:
    items = [DamageItem(**d.model_dump()) for d in body.damages]
    if body.damage_buckets:
        items.extend(DamageAggregator.items_from_buckets(body.damage_buckets))
    return items


# === Endpoints ===

@app.get("/v1/health")
def health():
    return {"ok": True}


@app.get("/v1/jurisdictions")
def list_jurisdictions(calc: SettlementCalculator = Depends(get_calculator)):
    registry = calc.registry
    return {
        "default": registry.default_code,
        "jurisdictions": [
            {"code": code, "name": registry.get(code).name} for code in registry.codes()
        ],
    }


@app.get("/v1/jurisdictions/{code}")
def get_jurisdiction(code: str, calc: SettlementCalculator = Depends(get_calculator)):
    resolved = calc.registry.resolve(code)
    return {
        "requested_code": code,
        "fallback": resolved.fallback,
        "rules": to_json_dict(resolved.rules),
    }


@app.post("/v1/calculations", status_code=201)
def create_calculation(body: CalculationBody, calc: SettlementCalculator = Depends(get_calculator)):
    result = calc.calculate(
        _profile(body),
        _damages(body),
        punitive_claim=body.punitive_claim,
        supersedes=body.supersedes,
        calculated_by=body.calculated_by,
        discount_rate=body.discount_rate,
    )
    return result.to_dict()


@app.get("/v1/calculations/{calculation_id}")
def get_calculation(calculation_id: str, calc: SettlementCalculator = Depends(get_calculator)):
    return calc.get_calculation(calculation_id).to_dict()


@app.post("/v1/calculations/{calculation_id}/offers", status_code=201)
def record_offer(calculation_id: str, body: OfferBody, calc: SettlementCalculator = Depends(get_calculator)):
    offer = calc.record_offer(
        calculation_id,
        body.amount,
        body.origin,
        round_number=body.round_number,
        expected_version=body.expected_version,
        terms=body.terms,
        expires_at=body.expires_at,
    )
    return to_json_dict(offer)


@app.get("/v1/calculations/{calculation_id}/negotiation")
def get_negotiation(calculation_id: str, calc: SettlementCalculator = Depends(get_calculator)):
    state = calc.negotiation_state(calculation_id)
    result = to_json_dict(state)
    result["current_round"] = state.current_round
    result["closed"] = state.closed
    return result


@app.post("/v1/calculations/{calculation_id}/counteroffers", status_code=201)
def generate_counteroffer(
    calculation_id: str,
    body: CounterofferBody,
    calc: SettlementCalculator = Depends(get_calculator),
):
    counter = calc.generate_counteroffer(
        calculation_id, body.offer_id, body.round_number, body.expected_version,
    )
    return to_json_dict(counter)


@app.patch("/v1/calculations/{calculation_id}/offers/{offer_id}")
def update_offer_status(
    calculation_id: str,
    offer_id: str,
    body: OfferStatusBody,
    calc: SettlementCalculator = Depends(get_calculator),
):
    record = calc.update_offer_status(calculation_id, offer_id, body.status, body.expected_version)
    return to_json_dict(record)


@app.post("/v1/damage-caps")
def damage_caps(body: DamageCapsBody, calc: SettlementCalculator = Depends(get_calculator)):
    resolved = calc.registry.resolve(body.jurisdiction)
    case_type = parse_enum(CaseType, body.case_type, 'case type')
    total, adjustments = calc.apply_damage_caps(
        body.economic, body.non_economic, body.punitive, resolved.rules, case_type,
    )
    return {
        "jurisdiction": resolved.rules.code,
        "jurisdiction_fallback": resolved.fallback,
        "adjusted_total": total,
        "cap_adjustments": to_json_dict(adjustments) if adjustments is not None else None,
    }
