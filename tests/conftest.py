"""Shared fixtures for the settlement engine test suite."""
import pytest

from db.database import Database
from valuation.calculator import SettlementCalculator
from valuation.comparables import PrecedentIndex, StaticPrecedentIndex
from valuation.config import EngineConfig
from valuation.errors import PrecedentLookupError
from valuation.jurisdiction import JurisdictionRegistry
from valuation.models import CaseProfile, CaseType, DamageItem, InjuryDetails, InjurySeverity


class FailingPrecedentIndex(PrecedentIndex):
    """Precedent index whose every lookup fails."""

    def search(self, case_type, injury, jurisdiction, target_amount):
        raise PrecedentLookupError("precedent service unreachable")


@pytest.fixture(scope="session")
def registry():
    return JurisdictionRegistry.from_file()


@pytest.fixture(scope="session")
def static_index():
    return StaticPrecedentIndex.from_file()


@pytest.fixture
def config(tmp_path):
    config = EngineConfig()
    config.db_path = tmp_path / "engine.db"
    return config


@pytest.fixture
def calculator(config, registry, static_index):
    return SettlementCalculator(config, registry=registry, precedent_index=static_index)


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "settlements.db")


@pytest.fixture
def persistent_calculator(config, registry, static_index, db):
    return SettlementCalculator(config, registry=registry, precedent_index=static_index, db=db)


@pytest.fixture
def severe_injury():
    return InjuryDetails(severity=InjurySeverity.SEVERE)


@pytest.fixture
def pi_profile(severe_injury):
    return CaseProfile(
        case_type=CaseType.PERSONAL_INJURY,
        jurisdiction="PA",
        defendant_liability=100.0,
        injury=severe_injury,
        matter_id="M-1001",
        plaintiff_name="Jane Doe",
        defendant_name="Acme Trucking",
    )


@pytest.fixture
def pi_damages():
    # $100,000 of past economic loss
    return [
        DamageItem(category="medical", amount=60000),
        DamageItem(category="lost_wages", amount=40000),
    ]


@pytest.fixture
def calculation(calculator, pi_profile, pi_damages):
    return calculator.calculate(pi_profile, pi_damages)
