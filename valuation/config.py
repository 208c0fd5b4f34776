"""
Engine Configuration.

Centralizes the tunable constants of the valuation engine (discounting,
range factors, trial-cost fractions, negotiation pacing), file paths for
reference data, and precedent-index settings.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional
import json
import os

from dotenv import load_dotenv


# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(__file__).parent / "data"
DB_PATH = PROJECT_ROOT / "db" / "settlement_engine.db"
JURISDICTIONS_PATH = DATA_DIR / "jurisdictions.json"
VERDICTS_PATH = DATA_DIR / "comparable_verdicts.json"

ENGINE_VERSION = "2.1.0"


@dataclass
class DamagesConfig:
    """Economic aggregation settings."""
    # Periods used to discount future items that carry no horizon
    default_horizon: int = 30
    default_discount_rate: float = 0.03


@dataclass
class RangeConfig:
    """Settlement range factors (fractions of the liability-adjusted total)."""
    low_factor: float = 0.55
    mid_factor: float = 0.75
    high_factor: float = 0.90

    # Confidence when fewer than `min_comparables` comparables are available
    default_confidence: float = 0.6
    min_comparables: int = 3


@dataclass
class RiskConfig:
    """Trial risk settings."""
    trial_cost_fractions: Dict[str, float] = field(default_factory=lambda: {
        "medical_malpractice": 0.25,
        "personal_injury": 0.15,
    })
    default_trial_cost_fraction: float = 0.10
    expected_trial_duration_months: int = 18

    # Contingency fee assumed for net-to-client estimates
    default_contingency_fee: float = 0.3333


@dataclass
class NegotiationConfig:
    """Negotiation pacing."""
    demand_multiplier: float = 1.2
    floor_multiplier: float = 0.9
    counter_step: float = 0.15
    offer_expiration_days: int = 30
    time_value_discount: float = 0.05


@dataclass
class PrecedentConfig:
    """Comparable-verdict retrieval."""
    provider: str = "static"  # or "courtlistener"
    top_n: int = 5
    courtlistener_token: str = ""
    timeout: int = 30
    verdicts_path: Path = VERDICTS_PATH


@dataclass
class EngineConfig:
    """Master configuration for the valuation engine."""
    damages: DamagesConfig = field(default_factory=DamagesConfig)
    range: RangeConfig = field(default_factory=RangeConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    negotiation: NegotiationConfig = field(default_factory=NegotiationConfig)
    precedents: PrecedentConfig = field(default_factory=PrecedentConfig)

    # Jurisdiction table
    jurisdictions_path: Path = JURISDICTIONS_PATH
    default_jurisdiction: str = "PA"

    # Persistence
    db_path: Path = DB_PATH
    engine_version: str = ENGINE_VERSION

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        precedents = dict(self.precedents.__dict__)
        precedents.pop("courtlistener_token", None)
        return {
            "engine_version": self.engine_version,
            "default_jurisdiction": self.default_jurisdiction,
            "jurisdictions_path": str(self.jurisdictions_path),
            "db_path": str(self.db_path),
            "damages": self.damages.__dict__,
            "range": self.range.__dict__,
            "risk": self.risk.__dict__,
            "negotiation": self.negotiation.__dict__,
            "precedents": precedents,
        }

    def save(self, path: Path):
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

    @classmethod
    def load(cls, path: Path) -> 'EngineConfig':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)

        config = cls()
        config.default_jurisdiction = data.get("default_jurisdiction", config.default_jurisdiction)
        if "jurisdictions_path" in data:
            config.jurisdictions_path = Path(data["jurisdictions_path"])
        if "db_path" in data:
            config.db_path = Path(data["db_path"])
        # Update nested configs from data
        for section in ("damages", "range", "risk", "negotiation", "precedents"):
            target = getattr(config, section)
            for key, value in data.get(section, {}).items():
                if hasattr(target, key):
                    if key.endswith("_path"):
                        value = Path(value)
                    setattr(target, key, value)
        return config

    @classmethod
    def from_env(cls, base: Optional['EngineConfig'] = None) -> 'EngineConfig':
        """Apply environment overrides (a local .env file is read if present)."""
        load_dotenv()
        config = base or cls()

        db_path = os.getenv("SETTLEMENT_DB_PATH")
        if db_path:
            config.db_path = Path(db_path)
        jurisdiction = os.getenv("SETTLEMENT_DEFAULT_JURISDICTION")
        if jurisdiction:
            config.default_jurisdiction = jurisdiction.strip().upper()
        provider = os.getenv("SETTLEMENT_PRECEDENT_PROVIDER")
        if provider:
            config.precedents.provider = provider.strip().lower()
        config.precedents.courtlistener_token = (
            os.getenv("COURTLISTENER_TOKEN") or config.precedents.courtlistener_token
        ).strip()
        return config


# Default configuration instance
default_config = EngineConfig()
