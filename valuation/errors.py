"""
Error types for the settlement valuation engine.

Every failure carries a machine-readable ``kind`` plus a human message so
the HTTP layer and CLIs can report it without inspecting exception classes.
"""
from typing import Any, Dict, Optional


class SettlementError(Exception):
    """Base class for all engine errors."""

    kind = "settlement_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'message': self.message,
            'details': self.details,
        }

    def __str__(self) -> str:
        return self.message


class InvalidInputError(SettlementError, ValueError):
    """Input rejected before any computation or persistence."""
    kind = "invalid_input"


class StaleNegotiationRoundError(SettlementError):
    """Negotiation state changed underneath the caller; re-fetch and retry."""
    kind = "stale_negotiation_round"


class CalculationNotFoundError(SettlementError, KeyError):
    kind = "not_found"


class OfferNotFoundError(SettlementError, KeyError):
    kind = "not_found"


class PrecedentLookupError(SettlementError):
    """Precedent index could not be queried (network, bad payload)."""
    kind = "precedent_lookup_failed"


class ConfigurationError(SettlementError):
    kind = "configuration_error"
