"""
Comparable-verdict retrieval and similarity scoring.

The precedent index is a capability the engine depends on by contract:
``search(case_type, injury, jurisdiction, target_amount)`` returns candidate
verdicts. ``StaticPrecedentIndex`` serves a local reference set (offline use
and tests); ``CourtListenerPrecedentIndex`` queries the CourtListener REST
API. ``ComparableMatcher`` owns scoring and ordering only.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

import numpy as np
import requests

from .config import VERDICTS_PATH, PrecedentConfig
from .errors import PrecedentLookupError
from .models import CaseType, ComparableVerdict, InjuryDetails, InjuryType, from_json_dict

logger = logging.getLogger(__name__)


class PrecedentIndex(ABC):
    """Source of candidate verdicts for a case."""

    @abstractmethod
    def search(
        self,
        case_type: CaseType,
        injury: Optional[InjuryDetails],
        jurisdiction: str,
        target_amount: float,
    ) -> List[ComparableVerdict]:
        """
        Retrieve candidate verdicts.

        Args:
            case_type: Case type being valued
            injury: Injury descriptor, if any
            jurisdiction: Jurisdiction code
            target_amount: Uncapped damages figure for the case

        Returns:
            Candidate verdicts (unscored)

        Raises:
            PrecedentLookupError: the index could not be queried
        """
        pass


class StaticPrecedentIndex(PrecedentIndex):
    """Deterministic in-memory index over a fixed verdict list."""

    def __init__(self, verdicts: Sequence[ComparableVerdict]):
        self._verdicts = tuple(verdicts)

    @classmethod
    def from_file(cls, path: Path = VERDICTS_PATH) -> 'StaticPrecedentIndex':
        with open(path, 'r') as f:
            data = json.load(f)
        verdicts = [from_json_dict(ComparableVerdict, v) for v in data.get('verdicts', [])]
        logger.info(f"Loaded {len(verdicts)} reference verdicts from {path}")
        return cls(verdicts)

    def search(self, case_type, injury, jurisdiction, target_amount):
        return sorted(self._verdicts, key=lambda v: v.year, reverse=True)

    def __len__(self) -> int:
        return len(self._verdicts)


# Amount patterns, largest unit first
AMOUNT_PATTERNS = [
    (r'\$\s*([\d,]+(?:\.\d+)?)\s*(?:billion|B)\b', 1_000_000_000),
    (r'\$\s*([\d,]+(?:\.\d+)?)\s*(?:million|M)\b', 1_000_000),
    (r'\$\s*([\d,]+(?:\.\d+)?)\s*(?:thousand|K)\b', 1_000),
    (r'\$\s*([\d,]+(?:\.\d+)?)', 1),
]


def extract_amount(text: str) -> Optional[float]:
    """Extract the first dollar amount from free text."""
    if not text:
        return None
    for pattern, scale in AMOUNT_PATTERNS:
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            try:
                return float(match.group(1).replace(',', '')) * scale
            except ValueError:
                continue
    return None


class CourtListenerPrecedentIndex(PrecedentIndex):
    """Precedent index backed by CourtListener opinion search."""

    BASE_URL = "https://www.courtlistener.com/api/rest/v4"

    # Jurisdiction code -> CourtListener court ids
    STATE_COURTS = {
        'PA': 'pa pasuperct pacommwct',
        'NY': 'ny nyappdiv',
        'CA': 'cal calctapp',
        'TX': 'tex texapp',
        'FL': 'fla fladistctapp',
        'IL': 'ill illappct',
        'AL': 'ala alactapp',
        'CO': 'colo coloctapp',
    }

    def __init__(self, token: str = "", timeout: int = 30, max_results: int = 20):
        self.token = token
        self.timeout = timeout
        self.max_results = max_results
        self.session = requests.Session()
        if self.token:
            self.session.headers["Authorization"] = f"Token {self.token}"
        self.session.headers["User-Agent"] = "SettlementEngine/2.1"

    def _get(self, endpoint: str, params: dict) -> dict:
        """Make GET request to API"""
        resp = self.session.get(f"{self.BASE_URL}/{endpoint}", params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def _query(self, case_type: CaseType, injury: Optional[InjuryDetails]) -> str:
        terms = [f'"{case_type.label.lower()}"', '(verdict OR awarded OR jury)']
        if injury is not None and injury.injury_type is not None:
            terms.append(f'"{injury.injury_type.value.replace("_", " ")}"')
        return ' AND '.join(terms)

    def search(self, case_type, injury, jurisdiction, target_amount):
        params = {
            "type": "o",
            "q": self._query(case_type, injury),
            "order_by": "score desc",
            "page_size": self.max_results,
        }
        court = self.STATE_COURTS.get((jurisdiction or '').upper())
        if court:
            params["court"] = court

        try:
            data = self._get("search/", params)
        except (requests.RequestException, ValueError) as e:
            raise PrecedentLookupError(f"CourtListener search failed: {e}") from e

        verdicts = []
        for result in data.get("results", [])[:self.max_results]:
            verdict = self._to_verdict(result, case_type, injury, jurisdiction)
            if verdict is not None:
                verdicts.append(verdict)
        logger.debug(f"CourtListener returned {len(verdicts)} usable verdicts for {case_type.value}")
        return verdicts

    def _to_verdict(
        self,
        result: dict,
        case_type: CaseType,
        injury: Optional[InjuryDetails],
        jurisdiction: str,
    ) -> Optional[ComparableVerdict]:
        snippets = [result.get("snippet") or ""]
        for opinion in result.get("opinions") or []:
            snippets.append(opinion.get("snippet") or "")
        amount = extract_amount(" ".join(snippets))
        if not amount:
            return None

        filed = result.get("dateFiled") or ""
        year = int(filed[:4]) if filed[:4].isdigit() else 0
        citations = result.get("citation") or []
        return ComparableVerdict(
            case_name=result.get("caseName") or "Unknown",
            jurisdiction=(jurisdiction or '').upper(),
            year=year,
            case_type=case_type.value,
            injury_type=injury.injury_type.value if injury and injury.injury_type else "",
            verdict_amount=amount,
            citation=citations[0] if citations else None,
        )


def build_precedent_index(config: PrecedentConfig) -> PrecedentIndex:
    """Create the precedent index named by configuration."""
    if config.provider == "courtlistener":
        return CourtListenerPrecedentIndex(token=config.courtlistener_token, timeout=config.timeout)
    return StaticPrecedentIndex.from_file(config.verdicts_path)


# =========================================================================
# SIMILARITY SCORING
# =========================================================================

class ComparableMatcher:
    """Scores candidate verdicts against a case and keeps the top N."""

    # Component weights: case type, jurisdiction, injury type
    WEIGHTS = np.array([0.5, 0.2, 0.3])

    CASE_TYPE_FAMILIES = [
        {CaseType.PERSONAL_INJURY, CaseType.PREMISES_LIABILITY, CaseType.PRODUCT_LIABILITY,
         CaseType.WRONGFUL_DEATH, CaseType.TOXIC_TORT},
        {CaseType.MEDICAL_MALPRACTICE, CaseType.PROFESSIONAL_MALPRACTICE},
        {CaseType.CONTRACT_BREACH, CaseType.COMMERCIAL_DISPUTE, CaseType.INSURANCE_BAD_FAITH},
        {CaseType.EMPLOYMENT, CaseType.CIVIL_RIGHTS},
    ]

    INJURY_FAMILIES = [
        {InjuryType.TRAUMATIC_BRAIN_INJURY, InjuryType.SPINAL_CORD_INJURY},
        {InjuryType.AMPUTATION, InjuryType.BURNS},
        {InjuryType.FRACTURES, InjuryType.SOFT_TISSUE, InjuryType.WHIPLASH},
        {InjuryType.ORGAN_DAMAGE},
        {InjuryType.PSYCHOLOGICAL},
    ]

    def __init__(self, index: PrecedentIndex, top_n: int = 5):
        self.index = index
        self.top_n = top_n

    @staticmethod
    def _same_family(a, b, families: List[Set]) -> bool:
        return any(a in family and b in family for family in families)

    @staticmethod
    def _parse(enum_cls, value):
        try:
            return enum_cls((value or '').strip().lower())
        except ValueError:
            return None

    def _case_type_score(self, candidate: ComparableVerdict, case_type: CaseType) -> float:
        other = self._parse(CaseType, candidate.case_type)
        if other is None:
            return 0.0
        if other is case_type:
            return 1.0
        return 0.5 if self._same_family(other, case_type, self.CASE_TYPE_FAMILIES) else 0.0

    def _injury_score(self, candidate: ComparableVerdict, injury: Optional[InjuryDetails]) -> float:
        ours = injury.injury_type if injury is not None else None
        theirs = self._parse(InjuryType, candidate.injury_type)
        if ours is None and theirs is None:
            return 0.5
        if ours is None or theirs is None:
            return 0.0
        if ours is theirs:
            return 1.0
        if InjuryType.MULTIPLE in (ours, theirs):
            return 0.5
        return 0.5 if self._same_family(ours, theirs, self.INJURY_FAMILIES) else 0.0

    def score(
        self,
        candidate: ComparableVerdict,
        case_type: CaseType,
        injury: Optional[InjuryDetails],
        jurisdiction_aliases: Set[str],
    ) -> float:
        """Similarity in [0, 1]."""
        components = np.array([
            self._case_type_score(candidate, case_type),
            1.0 if candidate.jurisdiction.strip().lower() in jurisdiction_aliases else 0.0,
            self._injury_score(candidate, injury),
        ])
        return float(np.clip(components @ self.WEIGHTS, 0.0, 1.0))

    def find(
        self,
        case_type: CaseType,
        injury: Optional[InjuryDetails],
        jurisdiction: str,
        target_amount: float,
        jurisdiction_name: str = "",
    ) -> List[ComparableVerdict]:
        """
        Retrieve candidates and return the top N by similarity.

        Raises:
            PrecedentLookupError: propagated from the index
        """
        candidates = self.index.search(case_type, injury, jurisdiction, target_amount)
        aliases = {a.strip().lower() for a in (jurisdiction, jurisdiction_name) if a}

        scored = [
            replace(c, similarity_score=self.score(c, case_type, injury, aliases))
            for c in candidates
        ]
        scored.sort(key=lambda c: (c.similarity_score, c.year), reverse=True)
        return scored[:self.top_n]


def verdict_statistics(verdicts: Sequence[ComparableVerdict]) -> Dict[str, float]:
    """Summary statistics of verdict amounts (empty dict when no verdicts)."""
    if not verdicts:
        return {}
    amounts = np.array([v.verdict_amount for v in verdicts], dtype=float)
    return {
        'count': int(len(amounts)),
        'mean': float(np.mean(amounts)),
        'median': float(np.median(amounts)),
        'p25': float(np.percentile(amounts, 25)),
        'p75': float(np.percentile(amounts, 75)),
        'min': float(amounts.min()),
        'max': float(amounts.max()),
    }
