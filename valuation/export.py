"""
Tabular exports of negotiation history and comparable verdicts.
"""
import logging
from pathlib import Path
from typing import List, Sequence

import pandas as pd

from .models import ComparableVerdict, EventKind, NegotiationEvent, SettlementCalculation

logger = logging.getLogger(__name__)

TIMELINE_COLUMNS = [
    'sequence', 'recorded_at', 'round_number', 'kind', 'record_id',
    'origin', 'amount', 'status', 'recommendation', 'percentage_of_demand',
]

COMPARABLE_COLUMNS = [
    'case_name', 'jurisdiction', 'year', 'case_type', 'injury_type',
    'verdict_amount', 'economic_damages', 'non_economic_damages',
    'similarity_score', 'citation',
]


def negotiation_timeline(events: Sequence[NegotiationEvent]) -> pd.DataFrame:
    """One row per negotiation event, in log order."""
    rows: List[dict] = []
    for event in events:
        row = {
            'sequence': event.sequence,
            'recorded_at': event.recorded_at,
            'round_number': event.round_number,
            'kind': event.kind.value,
        }
        if event.kind is EventKind.OFFER:
            offer = event.offer
            row.update({
                'record_id': offer.id,
                'origin': offer.origin.value,
                'amount': offer.amount,
                'status': offer.status.value,
            })
            if offer.analysis is not None:
                row['recommendation'] = offer.analysis.recommendation.value
                row['percentage_of_demand'] = round(offer.analysis.percentage_of_demand, 2)
        elif event.kind is EventKind.COUNTEROFFER:
            counter = event.counteroffer
            row.update({
                'record_id': counter.id,
                'origin': 'counteroffer',
                'amount': counter.amount,
                'status': counter.status.value,
            })
        else:
            row.update({
                'record_id': event.status_change.target_id,
                'status': event.status_change.status.value,
            })
        rows.append(row)

    df = pd.DataFrame(rows, columns=TIMELINE_COLUMNS)
    if not df.empty:
        df['recorded_at'] = pd.to_datetime(df['recorded_at'], utc=True)
    return df


def comparables_frame(verdicts: Sequence[ComparableVerdict]) -> pd.DataFrame:
    """Comparable verdicts ordered as the calculation ranked them."""
    return pd.DataFrame(
        [{col: getattr(v, col) for col in COMPARABLE_COLUMNS} for v in verdicts],
        columns=COMPARABLE_COLUMNS,
    )


def calculation_frame(calc: SettlementCalculation) -> pd.DataFrame:
    """Single-row headline figures for one calculation."""
    rng = calc.settlement_range
    return pd.DataFrame([{
        'calculation_id': calc.id,
        'version': calc.version,
        'case_type': calc.profile.case_type.value,
        'jurisdiction': calc.jurisdiction,
        'economic': calc.economic_damages.total_economic,
        'non_economic': calc.non_economic_damages.total,
        'raw_total': calc.raw_total,
        'capped_total': calc.capped_total,
        'total_damages': calc.total_damages,
        'range_low': rng.low,
        'range_mid': rng.mid,
        'range_high': rng.high,
        'confidence': rng.confidence,
        'recommended_demand': calc.recommended_demand,
        'target_settlement': calc.target_settlement,
        'minimum_settlement': calc.minimum_settlement,
    }])


def to_csv(df: pd.DataFrame, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info(f"Wrote {len(df)} rows to {path}")
    return path
