"""Tests for tabular exports."""
import pandas as pd
import pytest

from valuation.export import (
    COMPARABLE_COLUMNS, TIMELINE_COLUMNS, calculation_frame, comparables_frame,
    negotiation_timeline, to_csv,
)


def test_negotiation_timeline(calculator, calculation):
    offer = calculator.record_offer(calculation.id, 150000)
    counter = calculator.generate_counteroffer(calculation.id, offer)

    df = negotiation_timeline(calculator.tracker.events(calculation.id))

    assert list(df.columns) == TIMELINE_COLUMNS
    assert list(df['kind']) == ['offer', 'counteroffer', 'status']
    assert list(df['record_id']) == [offer.id, counter.id, offer.id]
    assert df.loc[0, 'recommendation'] == 'reject'
    assert df.loc[2, 'status'] == 'countered'
    assert str(df['recorded_at'].dt.tz) == 'UTC'


def test_empty_timeline():
    df = negotiation_timeline([])
    assert df.empty
    assert list(df.columns) == TIMELINE_COLUMNS


def test_comparables_frame(calculation):
    df = comparables_frame(calculation.comparable_verdicts)
    assert list(df.columns) == COMPARABLE_COLUMNS
    assert len(df) == len(calculation.comparable_verdicts)
    assert df['similarity_score'].is_monotonic_decreasing


def test_calculation_frame_to_csv(tmp_path, calculation):
    path = to_csv(calculation_frame(calculation), tmp_path / "out" / "summary.csv")

    df = pd.read_csv(path)
    assert df.loc[0, 'calculation_id'] == calculation.id
    assert df.loc[0, 'recommended_demand'] == pytest.approx(calculation.recommended_demand)
