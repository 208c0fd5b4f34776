#!/usr/bin/env python3
"""
Database manager for the settlement engine.
Stores settlement calculations and negotiation event logs (append-only).
"""
import sqlite3
import json
import logging
from typing import List, Dict, Optional
from pathlib import Path

from valuation.config import DB_PATH
from valuation.errors import InvalidInputError, StaleNegotiationRoundError
from valuation.models import (
    NegotiationEvent, SettlementCalculation, from_json_dict, to_json_dict,
)

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: str = None):
        self.db_path = str(db_path or DB_PATH)
        self._init_db()

    def _init_db(self):
        """Initialize database with schema."""
        with open(SCHEMA_PATH, 'r') as f:
            schema = f.read()

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.executescript(schema)
        conn.commit()
        conn.close()

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # === Calculations ===

    def save_calculation(self, calc: SettlementCalculation) -> str:
        """Insert a calculation. Existing rows are never overwritten."""
        payload = json.dumps(to_json_dict(calc))
        conn = self._get_conn()
        try:
            conn.execute("""
                INSERT INTO settlement_calculations
                (id, version, supersedes, matter_id, case_type, jurisdiction,
                 total_damages, recommended_demand, payload, calculated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                calc.id,
                calc.version,
                calc.supersedes,
                calc.profile.matter_id or None,
                calc.profile.case_type.value,
                calc.jurisdiction,
                calc.total_damages,
                calc.recommended_demand,
                payload,
                calc.calculated_at.isoformat(),
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise InvalidInputError(
                f"Calculation {calc.id} already stored; revisions must use a new id",
                {'calculation_id': calc.id},
            ) from e
        finally:
            conn.close()

        logger.debug(f"Stored calculation {calc.id} (v{calc.version})")
        return calc.id

    def get_calculation(self, calculation_id: str) -> Optional[SettlementCalculation]:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT payload FROM settlement_calculations WHERE id = ?",
                (calculation_id,),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return from_json_dict(SettlementCalculation, json.loads(row['payload']))

    def list_calculations(self, matter_id: str = None, limit: int = 100) -> List[Dict]:
        """Summary rows, newest first, optionally filtered by matter."""
        conn = self._get_conn()
        cursor = conn.cursor()

        columns = """id, version, supersedes, matter_id, case_type, jurisdiction,
                     total_damages, recommended_demand, calculated_at"""
        if matter_id:
            cursor.execute(f"""
                SELECT {columns} FROM settlement_calculations
                WHERE matter_id = ?
                ORDER BY calculated_at DESC
                LIMIT ?
            """, (matter_id, limit))
        else:
            cursor.execute(f"""
                SELECT {columns} FROM settlement_calculations
                ORDER BY calculated_at DESC
                LIMIT ?
            """, (limit,))

        rows = cursor.fetchall()
        conn.close()
        return [dict(row) for row in rows]

    # === Negotiation events ===

    def append_event(self, event: NegotiationEvent) -> int:
        """
        Append one negotiation event.

        Raises:
            StaleNegotiationRoundError: the sequence number or the round's
                offer/counteroffer slot is already taken
        """
        conn = self._get_conn()
        cursor = conn.cursor()
        try:
            cursor.execute("""
                INSERT INTO negotiation_events
                (calculation_id, sequence, kind, round_number, payload, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                event.calculation_id,
                event.sequence,
                event.kind.value,
                event.round_number,
                json.dumps(to_json_dict(event)),
                event.recorded_at.isoformat(),
            ))
            conn.commit()
            return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise StaleNegotiationRoundError(
                f"Negotiation for {event.calculation_id} already has a {event.kind.value} "
                f"at sequence {event.sequence} / round {event.round_number}",
                {
                    'calculation_id': event.calculation_id,
                    'sequence': event.sequence,
                    'round_number': event.round_number,
                },
            ) from e
        finally:
            conn.close()

    def get_events(self, calculation_id: str) -> List[NegotiationEvent]:
        conn = self._get_conn()
        try:
            rows = conn.execute("""
                SELECT payload FROM negotiation_events
                WHERE calculation_id = ?
                ORDER BY sequence ASC
            """, (calculation_id,)).fetchall()
        finally:
            conn.close()
        return [from_json_dict(NegotiationEvent, json.loads(row['payload'])) for row in rows]

    # === Stats ===

    def get_stats(self) -> Dict:
        """Get database statistics."""
        conn = self._get_conn()
        cursor = conn.cursor()

        stats = {}

        cursor.execute("SELECT COUNT(*) as count FROM settlement_calculations")
        stats['calculations'] = cursor.fetchone()['count']

        cursor.execute("SELECT COUNT(*) as count FROM settlement_calculations WHERE supersedes IS NOT NULL")
        stats['revisions'] = cursor.fetchone()['count']

        cursor.execute("SELECT COUNT(*) as count FROM negotiation_events")
        stats['negotiation_events'] = cursor.fetchone()['count']

        cursor.execute("SELECT COUNT(DISTINCT calculation_id) as count FROM negotiation_events")
        stats['negotiations'] = cursor.fetchone()['count']

        conn.close()
        return stats


# Convenience functions
def get_db(db_path: str = None) -> Database:
    """Get database instance."""
    return Database(db_path)
