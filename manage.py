#!/usr/bin/env python3
"""
Settlement Engine Management CLI
Unified interface for the database, reference data, exports and the API server.
"""
import argparse
import logging
import sys
from pathlib import Path

# Add project to path
sys.path.insert(0, str(Path(__file__).parent))


def _config(args):
    from valuation.config import EngineConfig

    config = EngineConfig.from_env(EngineConfig.load(Path(args.config)) if args.config else None)
    if args.db:
        config.db_path = Path(args.db)
    return config


def _calculator(args):
    from db.database import Database
    from valuation.calculator import SettlementCalculator

    config = _config(args)
    return SettlementCalculator(config, db=Database(config.db_path))


def cmd_init_db(args):
    """Create the database schema."""
    from db.database import Database

    config = _config(args)
    Database(config.db_path)
    print(f"Database ready: {config.db_path}")


def cmd_stats(args):
    """Show database statistics."""
    from db.database import Database

    db = Database(_config(args).db_path)
    stats = db.get_stats()

    print("=" * 50)
    print("SETTLEMENT ENGINE DATABASE STATS")
    print("=" * 50)
    print(f"  Calculations:   {stats['calculations']}")
    print(f"  Revisions:      {stats['revisions']}")
    print(f"  Negotiations:   {stats['negotiations']}")
    print(f"  Events:         {stats['negotiation_events']}")
    print("=" * 50)


def cmd_jurisdictions(args):
    """List jurisdiction rules."""
    from valuation.jurisdiction import JurisdictionRegistry

    config = _config(args)
    registry = JurisdictionRegistry.from_file(config.jurisdictions_path, config.default_jurisdiction)

    print(f"\nJurisdictions (default: {registry.default_code})")
    print("-" * 70)
    for code in registry.codes():
        rules = registry.get(code)
        caps = rules.damage_caps
        med_mal = f"${caps.medical_malpractice_non_economic:,.0f}" if caps.medical_malpractice_non_economic else "-"
        fee = f"{rules.contingency_fee_max:.0%}" if rules.contingency_fee_max else "-"
        print(f"  {code}  {rules.name:<14} {rules.comparative_negligence.value:<13} "
              f"med-mal cap {med_mal:<10} fee max {fee}")
    print()


def cmd_calculations(args):
    """List stored calculations."""
    from db.database import Database

    db = Database(_config(args).db_path)
    rows = db.list_calculations(matter_id=args.matter, limit=args.limit)
    if not rows:
        print("No calculations stored")
        return
    for row in rows:
        revises = f" (revises {row['supersedes'][:8]})" if row['supersedes'] else ""
        print(f"  {row['id']}  v{row['version']}  {row['case_type']:<22} {row['jurisdiction']}  "
              f"${row['total_damages']:>14,.2f}  {row['calculated_at'][:19]}{revises}")


def cmd_export(args):
    """Export a negotiation timeline, comparables or headline figures to CSV."""
    from valuation import export

    calculator = _calculator(args)
    calc = calculator.get_calculation(args.calculation_id)

    if args.type == 'timeline':
        df = export.negotiation_timeline(calculator.tracker.events(calc.id))
    elif args.type == 'comparables':
        df = export.comparables_frame(calc.comparable_verdicts)
    else:
        df = export.calculation_frame(calc)

    output = Path(args.output or f"{args.type}_{calc.id[:8]}.csv")
    export.to_csv(df, output)
    print(f"Exported {len(df)} rows to {output}")


def cmd_expire(args):
    """Expire overdue pending offers for a calculation."""
    calculator = _calculator(args)
    expired = calculator.expire_offers(args.calculation_id)
    print(f"Expired {len(expired)} offer(s)")


def cmd_serve(args):
    """Start the API server."""
    import uvicorn
    uvicorn.run("app.main:app", host=args.host, port=args.port, reload=args.reload)


def main():
    parser = argparse.ArgumentParser(
        description='Settlement Engine Management CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python manage.py init-db
  python manage.py jurisdictions
  python manage.py calculations --matter M-1001
  python manage.py export <calculation_id> --type timeline -o timeline.csv
  python manage.py serve --port 8000
        """
    )
    parser.add_argument('--config', help='Engine config JSON file')
    parser.add_argument('--db', help='SQLite database path')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    init_parser = subparsers.add_parser('init-db', help='Create the database schema')
    init_parser.set_defaults(func=cmd_init_db)

    stats_parser = subparsers.add_parser('stats', help='Show database statistics')
    stats_parser.set_defaults(func=cmd_stats)

    jur_parser = subparsers.add_parser('jurisdictions', help='List jurisdiction rules')
    jur_parser.set_defaults(func=cmd_jurisdictions)

    calc_parser = subparsers.add_parser('calculations', help='List stored calculations')
    calc_parser.add_argument('--matter', help='Filter by matter id')
    calc_parser.add_argument('--limit', type=int, default=50, help='Max rows')
    calc_parser.set_defaults(func=cmd_calculations)

    export_parser = subparsers.add_parser('export', help='Export calculation data to CSV')
    export_parser.add_argument('calculation_id', help='Calculation id')
    export_parser.add_argument('--type', choices=['timeline', 'comparables', 'summary'],
                               default='timeline', help='What to export')
    export_parser.add_argument('--output', '-o', help='Output CSV path')
    export_parser.set_defaults(func=cmd_export)

    expire_parser = subparsers.add_parser('expire', help='Expire overdue offers')
    expire_parser.add_argument('calculation_id', help='Calculation id')
    expire_parser.set_defaults(func=cmd_expire)

    serve_parser = subparsers.add_parser('serve', help='Start API server')
    serve_parser.add_argument('--host', default='0.0.0.0', help='Host to bind')
    serve_parser.add_argument('--port', type=int, default=8000, help='Port to bind')
    serve_parser.add_argument('--reload', action='store_true', help='Auto-reload on changes')
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if args.command is None:
        parser.print_help()
        return

    from valuation.errors import SettlementError
    try:
        args.func(args)
    except SettlementError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
