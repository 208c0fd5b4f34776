#!/usr/bin/env python3
"""
Settlement Valuation CLI Tool

Compute a settlement valuation for a case and optionally test an offer
against it.

Usage:
    python valuate_case.py personal_injury -j PA --past-medical 60000 --past-wages 40000 --severity severe
    python valuate_case.py medical_malpractice -j CA --item medical:250000:future:10 --severity catastrophic
    python valuate_case.py personal_injury -j TX --past-medical 100000 --defendant-liability 80 --offer 150000
    python valuate_case.py --list                    # List case types and jurisdictions
"""
import argparse
import json
import logging
import sys

from valuation.calculator import SettlementCalculator
from valuation.config import EngineConfig
from valuation.errors import SettlementError
from valuation.models import (
    CaseProfile, CaseType, DamageItem, InjuryDetails, InjurySeverity, InjuryType,
    to_json_dict,
)

# CLI flag -> damages bucket
BUCKET_FLAGS = {
    'past_medical': 'past_medical_expenses',
    'future_medical': 'future_medical_expenses',
    'past_wages': 'past_lost_wages',
    'future_earnings': 'future_lost_earning_capacity',
    'property_damage': 'property_damage',
    'other_expenses': 'other_expenses',
}


def parse_item(text: str) -> DamageItem:
    """Parse ``category:amount[:past|future[:horizon]]``."""
    parts = text.split(':')
    if len(parts) < 2:
        raise argparse.ArgumentTypeError(f"Expected category:amount[:timing[:horizon]], got {text!r}")
    try:
        amount = float(parts[1])
        horizon = int(parts[3]) if len(parts) > 3 else None
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid damage item {text!r}: {e}")
    timing = parts[2] if len(parts) > 2 else 'past'
    try:
        return DamageItem(category=parts[0], amount=amount, timing=timing, horizon=horizon)
    except SettlementError as e:
        raise argparse.ArgumentTypeError(str(e))


def main():
    parser = argparse.ArgumentParser(
        description='Compute a settlement valuation for a case'
    )
    parser.add_argument('case_type', nargs='?', help='Case type (e.g., personal_injury)')
    parser.add_argument('--jurisdiction', '-j', help='Jurisdiction code (e.g., PA, CA)')
    parser.add_argument('--defendant-liability', '-l', type=float, default=100.0,
                        help='Defendant fault percentage (0-100)')
    parser.add_argument('--severity', '-s', help='Injury severity (catastrophic, severe, moderate, minor)')
    parser.add_argument('--injury-type', '-t', help='Injury type (e.g., fractures)')
    parser.add_argument('--permanent', action='store_true', help='Injury is permanent')
    parser.add_argument('--disfigurement', action='store_true', help='Injury involves disfigurement')
    for flag, bucket in BUCKET_FLAGS.items():
        parser.add_argument(f"--{flag.replace('_', '-')}", dest=flag, type=float, default=0.0,
                            help=f"Amount for {bucket}")
    parser.add_argument('--item', action='append', type=parse_item, default=[],
                        help='Itemized loss category:amount[:past|future[:horizon]] (repeatable)')
    parser.add_argument('--discount-rate', type=float, help='Discount rate for future losses')
    parser.add_argument('--punitive-claim', type=float, help='Punitive damages sought')
    parser.add_argument('--offer', type=float, help='Analyze an offer against the valuation')
    parser.add_argument('--config', help='Engine config JSON file')
    parser.add_argument('--json', action='store_true', help='Print the calculation as JSON')
    parser.add_argument('--list', action='store_true', help='List case types and jurisdictions')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    config = EngineConfig.from_env(EngineConfig.load(args.config) if args.config else None)
    calculator = SettlementCalculator(config)

    if args.list:
        print("\nCase Types:")
        for case_type in CaseType:
            print(f"  {case_type.value:<28} {case_type.label}")
        print("\nInjury Severities:", ', '.join(s.value for s in InjurySeverity))
        print("Injury Types:", ', '.join(t.value for t in InjuryType))
        print("\nJurisdictions:")
        for code in calculator.registry.codes():
            rules = calculator.registry.get(code)
            print(f"  {code}  {rules.name:<16} {rules.comparative_negligence.value}")
        print()
        return

    if not args.case_type:
        parser.print_help()
        return

    items = list(args.item)
    buckets = {bucket: getattr(args, flag) for flag, bucket in BUCKET_FLAGS.items() if getattr(args, flag)}
    items.extend(calculator.aggregator.items_from_buckets(buckets))

    try:
        injury = None
        if args.severity:
            injury = InjuryDetails(
                severity=args.severity,
                injury_type=args.injury_type,
                permanent=args.permanent,
                disfigurement=args.disfigurement,
            )
        profile = CaseProfile(
            case_type=args.case_type,
            jurisdiction=args.jurisdiction or config.default_jurisdiction,
            defendant_liability=args.defendant_liability,
            injury=injury,
        )
        result = calculator.calculate(
            profile, items,
            punitive_claim=args.punitive_claim,
            discount_rate=args.discount_rate,
        )
        analysis = calculator.analyze_offer(result, args.offer) if args.offer is not None else None
    except SettlementError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        sys.exit(2)

    if args.json:
        output = result.to_dict()
        if analysis is not None:
            output['offer_analysis'] = to_json_dict(analysis)
        print(json.dumps(output, indent=2))
        return

    print(result.summary())
    if result.comparable_verdicts:
        print("Comparable Verdicts:")
        for v in result.comparable_verdicts:
            print(f"  {v.case_name:<36} {v.jurisdiction} {v.year}  "
                  f"{result.format_currency(v.verdict_amount):>10}  ({v.similarity_score:.0%} similar)")
        print()
    if result.notes:
        print("Notes:")
        for note in result.notes:
            print(f"  [{note.note_type.value}] {note.text}")
        print()
    print("Negotiation Strategy:")
    for i, step in enumerate(result.negotiation_strategy, 1):
        print(f"  {i}. {step}")
    print()

    if analysis is not None:
        print(f"Offer Analysis (${args.offer:,.2f}):")
        print(f"  {analysis.percentage_of_demand:.1f}% of demand, "
              f"{analysis.percentage_of_value:.1f}% of value")
        print(f"  Comparison: {analysis.comparison.value}")
        print(f"  Recommendation: {analysis.recommendation.value}")
        print(f"  {analysis.time_value_analysis}")
        print()


if __name__ == "__main__":
    main()
