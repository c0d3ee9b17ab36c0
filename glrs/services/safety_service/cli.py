#!/usr/bin/env python3
"""Command-line interface for the crisis scanner.

Usage:
    python -m glrs.services.safety_service.cli --help
    python -m glrs.services.safety_service.cli scan "I can't do this anymore"
    python -m glrs.services.safety_service.cli scan --source check-in --json "..."
    python -m glrs.services.safety_service.cli keywords --tier critical
"""
import argparse
import json
import logging
import sys

from glrs.shared.models import CrisisTier, InvalidTierError
from .detector import get_detector
from .keywords import get_keyword_counts, get_keyword_database

logger = logging.getLogger(__name__)


def setup_parser() -> argparse.ArgumentParser:
    """Set up argument parser."""
    parser = argparse.ArgumentParser(
        description="GLRS crisis keyword scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    scan_parser = subparsers.add_parser("scan", help="Scan text for crisis language")
    scan_parser.add_argument("text", help="Text to scan (use - to read stdin)")
    scan_parser.add_argument(
        "--source", default="cli",
        help="Source label recorded on the result"
    )
    scan_parser.add_argument(
        "--json", action="store_true",
        help="Print the full detection result as JSON"
    )

    keywords_parser = subparsers.add_parser("keywords", help="Show the keyword lexicon")
    keywords_parser.add_argument(
        "--tier",
        choices=[tier.value for tier in CrisisTier.keyword_tiers()],
        help="List the phrases of one tier instead of counts"
    )

    return parser


def cmd_scan(args: argparse.Namespace) -> int:
    """Scan one text. Exit code 2 when the tier creates an alert."""
    text = sys.stdin.read() if args.text == "-" else args.text
    result = get_detector().scan(text, context=args.source)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Tier: {result.resolved_tier.value}")
        for term in result.matched_terms:
            print(f"  [{term.tier.value}] {term.phrase} ({term.category}, {term.mode.value})")
        for term in result.excluded_by_negation:
            print(f"  negated: {term.phrase}")

    return 2 if result.is_actionable else 0


def cmd_keywords(args: argparse.Namespace) -> int:
    """Print lexicon counts, or one tier's phrases by category."""
    database = get_keyword_database()
    if not args.tier:
        print(f"Lexicon version: {database.version}")
        for name, count in get_keyword_counts().items():
            print(f"  {name}: {count}")
        return 0

    try:
        tier = CrisisTier.from_value(args.tier)
    except InvalidTierError as e:
        print(str(e), file=sys.stderr)
        return 1

    for category, entries in database.get_categories(tier).items():
        print(f"{category}:")
        for entry in entries:
            print(f"  {entry.phrase}")
    return 0


def main() -> int:
    """Main entry point."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = setup_parser()
    args = parser.parse_args()

    if args.command == "scan":
        return cmd_scan(args)
    elif args.command == "keywords":
        return cmd_keywords(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
