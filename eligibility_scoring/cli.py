"""CLI entry point for eligibility-scoring."""

import argparse
import csv
import io
import json
import logging
import random
import sys
from pathlib import Path

import yaml

from .config import criteria_from_dict, load_criteria, load_default_settings, load_settings
from .engine import EligibilityEngine
from .exceptions import ConfigurationError
from .stats import summarize

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Eligibility Scoring: evaluate subject records against eligibility criteria."""
    parser = argparse.ArgumentParser(
        prog="eligibility-scoring",
        description="Evaluate subject records against eligibility criteria.",
    )
    parser.add_argument("data_file", nargs="?", default=None, help="Path to a JSON file with one record or a list of records.")
    parser.add_argument("--record", dest="inline_record", default=None, help="Evaluate a single record passed as a JSON string.")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--criteria", dest="criteria_path", default=None, help="Path to a YAML criteria file.")
    source.add_argument("--preset", default=None, help="Use a named preset from the settings.")
    parser.add_argument("--name", dest="criteria_name", default=None, help="Criteria slug to use when the file defines several.")
    parser.add_argument("--config", dest="config_path", default=None, help="Path to custom YAML settings.")
    parser.add_argument("--format", dest="output_format", choices=["json", "csv"], default="json", help="Output format (default: json).")
    parser.add_argument("--output", dest="output_path", default=None, help="Write results to file instead of stdout.")
    parser.add_argument("--stats", dest="show_stats", action="store_true", default=False, help="Print summary statistics to stderr.")
    parser.add_argument("--sort-by", dest="sort_by", choices=["score"], default=None, help="Sort output by score, highest first.")
    outcome = parser.add_mutually_exclusive_group()
    outcome.add_argument("--passed-only", action="store_true", default=False, help="Only output records that passed.")
    outcome.add_argument("--failed-only", action="store_true", default=False, help="Only output records that failed.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for decision label selection.")
    parser.add_argument("--verbose", action="store_true", default=False, help="Include the per-rule trace in output.")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level (default: WARNING).")

    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")

    if args.inline_record is None and args.data_file is None:
        parser.print_help()
        sys.exit(1)
    if args.criteria_path is None and args.preset is None:
        print("Error: one of --criteria or --preset is required", file=sys.stderr)
        sys.exit(1)

    try:
        _cmd_evaluate(args)
    except (ConfigurationError, yaml.YAMLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)


def _cmd_evaluate(args: argparse.Namespace) -> None:
    """Execute evaluation."""
    # Load settings
    if args.config_path:
        if not Path(args.config_path).is_file():
            print(f"Error: Config file not found: {args.config_path}", file=sys.stderr)
            sys.exit(2)
        settings = load_settings(args.config_path)
    else:
        settings = load_default_settings()

    rng = random.Random(args.seed) if args.seed is not None else None
    engine = EligibilityEngine(settings, rng=rng)
    criteria = _load_criteria(args, settings)

    if args.inline_record is not None:
        try:
            record = json.loads(args.inline_record)
        except json.JSONDecodeError as exc:
            print(f"Error: --record is not valid JSON: {exc}", file=sys.stderr)
            sys.exit(2)
        if not isinstance(record, dict):
            print("Error: --record must be a JSON object", file=sys.stderr)
            sys.exit(2)
        result = engine.evaluate(criteria, record)
        _print_inline_result(result)
        return

    # Validate input file exists
    if not Path(args.data_file).is_file():
        print(f"Error: File not found: {args.data_file}", file=sys.stderr)
        sys.exit(2)

    with open(args.data_file, encoding="utf-8") as f:
        try:
            records = json.load(f)
        except json.JSONDecodeError as exc:
            print(f"Error: {args.data_file} is not valid JSON: {exc}", file=sys.stderr)
            sys.exit(2)
    if isinstance(records, dict):
        records = [records]
    if not isinstance(records, list):
        print(f"Error: {args.data_file} must hold a JSON object or a list of objects", file=sys.stderr)
        sys.exit(2)
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            print(f"Error: record {index} in {args.data_file} is not a JSON object", file=sys.stderr)
            sys.exit(2)

    results = list(enumerate(engine.evaluate_many(criteria, records)))
    logger.info("Evaluated %d records against %s", len(results), criteria.slug)

    # Filter
    if args.passed_only:
        results = [(i, r) for i, r in results if r.passed]
    elif args.failed_only:
        results = [(i, r) for i, r in results if not r.passed]

    # Sort
    if args.sort_by == "score":
        results.sort(key=lambda item: item[1].score, reverse=True)

    # Format output
    if args.output_format == "json":
        output_text = _format_json(results, args.verbose)
    else:
        output_text = _format_csv(results, args.verbose)

    # Write output
    if args.output_path:
        with open(args.output_path, "w", encoding="utf-8") as f:
            f.write(output_text)
    else:
        print(output_text)

    # Statistics
    if args.show_stats:
        stats = summarize([r for _, r in results])
        _print_stats(stats)


def _load_criteria(args: argparse.Namespace, settings):
    """Resolve the criteria named on the command line."""
    if args.preset is not None:
        if args.preset not in settings.presets:
            available = ", ".join(sorted(settings.presets)) or "none"
            print(f"Error: Unknown preset {args.preset!r} (available: {available})", file=sys.stderr)
            sys.exit(2)
        return criteria_from_dict(settings.presets[args.preset], default_slug=args.preset)

    if not Path(args.criteria_path).is_file():
        print(f"Error: Criteria file not found: {args.criteria_path}", file=sys.stderr)
        sys.exit(2)
    defined = load_criteria(args.criteria_path)
    if args.criteria_name is not None:
        for criteria in defined:
            if criteria.slug == args.criteria_name:
                return criteria
        print(f"Error: No criteria named {args.criteria_name!r} in {args.criteria_path}", file=sys.stderr)
        sys.exit(2)
    if len(defined) > 1:
        slugs = ", ".join(c.slug for c in defined)
        print(f"Error: {args.criteria_path} defines several criteria ({slugs}); pick one with --name", file=sys.stderr)
        sys.exit(1)
    return defined[0]


def _print_inline_result(result) -> None:
    """Print a human-readable breakdown for a single inline record."""
    print(f"Criteria:  {result.criteria}")
    print(f"Passed:    {result.passed}")
    print(f"Score:     {result.score}  (threshold {result.threshold}, {result.scoring_method})")
    print(f"Decision:  {result.decision}")
    print()
    for r in result.all_rule_results():
        mark = "PASS" if r.passed else "FAIL"
        where = f"{r.group}." if r.group else ""
        print(f"  [{mark}] {where}{r.rule_id}: {r.field} {r.operator} {r.expected!r} (actual {r.actual!r})")
        if r.error:
            print(f"         error: {r.error}")


def _record(index: int, result) -> dict:
    return {
        "index": index,
        "passed": result.passed,
        "score": result.score,
        "decision": result.decision,
    }


def _format_json(results, verbose: bool) -> str:
    """Format results as JSON."""
    records = []
    for index, r in results:
        record = _record(index, r)
        record["failed_rules"] = list(r.failed_rules)
        if verbose:
            record["rule_results"] = [
                {
                    "id": t.rule_id,
                    "group": t.group,
                    "field": t.field,
                    "operator": t.operator,
                    "expected": t.expected,
                    "actual": t.actual,
                    "passed": t.passed,
                    "contribution": t.contribution,
                    "error": t.error,
                }
                for t in r.all_rule_results()
            ]
        records.append(record)
    return json.dumps(records, indent=2, default=str)


def _format_csv(results, verbose: bool) -> str:
    """Format results as CSV."""
    buf = io.StringIO()
    if verbose:
        fieldnames = ["index", "passed", "score", "decision", "failed_rules"]
    else:
        fieldnames = ["index", "passed", "score", "decision"]
    writer = csv.DictWriter(buf, fieldnames=fieldnames)
    writer.writeheader()
    for index, r in results:
        row = _record(index, r)
        if verbose:
            row["failed_rules"] = json.dumps(list(r.failed_rules))
        writer.writerow(row)
    return buf.getvalue()


def _print_stats(stats) -> None:
    """Print summary statistics to stderr."""
    print("\n=== Evaluation Summary ===", file=sys.stderr)
    print(f"Records evaluated: {stats.total:,}", file=sys.stderr)
    print(f"Passed: {stats.passed:,}  |  Failed: {stats.failed:,}  |  Pass rate: {stats.pass_rate}%", file=sys.stderr)
    print("", file=sys.stderr)
    print("Score:", file=sys.stderr)
    print(
        f"  Mean: {stats.mean_score}  |  Median: {stats.median_score}  "
        f"|  Min: {stats.min_score}  |  Max: {stats.max_score}",
        file=sys.stderr,
    )
    hist = stats.score_histogram
    print(
        "  Distribution:  " + "  |  ".join(f"{bucket}: {count}" for bucket, count in hist.items()),
        file=sys.stderr,
    )
