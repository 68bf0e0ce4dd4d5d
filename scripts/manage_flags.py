"""
Inspect and toggle the per-stage activity feature flags.

Usage:
    python scripts/manage_flags.py show
    python scripts/manage_flags.py disable story cover
    python scripts/manage_flags.py enable story cover
    python scripts/manage_flags.py load flags.yaml
    python scripts/manage_flags.py metrics --hours 24
    python scripts/manage_flags.py inflight --purge-minutes 30
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

import yaml

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storyforge import build_runtime, load_settings  # noqa: E402
from storyforge.pipeline import load_flag_matrix  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Administer generation feature flags.")
    parser.add_argument("--config", default=None, help="Optional settings YAML file.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("show", help="Print the current flag matrix.")
    for name in ("enable", "disable"):
        toggle = commands.add_parser(name, help=f"{name.capitalize()} one activity of a stage.")
        toggle.add_argument("stage")
        toggle.add_argument("activity")

    load = commands.add_parser("load", help="Replace the matrix with the contents of a YAML file.")
    load.add_argument("path")

    metrics = commands.add_parser("metrics", help="Summarize recent generation metrics.")
    metrics.add_argument("--hours", type=float, default=24.0)
    metrics.add_argument("--activity", default=None)

    inflight = commands.add_parser("inflight", help="List generation calls currently running.")
    inflight.add_argument("--activity", default=None)
    inflight.add_argument(
        "--purge-minutes",
        type=float,
        default=None,
        help="Delete records older than this many minutes before listing.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    runtime = build_runtime(load_settings(args.config))
    gate = runtime.flag_gate

    if args.command == "show":
        matrix = gate.snapshot().to_dict()
        print(yaml.safe_dump(matrix, sort_keys=True) if matrix else "All activities enabled.")
    elif args.command in ("enable", "disable"):
        gate.set_enabled(args.stage, args.activity, args.command == "enable")
    elif args.command == "load":
        gate.replace(load_flag_matrix(args.path))
        print(f"Loaded feature flags from {args.path}")
    elif args.command == "metrics":
        summaries = runtime.metrics.summary(timedelta(hours=args.hours), activity=args.activity)
        if not summaries:
            print("No metrics recorded in this window.")
        for summary in summaries:
            print(
                f"{summary.activity:<20} calls={summary.total:<5} "
                f"error_rate={summary.error_rate:.1%} "
                f"avg_latency={summary.avg_latency_ms:.0f}ms "
                f"tokens={summary.tokens_in}/{summary.tokens_out}"
            )
    elif args.command == "inflight":
        if args.purge_minutes is not None:
            removed = runtime.inflight.purge_stale(timedelta(minutes=args.purge_minutes))
            print(f"Purged {removed} stale record(s).")
        records = runtime.inflight.active(activity=args.activity)
        if not records:
            print("Nothing in flight.")
        for record in records:
            print(
                f"{record.created_at.isoformat()}  {record.stage}.{record.activity:<20} "
                f"user={record.user_id or '-'} model={record.model}"
            )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
