"""
Fulfill paid orders by exporting a PDF for every purchased story.

Usage:
    python scripts/run_fulfillment.py --order-id order-123
    python scripts/run_fulfillment.py --pending --limit 10
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storyforge import FulfillmentReport, build_runtime, load_settings  # noqa: E402
from storyforge.common.errors import FulfillmentError  # noqa: E402


class ProgressTracker:
    """
    Command-line progress updates for a fulfillment run.
    """

    def __init__(self) -> None:
        self._item_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "order:started":
                total = payload.get("items", 0)
                self._write(f"Fulfilling order {payload.get('order_id')} ({total} stories)...")
                self._item_bar = tqdm(total=total, desc="Stories", unit="story")
            case "batch:started":
                self._write(
                    f"  Batch {payload.get('batch')}/{payload.get('batches')}: "
                    + ", ".join(payload.get("stories", []))
                )
            case "item:settled":
                if payload.get("status") in ("failed", "in_progress"):
                    reason = payload.get("error_kind") or payload.get("status")
                    self._write(f"  Story {payload.get('story_id')}: {reason}")
                if self._item_bar is not None:
                    self._item_bar.update(1)
            case "order:finished":
                self.close()
                state = "completed" if payload.get("completed") else "incomplete"
                self._write(
                    f"Order {payload.get('order_id')} {state}: "
                    f"{payload.get('successes')}/{payload.get('total')} stories ready."
                )

    def close(self) -> None:
        if self._item_bar is not None:
            self._item_bar.close()
            self._item_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export PDFs for paid orders.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--order-id",
        action="append",
        default=[],
        help="Order to fulfill (repeatable).",
    )
    target.add_argument(
        "--pending",
        action="store_true",
        help="Fulfill every paid order that is not completed yet.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of pending orders to process.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional settings YAML file.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    runtime = build_runtime(load_settings(args.config))
    order_ids = args.order_id or runtime.orders.pending_fulfillment(limit=args.limit)
    if not order_ids:
        print("No orders awaiting fulfillment.")
        return 0

    reports: list[FulfillmentReport] = []
    for order_id in order_ids:
        tracker = ProgressTracker()
        try:
            reports.append(
                runtime.fulfillment.process_order(order_id, progress_callback=tracker)
            )
        except FulfillmentError as exc:
            tqdm.write(f"Skipping order {order_id}: {exc}")
        finally:
            tracker.close()

    incomplete = [report.order_id for report in reports if not report.completed]
    if incomplete:
        print(f"Orders needing another run: {', '.join(incomplete)}")
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
