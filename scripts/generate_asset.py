"""
Generate a single asset through the orchestrator, as the storefront would.

Usage:
    python scripts/generate_asset.py --activity cover --story-id story-123
    python scripts/generate_asset.py --activity character_thumbnail --character-id char-1
    python scripts/generate_asset.py --activity cover_variant --story-id story-123 \
        --style-key watercolor --style-prompt "Soft watercolor washes"
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storyforge import Activity, build_runtime, load_settings  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate one image asset.")
    parser.add_argument(
        "--activity",
        required=True,
        choices=[activity.value for activity in Activity if activity is not Activity.PDF_EXPORT],
        help="Which asset to generate.",
    )
    parser.add_argument("--user-id", default=None, help="User the call is attributed to.")
    parser.add_argument("--character-id", default=None)
    parser.add_argument("--story-id", default=None)
    parser.add_argument("--page-id", default=None)
    parser.add_argument("--style", default=None, help="Visual style override.")
    parser.add_argument("--palette", default=None, help="Color palette override.")
    parser.add_argument("--style-key", default=None, help="Variant key for cover variants.")
    parser.add_argument("--style-prompt", default=None, help="Style instructions for cover variants.")
    parser.add_argument("--config", default=None, help="Optional settings YAML file.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    runtime = build_runtime(load_settings(args.config))
    payload = {
        key: value
        for key, value in vars(args).items()
        if key != "config" and value is not None
    }
    response = runtime.handler.handle(payload)
    print(json.dumps(response, indent=2))
    return 1 if "error" in response else 0


if __name__ == "__main__":
    raise SystemExit(main())
