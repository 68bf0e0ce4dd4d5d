"""
Render a stored story into a printable PDF without going through fulfillment.

Usage:
    python scripts/render_story_pdf.py \
        --story-id story-123 \
        --output story-123.pdf
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Ensure project root is on the Python path.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storyforge import StorybookPDFBuilder, load_settings  # noqa: E402
from storyforge.pdf_generation.builder import PAGE_SIZES  # noqa: E402
from storyforge.storage import LocalAssetStore, StoryRepository  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert a stored story and its illustrations into a storybook PDF."
    )
    parser.add_argument(
        "--story-id",
        required=True,
        help="Identifier of the story to render.",
    )
    parser.add_argument(
        "--output",
        required=True,
        help="Destination PDF file path.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional settings YAML file.",
    )
    parser.add_argument(
        "--page-size",
        choices=sorted(PAGE_SIZES.keys()),
        default="square",
        help="Page size to render (default: square).",
    )
    parser.add_argument(
        "--margin-mm",
        type=float,
        default=18.0,
        help="Page margin in millimetres (default: 18).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Timeout in seconds for downloading illustration assets (default: 30).",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    settings = load_settings(args.config)
    story = StoryRepository(settings.db_path).get(args.story_id, include_pages=True)
    if story is None:
        print(f"Story not found: {args.story_id}", file=sys.stderr)
        return 1

    builder = StorybookPDFBuilder(
        page_size=PAGE_SIZES[args.page_size],
        margin_mm=args.margin_mm,
        request_timeout=args.timeout,
        local_loader=LocalAssetStore(settings.asset_root, base_url=settings.asset_base_url).load,
    )
    builder.build(story, args.output)

    print(f"Rendered storybook PDF to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
