"""Command-line entry point: compare two PDF revisions and report matched pages."""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from config.settings import settings
from pipeline.compare_documents import ComparisonPipeline, PipelineConfig
from utils.logging import configure_logging, logger


def main(argv: Optional[List[str]] = None) -> int:
    """Run a comparison and print (or write) the JSON report."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="app.py",
        description="Match pages between two PDF revisions and list their differences.",
    )
    parser.add_argument("base", help="Base (older) PDF")
    parser.add_argument("compare", help="Compare (newer) PDF")
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help=f"Minimum similarity to pair pages (default: {settings.similarity_threshold})",
    )
    parser.add_argument(
        "--two-phase",
        action="store_true",
        default=None,
        help="Resolve near-identical pages by perceptual hash before full scoring",
    )
    parser.add_argument(
        "--segments",
        action="store_true",
        default=None,
        help="Detect sub-documents and match them before pages",
    )
    parser.add_argument("--ssim", action="store_true", help="Use SSIM instead of perceptual hashes for page matching")
    parser.add_argument("--no-render", action="store_true", help="Skip page rendering (text-only matching)")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads")
    parser.add_argument("--timeout", type=float, default=None, help="Wall-clock budget in seconds")
    parser.add_argument("--output", "-o", default=None, help="Write the JSON report to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    configure_logging(logging.DEBUG if args.verbose else settings.log_level, settings.log_file)

    config = PipelineConfig(
        similarity_threshold=args.threshold,
        two_phase=args.two_phase,
        segmentation=args.segments,
        visual_metric="ssim" if args.ssim else None,
        num_workers=args.workers,
        timeout_seconds=args.timeout,
        render_images=not args.no_render,
    )
    result = ComparisonPipeline(config).compare(args.base, args.compare)
    report = json.dumps(result.to_dict(), indent=2, default=str)

    if args.output:
        Path(args.output).write_text(report, encoding="utf-8")
        logger.info("Report written to %s", args.output)
    else:
        print(report)

    summary = result.summary
    logger.info(
        "Matched %d pages, %d differences, overall similarity %.3f",
        summary.matched_pages,
        summary.total_differences,
        summary.overall_similarity,
    )
    return 0 if result.complete else 2


if __name__ == "__main__":
    sys.exit(main())
