#!/usr/bin/env python3
"""Command-line interface for creditsdetect."""

import argparse
import logging
import sys
import time
from pathlib import Path

from rich.console import Console

from creditsdetect.catalog import JsonItemStore
from creditsdetect.config import load_config
from creditsdetect.display import CreditsProgressDisplay, DisplayLogHandler
from creditsdetect.errors import CreditsDetectError
from creditsdetect.service import CreditsDetectionService

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool, display: bool):
    root = logging.getLogger()
    root.handlers = []
    if display:
        # Console output would tear the live display; records go to its activity log instead.
        root.addHandler(logging.NullHandler())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        root.addHandler(handler)
    logging.getLogger("creditsdetect").setLevel(logging.DEBUG if verbose else logging.INFO)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Detect where end credits start in TV episodes and store it as a chapter marker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Detect credits for one series, comparing episodes against each other:
  creditsdetect --catalog library.json --series s1 --config detector.json

  # Preview a single episode without saving, keeping a debug log:
  creditsdetect --catalog library.json --episode e42 --dry-run --debug-log debug.txt

  # Back up all credits markers:
  creditsdetect --catalog library.json --export-backup credits-backup.json
        """,
    )
    parser.add_argument("--catalog", type=str, required=True, help="JSON catalog of series and episodes (required)")
    parser.add_argument("--chapters", type=str, default=None, help="JSON chapter store (default: <catalog>.chapters.json)")
    parser.add_argument("--config", type=str, default=None, help="JSON detector configuration")

    target = parser.add_mutually_exclusive_group()
    target.add_argument("--episode", type=str, help="Process one episode id")
    target.add_argument("--series", type=str, help="Process every regular episode of a series id")
    target.add_argument("--library", type=str, help="Process the episodes of a library id that lack credits")
    target.add_argument("--all", action="store_true", help="Scheduled-style run over the configured libraries")
    target.add_argument("--export-backup", type=str, metavar="FILE", help="Write a credits backup to FILE")
    target.add_argument("--import-backup", type=str, metavar="FILE", help="Restore credits from a backup FILE")

    parser.add_argument("--season", type=int, default=None, help="With --series, limit to one season")
    parser.add_argument("--overwrite", action="store_true", help="With --import-backup, replace existing markers")
    parser.add_argument("--dry-run", action="store_true", help="Detect without saving markers")
    parser.add_argument("--debug-log", type=str, default=None, metavar="FILE", help="Capture a debug log of the run to FILE")
    parser.add_argument("--no-display", action="store_true", help="Plain log output instead of the live display")
    parser.add_argument("--verbose", action="store_true", help="Debug-level logging")

    parser.add_argument("--ocr-endpoint", type=str, default=None, help="OCR service URL")
    parser.add_argument("--frame-rate", type=float, default=None, help="Frames per second to sample")
    parser.add_argument("--minimum-matches", type=int, default=None, help="Keyword matches needed within 10 seconds")
    parser.add_argument("--compare-episodes", action="store_true", default=None, help="Enable cross-episode comparison")
    return parser


def main():
    """Main entry point."""
    parser = _build_parser()
    args = parser.parse_args()
    console = Console(stderr=True)

    use_display = not args.no_display and any([args.episode, args.series, args.library, args.all])
    _configure_logging(args.verbose, use_display)

    try:
        config = load_config(args.config).with_overrides(
            ocr_endpoint=args.ocr_endpoint,
            ocr_frame_rate=args.frame_rate,
            ocr_minimum_matches=args.minimum_matches,
            use_episode_comparison=args.compare_episodes,
        )
        store = JsonItemStore(args.catalog, args.chapters)
    except CreditsDetectError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    service = CreditsDetectionService(config, store)

    if args.export_backup:
        Path(args.export_backup).expanduser().write_text(service.export_backup(), encoding="utf-8")
        console.print(f"Backup written to {args.export_backup}")
        return 0
    if args.import_backup:
        backup_path = Path(args.import_backup).expanduser()
        if not backup_path.exists():
            console.print(f"[red]Error:[/red] Backup file not found: {backup_path}")
            return 1
        try:
            result = service.import_backup(backup_path.read_text(encoding="utf-8"), overwrite=args.overwrite)
        except CreditsDetectError as e:
            console.print(f"[red]Error:[/red] {e}")
            return 1
        console.print(result.message)
        return 0

    debug = args.debug_log is not None
    service.start()
    if args.episode:
        request = service.enqueue_episode(args.episode, dry_run=args.dry_run, debug=debug)
    elif args.series:
        request = service.enqueue_series(args.series, dry_run=args.dry_run, debug=debug, season_number=args.season)
    elif args.library:
        request = service.enqueue_library(args.library, dry_run=args.dry_run, debug=debug)
    elif args.all:
        request = service.trigger_detection()
    else:
        parser.print_help()
        return 1

    if not request.success:
        console.print(f"[red]Error:[/red] {request.message}")
        return 1

    display = None
    if use_display:
        display = CreditsProgressDisplay(service.get_progress)
        logging.getLogger("creditsdetect").addHandler(DisplayLogHandler(display))
        display.add_log(request.message)
        display.start()
    else:
        logger.info(request.message)

    try:
        while not service.controller.wait_until_idle(timeout=0.5):
            pass
    except KeyboardInterrupt:
        service.cancel()
        service.controller.wait_until_idle(timeout=10.0)
        if display:
            display.stop()
        console.print("[yellow]Cancelled[/yellow]")
        return 130
    finally:
        if debug:
            Path(args.debug_log).expanduser().write_text(service.get_debug_log(), encoding="utf-8")
        service.stop()

    # Let the display render the final state before stopping it.
    time.sleep(0.3)
    if display:
        display.stop()
    else:
        progress = service.get_progress()
        CreditsProgressDisplay(service.get_progress, console=Console()).print_summary(progress)
    return 0


if __name__ == "__main__":
    sys.exit(main())
