#!/usr/bin/env python
"""Main entry point for the notesync engine."""
import argparse
import asyncio
import atexit
import logging
import os
import sys
from pathlib import Path

from notesync.app import NoteSyncApp
from notesync.config import config
from notesync.observability import configure_logging, metrics


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Local-first note synchronization engine")
    parser.add_argument(
        "--notes-dir",
        help="Directory holding the markdown notes",
        type=str,
        default=os.environ.get("NOTESYNC_NOTES_DIR")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("NOTESYNC_LOG_LEVEL", "INFO")
    )
    parser.add_argument(
        "--rebuild-index",
        help="Rebuild the search index, print the note count and exit",
        action="store_true",
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.notes_dir:
        config.notes_dir = Path(args.notes_dir)


def _save_metrics_on_exit():
    """Save metrics to disk on shutdown."""
    try:
        if metrics.save_metrics():
            logging.getLogger(__name__).info("Metrics saved to disk on shutdown")
    except Exception as e:
        logging.getLogger(__name__).warning(f"Failed to save metrics on shutdown: {e}")


async def run(args) -> int:
    """Open the notes folder and watch it until cancelled."""
    logger = logging.getLogger(__name__)
    app = await NoteSyncApp.open(watch=not args.rebuild_index)
    try:
        if args.rebuild_index:
            # Opening the folder already rebuilt the index from disk
            count = await asyncio.to_thread(app.backend.index.count)
            print(f"Indexed {count} notes in {app.repository.notes_dir}")
            return 0
        logger.info("Watching for changes, press Ctrl+C to stop")
        await asyncio.Event().wait()
    finally:
        await app.close()
    return 0


def main(argv=None):
    """Run the notesync engine."""
    args = parse_args(argv)
    update_config(args)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(config.log_dir, level=log_level, console=True)
    except Exception as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    if config.metrics_file:
        metrics.set_metrics_file(config.metrics_file)
    atexit.register(_save_metrics_on_exit)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0
    except Exception as e:
        logger.error(f"Error running notesync: {e}")
        sys.exit(1)


if __name__ == "__main__":
    sys.exit(main())
