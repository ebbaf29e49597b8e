"""
Example: run one Readwise Reader sync from the command line.

Usage:
    python3 sync_demo.py --token <access token> --directory ~/articles
    python3 sync_demo.py --worker      # serve queued syncs from Redis
"""

import argparse
import logging
import sys
from pathlib import Path

from readwise_mirror.sync import (
    ReaderSyncError,
    RQSyncQueue,
    SqlAlchemySettingsRepository,
    build_worker,
)


def setup_logging(verbose: bool, log_file: Path = None):
    handlers = [logging.StreamHandler()]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=Path("./data/readwise_mirror.db"), type=Path, help="SQLite settings DB path")
    parser.add_argument("--token", default=None, help="Readwise access token (stored for later runs)")
    parser.add_argument("--directory", default=None, type=Path, help="Download folder (stored for later runs)")
    parser.add_argument("--archive-finished", action="store_true", help="Archive finished articles in Readwise")
    parser.add_argument("--export-highlights", action="store_true", help="Export highlights at each sync")
    parser.add_argument("--max-image-size", type=int, default=None, help="Per-article image budget in MB")
    parser.add_argument("--redis-url", default="redis://localhost:6379/0", help="Redis URL for --worker")
    parser.add_argument("--worker", action="store_true", help="Run an RQ worker serving queued syncs")
    parser.add_argument("--log-file", default=None, type=Path, help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    setup_logging(args.verbose, args.log_file)

    if args.worker:
        RQSyncQueue(args.redis_url).work()
        return 0

    args.db.parent.mkdir(parents=True, exist_ok=True)
    repo = SqlAlchemySettingsRepository(f"sqlite+pysqlite:///{args.db}")
    settings = repo.load()
    if args.token:
        settings.access_token = args.token
    if args.directory:
        settings.directory = str(args.directory.expanduser())
    if args.archive_finished:
        settings.archive_finished = True
    if args.export_highlights:
        settings.export_highlights_at_sync = True
    if args.max_image_size is not None:
        settings.max_image_size_mb = args.max_image_size
    repo.save(settings)

    try:
        summary = build_worker(repo).run()
    except ReaderSyncError as exc:
        print(f"Sync failed: {exc}", file=sys.stderr)
        return 1
    print(summary.message())
    return 0


if __name__ == "__main__":
    sys.exit(main())
