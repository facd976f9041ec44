# reading_log/cli.py
from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from rich.logging import RichHandler

from .aggregate import Aggregator
from .change_log import ChangeLog
from .collectors.base import Collector
from .collectors.goodreads_rss import GoodreadsRSSCollector
from .collectors.manual import ManualCollector
from .config import AppConfig, load_dotenv
from .enrich.google_books import GoogleBooksEnricher
from .enrich.metadata_enricher import MetadataEnricher
from .enrich.open_library import OpenLibraryEnricher
from .integrations.http_client import TokenBucket
from .io.report import ANALYTICS_KEY, render_markdown
from .io.storage import FileStorage

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def build_collectors(cfg: AppConfig) -> List[Collector]:
    collectors: List[Collector] = [ManualCollector(cfg.books_dir)]
    if cfg.goodreads_user_id:
        for shelf in cfg.goodreads_shelves:
            collectors.append(
                GoodreadsRSSCollector(
                    cfg.goodreads_user_id,
                    shelf=shelf,
                    timeout_s=cfg.timeout_s,
                    retries=cfg.retries,
                )
            )
    return collectors


def build_enricher(cfg: AppConfig) -> MetadataEnricher:
    burst = max(1, int(cfg.rate_per_sec))
    providers = [
        OpenLibraryEnricher(
            timeout_s=cfg.timeout_s,
            retries=cfg.retries,
            limiter=TokenBucket(cfg.rate_per_sec, burst),
        ),
        GoogleBooksEnricher(
            cfg.google_books_api_key,
            timeout_s=cfg.timeout_s,
            retries=cfg.retries,
            limiter=TokenBucket(cfg.rate_per_sec, burst),
        ),
    ]
    return MetadataEnricher(providers, concurrency=cfg.concurrency)


def main(argv: Optional[List[str]] = None) -> None:
    logger = logging.getLogger(__name__)
    ap = argparse.ArgumentParser(
        prog="reading-log",
        description="Aggregate a reading log from markdown notes and Goodreads into one deduplicated library",
    )

    # Locations
    ap.add_argument("--data-dir", default=None, help="Where books.json and sync state live (READING_LOG_DATA_DIR)")
    ap.add_argument("--books-dir", default=None, help="Markdown book notes directory (READING_LOG_BOOKS_DIR)")
    ap.add_argument("--goodreads-user", default=None, help="Goodreads numeric user id (GOODREADS_USER_ID)")

    # Run mode
    ap.add_argument("--incremental", action="store_true", help="Only take records newer than each source's last sync")
    ap.add_argument("--full", action="store_true", help="Force a full rebuild even if INCREMENTAL_SYNC is set")
    ap.add_argument("--no-enrich", action="store_true", help="Skip Open Library / Google Books enrichment")
    ap.add_argument("--concurrency", type=int, default=None, help="Parallel enrichment workers")
    ap.add_argument("--rate-per-sec", type=float, default=None, help="Per-provider request rate")
    ap.add_argument("--timeout", type=float, default=None, help="HTTP timeout seconds")
    ap.add_argument("--goal", type=int, default=None, help="Books per year for goal progress (READING_GOAL)")

    # Change log
    ap.add_argument("--recent", type=int, default=0, help="Print the N most recent new books and exit")
    ap.add_argument("--clear-changes", action="store_true", help="Empty the change log and exit")
    ap.add_argument("--report", action="store_true", help="Print the saved reading analytics as markdown and exit")

    ap.add_argument("--log-level", default="info", help="Log level: debug, info, warning, error")

    args = ap.parse_args(argv)

    level = LOG_LEVELS.get(args.log_level.lower(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )

    used = load_dotenv()
    for path in used:
        logger.info("loaded env file: %s", path)

    cfg = AppConfig.from_env()
    if args.data_dir:
        cfg.data_dir = args.data_dir
    if args.books_dir:
        cfg.books_dir = args.books_dir
    if args.goodreads_user:
        cfg.goodreads_user_id = args.goodreads_user
    if args.incremental:
        cfg.incremental = True
    if args.full:
        cfg.incremental = False
    if args.no_enrich:
        cfg.enrich = False
    if args.concurrency is not None:
        cfg.concurrency = args.concurrency
    if args.rate_per_sec is not None:
        cfg.rate_per_sec = args.rate_per_sec
    if args.timeout is not None:
        cfg.timeout_s = args.timeout
    if args.goal is not None:
        cfg.yearly_goal = args.goal
    cfg.validate()

    storage = FileStorage(cfg.data_dir)

    if args.clear_changes:
        ChangeLog(storage).clear()
        logger.info("change log cleared")
        return
    if args.recent:
        for entry in ChangeLog(storage).recent(args.recent):
            print(f"{entry.added_at:%Y-%m-%d}  {entry.title} by {entry.author}")
        return
    if args.report:
        data = storage.read(ANALYTICS_KEY)
        if not isinstance(data, dict):
            raise SystemExit(f"No analytics found in {storage.path_for(ANALYTICS_KEY)}; run a sync first.")
        print(render_markdown(data))
        return

    if not cfg.goodreads_user_id:
        logger.info("no Goodreads user id provided, skipping Goodreads collection")

    logger.info("data dir: %s | books dir: %s", cfg.data_dir, cfg.books_dir)
    logger.info("incremental=%s enrich=%s", cfg.incremental, cfg.enrich)

    aggregator = Aggregator(
        collectors=build_collectors(cfg),
        storage=storage,
        enricher=build_enricher(cfg) if cfg.enrich else None,
        incremental=cfg.incremental,
        yearly_goal=cfg.yearly_goal,
    )
    try:
        result = aggregator.run()
    except OSError as e:
        logger.error("sync failed: %r", e)
        raise SystemExit(1) from e

    logger.info("done in %.2fs: %s books, %s new", result.seconds, result.books_count, result.new_books_count)
    for source, summary in sorted(result.sources.items()):
        logger.info("  %s: %s books (%s new)", source, summary.count, summary.new_count)


if __name__ == "__main__":
    main()
