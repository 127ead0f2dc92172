import argparse
import asyncio
import atexit
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from .bookshelf import Bookshelf
from .cache import Cache
from .config import (
    CACHE_NAMES,
    CONFIG_PATH,
    DEFAULT_MAX_REVIEWS,
    DEFAULT_MIN_RATING,
    DEFAULT_RECOMMENDATION_PERCENTILE,
    DEFAULT_SHELF_PERCENTILE,
    ConfigError,
    Configuration,
    get_api_key,
    get_user_id,
    load_config,
)
from .database import close_pool
from .goodreads import GoodreadsClient, GoodreadsError
from .models import ReadBook
from .readers import find_similar_readers
from .recommender import find_recommended_books
from .repository import Repository
from .summary import (
    SECTION_IDS,
    summarize_bookshelf,
    summarize_recommended_books,
    summarize_similar_readers,
)
from .utils import run_sequence

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


class CLIError(Exception):
    """Raised for invalid command-line input that argparse cannot catch."""


def _load_configuration(args: argparse.Namespace) -> Configuration:
    """Load the configuration file; only an explicitly given file must exist."""
    if args.config:
        return load_config(Path(args.config))
    return load_config(CONFIG_PATH, allow_missing=True)


def _shelf_percentile(args: argparse.Namespace, config: Configuration) -> int:
    if args.shelf_percentile is not None:
        return args.shelf_percentile
    if config.shelf_percentile is not None:
        return config.shelf_percentile
    return DEFAULT_SHELF_PERCENTILE


def _select_read_books(read_books: list[ReadBook], book_ids: list[str] | None) -> list[ReadBook]:
    """Restrict read books to the given IDs, in the order given."""
    if not book_ids:
        return read_books

    by_id = {r.book_id: r for r in read_books}
    selected = []
    for book_id in book_ids:
        if book_id not in by_id:
            raise CLIError(f"No book found with ID: {book_id}")
        selected.append(by_id[book_id])
    return selected


@asynccontextmanager
async def _open_repository(args: argparse.Namespace):
    """Yield a repository wired to the caches and a live Goodreads client, plus the configuration."""
    config = _load_configuration(args)
    api_key = get_api_key()

    response_cache = Cache("response", enabled=not args.no_cache_responses)
    data_cache = Cache("data", enabled=not args.no_cache_data)

    async with GoodreadsClient(api_key, response_cache) as client:
        yield Repository(client, data_cache, config), config


async def _find_books(args: argparse.Namespace) -> str:
    async with _open_repository(args) as (repo, config):
        read_books = await repo.get_read_books(get_user_id())
        _select_read_books(read_books, args.book_id)  # reject unknown IDs

        recommendations = await find_recommended_books(
            repo,
            read_books,
            min_rating=args.min_rating,
            percentile=args.percentile,
            shelf_percentile=_shelf_percentile(args, config),
            core_book_ids=args.book_id or None,
            shelves=args.shelf,
            limit=args.limit,
        )

    logger.info(f"Found {len(recommendations)} recommended books")
    return summarize_recommended_books(recommendations)


async def _find_readers(args: argparse.Namespace) -> str:
    async with _open_repository(args) as (repo, config):
        read_books = await repo.get_read_books(get_user_id())
        read_books = _select_read_books(read_books, args.book_id)

        readers = await find_similar_readers(
            repo,
            read_books,
            max_reviews=args.reviews,
            shelf_percentile=_shelf_percentile(args, config),
            ignore_shelves=config.ignore_shelves,
        )

    readers = [r for r in readers if len(r.books) >= args.min_books]
    logger.info(f"Found {len(readers)} similar readers")
    return summarize_similar_readers(readers)


async def _summarize(args: argparse.Namespace) -> str:
    async with _open_repository(args) as (repo, config):
        read_books = await repo.get_read_books(get_user_id())
        books = await repo.get_local_books(r.book_id for r in read_books)

    logger.info(f"Summarizing {len(books)} of {len(read_books)} read books")

    bookshelf = Bookshelf(books, _shelf_percentile(args, config), ignore_shelves=config.ignore_shelves)
    if args.shelf:
        bookshelf = bookshelf.restrict_shelves(args.shelf)

    return "\n\n\n".join(summarize_bookshelf(bookshelf, sections=args.section))


async def _sync_books(args: argparse.Namespace) -> int:
    async with _open_repository(args) as (repo, _config):
        read_books = await repo.get_read_books(get_user_id())
        if args.recent is not None:
            read_books = read_books[:args.recent]

        books = await run_sequence("Sync books", [r.book_id for r in read_books], repo.get_book)

    return len(books)


def cmd_find_books(args: argparse.Namespace) -> None:
    """Recommend books similar to the ones you rated highly."""
    print(asyncio.run(_find_books(args)))


def cmd_find_readers(args: argparse.Namespace) -> None:
    """Find readers who rated your books the way you did."""
    print(asyncio.run(_find_readers(args)))


def cmd_summarize(args: argparse.Namespace) -> None:
    """Summarize the locally synced read books."""
    print(asyncio.run(_summarize(args)))


def cmd_sync_books(args: argparse.Namespace) -> None:
    """Fetch data on read books into the local cache."""
    synced = asyncio.run(_sync_books(args))
    logger.info(f"Synced {synced} books")


def cmd_clear_cache(args: argparse.Namespace) -> None:
    """Clear one or both caches, optionally only some namespaces."""
    names = [args.cache] if args.cache else list(CACHE_NAMES)

    async def clear():
        return {name: await Cache(name).clear(args.namespace) for name in names}

    for name, removed in asyncio.run(clear()).items():
        logger.info(f"Cleared {removed} entries from the {name} cache")


def cmd_show_cache_stats(args: argparse.Namespace) -> None:
    """Show the number of cached entries per cache and namespace."""
    async def collect():
        return {name: await Cache(name).stats() for name in CACHE_NAMES}

    for name, counts in asyncio.run(collect()).items():
        logger.info(f"\n{name} cache: {sum(counts.values())} entries")
        for namespace, count in counts.items():
            logger.info(f"  {namespace}: {count}")


def main():
    parser = argparse.ArgumentParser(description="Goodreads Recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--config", help=f"Path to a JSON configuration file (default: {CONFIG_PATH})")
    parser.add_argument("--shelf-percentile", type=int, metavar="N",
                        help="Minimum per-book affinity and collection-wide popularity for a shelf to be shown")
    parser.add_argument("--no-cache-data", action="store_true", help="Recompute normalized data")
    parser.add_argument("--no-cache-responses", action="store_true", help="Repeat Goodreads API requests")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Find books command
    books_parser = subparsers.add_parser("find-books", help="Find books similar to your highly rated ones")
    books_parser.add_argument("--book-id", nargs="+", help="Only use these read books as a starting point")
    books_parser.add_argument("--limit", type=int, help="Maximum number of books to recommend")
    books_parser.add_argument("--min-rating", type=int, default=DEFAULT_MIN_RATING,
                              help="Minimum rating for a read book to be used as a starting point")
    books_parser.add_argument("--percentile", type=int, default=DEFAULT_RECOMMENDATION_PERCENTILE,
                              help="Minimum percentile of recommendations for a book to be shown")
    books_parser.add_argument("--shelf", nargs="+", help="Only use read books in these shelves")
    books_parser.set_defaults(func=cmd_find_books)

    # Find readers command
    readers_parser = subparsers.add_parser("find-readers", help="Find readers with similar tastes")
    readers_parser.add_argument("--book-id", nargs="+", help="Books that readers must have rated")
    readers_parser.add_argument("--min-books", type=int, default=0,
                                help="Minimum number of shared books required to show a reader")
    readers_parser.add_argument("--reviews", type=int, default=DEFAULT_MAX_REVIEWS,
                                help="Maximum number of reviews per book to query")
    readers_parser.set_defaults(func=cmd_find_readers)

    # Summarize command
    summarize_parser = subparsers.add_parser("summarize", help="Summarize your synced read books")
    summarize_parser.add_argument("--section", nargs="+", choices=SECTION_IDS, help="Sections to show")
    summarize_parser.add_argument("--shelf", nargs="+", help="Only summarize books in these shelves")
    summarize_parser.set_defaults(func=cmd_summarize)

    # Sync command
    sync_parser = subparsers.add_parser("sync-books", help="Sync data on your read books")
    sync_parser.add_argument("--recent", type=int, metavar="N", help="Only sync the N most recently read books")
    sync_parser.set_defaults(func=cmd_sync_books)

    # Cache management commands
    clear_parser = subparsers.add_parser("clear-cache", help="Clear cached data")
    clear_parser.add_argument("--cache", choices=CACHE_NAMES, help="A specific cache to clear")
    clear_parser.add_argument("--namespace", nargs="+", help="Specific namespaces to clear")
    clear_parser.set_defaults(func=cmd_clear_cache)

    stats_parser = subparsers.add_parser("show-cache-stats", help="Show cache statistics")
    stats_parser.set_defaults(func=cmd_show_cache_stats)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        args.func(args)
    except (CLIError, ConfigError, GoodreadsError) as exc:
        logger.error(str(exc))
        sys.exit(1)
