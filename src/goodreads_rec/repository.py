"""
Normalized access to Goodreads data.

Raw API payloads are converted into the records in models.py and stored in
the data cache. The user's clean-up rules (ignored shelves, shelf and
publisher aliases) are applied on every read, so changing them never
requires clearing the cache.
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Iterable

from .cache import Cache
from .config import DEFAULT_SHELVES, Configuration
from .goodreads import GoodreadsClient, get_user_books_url, get_user_profile_url
from .models import Author, Book, ReadBook, Review, Shelf, User
from .utils import normalize_string

logger = logging.getLogger(__name__)

BOOKS_NAMESPACE = "books"
READ_BOOKS_NAMESPACE = "read-books"

UNKNOWN_AUTHOR_NAME = "Unknown Author"

GOODREADS_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


def _parse_int(value: str | None) -> int:
    """Parse an integer field; empty or malformed values count as 0."""
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Unexpected integer value: '{value}'")
        return 0


def _parse_timestamp(value: str) -> float:
    """Parse a Goodreads date such as 'Wed Mar 22 11:34:04 -0700 2017' into a Unix timestamp."""
    if not value:
        return 0.0
    try:
        return datetime.strptime(value, GOODREADS_DATE_FORMAT).timestamp()
    except ValueError:
        logger.warning(f"Unexpected date format: '{value}'")
        return 0.0


def determine_publisher(official: str, from_reviews: Iterable[str]) -> str | None:
    """
    Pick the most common publisher among a book's official data and its reviews.

    Ties go to the alphabetically first name; blank names are ignored.
    """
    counts = Counter({official: 1})
    counts.update(from_reviews)

    ranked = sorted((name for name in counts if name), key=lambda name: (-counts[name], name))
    return ranked[0] if ranked else None


def merge_shelves(shelves: list[Shelf], aliases: dict[str, list[str]]) -> list[Shelf]:
    """Fold aliased shelves into their target shelf, summing counts."""
    targets = {alias: target for target, names in aliases.items() for alias in names}
    totals: Counter[str] = Counter()

    for shelf in shelves:
        totals[targets.get(shelf.name, shelf.name)] += shelf.count

    return [Shelf(name, count) for name, count in totals.items()]


def sort_shelves(shelves: list[Shelf]) -> list[Shelf]:
    return sorted(shelves, key=lambda s: (-s.count, s.name))


def normalize_review(data: dict, user_id: str | None = None) -> Review:
    """Convert a raw review, attaching the reviewer when the payload names one."""
    user = data.get("user") or {}
    reviewer_id = user.get("id") or user_id or ""

    reviewer = None
    if user.get("id"):
        reviewer = User(
            id=reviewer_id,
            name=normalize_string(user.get("name") or reviewer_id),
            profile_url=get_user_profile_url(reviewer_id),
            books_url=get_user_books_url(reviewer_id),
        )

    return Review(
        book_id=data["book_id"],
        rating=_parse_int(data.get("rating")),
        user_id=reviewer_id,
        id=data.get("id") or None,
        user=reviewer,
    )


def normalize_read_book(data: dict) -> ReadBook:
    return ReadBook(
        book_id=data["book_id"],
        rating=_parse_int(data.get("rating")),
        read_on=_parse_timestamp(data.get("read_at") or data.get("date_added") or ""),
        shelves=list(data.get("shelves", [])),
        work_id=data.get("work_id") or None,
    )


def normalize_book(data: dict, widget_reviews: list[dict], requested_id: str | None = None) -> Book:
    """
    Convert raw book data into a Book.

    The reader-independent shelves (read, to-read, currently-reading) are
    removed. The publisher is taken from the official data and the publishers
    named by the book's top reviews.
    """
    book_id = data.get("id") or requested_id
    ratings_sum = _parse_int(data.get("ratings_sum"))
    total_ratings = _parse_int(data.get("ratings_count"))

    shelves = [
        Shelf(normalize_string(s["name"]), _parse_int(s["count"]))
        for s in data.get("shelves", [])
    ]
    shelves = [s for s in shelves if s.name and s.name not in DEFAULT_SHELVES]

    authors = [
        Author(id=a["id"], name=normalize_string(a["name"]))
        for a in data.get("authors", [])
    ]
    if not authors:
        logger.warning(f"Book {book_id} lists no authors")
        authors = [Author(id="", name=UNKNOWN_AUTHOR_NAME)]

    return Book(
        id=book_id,
        canonical_id=data.get("best_book_id") or book_id,
        work_id=data.get("work_id") or book_id,
        title=normalize_string(data.get("original_title") or data.get("title") or ""),
        authors=authors,
        publisher=determine_publisher(
            normalize_string(data.get("publisher") or ""),
            (normalize_string(r.get("publisher") or "") for r in widget_reviews),
        ),
        shelves=sort_shelves(shelves),
        similar_books=[bid for bid in data.get("similar_books", []) if bid],
        similar_works={
            bid: wid for bid, wid in data.get("similar_works", {}).items() if bid and wid
        },
        average_rating=ratings_sum / total_ratings if total_ratings > 0 else None,
        total_ratings=total_ratings,
        top_reviews=[normalize_review({**r, "book_id": r.get("book_id") or book_id}) for r in widget_reviews],
    )


class Repository:
    """Books, read histories and reviews, normalized and cached."""

    def __init__(self, client: GoodreadsClient, cache: Cache, config: Configuration | None = None):
        self.client = client
        self.cache = cache
        self.config = config or Configuration()

    async def get_book(self, book_id: str) -> Book:
        """Get information on a book."""
        async def produce():
            raw = await self.client.get_book(book_id)
            widget_reviews = await self.client.extract_widget_reviews(book_id, raw.get("reviews_widget", ""))
            logger.debug(f"Normalize book {book_id}")
            return normalize_book(raw, widget_reviews, requested_id=book_id).to_dict()

        data = await self.cache.fetch([BOOKS_NAMESPACE, book_id], produce)
        return self._apply_config(Book.from_dict(data))

    async def get_local_books(self, book_ids: Iterable[str]) -> list[Book]:
        """Get the books in a list that are already in the cache, sorted by title and ID."""
        wanted = set(book_ids)
        entries = await self.cache.entries(BOOKS_NAMESPACE)

        books = [
            self._apply_config(Book.from_dict(data))
            for data in entries
            if data["id"] in wanted
        ]
        return sorted(books, key=lambda b: (b.title, b.id))

    async def get_read_books(self, user_id: str) -> list[ReadBook]:
        """Get all books read by a user, most recently read first."""
        async def produce():
            raw = await self.client.get_read_books(user_id)
            read_books = sorted(
                (normalize_read_book(r) for r in raw),
                key=lambda r: (-r.read_on, r.book_id),
            )
            return [r.to_dict() for r in read_books]

        data = await self.cache.fetch([READ_BOOKS_NAMESPACE, user_id], produce)
        return [ReadBook.from_dict(d) for d in data]

    async def get_reviews_for_user(self, user_id: str) -> list[Review]:
        """Get a user's ratings of the books on their read shelf."""
        raw = await self.client.get_read_books(user_id)
        return [normalize_review(r, user_id=user_id) for r in raw]

    async def get_similar_reviews(self, read_book: ReadBook, max_reviews: int) -> list[Review]:
        """
        Get reviews of a read book that gave it the same rating as the reader.

        Reviews that do not name their reviewer are dropped.
        """
        raw = await self.client.get_book_reviews(read_book.book_id, limit=max_reviews, rating=read_book.rating)
        reviews = [normalize_review(r) for r in raw]

        similar = [
            r for r in reviews
            if r.rating == read_book.rating and r.user is not None
        ]
        return similar[:max_reviews]

    def _apply_config(self, book: Book) -> Book:
        """Apply the shelf and publisher rules of the current configuration."""
        ignored = set(self.config.ignore_shelves) | set(DEFAULT_SHELVES)

        shelves = merge_shelves(book.shelves, self.config.merge_shelves)
        book.shelves = sort_shelves([s for s in shelves if s.name not in ignored])

        if book.publisher is not None:
            for target, aliases in self.config.merge_publishers.items():
                if book.publisher in aliases:
                    book.publisher = target
                    break

        return book
