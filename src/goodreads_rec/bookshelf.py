"""
Shelf aggregation over a collection of books.

Shelves are free-text tags that readers file books under. Two scores are
derived from their raw usage counts:

* affinity: how representative a shelf is of one book, relative to that
  book's most used shelf;
* popularity: how significant a shelf is across a whole collection, relative
  to the most used shelf in the collection.

Affinity decides whether a shelf is "active" for a book when filtering;
popularity decides whether a shelf makes it into a summary.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from .models import Author, Book, Ranked, Shelf
from .percentile import round_percent
from .utils import formalize_author_name

logger = logging.getLogger(__name__)


@dataclass
class BooksByAuthor:
    author: Author
    books: list[Book]


@dataclass
class BooksByPublisher:
    publisher: str
    books: list[Book]


@dataclass
class BooksByShelf:
    """Books filed under one shelf; each book is ranked by its affinity."""
    shelf_name: str
    popularity: int
    total_count: int
    books: list[Ranked[Book]]


def _title_key(book: Book) -> tuple[str, str]:
    return (book.title, book.id)


def annotate_shelves(shelves: list[Shelf]) -> list[Ranked[Shelf]]:
    """Attach each of a book's shelves' affinity (0-100) for that book."""
    max_count = max([s.count for s in shelves] + [1])
    return [Ranked(shelf, round_percent(shelf.count / max_count)) for shelf in shelves]


def rank_shelf_totals(totals: dict[str, int]) -> list[Ranked[Shelf]]:
    """
    Rank accumulated shelf counts by popularity.

    Popularity is a shelf's total count as a share of the largest total,
    scaled to 0-100. Output is ordered by total count descending, then name.
    """
    shelves = sorted(
        (Shelf(name, count) for name, count in totals.items()),
        key=lambda s: (-s.count, s.name),
    )
    max_count = max([s.count for s in shelves] + [1])
    return [Ranked(shelf, round_percent(shelf.count / max_count)) for shelf in shelves]


class Bookshelf:
    """A collection of books viewed through a shelf percentile threshold."""

    def __init__(
        self,
        books: Iterable[Book],
        shelf_percentile: int,
        ignore_shelves: Iterable[str] = (),
    ):
        self.books = list(books)
        self.shelf_percentile = shelf_percentile
        self.ignore_shelves = frozenset(ignore_shelves)

    def get_books(self) -> list[Book]:
        """
        Get one book per work, sorted by title and ID.

        When several editions of a work are present the canonical edition
        wins; otherwise the edition that sorts first by title and ID.
        """
        by_work: dict[str, Book] = {}

        for book in self.books:
            current = by_work.get(book.work_id)
            if current is None or self._edition_key(book) < self._edition_key(current):
                by_work[book.work_id] = book

        return sorted(by_work.values(), key=_title_key)

    def get_books_in_shelves(self, shelf_names: Iterable[str]) -> list[Book]:
        """Get all books that have at least one of the shelves active."""
        names = set(shelf_names)
        if not names:
            return []

        return [b for b in self.get_books() if self._active_shelf_names(b) & names]

    def get_all_shelves(self) -> list[Ranked[Shelf]]:
        """Total every shelf over the collection and rank it by popularity, sorted by name."""
        totals: dict[str, int] = defaultdict(int)

        for book in self.get_books():
            for shelf in book.shelves:
                totals[shelf.name] += shelf.count

        return sorted(rank_shelf_totals(totals), key=lambda r: r.data.name)

    def get_shelves(self) -> list[Ranked[Shelf]]:
        """Get the shelves whose popularity meets the threshold."""
        return [s for s in self.get_all_shelves() if s.percentile >= self.shelf_percentile]

    def group_by_author(self) -> list[BooksByAuthor]:
        """Group books by their primary author."""
        authors_by_id: dict[str, Author] = {}
        books_by_author: dict[str, list[Book]] = defaultdict(list)

        for book in self.get_books():
            author = book.author
            authors_by_id.setdefault(author.id, author)
            books_by_author[author.id].append(book)

        author_ids = sorted(
            authors_by_id,
            key=lambda aid: (formalize_author_name(authors_by_id[aid].name), aid),
        )

        return [
            BooksByAuthor(authors_by_id[aid], sorted(books_by_author[aid], key=_title_key))
            for aid in author_ids
        ]

    def group_by_publisher(self) -> list[BooksByPublisher]:
        """Group books by publisher, leaving out books without one."""
        by_publisher: dict[str, list[Book]] = defaultdict(list)

        for book in self.get_books():
            if book.publisher is not None:
                by_publisher[book.publisher].append(book)

        return [
            BooksByPublisher(name, sorted(by_publisher[name], key=_title_key))
            for name in sorted(by_publisher)
        ]

    def group_by_shelf(self) -> list[BooksByShelf]:
        """
        Group books by their active shelves.

        Only a book's active shelves contribute to a shelf's total count.
        Shelves below the popularity threshold, and ignored shelves, are
        dropped.
        """
        totals: dict[str, int] = defaultdict(int)
        members: dict[str, list[Ranked[Book]]] = defaultdict(list)

        for book in self.get_books():
            for ranked in annotate_shelves(book.shelves):
                shelf = ranked.data
                if ranked.percentile < self.shelf_percentile or shelf.name in self.ignore_shelves:
                    continue

                totals[shelf.name] += shelf.count
                members[shelf.name].append(Ranked(book, ranked.percentile))

        groups = [
            BooksByShelf(
                shelf_name=ranked.data.name,
                popularity=ranked.percentile,
                total_count=ranked.data.count,
                books=sorted(
                    members[ranked.data.name],
                    key=lambda r: (-r.percentile, r.data.title, r.data.id),
                ),
            )
            for ranked in rank_shelf_totals(totals)
            if ranked.percentile >= self.shelf_percentile
        ]

        logger.debug(f"Grouped {len(self.books)} books into {len(groups)} shelves")
        return sorted(groups, key=lambda g: (-g.popularity, g.shelf_name))

    def restrict_shelves(self, shelf_names: Iterable[str]) -> "Bookshelf":
        """Create a bookshelf holding only the books in the given shelves."""
        return Bookshelf(
            self.get_books_in_shelves(shelf_names),
            self.shelf_percentile,
            ignore_shelves=self.ignore_shelves,
        )

    def _active_shelf_names(self, book: Book) -> set[str]:
        return {
            r.data.name
            for r in annotate_shelves(book.shelves)
            if r.percentile >= self.shelf_percentile
        }

    @staticmethod
    def _edition_key(book: Book) -> tuple[bool, str, str]:
        return (book.id != book.canonical_id, book.title, book.id)
