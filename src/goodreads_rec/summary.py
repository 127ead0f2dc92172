"""Markdown reports for bookshelves, recommendations and similar readers."""

from typing import Iterable

from .bookshelf import Bookshelf, annotate_shelves
from .config import DEFAULT_GENRE_PERCENTILE
from .goodreads import get_view_book_url
from .models import Ranked
from .readers import SimilarReader
from .recommender import RecommendedBook
from .utils import formalize_author_name, underline


SECTION_IDS = (
    "books-by-author",
    "books-by-publisher",
    "publishers",
    "popular-shelves",
    "shelves",
)


def _books_by_author(bookshelf: Bookshelf) -> str:
    return "\n\n".join(
        "\n".join(
            [f"* {formalize_author_name(group.author.name)}"]
            + [f"  - {book.title} (ID={book.id})" for book in group.books]
        )
        for group in bookshelf.group_by_author()
    )


def _books_by_publisher(bookshelf: Bookshelf) -> str:
    return "\n\n".join(
        "\n".join([f"* {group.publisher}"] + [f"  - {book.title}" for book in group.books])
        for group in bookshelf.group_by_publisher()
    )


def _publishers(bookshelf: Bookshelf) -> str:
    return "\n".join(
        f"* {group.publisher} ({len(group.books)})"
        for group in bookshelf.group_by_publisher()
    )


def _popular_shelves(bookshelf: Bookshelf) -> str:
    groups = []

    for group in bookshelf.group_by_shelf():
        width = len(str(max(r.percentile for r in group.books))) + 1
        lines = [f"* {group.shelf_name} | p{group.popularity}"]
        lines += [f"  - {f'p{r.percentile}':<{width}} | {r.data.title}" for r in group.books]
        groups.append("\n".join(lines))

    return "\n\n".join(groups)


def _shelves(bookshelf: Bookshelf) -> str:
    return "\n".join(
        f"* p{group.popularity:<3} | {group.shelf_name}"
        for group in bookshelf.group_by_shelf()
    )


SECTIONS = {
    "books-by-author": ("Books by Author", _books_by_author),
    "books-by-publisher": ("Books by Publisher", _books_by_publisher),
    "publishers": ("All Publishers", _publishers),
    "popular-shelves": ("Popular Shelves", _popular_shelves),
    "shelves": ("All Shelves", _shelves),
}


def summarize_bookshelf(bookshelf: Bookshelf, sections: Iterable[str] | None = None) -> list[str]:
    """
    Render the requested sections of a bookshelf summary, in a fixed order.

    Raises:
        ValueError: for an unknown section ID
    """
    wanted = set(sections) if sections is not None else set(SECTION_IDS)
    unknown = wanted - set(SECTION_IDS)
    if unknown:
        raise ValueError(f"Unknown summary sections: {', '.join(sorted(unknown))}")

    parts = []
    for section_id in SECTION_IDS:
        if section_id in wanted:
            title, render = SECTIONS[section_id]
            parts.append(f"{underline(title)}\n\n{render(bookshelf)}")

    return parts


def summarize_recommended_books(
    recommendations: list[Ranked[RecommendedBook]],
    shelf_percentile: int = DEFAULT_GENRE_PERCENTILE,
) -> str:
    """
    Describe each recommended book.

    Only the shelves that are strongly associated with a book (affinity at
    or above `shelf_percentile`) are listed for it.
    """
    groups = []

    for ranked in recommendations:
        book = ranked.data.book
        shelves = sorted(
            r.data.name
            for r in annotate_shelves(book.shelves)
            if r.percentile >= shelf_percentile
        )

        lines = [
            underline(f"{book.title} | p{ranked.percentile}"),
            "",
            f"Author: {book.author.name}",
            f"Shelves: {', '.join(shelves)}",
        ]
        if book.average_rating is not None:
            lines.append(f"Average Rating: {book.average_rating:.2f}")
        lines += ["", f"[View on Goodreads]({get_view_book_url(book.id)})"]

        groups.append("\n".join(lines))

    return "\n\n\n".join(groups)


def summarize_similar_readers(readers: list[SimilarReader]) -> str:
    """Describe each similar reader with their shared books and shelves."""
    groups = []

    for reader in readers:
        lines = [
            underline(reader.user.name),
            "",
            f"[Profile]({reader.user.profile_url})",
            f"[Books]({reader.user.books_url})",
            "",
            underline(f"Shared Books: {len(reader.books)}", "-"),
            "",
        ]
        lines += [f"* {book.title}" for book in reader.books]

        if reader.shelves:
            lines += ["", underline("Shared Shelves", "-"), ""]
            lines += [f"* {shelf.name}: {shelf.count}" for shelf in reader.shelves]

        groups.append("\n".join(lines))

    return "\n\n\n".join(groups)
