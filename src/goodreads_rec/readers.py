"""Readers whose ratings agree with the user's."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass

from .bookshelf import Bookshelf
from .goodreads import get_user_books_url, get_user_profile_url
from .models import Book, ReadBook, Review, Shelf, User

logger = logging.getLogger(__name__)


@dataclass
class SimilarReader:
    user: User
    books: list[Book]     # books rated the same way as the user, by title
    shelves: list[Shelf]  # popular shelves among those books, count = matching books


def _reviewer(review: Review) -> User:
    if review.user is not None:
        return review.user
    return User(
        id=review.user_id,
        name=review.user_id,
        profile_url=get_user_profile_url(review.user_id),
        books_url=get_user_books_url(review.user_id),
    )


async def find_similar_readers(
    repo,
    read_books: list[ReadBook],
    max_reviews: int,
    shelf_percentile: int,
    ignore_shelves=(),
) -> list[SimilarReader]:
    """
    Find readers who gave the same ratings as the user to the same books.

    Readers are ordered by the number of shared ratings, most first, then by
    user ID. Each reader's shelf summary only names shelves that are popular
    across all books shared with any reader.
    """
    users_by_id: dict[str, User] = {}
    shared: dict[str, list[str]] = defaultdict(list)

    rated = [r for r in read_books if r.rating]

    logger.info(f"Finding readers who share ratings for {len(rated)} books")
    similar = await asyncio.gather(*[
        repo.get_similar_reviews(read_book, max_reviews) for read_book in rated
    ])

    for read_book, reviews in zip(rated, similar):
        for review in reviews:
            shared[review.user_id].append(read_book.book_id)
            users_by_id.setdefault(review.user_id, _reviewer(review))

    reader_ids = sorted(shared, key=lambda uid: (-len(shared[uid]), uid))

    book_ids = sorted({bid for ids in shared.values() for bid in ids})
    books = await asyncio.gather(*[repo.get_book(bid) for bid in book_ids])
    books_by_id = dict(zip(book_ids, books))

    pool = Bookshelf(books_by_id.values(), shelf_percentile, ignore_shelves=ignore_shelves)
    shelf_names = sorted(s.data.name for s in pool.get_shelves())

    logger.info(f"{len(reader_ids)} readers across {len(book_ids)} books, {len(shelf_names)} popular shelves")

    readers = []
    for uid in reader_ids:
        reader_books = sorted(
            (books_by_id[bid] for bid in dict.fromkeys(shared[uid])),
            key=lambda b: (b.title, b.id),
        )
        reader_shelf = Bookshelf(reader_books, shelf_percentile, ignore_shelves=ignore_shelves)

        shelves = []
        for name in shelf_names:
            matches = reader_shelf.get_books_in_shelves([name])
            if matches:
                shelves.append(Shelf(name, len(matches)))

        readers.append(SimilarReader(
            user=users_by_id[uid],
            books=reader_books,
            shelves=sorted(shelves, key=lambda s: (-s.count, s.name)),
        ))

    return readers
