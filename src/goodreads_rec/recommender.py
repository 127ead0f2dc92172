"""
Book recommendations from the "similar books" relation.

Every well-rated read book (a seed) points at a handful of similar books.
Candidates are ranked by how many seeds point at them, and only the
candidates that survive the percentile cut are fetched in full.
"""
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from .bookshelf import annotate_shelves
from .models import Book, Ranked, ReadBook
from .percentile import partition
from .utils import run_sequence

logger = logging.getLogger(__name__)


@dataclass
class RecommendedBook:
    book: Book
    recommendations: int  # number of seeds listing this book as similar


def _has_active_shelf(book: Book, shelf_names: set[str], shelf_percentile: int) -> bool:
    return any(
        r.percentile >= shelf_percentile and r.data.name in shelf_names
        for r in annotate_shelves(book.shelves)
    )


async def find_recommended_books(
    repo,
    read_books: list[ReadBook],
    min_rating: int,
    percentile: int,
    shelf_percentile: int,
    core_book_ids: Iterable[str] | None = None,
    shelves: Iterable[str] | None = None,
    limit: int | None = None,
) -> list[Ranked[RecommendedBook]]:
    """
    Find books similar to the books a user rated highly.

    Args:
        repo: Repository providing get_book()
        read_books: The user's read history
        min_rating: Minimum rating for a read book to act as a seed
        percentile: Minimum reference-count percentile for a candidate to be kept
        shelf_percentile: Minimum shelf affinity for a shelf to count as active
        core_book_ids: Only use these read books as seeds
        shelves: Only use seeds with at least one of these shelves active
        limit: Maximum number of candidates to expand

    Returns:
        Recommended books ranked by reference-count percentile, highest first,
        then by title and ID
    """
    fetched: dict[str, Book] = {}

    async def fetch_book(book_id: str) -> Book:
        if book_id not in fetched:
            fetched[book_id] = await repo.get_book(book_id)
        return fetched[book_id]

    seed_ids = {r.book_id for r in read_books if r.rating and r.rating >= min_rating}
    if core_book_ids is not None:
        seed_ids &= set(core_book_ids)

    seeds = await run_sequence("Find similar books", sorted(seed_ids), fetch_book)

    if shelves is not None:
        shelf_names = set(shelves)
        seeds = [s for s in seeds if _has_active_shelf(s, shelf_names, shelf_percentile)]
        logger.info(f"{len(seeds)} seed books in shelves: {', '.join(sorted(shelf_names))}")

    read_ids = {r.book_id for r in read_books}
    read_works = {r.work_id for r in read_books if r.work_id}

    counts: Counter[str] = Counter()
    for seed in seeds:
        for candidate_id in seed.similar_books:
            if candidate_id in read_ids or seed.similar_works.get(candidate_id) in read_works:
                continue
            counts[candidate_id] += 1

    candidates = sorted(counts)

    ranked = partition(candidates, lambda cid: counts[cid])
    retained = sorted(
        (r for r in ranked if r.percentile >= percentile),
        key=lambda r: (-r.percentile, r.data),
    )
    if limit is not None:
        retained = retained[:limit]

    logger.info(
        f"{len(candidates)} candidates from {len(seeds)} seeds, "
        f"{len(retained)} at or above p{percentile}"
    )

    percentiles = {r.data: r.percentile for r in retained}
    query_ids = sorted(percentiles)

    async def expand(book_id: str) -> RecommendedBook:
        return RecommendedBook(await fetch_book(book_id), counts[book_id])

    expanded = await run_sequence("Expand recommendations", query_ids, expand)

    # Similar-book entries without a work id are only matched to read works once fetched
    output = [
        Ranked(rec, percentiles[book_id])
        for book_id, rec in zip(query_ids, expanded)
        if rec.book.work_id not in read_works
    ]

    return sorted(output, key=lambda r: (-r.percentile, r.data.book.title, r.data.book.id))
