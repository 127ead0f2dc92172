import pytest

from goodreads_rec.models import Author, Book, ReadBook, Shelf
from goodreads_rec.recommender import find_recommended_books


def _book(book_id, similar=(), shelves=(), title=None, work_id=None, similar_works=None):
    return Book(
        id=book_id,
        canonical_id=book_id,
        work_id=work_id or f"w{book_id}",
        title=title or f"Title {book_id}",
        authors=[Author("a1", "Author")],
        shelves=[Shelf(name, count) for name, count in shelves],
        similar_books=list(similar),
        similar_works=dict(similar_works or {}),
    )


def _read(book_id, rating, work_id=None):
    return ReadBook(book_id=book_id, rating=rating, read_on=0.0, work_id=work_id)


class FakeRepository:
    def __init__(self, books):
        self.books = {b.id: b for b in books}
        self.calls = []

    async def get_book(self, book_id):
        self.calls.append(book_id)
        return self.books[book_id]


@pytest.mark.asyncio
async def test_candidates_ranked_by_reference_count():
    repo = FakeRepository([
        _book("A", similar=["X", "Y"]),
        _book("B", similar=["X"]),
        _book("C", similar=["X", "B"]),
        _book("X", title="Xenogenesis"),
        _book("Y", title="Yendi"),
    ])
    read_books = [_read("A", 5), _read("B", 4), _read("C", 4)]

    results = await find_recommended_books(repo, read_books, min_rating=4, percentile=0, shelf_percentile=0)

    assert [(r.data.book.id, r.percentile, r.data.recommendations) for r in results] == [
        ("X", 100, 3),
        ("Y", 50, 1),
    ]


@pytest.mark.asyncio
async def test_threshold_excludes_low_candidates_before_fetching():
    repo = FakeRepository([
        _book("A", similar=["X", "Y"]),
        _book("B", similar=["X"]),
        _book("C", similar=["X"]),
        _book("X"),
        _book("Y"),
    ])
    read_books = [_read("A", 5), _read("B", 4), _read("C", 4)]

    results = await find_recommended_books(repo, read_books, min_rating=4, percentile=75, shelf_percentile=0)

    assert [r.data.book.id for r in results] == ["X"]
    assert "Y" not in repo.calls


@pytest.mark.asyncio
async def test_fetches_are_sequential_in_sorted_order():
    repo = FakeRepository([
        _book("3", similar=["9"]),
        _book("1", similar=["8", "9"]),
        _book("2", similar=["8"]),
        _book("8"),
        _book("9"),
    ])
    read_books = [_read("3", 5), _read("1", 5), _read("2", 5)]

    await find_recommended_books(repo, read_books, min_rating=1, percentile=0, shelf_percentile=0)

    assert repo.calls == ["1", "2", "3", "8", "9"]


@pytest.mark.asyncio
async def test_low_ratings_and_unrated_books_are_not_seeds():
    repo = FakeRepository([
        _book("A", similar=["X"]),
        _book("B", similar=["Y"]),
        _book("X"),
        _book("Y"),
    ])
    read_books = [_read("A", 5), _read("B", 2), _read("C", 0)]

    results = await find_recommended_books(repo, read_books, min_rating=3, percentile=0, shelf_percentile=0)

    assert [r.data.book.id for r in results] == ["X"]
    assert "B" not in repo.calls
    assert "C" not in repo.calls


@pytest.mark.asyncio
async def test_read_books_and_read_works_are_excluded():
    repo = FakeRepository([
        _book("A", similar=["B", "X", "Z"]),
        _book("B", similar=["X"]),
        _book("X"),
        _book("Z", work_id="wB"),  # another edition of B
    ])
    read_books = [_read("A", 5, work_id="wA"), _read("B", 5, work_id="wB")]

    results = await find_recommended_books(repo, read_books, min_rating=1, percentile=0, shelf_percentile=0)

    assert [r.data.book.id for r in results] == ["X"]


@pytest.mark.asyncio
async def test_editions_of_read_works_are_dropped_before_ranking():
    # Z is another edition of A; every seed points at it
    repo = FakeRepository([
        _book("A", similar=["Z", "X"], similar_works={"Z": "wA", "X": "wX"}),
        _book("B", similar=["Z"], similar_works={"Z": "wA"}),
        _book("C", similar=["Z"], similar_works={"Z": "wA"}),
        _book("X"),
        _book("Z", work_id="wA"),
    ])
    read_books = [_read("A", 5, work_id="wA"), _read("B", 5, work_id="wB"), _read("C", 5, work_id="wC")]

    results = await find_recommended_books(
        repo, read_books, min_rating=1, percentile=0, shelf_percentile=0, limit=1,
    )

    assert [(r.data.book.id, r.percentile) for r in results] == [("X", 100)]
    assert "Z" not in repo.calls


@pytest.mark.asyncio
async def test_core_book_ids_and_shelves_restrict_seeds():
    repo = FakeRepository([
        _book("A", similar=["X"], shelves=[("fantasy", 100), ("owned", 5)]),
        _book("B", similar=["Y"], shelves=[("owned", 100), ("fantasy", 5)]),
        _book("C", similar=["Z"], shelves=[("fantasy", 100)]),
        _book("X"),
        _book("Y"),
        _book("Z"),
    ])
    read_books = [_read("A", 5), _read("B", 5), _read("C", 5)]

    results = await find_recommended_books(
        repo,
        read_books,
        min_rating=1,
        percentile=0,
        shelf_percentile=50,
        core_book_ids=["A", "B"],
        shelves=["fantasy"],
    )

    assert [r.data.book.id for r in results] == ["X"]
    assert "C" not in repo.calls


@pytest.mark.asyncio
async def test_limit_keeps_best_ranked_candidates():
    repo = FakeRepository([
        _book("A", similar=["X", "Y", "Z"]),
        _book("B", similar=["X", "Y"]),
        _book("C", similar=["X"]),
        _book("X"),
        _book("Y"),
        _book("Z"),
    ])
    read_books = [_read("A", 5), _read("B", 5), _read("C", 5)]

    results = await find_recommended_books(
        repo, read_books, min_rating=1, percentile=0, shelf_percentile=0, limit=2,
    )

    assert [r.data.book.id for r in results] == ["X", "Y"]
    assert "Z" not in repo.calls


@pytest.mark.asyncio
async def test_no_seeds_gives_no_recommendations():
    repo = FakeRepository([])

    assert await find_recommended_books(repo, [], min_rating=1, percentile=0, shelf_percentile=0) == []
    assert repo.calls == []
