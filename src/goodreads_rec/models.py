"""Records shared by the repository, the ranking engine and the reports."""

from dataclasses import asdict, dataclass, field
from typing import Generic, TypeVar

T = TypeVar('T')


@dataclass
class Author:
    id: str
    name: str


@dataclass
class Shelf:
    name: str
    count: int


@dataclass
class User:
    id: str
    name: str
    profile_url: str = ""
    books_url: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        return cls(**data)


@dataclass
class Review:
    book_id: str
    rating: int
    user_id: str
    id: str | None = None
    user: User | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Review":
        user = data.get("user")
        return cls(
            book_id=data["book_id"],
            rating=data["rating"],
            user_id=data["user_id"],
            id=data.get("id"),
            user=User.from_dict(user) if user else None,
        )


@dataclass
class Book:
    """
    A single edition of a work.

    Editions sharing a work_id describe the same logical book; the one whose
    id equals its canonical_id represents the work.
    """
    id: str
    canonical_id: str
    work_id: str
    title: str
    authors: list[Author]
    publisher: str | None = None
    shelves: list[Shelf] = field(default_factory=list)
    similar_books: list[str] = field(default_factory=list)
    similar_works: dict[str, str] = field(default_factory=dict)  # similar book id -> work id
    average_rating: float | None = None
    total_ratings: int = 0
    top_reviews: list[Review] = field(default_factory=list)

    @property
    def author(self) -> Author:
        """Primary author."""
        return self.authors[0]

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Book":
        return cls(
            id=data["id"],
            canonical_id=data["canonical_id"],
            work_id=data["work_id"],
            title=data["title"],
            authors=[Author(**a) for a in data["authors"]],
            publisher=data.get("publisher"),
            shelves=[Shelf(**s) for s in data.get("shelves", [])],
            similar_books=list(data.get("similar_books", [])),
            similar_works=dict(data.get("similar_works", {})),
            average_rating=data.get("average_rating"),
            total_ratings=data.get("total_ratings", 0),
            top_reviews=[Review.from_dict(r) for r in data.get("top_reviews", [])],
        )


@dataclass
class ReadBook:
    """A user's record of having read a book. A rating of 0 means unrated."""
    book_id: str
    rating: int
    read_on: float
    shelves: list[str] = field(default_factory=list)
    work_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ReadBook":
        return cls(**data)


@dataclass
class Ranked(Generic[T]):
    """A value paired with its percentile rank (0-100) within a collection."""
    data: T
    percentile: int
