"""
Client for the Goodreads XML API and its embeddable reviews widget.

Payloads are returned as plain dicts of strings, exactly as Goodreads sends
them; numeric conversion and clean-up happen in the repository. Every payload
is stored in the response cache.
"""
import asyncio
import logging
import time
import xml.etree.ElementTree as ET
from urllib.parse import urlencode, urlparse

import httpx
from selectolax.parser import HTMLParser

from .cache import Cache
from .config import (
    API_BASE_URL,
    HTTP_TIMEOUT,
    MAX_HTTP_RETRIES,
    READ_BOOKS_PAGE_SIZE,
    REQUEST_SPACING,
)
from .utils import async_retry_with_backoff

logger = logging.getLogger(__name__)

REVIEWS_WIDGET_PATH = "api/reviews_widget_iframe"
REVIEW_ITEM_TYPE = "http://schema.org/Review"


class GoodreadsError(RuntimeError):
    """Raised when Goodreads answers with an error status or an unreadable payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def get_view_book_url(book_id: str) -> str:
    return f"{API_BASE_URL}/book/show/{book_id}"


def get_user_books_url(user_id: str) -> str:
    """URL of a user's read shelf, best rated first."""
    query = urlencode({"order": "d", "sort": "avg_rating", "shelf": "read"})
    return f"{API_BASE_URL}/review/list/{user_id}?{query}"


def get_user_profile_url(user_id: str) -> str:
    return f"{API_BASE_URL}/user/show/{user_id}"


def _text(element: ET.Element | None, path: str) -> str:
    """Stripped text of a child element, or an empty string."""
    if element is None:
        return ""
    child = element.find(path)
    if child is not None and child.text:
        return child.text.strip()
    return ""


def parse_book(root: ET.Element) -> dict:
    """Convert a book/show response into a dict."""
    book = root.find("book")
    if book is None:
        raise GoodreadsError("Book response has no <book> element")

    work = book.find("work")

    return {
        "id": _text(book, "id"),
        "title": _text(book, "title"),
        "publisher": _text(book, "publisher"),
        "work_id": _text(work, "id"),
        "best_book_id": _text(work, "best_book_id"),
        "original_title": _text(work, "original_title"),
        "ratings_sum": _text(work, "ratings_sum"),
        "ratings_count": _text(work, "ratings_count"),
        "authors": [
            {"id": _text(author, "id"), "name": _text(author, "name")}
            for author in book.findall("authors/author")
        ],
        "shelves": [
            {"name": shelf.get("name", ""), "count": shelf.get("count", "")}
            for shelf in book.findall("popular_shelves/shelf")
        ],
        "similar_books": [
            _text(similar, "id")
            for similar in book.findall("similar_books/book")
        ],
        "similar_works": {
            _text(similar, "id"): _text(similar, "work/id")
            for similar in book.findall("similar_books/book")
        },
        "reviews_widget": _text(book, "reviews_widget"),
    }


def parse_review(review: ET.Element) -> dict:
    """Convert a <review> element, from a review or a shelf listing, into a dict."""
    user = review.find("user")

    return {
        "id": _text(review, "id"),
        "book_id": _text(review, "book/id"),
        "work_id": _text(review, "book/work/id"),
        "publisher": _text(review, "book/publisher"),
        "rating": _text(review, "rating"),
        "read_at": _text(review, "read_at"),
        "date_added": _text(review, "date_added"),
        "shelves": [shelf.get("name", "") for shelf in review.findall("shelves/shelf")],
        "user": {
            "id": _text(user, "id"),
            "name": _text(user, "name") or _text(user, "display_name"),
        },
    }


def parse_read_books_page(root: ET.Element) -> tuple[list[dict], str, str]:
    """
    Parse one page of a review/list response.

    Returns:
        (reviews, end, total), with the range attributes as sent
    """
    reviews = root.find("reviews")
    if reviews is None:
        raise GoodreadsError("Shelf response has no <reviews> element")

    return (
        [parse_review(r) for r in reviews.findall("review")],
        reviews.get("end", ""),
        reviews.get("total", ""),
    )


def extract_review_ids(markup: str, rating: int | None = None) -> list[str]:
    """
    Pull review IDs out of reviews widget markup.

    Args:
        markup: Widget HTML
        rating: Only keep reviews with exactly this many stars
    """
    tree = HTMLParser(markup)
    ids = []

    for node in tree.css(f'[itemtype="{REVIEW_ITEM_TYPE}"]'):
        link = node.css_first('[itemprop="discussionUrl"]')
        href = link.attributes.get("href") if link else None
        if not href:
            continue

        review_id = urlparse(href).path.rstrip("/").split("/")[-1]
        stars_node = node.css_first('[itemprop="reviewRating"]')
        stars = stars_node.text().count("★") if stars_node else 0

        if review_id and (not rating or stars == rating):
            ids.append(review_id)

    return ids


def extract_widget_url(markup: str) -> str | None:
    """The iframe source of an embedded reviews widget, if any."""
    iframe = HTMLParser(markup).css_first("iframe")
    if iframe is None:
        return None
    return iframe.attributes.get("src") or None


class GoodreadsClient:
    """
    Async Goodreads client.

    Requests are issued one at a time, at least `spacing` seconds apart, as
    the API terms require. Use as an async context manager.
    """

    def __init__(
        self,
        api_key: str,
        cache: Cache,
        base_url: str = API_BASE_URL,
        spacing: float = REQUEST_SPACING,
    ):
        self.api_key = api_key
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.spacing = spacing
        self.client = None
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    async def __aenter__(self):
        self.client = httpx.AsyncClient(
            headers={"User-Agent": "goodreads-rec/1.0"},
            follow_redirects=True,
            timeout=HTTP_TIMEOUT,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
        return False

    async def get_book(self, book_id: str) -> dict:
        """Get information on a book using its Goodreads ID."""
        async def produce():
            root = await self._api(f"Fetch book {book_id}", "book/show.xml", {"id": book_id, "format": "xml"})
            return parse_book(root)

        return await self.cache.fetch(["books", book_id], produce)

    async def get_read_books(self, user_id: str) -> list[dict]:
        """Get every review on a user's read shelf, page by page."""
        async def produce():
            read_books = []
            page = 1

            while True:
                root = await self._api(
                    f"Fetch read books (page {page})",
                    "review/list.xml",
                    {
                        "id": user_id,
                        "page": page,
                        "per_page": READ_BOOKS_PAGE_SIZE,
                        "shelf": "read",
                        "v": 2,
                    },
                )
                reviews, end, total = parse_read_books_page(root)
                read_books.extend(reviews)

                if total in ("", "0") or end == total or not reviews:
                    break
                page += 1

            logger.info(f"Found {len(read_books)} read books for user {user_id}")
            return read_books

        return await self.cache.fetch(["read-books", user_id], produce)

    async def get_review(self, review_id: str) -> dict:
        """Get a single review along with its reviewer."""
        async def produce():
            root = await self._api(f"Fetch review {review_id}", "review/show.xml", {"id": review_id, "format": "xml"})
            review = root.find("review")
            if review is None:
                raise GoodreadsError(f"Review response for {review_id} has no <review> element")
            return parse_review(review)

        return await self.cache.fetch(["reviews", review_id], produce)

    async def get_book_reviews(self, book_id: str, limit: int = 10, rating: int | None = None) -> list[dict]:
        """
        Get reviews of a book, optionally only those with an exact rating.

        Review IDs are collected from the reviews widget, page by page, until
        `limit` are found or a page comes back short.
        """
        async def produce():
            ids: list[str] = []
            page = 1

            while True:
                params = {
                    "did": self.api_key,
                    "format": "html",
                    "isbn": book_id,
                    "num_reviews": limit,
                    "page": page,
                }
                if rating:
                    params["min_rating"] = rating

                markup = await self._request(
                    f"Fetch reviews of book {book_id} (page {page})",
                    f"{self.base_url}/{REVIEWS_WIDGET_PATH}",
                    params,
                )
                found = extract_review_ids(markup, rating)
                ids.extend(found)

                if len(found) < limit or len(ids) >= limit:
                    break
                page += 1

            return ids[:limit]

        review_ids = await self.cache.fetch(
            ["review-ids", book_id, rating or "all", limit or "all"],
            produce,
        )
        return [await self.get_review(review_id) for review_id in review_ids]

    async def extract_widget_reviews(self, book_id: str, markup: str) -> list[dict]:
        """
        Get the top reviews shown in a book's embedded reviews widget.

        The widget usually wraps an iframe; its content is fetched when the
        markup itself carries no reviews.
        """
        async def produce():
            ids = extract_review_ids(markup)
            if ids:
                return ids

            url = extract_widget_url(markup)
            if url is None:
                return []
            return extract_review_ids(await self._request(f"Fetch review widget of book {book_id}", url))

        review_ids = await self.cache.fetch(["widget-review-ids", book_id], produce)
        return [await self.get_review(review_id) for review_id in review_ids]

    async def _api(self, label: str, path: str, params: dict) -> ET.Element:
        """Call an XML API endpoint and return the <GoodreadsResponse> root."""
        text = await self._request(label, f"{self.base_url}/{path}", {**params, "key": self.api_key})

        try:
            return ET.fromstring(text)
        except ET.ParseError as exc:
            raise GoodreadsError(f"Invalid XML from {path}: {exc}")

    @async_retry_with_backoff(max_retries=MAX_HTTP_RETRIES, exceptions=(httpx.TransportError,))
    async def _request(self, label: str, url: str, params: dict | None = None) -> str:
        """GET a URL, respecting the request spacing."""
        if not self.client:
            raise RuntimeError("GoodreadsClient must be used as an async context manager")

        async with self._lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.spacing:
                delay = self.spacing - elapsed
                logger.debug(f"{label}: waiting {delay:.2f}s")
                await asyncio.sleep(delay)

            self._last_request = time.monotonic()
            logger.info(label)

            response = await self.client.get(url, params=params)

        if response.status_code >= 400:
            raise GoodreadsError(
                f"GET request to {response.request.url} failed with code {response.status_code}",
                status_code=response.status_code,
            )

        return response.text
