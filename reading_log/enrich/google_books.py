from __future__ import annotations

import logging
import re
import threading
from typing import Any, Dict, Optional

import requests

from reading_log.core.models import NormalizedBook
from reading_log.core.normalize import normalize_isbn
from reading_log.enrich.base import clip_description, subject_tags
from reading_log.integrations.http_client import TokenBucket, get_json, make_session

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
VOLUME_FIELDS = (
    "items(volumeInfo(title,authors,description,imageLinks,industryIdentifiers,"
    "publishedDate,pageCount,categories,averageRating,ratingsCount,language))"
)

_ZOOM_RE = re.compile(r"&zoom=\d+")


def build_query(book: NormalizedBook) -> str:
    q = f'"{book.title}"'
    if book.author:
        q += f' "{book.author}"'
    isbn = normalize_isbn(book.isbn)
    if isbn:
        q += f" isbn:{isbn}"
    return q


def clean_cover_url(url: str) -> str:
    return _ZOOM_RE.sub("", url.replace("http://", "https://"))


def pick_isbn(info: dict) -> Optional[str]:
    ids = info.get("industryIdentifiers") or []
    by_type = {i.get("type"): i.get("identifier") for i in ids if isinstance(i, dict)}
    return by_type.get("ISBN_13") or by_type.get("ISBN_10")


class GoogleBooksEnricher:
    """Google Books volume search; works without an API key at a lower quota."""

    name = "googlebooks"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        timeout_s: float = 5,
        retries: int = 2,
        limiter: Optional[TokenBucket] = None,
    ) -> None:
        self.api_key = (api_key or "").strip() or None
        self.timeout_s = timeout_s
        self.retries = retries
        self.limiter = limiter or TokenBucket(5.0, 1)
        self._local = threading.local()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = make_session()
            self._local.session = session
        return session

    def search(self, book: NormalizedBook) -> Optional[dict]:
        params = {"q": build_query(book), "maxResults": "1", "fields": VOLUME_FIELDS}
        if self.api_key:
            params["key"] = self.api_key
        self.limiter.take(1.0)
        data = get_json(
            self._session(),
            GOOGLE_BOOKS_URL,
            params=params,
            timeout_s=self.timeout_s,
            retries=self.retries,
            label="GoogleBooks",
        )
        items = data.get("items") or []
        if not items or not isinstance(items[0], dict):
            return None
        info = items[0].get("volumeInfo")
        return info if isinstance(info, dict) else None

    def enrich(self, book: NormalizedBook) -> Dict[str, Any]:
        info = self.search(book)
        if not info:
            return {}

        partial: Dict[str, Any] = {}
        links = info.get("imageLinks") or {}
        if isinstance(links, dict) and not book.cover_url:
            cover = links.get("large") or links.get("medium") or links.get("small") or links.get("thumbnail")
            if cover:
                partial["cover_url"] = clean_cover_url(cover)
        if info.get("description") and not book.review:
            partial["review"] = clip_description(info["description"])
        if info.get("averageRating") and book.rating is None:
            partial["rating"] = float(round(info["averageRating"]))
        if info.get("categories"):
            partial["tags"] = subject_tags(info["categories"])
        if not book.isbn:
            isbn = pick_isbn(info)
            if isbn:
                partial["isbn"] = isbn
        return partial
