from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

import requests

from reading_log.core.models import NormalizedBook
from reading_log.core.normalize import normalize_isbn
from reading_log.enrich.base import clip_description, subject_tags
from reading_log.integrations.http_client import HttpNotFoundError, TokenBucket, get_json, make_session

logger = logging.getLogger(__name__)

OL_BOOKS_URL = "https://openlibrary.org/api/books"
OL_SEARCH_URL = "https://openlibrary.org/search.json"
OL_COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-L.jpg"


def _text_value(val: Any) -> str:
    if isinstance(val, dict):
        return str(val.get("value") or "")
    if isinstance(val, list):
        return " ".join(str(x) for x in val if str(x).strip())
    return str(val or "")


def parse_books_api(data: dict, isbn: str) -> Optional[Dict[str, Any]]:
    book = data.get(f"ISBN:{isbn}") if isinstance(data, dict) else None
    if not isinstance(book, dict) or not book:
        return None
    cover = book.get("cover") or {}
    identifiers = book.get("identifiers") or {}
    isbns: List[str] = list(identifiers.get("isbn_13") or []) + list(identifiers.get("isbn_10") or [])
    subjects = []
    for sub in book.get("subjects") or []:
        name = sub.get("name") if isinstance(sub, dict) else str(sub)
        if name:
            subjects.append(name)
    return {
        "cover_url": (cover.get("large") or cover.get("medium") or "") if isinstance(cover, dict) else "",
        "description": _text_value(book.get("description") or book.get("notes")),
        "subjects": subjects,
        "isbns": isbns,
    }


def parse_search(data: dict) -> Optional[Dict[str, Any]]:
    docs = data.get("docs") if isinstance(data, dict) else None
    if not docs or not isinstance(docs[0], dict):
        return None
    doc = docs[0]
    cover_id = doc.get("cover_i")
    return {
        "cover_url": OL_COVER_URL.format(cover_id=cover_id) if cover_id else "",
        "description": _text_value(doc.get("first_sentence")),
        "subjects": [str(s) for s in doc.get("subject") or [] if str(s).strip()],
        "isbns": [str(s) for s in doc.get("isbn") or [] if str(s).strip()],
    }


class OpenLibraryEnricher:
    """ISBN lookup first, title/author search as a fallback."""

    name = "openlibrary"

    def __init__(
        self,
        *,
        timeout_s: float = 5,
        retries: int = 2,
        limiter: Optional[TokenBucket] = None,
    ) -> None:
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

    def _get(self, url: str, params: Dict[str, str], label: str) -> dict:
        self.limiter.take(1.0)
        return get_json(self._session(), url, params=params, timeout_s=self.timeout_s, retries=self.retries, label=label)

    def lookup_isbn(self, isbn: str) -> Optional[Dict[str, Any]]:
        params = {"bibkeys": f"ISBN:{isbn}", "format": "json", "jscmd": "data"}
        try:
            data = self._get(OL_BOOKS_URL, params, "OpenLibrary")
        except HttpNotFoundError:
            return None
        return parse_books_api(data, isbn)

    def search(self, title: str, author: str) -> Optional[Dict[str, Any]]:
        data = self._get(OL_SEARCH_URL, {"q": f"{title} {author}", "limit": "1"}, "OpenLibrarySearch")
        return parse_search(data)

    def enrich(self, book: NormalizedBook) -> Dict[str, Any]:
        found = None
        isbn = normalize_isbn(book.isbn)
        if isbn:
            found = self.lookup_isbn(isbn)
        if not found:
            found = self.search(book.title, book.author)
        if not found:
            return {}

        partial: Dict[str, Any] = {}
        if found["cover_url"] and not book.cover_url:
            partial["cover_url"] = found["cover_url"]
        if found["description"] and not book.review:
            partial["review"] = clip_description(found["description"])
        if found["subjects"]:
            partial["tags"] = subject_tags(found["subjects"])
        if not book.isbn and found["isbns"]:
            partial["isbn"] = found["isbns"][0]
        return partial
