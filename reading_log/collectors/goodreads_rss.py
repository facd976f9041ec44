from __future__ import annotations

import html
import logging
import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

import requests

from reading_log.collectors.base import coerce_raw_book
from reading_log.core.models import RawBook
from reading_log.integrations.http_client import HttpError, HttpNotFoundError, get_text, make_session

logger = logging.getLogger(__name__)

GOODREADS_RSS_URL = "https://www.goodreads.com/review/list_rss/{user_id}"

SHELF_STATUS = {
    "read": "read",
    "currently-reading": "currently-reading",
    "to-read": "want-to-read",
}

_IMG_SRC_RE = re.compile(r"<img[^>]+src=[\"']([^\"']+)[\"']", re.IGNORECASE)
_RATING_RE = re.compile(r"rating[:\s]+(\d+)", re.IGNORECASE)
_HTML_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def _text(item: ET.Element, tag: str) -> str:
    el = item.find(tag)
    if el is None or el.text is None:
        return ""
    return el.text.strip()


def _clean_html(text: str) -> str:
    t = _HTML_RE.sub(" ", html.unescape(text or ""))
    return _WS_RE.sub(" ", t).strip()


def parse_rss_item(item: ET.Element, status: str = "read") -> Dict[str, object]:
    description = _text(item, "description")

    cover = _text(item, "book_large_image_url") or _text(item, "book_image_url")
    if not cover:
        m = _IMG_SRC_RE.search(html.unescape(description))
        cover = m.group(1) if m else ""

    rating: Optional[int] = None
    user_rating = _text(item, "user_rating")
    if user_rating.isdigit():
        rating = int(user_rating) or None
    else:
        m = _RATING_RE.search(description)
        if m:
            rating = int(m.group(1)) or None

    shelves = [s.strip() for s in _text(item, "user_shelves").split(",") if s.strip()]

    return {
        "title": _text(item, "title"),
        "author": _text(item, "author_name"),
        "coverUrl": cover or None,
        "isbn": _text(item, "isbn") or None,
        "status": status,
        "completedDate": (_text(item, "user_read_at") or _text(item, "pubDate")) if status == "read" else None,
        "startedDate": _text(item, "user_date_added") if status == "currently-reading" else None,
        "rating": rating,
        "review": _clean_html(_text(item, "user_review")) or None,
        "tags": shelves,
    }


def parse_rss_feed(xml_text: str, status: str = "read") -> List[RawBook]:
    root = ET.fromstring(xml_text)
    books: List[RawBook] = []
    for item in root.iter("item"):
        book = coerce_raw_book(parse_rss_item(item, status=status), "goodreads")
        if book is not None:
            books.append(book)
    return books


class GoodreadsRSSCollector:
    """
    Public Goodreads shelf feed. Works without login as long as the
    profile is public; any failure yields an empty list.
    """

    source = "goodreads"

    def __init__(
        self,
        user_id: str,
        *,
        shelf: str = "read",
        session: Optional[requests.Session] = None,
        timeout_s: float = 15,
        retries: int = 2,
    ) -> None:
        self.user_id = (user_id or "").strip()
        self.shelf = shelf
        self.session = session or make_session(accept="application/rss+xml, application/xml, text/xml")
        self.timeout_s = timeout_s
        self.retries = retries

    def collect(self) -> List[RawBook]:
        if not self.user_id:
            logger.info("no Goodreads user id; skipping Goodreads RSS")
            return []

        url = GOODREADS_RSS_URL.format(user_id=self.user_id)
        try:
            text = get_text(
                self.session,
                url,
                params={"shelf": self.shelf},
                timeout_s=self.timeout_s,
                retries=self.retries,
                label="GoodreadsRSS",
            )
        except HttpNotFoundError:
            logger.warning("Goodreads RSS feed not found; user %s may not have a public feed", self.user_id)
            return []
        except HttpError as e:
            logger.warning("failed to fetch Goodreads RSS: %s", e)
            return []

        try:
            books = parse_rss_feed(text, status=SHELF_STATUS.get(self.shelf, "read"))
        except ET.ParseError as e:
            logger.warning("Goodreads RSS feed is not valid XML: %s", e)
            return []

        logger.info("goodreads rss (%s): %s books", self.shelf, len(books))
        return books
