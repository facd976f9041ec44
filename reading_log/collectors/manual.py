from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from reading_log.collectors.base import coerce_raw_book
from reading_log.core.models import RawBook

logger = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)


def parse_frontmatter(text: str) -> Optional[Dict[str, Any]]:
    m = _FRONTMATTER_RE.match(text or "")
    if not m:
        return None
    data = yaml.safe_load(m.group(1))
    return data if isinstance(data, dict) else None


class ManualCollector:
    """Books entered by hand as markdown files with YAML frontmatter."""

    source = "manual"

    def __init__(self, books_dir: str) -> None:
        self.books_dir = Path(books_dir)

    def collect(self) -> List[RawBook]:
        if not self.books_dir.is_dir():
            logger.info("manual books dir not found: %s", self.books_dir)
            return []

        books: List[RawBook] = []
        for path in sorted(self.books_dir.glob("*.md")):
            try:
                meta = parse_frontmatter(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
                logger.warning("error reading %s: %r", path.name, e)
                continue
            if meta is None:
                logger.debug("no frontmatter in %s", path.name)
                continue
            book = coerce_raw_book(meta, self.source)
            if book is None:
                logger.warning("skipping %s: missing title or author", path.name)
                continue
            books.append(book)

        logger.info("manual: %s books", len(books))
        return books
