from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

DEFAULT_DATA_DIR = "src/data"
DEFAULT_BOOKS_DIR = "src/content/books"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _strip_inline_comment(val: str) -> str:
    in_single = False
    in_double = False
    for i, ch in enumerate(val):
        if ch == "'" and not in_double:
            in_single = not in_single
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            continue
        if ch == "#" and not in_single and not in_double:
            return val[:i].rstrip()
    return val.rstrip()


def _parse_env_file(path: Path) -> None:
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        k, v = line.split("=", 1)
        k = k.strip()
        v = _strip_inline_comment(v.strip())
        if len(v) >= 2 and v[0] == v[-1] and v[0] in ("'", '"'):
            v = v[1:-1]
        if k and k not in os.environ:
            os.environ[k] = v


def load_dotenv(*names: str) -> List[str]:
    """
    Loads .env-style files without overriding variables already set.

    For each name (default: ".env.local", ".env") the first existing file is
    used, searching ENV_PATH, then the name relative to the CWD, then the
    project root (parent of the reading_log package). Returns the files read.
    """
    names = names or (".env.local", ".env")
    project_root = Path(__file__).resolve().parent.parent
    override = os.getenv("ENV_PATH")

    used: List[str] = []
    candidates_seen = set()
    if override:
        p = Path(override).expanduser()
        if p.is_file():
            _parse_env_file(p)
            used.append(str(p))
            candidates_seen.add(str(p.resolve()))

    for name in names:
        p = Path(name).expanduser()
        for c in (p if p.is_absolute() else Path.cwd() / p, project_root / name):
            c = c.resolve()
            if str(c) in candidates_seen:
                continue
            candidates_seen.add(str(c))
            if c.is_file():
                _parse_env_file(c)
                used.append(str(c))
                break
    return used


def _env_number(name: str, default, cast):
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise SystemExit(f"Invalid {name}={raw!r} (expected {cast.__name__}).") from e


def env_flag(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return default


@dataclass
class AppConfig:
    data_dir: str
    books_dir: str
    goodreads_user_id: Optional[str]
    goodreads_shelves: List[str]
    google_books_api_key: Optional[str]

    incremental: bool
    enrich: bool
    concurrency: int
    rate_per_sec: float
    timeout_s: float
    retries: int
    yearly_goal: int

    @classmethod
    def from_env(cls) -> "AppConfig":
        shelves = [s.strip() for s in (os.getenv("GOODREADS_SHELVES") or "read").split(",") if s.strip()]
        return cls(
            data_dir=(os.getenv("READING_LOG_DATA_DIR") or DEFAULT_DATA_DIR).strip(),
            books_dir=(os.getenv("READING_LOG_BOOKS_DIR") or DEFAULT_BOOKS_DIR).strip(),
            goodreads_user_id=(os.getenv("GOODREADS_USER_ID") or "").strip() or None,
            goodreads_shelves=shelves,
            google_books_api_key=(os.getenv("GOOGLE_BOOKS_API_KEY") or "").strip() or None,
            incremental=env_flag("INCREMENTAL_SYNC", False),
            enrich=env_flag("ENABLE_METADATA_ENRICHMENT", True),
            concurrency=_env_number("ENRICH_CONCURRENCY", 4, int),
            rate_per_sec=_env_number("ENRICH_RATE_PER_SEC", 5.0, float),
            timeout_s=_env_number("HTTP_TIMEOUT", 10.0, float),
            retries=_env_number("HTTP_RETRIES", 2, int),
            yearly_goal=_env_number("READING_GOAL", 52, int),
        )

    def validate(self) -> None:
        if not self.data_dir:
            raise SystemExit("READING_LOG_DATA_DIR must not be empty.")
        if self.concurrency < 1:
            raise SystemExit("Enrichment concurrency must be >= 1.")
        if self.rate_per_sec <= 0:
            raise SystemExit("Enrichment rate must be > 0 requests/sec.")
        if self.timeout_s <= 0:
            raise SystemExit("HTTP timeout must be > 0 seconds.")
        if self.yearly_goal < 0:
            raise SystemExit("READING_GOAL must be >= 0.")
        if self.goodreads_user_id and not self.goodreads_user_id.split("-", 1)[0].isdigit():
            raise SystemExit("GOODREADS_USER_ID should be the numeric Goodreads profile id.")
