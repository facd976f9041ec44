from __future__ import annotations

import logging
import random
import threading
import time
from typing import Dict, Optional

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "reading-log/1.0"
RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class HttpError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HttpNotFoundError(HttpError):
    pass


class TokenBucket:
    def __init__(self, rate_per_sec: float, burst: int) -> None:
        self.rate = max(0.01, float(rate_per_sec))
        self.capacity = max(1, int(burst))
        self.tokens = float(self.capacity)
        self.lock = threading.Lock()
        self.last = time.monotonic()

    def take(self, n: float = 1.0) -> None:
        while True:
            with self.lock:
                now = time.monotonic()
                elapsed = now - self.last
                self.last = now
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
                if self.tokens >= n:
                    self.tokens -= n
                    return
                need = (n - self.tokens) / self.rate
            time.sleep(min(0.25, max(0.01, need)))


def make_session(user_agent: str = USER_AGENT, accept: str = "application/json") -> requests.Session:
    s = requests.Session()
    s.headers.update({
        "Accept": accept,
        "User-Agent": user_agent,
    })
    return s


def _sleep_jitter(base: float, jitter: float = 0.25) -> None:
    time.sleep(max(0.0, base + random.random() * jitter))


def _safe_body_preview(resp: requests.Response, limit: int = 300) -> str:
    try:
        text = resp.text or ""
    except Exception:
        return "<unavailable>"
    text = text.replace("\r", " ").replace("\n", " ").strip()
    if len(text) > limit:
        return text[:limit].rstrip() + "..."
    return text


def request_with_retries(
    session: requests.Session,
    url: str,
    *,
    params: Optional[Dict[str, str]] = None,
    timeout_s: float = 10,
    retries: int = 3,
    label: str = "",
) -> requests.Response:
    """
    GET with exponential backoff + jitter for 429/5xx/network errors.

    404 raises HttpNotFoundError right away; other 4xx raise HttpError.
    """
    label = label or url
    backoff = 1.0
    for attempt in range(1, retries + 2):
        try:
            logger.debug("request | %s | params=%s | attempt=%s/%s", label, params, attempt, retries + 1)
            r = session.get(url, params=params, timeout=timeout_s)
        except requests.RequestException as e:
            if attempt <= retries:
                logger.warning("request error | %s | err=%r (retrying)", label, e)
                _sleep_jitter(backoff, 0.5)
                backoff = min(30.0, backoff * 2)
                continue
            raise HttpError(f"{label}: request failed: {e}") from e

        if r.status_code in RETRYABLE_STATUSES and attempt <= retries:
            ra = r.headers.get("Retry-After")
            wait = float(ra) if ra and ra.isdigit() else backoff
            logger.warning("retrying | %s | status=%s | wait=%ss", label, r.status_code, wait)
            _sleep_jitter(wait, 0.5)
            backoff = min(30.0, backoff * 2)
            continue

        if r.status_code == 404:
            raise HttpNotFoundError(f"{label}: not found", status_code=404)
        if r.status_code >= 400:
            logger.debug("http error | %s | status=%s | body=%s", label, r.status_code, _safe_body_preview(r))
            raise HttpError(f"{label}: HTTP {r.status_code}", status_code=r.status_code)
        return r

    raise HttpError(f"{label}: retries exhausted")


def get_json(
    session: requests.Session,
    url: str,
    *,
    params: Optional[Dict[str, str]] = None,
    timeout_s: float = 10,
    retries: int = 3,
    label: str = "",
) -> dict:
    r = request_with_retries(session, url, params=params, timeout_s=timeout_s, retries=retries, label=label)
    if not r.content:
        return {}
    try:
        data = r.json()
    except ValueError as e:
        raise HttpError(f"{label or url}: invalid JSON: {e}") from e
    return data if isinstance(data, dict) else {}


def get_text(
    session: requests.Session,
    url: str,
    *,
    params: Optional[Dict[str, str]] = None,
    timeout_s: float = 10,
    retries: int = 3,
    label: str = "",
) -> str:
    r = request_with_retries(session, url, params=params, timeout_s=timeout_s, retries=retries, label=label)
    return r.text or ""
