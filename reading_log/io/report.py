from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from reading_log.core.models import NormalizedBook
from reading_log.io.library import format_datetime
from reading_log.sync_state import utc_now

ANALYTICS_KEY = "analytics.json"
DEFAULT_YEARLY_GOAL = 52
TOP_AUTHORS = 20


def _avg(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _top(counter: Counter, n: Optional[int] = None) -> List[Tuple[str, int]]:
    return counter.most_common(n)


def _goal(by_year: Counter, now: datetime, target: int) -> Dict[str, Any]:
    done = by_year.get(now.year, 0)
    progress = min(done / target * 100, 100.0) if target > 0 else 0.0
    # 90% of the pro-rated target for the current month counts as on track
    expected = now.month / 12 * target
    return {
        "booksThisYear": done,
        "targetThisYear": target,
        "progress": round(progress, 1),
        "onTrack": done >= expected * 0.9,
    }


def build_report_data(
    books: Iterable[NormalizedBook],
    *,
    now: Optional[datetime] = None,
    yearly_goal: int = DEFAULT_YEARLY_GOAL,
) -> Dict[str, Any]:
    """
    Reading analytics over the canonical library.

    Everything except the status counts is computed over books with status
    "read"; timelines only count books with a completion date. Keys are
    camelCase to match books.json.
    """
    books = list(books)
    now = now or utc_now()
    read = [b for b in books if b.status == "read"]
    status = Counter(b.status for b in books)

    ratings = [b.rating for b in read if b.rating is not None]

    by_year: Counter = Counter()
    by_month: Counter = Counter()
    genres_by_year: Dict[int, Counter] = defaultdict(Counter)
    ratings_by_year: Dict[int, List[float]] = defaultdict(list)
    genres: Counter = Counter()
    authors: Counter = Counter()
    author_ratings: Dict[str, List[float]] = defaultdict(list)

    for b in read:
        genres.update(b.tags)
        authors[b.author] += 1
        if b.rating:
            author_ratings[b.author].append(b.rating)
        if b.completed_date is None:
            continue
        year = b.completed_date.year
        by_year[year] += 1
        by_month[b.completed_date.strftime("%Y-%m")] += 1
        genres_by_year[year].update(b.tags)
        if b.rating:
            ratings_by_year[year].append(b.rating)

    return {
        "overview": {
            "totalBooks": len(read),
            "currentlyReading": status.get("currently-reading", 0),
            "wantToRead": status.get("want-to-read", 0),
            "averageRating": round(_avg(ratings), 1),
        },
        "timeline": {
            "byYear": [{"year": y, "count": by_year[y]} for y in sorted(by_year)],
            "byMonth": [{"month": m, "count": by_month[m]} for m in sorted(by_month)],
        },
        "genres": {
            "distribution": [
                {"genre": g, "count": c, "percentage": round(c / len(read) * 100)}
                for g, c in _top(genres)
            ],
            "evolution": [{"year": y, "genres": dict(genres_by_year[y])} for y in sorted(genres_by_year)],
        },
        "authors": {
            "topAuthors": [
                {"author": a, "count": c, "averageRating": _avg(author_ratings[a])}
                for a, c in _top(authors, TOP_AUTHORS)
            ],
            "diversity": round(min(len(authors) / len(read), 1.0), 2) if read else 0.0,
        },
        "ratings": {
            "distribution": [{"rating": r, "count": c} for r, c in sorted(Counter(ratings).items())],
            "averageByYear": [
                {"year": y, "average": _avg(ratings_by_year[y])} for y in sorted(ratings_by_year)
            ],
        },
        "goals": _goal(by_year, now, yearly_goal),
        "generatedAt": format_datetime(now),
    }


def _md_table(rows: List[Tuple[Any, Any]], headers: Tuple[str, str]) -> str:
    lines = [f"| {headers[0]} | {headers[1]} |", "| --- | --- |"]
    for k, v in rows:
        lines.append(f"| {k} | {v} |")
    return "\n".join(lines)


def render_markdown(data: Dict[str, Any]) -> str:
    overview = data["overview"]
    goals = data["goals"]
    out = []
    out.append("# Reading Report")
    out.append("")
    out.append(f"Generated: {data['generatedAt']}")
    out.append("")
    out.append(f"Books read: {overview['totalBooks']}")
    out.append(f"Currently reading: {overview['currentlyReading']}")
    out.append(f"Want to read: {overview['wantToRead']}")
    out.append(f"Average rating: {overview['averageRating']}")
    out.append(
        f"Goal: {goals['booksThisYear']}/{goals['targetThisYear']} ({goals['progress']}%)"
        + (" on track" if goals["onTrack"] else " behind")
    )
    out.append("")
    out.append("## By Year")
    out.append(_md_table([(r["year"], r["count"]) for r in data["timeline"]["byYear"]], ("Year", "Books")))
    out.append("")
    out.append("## Top Genres")
    out.append(_md_table([(r["genre"], r["count"]) for r in data["genres"]["distribution"][:20]], ("Genre", "Books")))
    out.append("")
    out.append("## Top Authors")
    out.append(_md_table([(r["author"], r["count"]) for r in data["authors"]["topAuthors"]], ("Author", "Books")))
    return "\n".join(out)
