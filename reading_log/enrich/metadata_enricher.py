from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Sequence

from reading_log.core.models import NormalizedBook
from reading_log.enrich.base import Enricher, apply_enrichment, needs_enrichment

logger = logging.getLogger(__name__)


class MetadataEnricher:
    """
    Runs providers in order over each book, filling gaps only.

    A failing provider is logged and skipped; enrichment never fails the run.
    """

    def __init__(
        self,
        providers: Sequence[Enricher],
        *,
        concurrency: int = 4,
        only_missing: bool = True,
    ) -> None:
        self.providers = list(providers)
        self.concurrency = max(1, int(concurrency))
        self.only_missing = only_missing

    def enrich_book(self, book: NormalizedBook) -> NormalizedBook:
        enriched = book
        for provider in self.providers:
            try:
                partial = provider.enrich(enriched)
            except Exception as e:
                logger.warning("%s enrichment failed for %r: %s", provider.name, book.title, e)
                continue
            enriched = apply_enrichment(enriched, partial or {})
        return enriched

    def enrich_books(self, books: Sequence[NormalizedBook]) -> List[NormalizedBook]:
        targets = [i for i, b in enumerate(books) if not self.only_missing or needs_enrichment(b)]
        if not targets or not self.providers:
            logger.info("enrich: nothing to do")
            return list(books)

        logger.info(
            "enrich start: targets=%s providers=%s",
            len(targets),
            ",".join(p.name for p in self.providers),
        )
        out = list(books)
        with ThreadPoolExecutor(max_workers=self.concurrency) as ex:
            future_map = {ex.submit(self.enrich_book, books[i]): i for i in targets}
            for fut in as_completed(future_map):
                idx = future_map[fut]
                try:
                    out[idx] = fut.result()
                except Exception as e:
                    logger.warning("enrich failed %s: %r", books[idx].id, e)

        logger.info("enrich done: %s books", len(targets))
        return out
