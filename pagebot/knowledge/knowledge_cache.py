from __future__ import annotations

"""TTL-backed, category-keyed knowledge cache with lazy reload."""

import logging
from typing import Tuple

from ..ttl_store import TTLStore
from .content import KnowledgeEntry, decode_rows
from .sources import KnowledgeSource

logger = logging.getLogger("pagebot.knowledge")

CACHE_PREFIX = "sheet_"


class KnowledgeCache:
    """Serve active knowledge entries per category, refetching after the TTL expires."""

    def __init__(self, source: KnowledgeSource, store: TTLStore, ttl: float = 300) -> None:
        self._source = source
        self._store = store
        self._ttl = ttl

    def load(self, category: str) -> Tuple[KnowledgeEntry, ...]:
        """Purpose: Return the active entries for a category, reloading on miss/expiry.
        Inputs/Outputs: Input is the category (worksheet title); output is a tuple of
            active KnowledgeEntry in source order.
        Side Effects / State: Populates the shared TTLStore slot for the category.
        Dependencies: KnowledgeSource.fetch_rows, decode_rows, TTLStore per-key lock.
        Failure Modes: Never raises; any fetch/decode failure is logged and yields an
            empty tuple, which is not cached so the next call retries.
        If Removed: Every turn would hit the source and inactive rows could leak.
        Testing Notes: Concurrent loads of one expired category must fetch once.
        """
        # Fast path without the lock; re-check inside it.
        key = f"{CACHE_PREFIX}{category}"
        cached = self._store.get(key)
        if cached is not None:
            logger.debug("cache hit category=%s entries=%s", category, len(cached))
            return cached

        with self._store.lock(key):
            # Another task may have repopulated the slot while we waited.
            cached = self._store.get(key)
            if cached is not None:
                return cached
            logger.info("fetching knowledge category=%s", category)
            try:
                rows = self._source.fetch_rows(category)
                entries = tuple(entry for entry in decode_rows(rows) if entry.active)
            except Exception:
                logger.exception("knowledge fetch failed category=%s", category)
                return ()
            self._store.set(key, entries, ttl=self._ttl)
            logger.info("cached category=%s rows=%s active=%s ttl=%s", category, len(rows), len(entries), self._ttl)
            return entries
