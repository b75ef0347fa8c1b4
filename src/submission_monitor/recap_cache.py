"""Hybrid company recap cache.

Lookups go through three layers:

1. the in-memory layer, keyed by the case-normalised company name
2. the durable layer (``company_recaps`` table), bulk-loaded into memory on
   the first miss
3. the external recap provider, whose answer is written through to both
   layers

The provider is contacted at most once per company per run, including
failed attempts. Provider or storage faults degrade to the stale cached
summary when one exists, otherwise to a placeholder, and are never raised to
the caller.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol, Set

from .logging_config import get_logger
from .models import RecapEntry, RecapLookup
from .recap_provider import RecapProvider

logger = get_logger("recap_cache")

DEFAULT_PROVIDER_TIMEOUT = 30.0


class RecapStore(Protocol):
    """Durable storage for recap entries."""

    def load_recaps(self) -> Dict[str, RecapEntry]:
        ...

    def save_recap(self, entry: RecapEntry) -> None:
        ...


def normalize_company(name: Optional[str]) -> str:
    """Return the cache key for a company name."""
    if not name:
        return ""
    return " ".join(name.split()).lower()


class RecapCache:
    """Company recap lookups with memory, storage and provider layers."""

    def __init__(
        self,
        store: Optional[RecapStore] = None,
        provider: Optional[RecapProvider] = None,
        *,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        placeholder: str = "",
        max_age_days: Optional[int] = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.placeholder = placeholder
        self.max_age = timedelta(days=max_age_days) if max_age_days else None

        self._memory: Dict[str, RecapEntry] = {}
        self._storage_loaded = False
        self._attempted: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self.stats: Dict[str, int] = {
            "memory_hits": 0,
            "storage_hits": 0,
            "provider_calls": 0,
            "provider_failures": 0,
            "placeholders": 0,
        }

    async def get_recap(self, company_name: Optional[str]) -> str:
        return (await self.lookup(company_name)).summary

    async def lookup(self, company_name: Optional[str]) -> RecapLookup:
        """Resolve a recap for ``company_name`` without ever raising."""
        company = (company_name or "").strip()
        key = normalize_company(company)
        if not key:
            return self._placeholder(company, "empty company name")

        entry = self._fresh(self._memory.get(key))
        if entry is not None:
            self.stats["memory_hits"] += 1
            return RecapLookup(company=company, summary=entry.summary, source="memory")

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another task may have filled the key while we waited
            entry = self._fresh(self._memory.get(key))
            if entry is not None:
                self.stats["memory_hits"] += 1
                return RecapLookup(company=company, summary=entry.summary, source="memory")

            if not self._storage_loaded:
                self._load_storage()
                entry = self._fresh(self._memory.get(key))
                if entry is not None:
                    self.stats["storage_hits"] += 1
                    return RecapLookup(company=company, summary=entry.summary, source="storage")

            return await self._generate(key, company)

    def _fresh(self, entry: Optional[RecapEntry]) -> Optional[RecapEntry]:
        if entry is None:
            return None
        if self.max_age is None:
            return entry
        updated_at = entry.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        if datetime.now(timezone.utc) - updated_at > self.max_age:
            return None
        return entry

    def _load_storage(self) -> None:
        self._storage_loaded = True
        if self.store is None:
            return
        try:
            stored = self.store.load_recaps()
        except Exception as exc:
            logger.error(f"Failed to load stored recaps: {exc}")
            return
        for key, entry in stored.items():
            self._memory.setdefault(key, entry)
        logger.info(f"Loaded {len(stored)} stored recaps")

    async def _generate(self, key: str, company: str) -> RecapLookup:
        if self.provider is None:
            return self._fallback(key, company, "recap provider unavailable")
        if key in self._attempted:
            return self._fallback(key, company, "recap generation already attempted this run")

        self._attempted.add(key)
        self.stats["provider_calls"] += 1
        try:
            summary = await asyncio.wait_for(
                self.provider.generate_summary(company),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.stats["provider_failures"] += 1
            logger.warning(f"Recap generation for '{company}' timed out after {self.timeout_seconds}s")
            return self._fallback(key, company, "recap provider timed out")
        except Exception as exc:
            self.stats["provider_failures"] += 1
            logger.warning(f"Recap generation for '{company}' failed: {exc}")
            return self._fallback(key, company, str(exc))

        summary = (summary or "").strip()
        if not summary:
            self.stats["provider_failures"] += 1
            return self._fallback(key, company, "recap provider returned an empty summary")

        entry = RecapEntry(key=key, company=company, summary=summary, updated_at=datetime.now(timezone.utc))
        self._memory[key] = entry
        if self.store is not None:
            try:
                self.store.save_recap(entry)
            except Exception as exc:
                logger.error(f"Failed to persist recap for '{company}': {exc}")
        return RecapLookup(company=company, summary=summary, source="provider")

    def _fallback(self, key: str, company: str, reason: str) -> RecapLookup:
        stale = self._memory.get(key)
        if stale is not None:
            logger.debug(f"Serving stale recap for '{company}': {reason}")
            return RecapLookup(company=company, summary=stale.summary, source="stale", error=reason)
        return self._placeholder(company, reason)

    def _placeholder(self, company: str, reason: str) -> RecapLookup:
        self.stats["placeholders"] += 1
        logger.debug(f"Using placeholder recap for '{company}': {reason}")
        return RecapLookup(company=company, summary=self.placeholder, source="placeholder", error=reason)
