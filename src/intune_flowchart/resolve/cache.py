from __future__ import annotations

import logging
import re
import threading
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from ..normalize.schema import NameCacheEntry
from ..util.concurrency import MAX_WORKERS_CAP, bounded_workers, parallel_map_ordered
from .lookup import DirectoryLookup

LOG = logging.getLogger(__name__)

NOT_FOUND_SUFFIX = " (not found)"

_LABEL_UNSAFE = re.compile(r"[\"|\[\]{}<>;`]")
_WHITESPACE = re.compile(r"\s+")


class Namespace(str, Enum):
    GROUP = "group"
    FILTER = "filter"


def strip_label_chars(text: str) -> str:
    """Drop characters the flowchart grammar or the signature separator cannot carry."""
    cleaned = _LABEL_UNSAFE.sub("", text or "")
    return _WHITESPACE.sub(" ", cleaned).strip()


def not_found_label(key: str) -> str:
    return f"{key}{NOT_FOUND_SUFFIX}"


class NameResolutionCache:
    """
    Memoizing id -> display name store for directory groups and assignment
    filters. One instance per compilation.

    - Without connectivity every key resolves to itself.
    - With connectivity each key gets exactly one lookup; failures store a
      "not found" label and are not retried.
    """

    def __init__(
        self,
        lookup: Optional[DirectoryLookup] = None,
        *,
        normalize: Callable[[str], str] = strip_label_chars,
        max_workers: int = MAX_WORKERS_CAP,
    ) -> None:
        self._lookup = lookup
        self._normalize = normalize
        self._max_workers = max(1, min(int(max_workers or 1), MAX_WORKERS_CAP))
        self._entries: Dict[Namespace, Dict[str, NameCacheEntry]] = {ns: {} for ns in Namespace}
        self._lock = threading.Lock()
        self._lookups = 0
        self._connected: Optional[bool] = None

    @property
    def lookup_count(self) -> int:
        return self._lookups

    def __len__(self) -> int:
        return sum(len(store) for store in self._entries.values())

    def has_connectivity(self) -> bool:
        if self._connected is None:
            if self._lookup is None:
                self._connected = False
            else:
                try:
                    self._connected = bool(self._lookup.has_connectivity())
                except Exception as e:
                    LOG.warning("Connectivity check failed; using ids as labels", extra={"error": str(e)})
                    self._connected = False
        return self._connected

    def entry(self, namespace: Namespace, key: str) -> Optional[NameCacheEntry]:
        return self._entries[namespace].get(key)

    def _lookup_one(self, namespace: Namespace, key: str) -> NameCacheEntry:
        lookup = self._lookup
        if lookup is None:
            return NameCacheEntry(key=key, resolved_name=key, resolved=True)
        fetch = lookup.resolve_group if namespace is Namespace.GROUP else lookup.resolve_filter
        with self._lock:
            self._lookups += 1
        try:
            name = fetch(key)
        except Exception as e:
            LOG.warning(
                "Name lookup failed",
                extra={"namespace": namespace.value, "key": key, "error": str(e)},
            )
            name = None
        normalized = self._normalize(str(name)) if name else ""
        if normalized:
            return NameCacheEntry(key=key, resolved_name=normalized, resolved=True)
        return NameCacheEntry(key=key, resolved_name=not_found_label(key), resolved=False)

    def _store(self, namespace: Namespace, entry: NameCacheEntry) -> NameCacheEntry:
        with self._lock:
            return self._entries[namespace].setdefault(entry.key, entry)

    def resolve(self, namespace: Namespace, key: Optional[str]) -> str:
        if not key:
            return ""
        cached = self._entries[namespace].get(key)
        if cached is not None:
            return cached.resolved_name
        if not self.has_connectivity():
            return self._store(namespace, NameCacheEntry(key=key, resolved_name=key, resolved=True)).resolved_name
        return self._store(namespace, self._lookup_one(namespace, key)).resolved_name

    def prefetch(self, namespace: Namespace, keys: Iterable[Optional[str]]) -> int:
        """
        Resolve all cache misses up front with a bounded worker pool. Workers
        only perform lookups; results are merged here by the calling thread.
        Returns the number of lookups issued.
        """
        store = self._entries[namespace]
        missing: List[str] = []
        seen = set()
        for key in keys:
            if not key or key in seen or key in store:
                continue
            seen.add(key)
            missing.append(key)
        if not missing:
            return 0
        if not self.has_connectivity():
            for key in missing:
                self._store(namespace, NameCacheEntry(key=key, resolved_name=key, resolved=True))
            return 0

        workers = bounded_workers(self._max_workers, len(missing))
        results = parallel_map_ordered(lambda k: self._lookup_one(namespace, k), missing, max_workers=workers)
        for entry in results:
            self._store(namespace, entry)
        LOG.debug(
            "Prefetched names",
            extra={"namespace": namespace.value, "lookups": len(missing), "workers": workers},
        )
        return len(missing)
