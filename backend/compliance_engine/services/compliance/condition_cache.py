"""
Per-process cache of compiled rule conditions.

Regexes for tag_pattern rules and parsed expressions for custom_script rules
are compiled once per (rule, condition payload) and reused across resources
and scans. Entries are keyed by the rule id plus a fingerprint of the
payload, so an edited rule never hits a stale entry; ``invalidate`` drops a
rule's entries eagerly when the rule store updates or deletes it.
"""

import hashlib
import json
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 2048


def fingerprint(payload: Any) -> str:
    """Stable hash of a JSON-compatible condition payload."""
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class ConditionCache:
    """
    Thread-safe LRU cache for compiled condition artefacts.

    Owned by a RuleEvaluator instance; scan workers share it.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: "OrderedDict[Tuple[str, str, Hashable], Any]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get_or_compile(self, rule_id: str, kind: str, payload: Any, compiler: Callable[[], Any]) -> Any:
        """
        Return the cached artefact or build it with ``compiler``.

        Compilation failures propagate and are not cached.
        """
        key = (rule_id, kind, fingerprint(payload))
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
            self.misses += 1

        compiled = compiler()

        with self._lock:
            self._entries[key] = compiled
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return compiled

    def invalidate(self, rule_id: str) -> int:
        """Drop every entry for a rule. Returns the number removed."""
        with self._lock:
            stale = [key for key in self._entries if key[0] == rule_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached conditions for rule {rule_id}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Optional[int]]:
        with self._lock:
            return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
