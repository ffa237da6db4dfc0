"""
In-process result cache for host functions.

One cache belongs to one built engine and is shared by every invocation of
that engine. Entries are never evicted.
"""

import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Hashable, Optional, Sequence, Tuple

from ..shared.logging import get_logger
from ..shared.metrics import MetricsCollector

_SCALARS = (str, int, float, bool, Decimal, date, datetime, bytes, type(None))


class UncacheableArgument(Exception):
    """Raised internally when an argument has no structural key."""


def freeze(value: Any) -> Hashable:
    """Return a hashable structural form of ``value``."""
    if isinstance(value, _SCALARS):
        # Keep 1, 1.0 and True apart so typed functions don't share entries
        return (type(value).__name__, value)
    if isinstance(value, (list, tuple)):
        return ("seq", tuple(freeze(item) for item in value))
    if isinstance(value, dict):
        return ("map", frozenset((freeze(k), freeze(v)) for k, v in value.items()))
    if isinstance(value, (set, frozenset)):
        return ("set", frozenset(freeze(item) for item in value))
    try:
        hash(value)
    except TypeError:
        raise UncacheableArgument(type(value).__name__)
    return ("obj", value)


class FunctionResultCache:
    """Thread-safe get-or-compute cache keyed by function name and arguments.

    Two callers racing on the same key may both compute; the last write is
    retained.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("ruleflow.cache.functions")
        self.metrics = metrics
        self._entries: Dict[Tuple[str, Hashable], Any] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(function_name: str, args: Sequence[Any]) -> Tuple[str, Hashable]:
        """Build the structural cache key for one call."""
        return function_name, tuple(freeze(arg) for arg in args)

    def get_or_compute(self, function_name: str, args: Sequence[Any], compute: Callable[[], Any]) -> Any:
        """Return the cached result for this call, computing and storing it on a miss."""
        try:
            key = self.make_key(function_name, args)
        except UncacheableArgument as e:
            self.logger.debug("Bypassing function cache", function=function_name, argument_type=str(e))
            return compute()

        with self._lock:
            if key in self._entries:
                self.hits += 1
                value = self._entries[key]
                hit = True
            else:
                self.misses += 1
                hit = False

        if self.metrics:
            self.metrics.record_cache_lookup(function_name, hit)

        if hit:
            self.logger.debug("Function cache hit", function=function_name)
            return value

        value = compute()
        with self._lock:
            self._entries[key] = value
        return value

    def clear(self):
        """Drop every cached result."""
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
            }

    def __len__(self) -> int:
        return len(self._entries)
