"""
Team identifier resolution with an explicit, bounded, expiring cache.

Feeds spell the same club many ways ("Man Utd", "Manchester United FC",
"Manchester United").  :class:`TeamIdCache` maps every spelling to one
canonical identifier.  The cache is owned by the caller and passed in;
there is no module-level instance.

Resolution order:
  1. manual aliases (exact, case-insensitive)
  2. exact match against known canonical names (case-insensitive)
  3. suffix stripping ("FC", "SC", "AFC", ...) + exact match
  4. rapidfuzz ``token_set_ratio`` with a substring guard
  5. fall through: the stripped input is its own canonical id
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Iterable, Mapping, Optional

from rapidfuzz import fuzz, process

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 2048
DEFAULT_TTL_SECONDS = 6 * 3600
FUZZY_CUTOFF = 85

# Club-form suffixes that carry no identity
_SUFFIXES = ("FC", "SC", "AFC", "CF", "FK", "SK", "BK", "AC")


def _strip_suffix(name: str) -> str:
    for suffix in _SUFFIXES:
        if name.upper().endswith(f" {suffix}"):
            return name[: -(len(suffix) + 1)].strip()
        if name.upper().startswith(f"{suffix} "):
            return name[len(suffix) + 1:].strip()
    return name


def _is_dangerous_substring_match(query: str, matched: str) -> bool:
    """
    True when a fuzzy hit is likely a false positive from token_set_ratio
    ignoring extra tokens, e.g. "Manchester City" → "Manchester", or a
    hyphenated reserve side "Ajax-II" → "Ajax".
    """
    q = query.lower().strip()
    m = matched.lower().strip()

    if "-" in q and "-" not in m:
        base = q.split("-")[0].strip()
        if base == m or q.startswith(m + "-"):
            return True

    if m in q or q in m:
        if fuzz.ratio(q, m) < 75:
            return True

    return False


class TeamIdCache:
    """
    LRU + TTL cache of raw team name → canonical identifier.

    Args:
        canonical_names: Known canonical identifiers to match against.
        aliases: Manual overrides, raw spelling → canonical id.
        max_size: Entries kept before least-recently-used eviction.
        ttl_seconds: Age after which an entry is re-resolved.
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        canonical_names: Iterable[str] = (),
        aliases: Optional[Mapping[str, str]] = None,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._names: list[str] = list(dict.fromkeys(canonical_names))
        self._lower = {n.lower(): n for n in self._names}
        self._aliases = {k.strip().lower(): v for k, v in (aliases or {}).items()}
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def add_names(self, names: Iterable[str]) -> None:
        """Register more canonical names and drop cached resolutions."""
        for name in names:
            if name.lower() not in self._lower:
                self._names.append(name)
                self._lower[name.lower()] = name
        self.clear()

    def clear(self) -> None:
        self._entries.clear()

    def resolve(self, raw_name: str) -> str:
        """Return the canonical identifier for *raw_name* (cached)."""
        key = raw_name.strip().lower()
        now = self._clock()
        cached = self._entries.get(key)
        if cached is not None and now - cached[1] < self.ttl_seconds:
            self._entries.move_to_end(key)
            self.hits += 1
            return cached[0]

        self.misses += 1
        canonical = self._lookup(raw_name.strip())
        self._entries[key] = (canonical, now)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
        return canonical

    def _lookup(self, name: str) -> str:
        if not name:
            return name

        alias = self._aliases.get(name.lower())
        if alias is not None:
            return alias

        exact = self._lower.get(name.lower())
        if exact is not None:
            return exact

        stripped = _strip_suffix(name)
        exact = self._lower.get(stripped.lower())
        if exact is not None:
            return exact

        if self._names:
            result = process.extractOne(
                stripped, self._names, scorer=fuzz.token_set_ratio, score_cutoff=FUZZY_CUTOFF
            )
            if result and _is_dangerous_substring_match(stripped, result[0]):
                logger.warning("Substring guard blocked fuzzy match '%s' → '%s'", stripped, result[0])
                result = None
            if result:
                logger.debug("Fuzzy matched '%s' to '%s' (score %.0f)", name, result[0], result[1])
                return result[0]

        return stripped
