"""Scoped list cache.

This package provides:
- Deterministic cache keys for list results
- Scope lookups for numbered follow-ups ("open #3")
- Sweeper that deletes expired rows in bounded batches
"""

from mailgate.cache.keys import build_list_cache_key, sha1_hex
from mailgate.cache.list_cache import (
    IndexLookup,
    ScopedResultCache,
    encode_items,
    parse_numbered_reply,
)
from mailgate.cache.sweeper import CacheSweeper

__all__ = [
    # Keys
    "build_list_cache_key",
    "sha1_hex",
    # Cache
    "IndexLookup",
    "ScopedResultCache",
    "encode_items",
    "parse_numbered_reply",
    # Sweeper
    "CacheSweeper",
]
