"""Deterministic cache keys for list results.

Usage:
    from mailgate.cache.keys import build_list_cache_key

    key = build_list_cache_key("U123", workspace_id="T9", query="from:boss")
    # 'gmail|user=U123|ws=T9|mailbox=query|qsha=...|page=1'
"""

from __future__ import annotations

import hashlib
from typing import Any

KEY_NAMESPACE = "gmail"
UNKNOWN_WORKSPACE = "unknown"


def sha1_hex(text: str) -> str:
    """Hex SHA-1 of UTF-8 text."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def build_list_cache_key(
    user_id: str,
    workspace_id: str | None = None,
    mailbox: str | None = None,
    query: str | None = None,
    page_token: str | None = None,
    page: Any = None,
) -> str:
    """Build the cache key for one page of a list result.

    Free-text queries are hashed, never embedded. A page token wins over a
    page number; anything that is not a positive integer page means page 1.
    """
    parts = [
        KEY_NAMESPACE,
        f"user={user_id}",
        f"ws={workspace_id or UNKNOWN_WORKSPACE}",
        f"mailbox={mailbox or ('query' if query else 'inbox')}",
    ]
    if query:
        parts.append(f"qsha={sha1_hex(query)}")

    if page_token:
        parts.append(f"pageToken={page_token}")
    elif isinstance(page, int) and not isinstance(page, bool) and page > 0:
        parts.append(f"page={page}")
    else:
        parts.append("page=1")

    return "|".join(parts)
