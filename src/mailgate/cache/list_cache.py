"""Scoped result cache for numbered follow-ups.

After a list is shown in a conversation ("1. Invoice from ACME ..."), a
follow-up such as "open #3" is resolved against the newest cached list for
the same channel/thread, without calling the mail API again.

Expired rows are still readable until the sweeper removes them, but they are
reported as ``expired`` instead of served as hits.

Usage:
    from mailgate.cache.list_cache import ScopedResultCache

    cache = ScopedResultCache(store, config)
    key = await cache.save_list(items, user_id="U1", channel="C1", thread_ts="171.01")
    lookup = await cache.resolve_index("C1", "171.01", 3)
    if lookup.status == "hit":
        open_message(lookup.item.message_id)
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

import regex

from mailgate.cache.keys import build_list_cache_key
from mailgate.core.ids import now_sec
from mailgate.core.logging import get_logger
from mailgate.db.store import ListItem

if TYPE_CHECKING:
    from mailgate.config_schema import AppConfig
    from mailgate.db.store import DatabaseStore, EmailListCacheRecord

logger = get_logger(__name__)

LookupStatus = Literal["hit", "miss", "expired", "not_found", "unreadable"]

# Most lines shown in a cached preview
PREVIEW_LIMIT = 10

# "open #3", "#3 open", "3 open", "3番を開いて", "3を開く"
NUMBERED_REPLY_PATTERN = regex.compile(
    r"^\s*(?:open\s*#?\s*(?P<a>\d{1,3})|#?\s*(?P<b>\d{1,3})\s*(?:番目?)?\s*(?:を)?\s*(?:open|開いて|開く))",
    regex.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class IndexLookup:
    """Outcome of resolving a numeric reference.

    Attributes:
        status: hit, miss (no list for the scope), expired, not_found (no such
            index), or unreadable (stored items could not be parsed)
        index: The requested index
        item: Matched item (hit only)
        cache_key: Key of the cached list consulted, if any
    """

    status: LookupStatus
    index: int
    item: ListItem | None = None
    cache_key: str | None = None


def parse_numbered_reply(text: str | None) -> int | None:
    """Extract the index from an "open #N" style reply, or None."""
    if not text:
        return None
    match = NUMBERED_REPLY_PATTERN.match(text)
    if not match:
        return None
    return int(match.group("a") or match.group("b"))


def _coerce_item(position: int, item: ListItem | Mapping[str, Any]) -> ListItem:
    if isinstance(item, ListItem):
        return item
    data = dict(item)
    if data.get("index") is None:
        data["index"] = position
    return ListItem.from_dict(data)


def encode_items(items: Iterable[ListItem | Mapping[str, Any]]) -> str:
    """Serialize items to ``{"items": [...]}``.

    Indices given by the caller are kept; items without one are numbered by
    position starting at 1.
    """
    encoded = [_coerce_item(pos, item).to_dict() for pos, item in enumerate(items, start=1)]
    return json.dumps({"items": encoded}, ensure_ascii=False)


class ScopedResultCache:
    """List cache keyed by user/workspace/mailbox/query/page, looked up by scope."""

    def __init__(self, store: DatabaseStore, config: AppConfig) -> None:
        self._store = store
        self._config = config

    @property
    def ttl_seconds(self) -> int:
        return self._config.cache.list_ttl_minutes * 60

    async def save_list(
        self,
        items: Iterable[ListItem | Mapping[str, Any]],
        user_id: str,
        channel: str | None = None,
        thread_ts: str | None = None,
        workspace_id: str | None = None,
        mailbox: str | None = None,
        query: str | None = None,
        page_token: str | None = None,
        page: int | None = None,
        now_sec: int | None = None,
    ) -> str | None:
        """Cache one page of list results.

        Returns:
            The cache key, or None if the store was unavailable
        """
        key = build_list_cache_key(
            user_id,
            workspace_id=workspace_id,
            mailbox=mailbox,
            query=query,
            page_token=page_token,
            page=page,
        )
        now = _resolve_now(now_sec)
        try:
            items_json = encode_items(items)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("list_cache_encode_failed", cache_key=key, error=str(e))
            return None

        stored = await self._store.upsert_list_cache(
            key,
            items_json,
            expires_at=now + self.ttl_seconds,
            channel=channel,
            thread_ts=thread_ts,
            created_at=now,
        )
        if not stored:
            return None

        logger.debug("list_cache_saved", cache_key=key, channel=channel, thread_ts=thread_ts)
        return key

    async def resolve_index(
        self,
        channel: str,
        thread_ts: str | None,
        index: int,
        now_sec: int | None = None,
    ) -> IndexLookup:
        """Find item ``index`` in the newest list cached for a conversation scope."""
        record = await self._store.get_latest_list_cache_by_scope(channel, thread_ts)
        if record is None:
            logger.debug("list_cache_miss", channel=channel, thread_ts=thread_ts)
            return IndexLookup(status="miss", index=index)

        if record.is_expired(_resolve_now(now_sec)):
            logger.debug("list_cache_expired", cache_key=record.cache_key)
            return IndexLookup(status="expired", index=index, cache_key=record.cache_key)

        try:
            items = record.items()
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("list_cache_unreadable", cache_key=record.cache_key, error=str(e))
            return IndexLookup(status="unreadable", index=index, cache_key=record.cache_key)

        for item in items:
            if item.index == index and item.message_id:
                logger.debug("list_cache_hit", cache_key=record.cache_key, index=index)
                return IndexLookup(
                    status="hit", index=index, item=item, cache_key=record.cache_key
                )

        return IndexLookup(status="not_found", index=index, cache_key=record.cache_key)

    async def preview(self, cache_key: str, now_sec: int | None = None) -> list[ListItem] | None:
        """Fresh cached items for a quick preview, or None."""
        record = await self._store.get_list_cache(cache_key)
        if record is None or record.is_expired(_resolve_now(now_sec)):
            return None
        return _readable_items(record)


def _readable_items(record: EmailListCacheRecord) -> list[ListItem] | None:
    try:
        items = record.items()
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.warning("list_cache_unreadable", cache_key=record.cache_key, error=str(e))
        return None
    return items[:PREVIEW_LIMIT] or None


def _resolve_now(value: int | None) -> int:
    return now_sec() if value is None else value
