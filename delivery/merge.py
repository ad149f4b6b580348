# =============================================================================
# delivery/merge.py - Push/Poll Merge
# =============================================================================
# Push frames and poll results feed one ordered, de-duplicated stream keyed by
# entity id. Whichever path delivers an item first wins; the other path's copy
# is dropped, so callers see every item exactly once.
# =============================================================================

from datetime import datetime, timezone
from typing import Any, Iterable


def _timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def order_key(item: dict[str, Any]) -> tuple[datetime, str]:
    """(created_at, id): the same total order the server uses."""
    return (_timestamp(item.get("created_at")), str(item.get("id")))


class MergedStream:
    """
    Ordered view over everything received for one feed.

    Example:
        stream = MergedStream()
        fresh = stream.add(poll_results)   # only items not seen before
        stream.add(fresh)                  # -> []
    """

    def __init__(self, newest_first: bool = False):
        self.newest_first = newest_first
        self._items: dict[str, dict[str, Any]] = {}

    def add(self, items: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Merge items in; return the ones that were new, in stream order.

        Items without an id are ignored.
        """
        fresh = []
        for item in items:
            item_id = item.get("id")
            if item_id is None:
                continue
            item_id = str(item_id)
            if item_id in self._items:
                # Same entity from the other path; keep the newest copy (e.g. is_read flips)
                self._items[item_id] = {**self._items[item_id], **item}
                continue
            self._items[item_id] = item
            fresh.append(item)
        return sorted(fresh, key=order_key, reverse=self.newest_first)

    def items(self) -> list[dict[str, Any]]:
        return sorted(self._items.values(), key=order_key, reverse=self.newest_first)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, item_id: object) -> bool:
        return str(item_id) in self._items

    def __len__(self) -> int:
        return len(self._items)
