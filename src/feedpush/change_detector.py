"""Decide which normalized items a channel has not stored yet."""

from feedpush.models import Item, Watermark


def detect_new_items(items: list[Item], watermark: Watermark) -> list[Item]:
    """Return the items whose guid the channel does not know, in feed order.

    Identity is the guid alone, never position or published date. A known
    guid is skipped even when its content changed upstream. A guid repeated
    within one payload is kept only once.
    """
    seen: set[str] = set()
    new_items = []
    for item in items:
        if watermark.knows(item.guid) or item.guid in seen:
            continue
        seen.add(item.guid)
        new_items.append(item)
    return new_items
