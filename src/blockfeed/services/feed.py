from __future__ import annotations

from typing import Iterable, List, Set, Tuple

from blockfeed.core.models import Transaction


def new_entries(
    existing: Iterable[Transaction],
    new_batch: Iterable[Transaction],
) -> List[Transaction]:
    """Entries of `new_batch` (fetch order kept) whose hash is not in `existing` or earlier in the batch."""
    seen: Set[str] = {t.hash for t in existing}
    fresh: List[Transaction] = []
    for t in new_batch:
        if t.hash in seen:
            continue
        seen.add(t.hash)
        fresh.append(t)
    return fresh


def merge_feed(
    existing: Iterable[Transaction],
    new_batch: Iterable[Transaction],
    retention: int,
) -> Tuple[Transaction, ...]:
    """
    Newest-first merge of one block's batch (given in fetch order) into the feed.

    - last fetched transaction ends up on top
    - a hash already in the feed keeps its existing entry and position
    - entries past `retention` are dropped from the tail
    """
    if retention <= 0:
        return ()

    current = tuple(existing)
    fresh = new_entries(current, new_batch)
    fresh.reverse()

    return (tuple(fresh) + current)[:retention]
