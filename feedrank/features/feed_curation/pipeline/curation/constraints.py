"""
Selection passes over an already-scored list of curated items.

Every function takes an immutable sequence and returns a new tuple; none of
them look at how scores were computed. Ties always fall back to item id so
the same input yields the same order.
"""

import math
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from feedrank.features.feed_curation.domain.models import ContentKind, CuratedItem


def newest_first(item: CuratedItem) -> tuple:
    return (-item.created_at.timestamp(), item.id)


def best_score_first(item: CuratedItem) -> tuple:
    return (-item.final_score, item.id)


def select_diverse(
    items: Sequence[CuratedItem],
    pool_size: int,
    per_author_kind_cap: int = 3,
    kind_share_cap: float = 0.5,
) -> tuple[CuratedItem, ...]:
    """
    Walk items newest-first and admit up to ``pool_size`` of them.

    An item is rejected when its author already has ``per_author_kind_cap``
    admitted items of the same kind, or when its kind already fills
    ``kind_share_cap`` of the pool.
    """
    kind_cap = max(1, math.floor(pool_size * kind_share_cap))
    per_author_kind: Counter[tuple[str, ContentKind]] = Counter()
    per_kind: Counter[ContentKind] = Counter()
    admitted: list[CuratedItem] = []

    for item in sorted(items, key=newest_first):
        if len(admitted) >= pool_size:
            break
        author_kind = (item.author_id, item.kind)
        if per_author_kind[author_kind] >= per_author_kind_cap:
            continue
        if per_kind[item.kind] >= kind_cap:
            continue
        per_author_kind[author_kind] += 1
        per_kind[item.kind] += 1
        admitted.append(item)

    return tuple(admitted)


def rebalance(
    items: Sequence[CuratedItem], target_distribution: Mapping[ContentKind, float]
) -> tuple[CuratedItem, ...]:
    """
    Pull each kind toward its target share by score, top up with the best
    leftovers of any kind, then present newest-first.
    """
    total = len(items)
    chosen: list[CuratedItem] = []
    chosen_ids: set[str] = set()

    for kind, share in target_distribution.items():
        quota = math.floor(total * share)
        of_kind = sorted((item for item in items if item.kind == kind), key=best_score_first)
        for item in of_kind[:quota]:
            chosen.append(item)
            chosen_ids.add(item.id)

    open_slots = total - len(chosen)
    if open_slots > 0:
        leftovers = sorted(
            (item for item in items if item.id not in chosen_ids), key=best_score_first
        )
        chosen.extend(leftovers[:open_slots])

    return tuple(sorted(chosen, key=newest_first))


@dataclass(frozen=True, slots=True)
class PageSlice:
    items: tuple[CuratedItem, ...]
    has_more: bool
    total_pages: int


def paginate(items: Sequence[CuratedItem], page: int, page_size: int) -> PageSlice:
    """1-based pages; a page past the end is empty with ``has_more`` false."""
    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")

    total = len(items)
    start = (page - 1) * page_size
    end = start + page_size
    return PageSlice(
        items=tuple(items[start:end]),
        has_more=end < total,
        total_pages=math.ceil(total / page_size),
    )
