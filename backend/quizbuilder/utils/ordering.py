"""Helpers that keep `order_number` sequences dense.

Questions inside a quiz and answers inside a question are numbered
1..n. Every helper returns a new list and renumbers it, so callers never
have to patch numbers by hand after a move, insert or delete. Items may
be SQLModel rows or pydantic models; anything with a writable
`order_number` attribute works.
"""

from typing import Iterable, List, Sequence, TypeVar

T = TypeVar("T")


def renumber(items: Iterable[T], start: int = 1) -> List[T]:
    """Assign consecutive order numbers following the iteration order."""
    out = list(items)
    for offset, item in enumerate(out):
        item.order_number = start + offset
    return out


def sort_by_order(items: Iterable[T]) -> List[T]:
    """Stable sort on `order_number`; items without one keep their position at the end."""
    indexed = list(enumerate(items))
    indexed.sort(key=lambda pair: (
        getattr(pair[1], "order_number", None) is None,
        getattr(pair[1], "order_number", None) or 0,
        pair[0],
    ))
    return [item for _, item in indexed]


def move(items: Sequence[T], source: int, destination: int) -> List[T]:
    """Move the item at `source` to `destination` (drag and drop semantics)."""
    out = list(items)
    if not 0 <= source < len(out) or not 0 <= destination < len(out):
        raise IndexError(f"cannot move item {source} to {destination} in a list of {len(out)}")
    item = out.pop(source)
    out.insert(destination, item)
    return renumber(out)


def insert_at(items: Sequence[T], index: int, item: T) -> List[T]:
    """Insert `item` before position `index` (appends when index == len)."""
    out = list(items)
    if not 0 <= index <= len(out):
        raise IndexError(f"cannot insert at {index} in a list of {len(out)}")
    out.insert(index, item)
    return renumber(out)


def remove_at(items: Sequence[T], index: int) -> List[T]:
    """Drop the item at `index` and close the gap."""
    out = list(items)
    if not 0 <= index < len(out):
        raise IndexError(f"cannot remove item {index} from a list of {len(out)}")
    del out[index]
    return renumber(out)


def apply_id_order(items: Sequence[T], ordered_ids: Sequence[int]) -> List[T]:
    """Reorder persisted rows to match `ordered_ids` and renumber them.

    `ordered_ids` must be a permutation of the ids of `items`.
    """
    by_id = {item.id: item for item in items}
    if len(ordered_ids) != len(by_id) or set(ordered_ids) != set(by_id):
        raise ValueError("ids must list every item exactly once")
    return renumber(by_id[i] for i in ordered_ids)


def is_dense(numbers: Iterable[int], start: int = 1) -> bool:
    """Return True if `numbers` are exactly start..start+n-1 in ascending order."""
    nums = list(numbers)
    return nums == list(range(start, start + len(nums)))
