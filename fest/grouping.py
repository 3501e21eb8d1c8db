# fest/grouping.py
"""Group flat child rows under their parents in memory.

Verbose reads fetch each child type with one query keyed by the parent ids
and stitch the result together here, instead of issuing a query per parent.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, Hashable, Iterable, List, TypeVar

T = TypeVar("T")


def group_by(rows: Iterable[T], key: Callable[[T], Hashable]) -> Dict[Hashable, List[T]]:
    grouped: Dict[Hashable, List[T]] = defaultdict(list)
    for row in rows:
        grouped[key(row)].append(row)
    return dict(grouped)


def attach_children(
    parents: Iterable[Dict[str, Any]],
    children: Dict[Hashable, List[Any]],
    *,
    field: str,
    parent_key: str = "id",
) -> List[Dict[str, Any]]:
    """Set ``parent[field]`` to the grouped children of each parent (empty list if none)."""

    attached = []
    for parent in parents:
        parent[field] = list(children.get(parent[parent_key], []))
        attached.append(parent)
    return attached


__all__ = ["attach_children", "group_by"]
