"""Reactive collection — a keyed, queryable, selectable container.

Created: 2026-10-19

Items are either mappings or dataclass instances and are treated as
immutable values: a merge produces a new item that replaces the old one.

Query pipeline (fixed order, each stage optional):
1. search: case-insensitive substring match on every field's str()
2. filter: equality, or "contains" when the field holds a collection
3. sort: stable, by one field, asc or desc

Derived views (``filtered``, ``selected_items``, ``stats``) are computed
on read and memoized against a version counter that every mutation bumps.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from accountsync.ledger import OperationLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

SizeListener = Callable[[int, int], Any]

_COLLECTION_TYPES = (list, tuple, set, frozenset)


@dataclass(frozen=True)
class CollectionStats:
    total: int
    filtered: int
    selected: int


# ============================================================================
# Item helpers
# ============================================================================


def get_field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def iter_values(item: Any) -> Iterable[Any]:
    if isinstance(item, Mapping):
        return item.values()
    if dataclasses.is_dataclass(item):
        return (getattr(item, f.name) for f in dataclasses.fields(item))
    return vars(item).values()


def merge_item(item: T, patch: Mapping[str, Any]) -> T:
    """Shallow-merge *patch* into *item*, returning a new item."""
    if isinstance(item, Mapping):
        return {**item, **patch}  # type: ignore[return-value]
    if dataclasses.is_dataclass(item):
        return dataclasses.replace(item, **patch)
    raise TypeError(f"Cannot merge into {type(item).__name__}")


def _stringify(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value).lower()


def _compare(a: Any, b: Any) -> int:
    # None sorts after every value in ascending order
    if a is None or b is None:
        return (a is None) - (b is None)
    try:
        if a < b:
            return -1
        if a > b:
            return 1
        return 0
    except TypeError:
        sa, sb = _stringify(a), _stringify(b)
        return (sa > sb) - (sa < sb)


# ============================================================================
# Collection
# ============================================================================


class ReactiveCollection(Generic[T]):
    """Ordered collection of keyed items with one search, filter and sort.

    Only one search string, one ``(field, value)`` filter and one
    ``(field, direction)`` sort can be active at a time.
    """

    def __init__(
        self,
        key_field: str = "id",
        items: Iterable[T] | None = None,
        sort_by: str | None = None,
        ledger: OperationLedger | None = None,
    ):
        self.key_field = key_field
        self.ledger = ledger or OperationLedger()

        self._items: list[T] = list(items or [])
        self._selected: dict[str, None] = {}  # insertion-ordered set

        self.search_query: str = ""
        self.filter_field: str | None = None
        self.filter_value: Any = None
        self.sort_field: str | None = sort_by
        self.sort_direction: str = "asc"

        self._version = 0
        self._cache: dict[str, tuple[int, Any]] = {}
        self._listeners: list[SizeListener] = []

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def version(self) -> int:
        return self._version

    @property
    def items(self) -> list[T]:
        return list(self._items)

    @property
    def selected_ids(self) -> list[str]:
        return list(self._selected)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def __contains__(self, key: object) -> bool:
        return self._index_of(key) >= 0

    def get(self, key: str) -> T | None:
        index = self._index_of(key)
        return self._items[index] if index >= 0 else None

    def key_of(self, item: T) -> str:
        return get_field(item, self.key_field)

    # =========================================================================
    # Mutations
    # =========================================================================

    def upsert(self, items: T | Iterable[T]) -> None:
        """Merge items that already exist by key, append the rest in order."""
        batch = _as_batch(items)
        if not batch:
            return
        old_size = len(self._items)
        for item in batch:
            index = self._index_of(self.key_of(item))
            if index >= 0:
                self._items[index] = merge_item(self._items[index], _as_patch(item))
            else:
                self._items.append(item)
        self._changed(old_size)

    def replace_all(self, items: Iterable[T]) -> None:
        """Swap the whole backing sequence, dropping selections that vanished."""
        old_size = len(self._items)
        self._items = list(items)
        keys = {self.key_of(i) for i in self._items}
        self._selected = {k: None for k in self._selected if k in keys}
        self._changed(old_size)

    def remove(self, keys: str | Iterable[str]) -> None:
        doomed = {keys} if isinstance(keys, str) else set(keys)
        old_size = len(self._items)
        self._items = [i for i in self._items if self.key_of(i) not in doomed]
        for key in doomed:
            self._selected.pop(key, None)
        self._changed(old_size)

    def update(self, key: str, patch: Mapping[str, Any]) -> bool:
        """Shallow-merge *patch* into the item with *key*. No-op if absent."""
        return self.update_many({key: patch})

    def update_many(self, patches: Mapping[str, Mapping[str, Any]]) -> bool:
        """Apply several patches as one state transition.

        Returns True if at least one item was touched.
        """
        touched = False
        for key, patch in patches.items():
            index = self._index_of(key)
            if index < 0:
                continue
            self._items[index] = merge_item(self._items[index], patch)
            touched = True
        if touched:
            self._changed(len(self._items))
        return touched

    # =========================================================================
    # Selection
    # =========================================================================

    def select(self, keys: str | Iterable[str], on: bool = True) -> None:
        batch = [keys] if isinstance(keys, str) else list(keys)
        if on:
            for key in batch:
                self._selected.setdefault(key, None)
        else:
            for key in batch:
                self._selected.pop(key, None)
        self._bump()

    def toggle_select_all(self) -> None:
        """Select every visible item, or deselect them if all are selected.

        "Visible" means after the current search/filter/sort.
        """
        visible = [self.key_of(i) for i in self.filtered]
        if all(key in self._selected for key in visible):
            for key in visible:
                self._selected.pop(key, None)
        else:
            for key in visible:
                self._selected.setdefault(key, None)
        self._bump()

    def clear_selection(self) -> None:
        self._selected.clear()
        self._bump()

    # =========================================================================
    # Query
    # =========================================================================

    def set_search(self, query: str) -> None:
        self.search_query = query or ""
        self._bump()

    def set_filter(self, field: str | None, value: Any = None) -> None:
        self.filter_field = field
        self.filter_value = value
        self._bump()

    def set_sort(self, field: str | None, direction: str = "asc") -> None:
        if direction not in ("asc", "desc"):
            raise ValueError(f"Sort direction must be 'asc' or 'desc', got {direction!r}")
        self.sort_field = field
        self.sort_direction = direction
        self._bump()

    def clear_query(self) -> None:
        self.search_query = ""
        self.filter_field = None
        self.filter_value = None
        self.sort_field = None
        self.sort_direction = "asc"
        self._bump()

    # =========================================================================
    # Derived views
    # =========================================================================

    @property
    def filtered(self) -> list[T]:
        return list(self._memo("filtered", self._compute_filtered))

    @property
    def selected_items(self) -> list[T]:
        def _compute() -> list[T]:
            found = (self.get(key) for key in self._selected)
            return [item for item in found if item is not None]

        return list(self._memo("selected_items", _compute))

    @property
    def stats(self) -> CollectionStats:
        return self._memo(
            "stats",
            lambda: CollectionStats(
                total=len(self._items),
                filtered=len(self._memo("filtered", self._compute_filtered)),
                selected=len(self.selected_items),
            ),
        )

    def _compute_filtered(self) -> list[T]:
        items = list(self._items)

        if self.search_query:
            needle = self.search_query.lower()
            items = [
                item
                for item in items
                if any(needle in _stringify(v) for v in iter_values(item))
            ]

        if self.filter_field and self.filter_value not in (None, ""):
            items = [item for item in items if self._matches_filter(item)]

        if self.sort_field:
            field_name = self.sort_field

            def _cmp(a: T, b: T) -> int:
                return _compare(get_field(a, field_name), get_field(b, field_name))

            items = sorted(
                items,
                key=functools.cmp_to_key(_cmp),
                reverse=self.sort_direction == "desc",
            )

        return items

    def _matches_filter(self, item: T) -> bool:
        value = get_field(item, self.filter_field)  # type: ignore[arg-type]
        if isinstance(value, _COLLECTION_TYPES):
            return self.filter_value in value
        return value == self.filter_value

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, callback: SizeListener) -> None:
        """Register ``callback(old_size, new_size)``, called after item mutations."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: SizeListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # =========================================================================
    # Internals
    # =========================================================================

    def _index_of(self, key: object) -> int:
        for index, item in enumerate(self._items):
            if self.key_of(item) == key:
                return index
        return -1

    def _memo(self, name: str, compute: Callable[[], Any]) -> Any:
        cached = self._cache.get(name)
        if cached is not None and cached[0] == self._version:
            return cached[1]
        value = compute()
        self._cache[name] = (self._version, value)
        return value

    def _bump(self) -> None:
        self._version += 1

    def _changed(self, old_size: int) -> None:
        self._bump()
        new_size = len(self._items)
        for listener in list(self._listeners):
            try:
                listener(old_size, new_size)
            except Exception:
                logger.warning("Collection listener failed", exc_info=True)


def _as_patch(item: Any) -> dict[str, Any]:
    if isinstance(item, Mapping):
        return dict(item)
    if dataclasses.is_dataclass(item):
        return {f.name: getattr(item, f.name) for f in dataclasses.fields(item)}
    return dict(vars(item))


def _as_batch(items: Any) -> list[Any]:
    if isinstance(items, Mapping) or dataclasses.is_dataclass(items):
        return [items]
    return list(items)
