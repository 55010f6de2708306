"""
Per-file annotation storage.

Features attach auxiliary data to a loaded file without touching the file's
own type. A slot is addressed by the *identity* of the key object together
with the requested value type, so one key used with two value types yields
two independent slots.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, TypeVar

V = TypeVar("V")

# (id(key), value_type) -> (key, value); the key is kept alive so its id
# can't be reused while the slot exists.
_Slot = tuple[int, type]


class AnnotationStore:
    """
    Instance-scoped mapping from (key identity, value type) to a value.

    No locking is done here; callers sharing a store between threads must
    hold their own lock around mutation.

    Example:
        >>> store = AnnotationStore()
        >>> TREE_STATE = object()
        >>> state = store.get_or_create(TREE_STATE, dict)
        >>> state is store.get_or_create(TREE_STATE, dict)
        True
    """

    def __init__(self):
        self._slots: dict[_Slot, tuple[Any, Any]] = {}
        # id(key) -> value types stored under that key
        self._types_by_key: dict[int, set[type]] = {}

    def get_or_create(
        self,
        key: Any,
        value_type: type[V],
        factory: Callable[[], V] | None = None,
    ) -> V:
        """
        Get the value stored under ``key`` for ``value_type``, creating it on first use.

        Args:
            key: Any object; compared by identity
            value_type: Type of the stored value
            factory: Optional zero-argument constructor, defaults to ``value_type``

        Returns:
            The stored value
        """
        slot = (id(key), value_type)
        entry = self._slots.get(slot)
        if entry is not None:
            return entry[1]
        value = (factory or value_type)()
        self._slots[slot] = (key, value)
        self._types_by_key.setdefault(id(key), set()).add(value_type)
        return value

    def get(self, key: Any, value_type: type[V], default: V | None = None) -> V | None:
        """Get a stored value, or ``default`` when the slot is empty."""
        entry = self._slots.get((id(key), value_type))
        if entry is None:
            return default
        return entry[1]

    def remove(self, key: Any, value_type: type | None = None) -> None:
        """
        Remove a slot.

        With ``value_type`` given only that slot goes; otherwise every slot
        stored under ``key`` is removed. Missing slots are ignored.
        """
        key_id = id(key)
        types = self._types_by_key.get(key_id)
        if types is None:
            return

        if value_type is None:
            removed = list(types)
            types.clear()
        elif value_type in types:
            removed = [value_type]
            types.discard(value_type)
        else:
            return

        for removed_type in removed:
            del self._slots[(key_id, removed_type)]
        if not types:
            del self._types_by_key[key_id]

    def __contains__(self, key: Any) -> bool:
        return id(key) in self._types_by_key

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[tuple[Any, type]]:
        for (_, value_type), (key, _) in self._slots.items():
            yield key, value_type
