"""Lazily hydrated widget settings for one id_base.

``WidgetSettings`` maps instance numbers to slots. A slot is either
``Shallow`` (a reference to the backing document, not yet loaded) or
``Hydrated`` (the instance record). Reading a shallow slot fetches the
document once and replaces the slot in place.

Access is explicit (``get``, ``set``, ``unset``, ``exists``, ``items``); the
class does not pretend to be a dict.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator

MULTIWIDGET_KEY = "_multiwidget"
TEMPLATE_KEY = "__i__"
RESERVED_KEYS = frozenset({MULTIWIDGET_KEY, TEMPLATE_KEY})
MIN_NUMBER = 2


@dataclass(frozen=True)
class Shallow:
    ref: int


@dataclass
class Hydrated:
    instance: dict


def parse_number(key: Any) -> int | None:
    """Return ``key`` as an instance number, or None when it cannot be one."""
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        number = key
    elif isinstance(key, str) and key.isdigit():
        number = int(key)
    else:
        return None
    if number < MIN_NUMBER:
        return None
    return number


class WidgetSettings:
    def __init__(self, entries: dict | None = None, fetch: Callable[[int], dict] | None = None):
        self.fetch = fetch
        self.pending_deletions: list[int] = []
        self.dirty_numbers: set[int] = set()
        self._slots: dict[int, Shallow | Hydrated] = {}
        for key, value in (entries or {}).items():
            number = parse_number(key)
            if number is None:
                continue
            if isinstance(value, (Shallow, Hydrated)):
                self._slots[number] = value
            elif isinstance(value, dict):
                self._slots[number] = Hydrated(value)
            elif isinstance(value, int) and not isinstance(value, bool):
                self._slots[number] = Shallow(value)

    def __repr__(self):
        hydrated = sum(1 for slot in self._slots.values() if isinstance(slot, Hydrated))
        return f"<WidgetSettings numbers={list(self._slots)} hydrated={hydrated}>"

    def _hydrate(self, number: int, slot: Shallow | Hydrated) -> Hydrated:
        if isinstance(slot, Hydrated):
            return slot
        record = self.fetch(slot.ref) if self.fetch is not None else {}
        hydrated = Hydrated(record if isinstance(record, dict) else {})
        self._slots[number] = hydrated
        return hydrated

    def get(self, key: Any):
        if key == MULTIWIDGET_KEY:
            return 1
        number = parse_number(key)
        if number is None:
            return None
        slot = self._slots.get(number)
        if slot is None:
            return None
        return self._hydrate(number, slot).instance

    def slot(self, key: Any) -> Shallow | Hydrated | None:
        """Return the raw slot without hydrating it."""
        number = parse_number(key)
        if number is None:
            return None
        return self._slots.get(number)

    def exists(self, key: Any) -> bool:
        if key == MULTIWIDGET_KEY:
            return True
        number = parse_number(key)
        return number is not None and number in self._slots

    def set(self, key: Any, instance: Any) -> None:
        """Store an instance. Reserved keys, bad numbers and non-dicts are ignored."""
        if key in RESERVED_KEYS:
            return
        number = parse_number(key)
        if number is None or not isinstance(instance, dict):
            return
        self._slots[number] = Hydrated(instance)
        self.dirty_numbers.add(number)
        if number in self.pending_deletions:
            self.pending_deletions.remove(number)

    def replace(self, key: Any, instance: dict) -> None:
        """Replace an instance without marking it for saving."""
        number = parse_number(key)
        if number is None or not isinstance(instance, dict):
            return
        self._slots[number] = Hydrated(instance)

    def unset(self, key: Any) -> None:
        if key in RESERVED_KEYS:
            return
        number = parse_number(key)
        if number is None or number not in self._slots:
            return
        del self._slots[number]
        self.dirty_numbers.discard(number)
        self.pending_deletions.append(number)

    def discard(self, key: Any) -> None:
        """Drop an instance that is already gone from storage."""
        number = parse_number(key)
        if number is None:
            return
        self._slots.pop(number, None)
        self.dirty_numbers.discard(number)

    def numbers(self) -> list[int]:
        return list(self._slots)

    def count(self) -> int:
        return len(self._slots)

    def items(self) -> Iterator[tuple[int, dict]]:
        for number in list(self._slots):
            slot = self._slots.get(number)
            if slot is not None:
                yield number, self._hydrate(number, slot).instance

    def values(self) -> Iterator[dict]:
        for _, instance in self.items():
            yield instance

    def to_dict(self) -> dict[int, dict]:
        return dict(self.items())

    def is_dirty(self) -> bool:
        return bool(self.dirty_numbers or self.pending_deletions)

    def mark_clean(self) -> None:
        self.dirty_numbers.clear()

    def take_pending_deletions(self) -> list[int]:
        pending, self.pending_deletions = self.pending_deletions, []
        return pending
