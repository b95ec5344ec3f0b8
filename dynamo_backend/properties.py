"""Property bags: the message envelope for every request and response.

A bag is an ordered list of ``(key, value)`` string pairs. Keys are looked up
first-match, so a bag behaves like a mapping for ordinary fields while still
allowing repeated keys where a response needs them (scan results tag every
key with ``""`` and every value with ``"_"``).
"""

from __future__ import annotations

import json
from typing import Iterable, Iterator

Pair = tuple[str, str]


class Properties:
    """Immutable ordered sequence of string pairs.

    Every "mutating" operation returns a new bag.
    """

    __slots__ = ("_pairs",)

    def __init__(self, pairs: Iterable[Pair] = ()):
        self._pairs: tuple[Pair, ...] = tuple((str(k), str(v)) for k, v in pairs)

    @classmethod
    def of(cls, **fields: str) -> "Properties":
        return cls(fields.items())

    # --- lookups ---

    def get(self, key: str) -> str | None:
        for k, v in self._pairs:
            if k == key:
                return v
        return None

    def get_all(self, key: str) -> list[str]:
        return [v for k, v in self._pairs if k == key]

    def __contains__(self, key: object) -> bool:
        return any(k == key for k, _ in self._pairs)

    # --- pure updates ---

    def set(self, key: str, value: str) -> "Properties":
        # Last set wins; the new pair goes to the front.
        return Properties(((str(key), str(value)),) + self.remove(key)._pairs)

    def remove(self, key: str) -> "Properties":
        return Properties(p for p in self._pairs if p[0] != key)

    def append(self, key: str, value: str) -> "Properties":
        """Add a pair at the end without touching existing pairs of the same key."""
        return Properties(self._pairs + ((str(key), str(value)),))

    # --- sequence protocol ---

    def __iter__(self) -> Iterator[Pair]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Properties):
            return self._pairs == other._pairs
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._pairs)

    def __repr__(self) -> str:
        return f"Properties({list(self._pairs)!r})"

    def pairs(self) -> list[Pair]:
        return list(self._pairs)

    # --- wire / cache encoding ---

    def to_json(self) -> str:
        return json.dumps([list(p) for p in self._pairs], separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "Properties":
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError("property bag JSON must be a list of pairs")
        pairs: list[Pair] = []
        for item in data:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                raise ValueError(f"invalid property pair: {item!r}")
            k, v = item
            if not isinstance(k, str) or not isinstance(v, str):
                raise ValueError(f"property pairs must be strings: {item!r}")
            pairs.append((k, v))
        return cls(pairs)


EMPTY = Properties()


def merge(from_: Properties, to: Properties) -> Properties:
    """Fold ``set`` over ``from_`` applied to ``to``; ``from_`` wins on conflict."""
    out = to
    # Fold in reverse so the first pair of ``from_`` ends up first in the result.
    for k, v in reversed(list(from_)):
        out = out.set(k, v)
    return out
