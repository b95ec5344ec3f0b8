"""Effects returned by operations and by ``update``.

Nothing here performs I/O. An effect describes work for the hosting runtime,
which executes it and feeds any resulting bag back into ``update``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from .properties import Properties


@dataclass(frozen=True, slots=True)
class NoEffect:
    pass


@dataclass(frozen=True, slots=True)
class Send:
    """Send a bag to the external bridge."""
    properties: Properties


@dataclass(frozen=True, slots=True)
class Loopback:
    """Push a bag onto our own inbound queue."""
    properties: Properties


@dataclass(frozen=True, slots=True)
class FetchProfile:
    """Fetch the user profile with ``access_token`` as a bearer credential."""
    access_token: str


@dataclass(frozen=True, slots=True)
class Batch:
    effects: tuple["Effect", ...]


Effect = Union[NoEffect, Send, Loopback, FetchProfile, Batch]

NONE = NoEffect()


def batch(effects: Iterable[Effect]) -> Effect:
    flat = tuple(e for e in effects if not isinstance(e, NoEffect))
    if not flat:
        return NONE
    if len(flat) == 1:
        return flat[0]
    return Batch(flat)
