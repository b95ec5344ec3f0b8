from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from .effects import Effect

if TYPE_CHECKING:
    from .database import Database
    from .profile import Profile

M = TypeVar("M")


@dataclass(frozen=True, slots=True)
class ResultDispatcher(Generic[M]):
    """
    Callbacks the hosting application supplies, one per result kind.

    Each receives the database the result came from and the current model, and
    returns the next model plus a follow-up effect. ``put`` also reports
    removals, with ``value=None``.
    """

    login: Callable[["Profile", "Database", M], tuple[M, Effect]]
    get: Callable[[str, str | None, "Database", M], tuple[M, Effect]]
    put: Callable[[str, str | None, "Database", M], tuple[M, Effect]]
    scan: Callable[[list[str], list[str], "Database", M], tuple[M, Effect]]
    logout: Callable[["Database", M], tuple[M, Effect]]
