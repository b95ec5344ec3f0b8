"""The ``Database`` handle and the operations issued against it.

A database is either :class:`SimulatedDatabase` or :class:`RealDatabase`.
Both are immutable configuration; the state they work with lives in the
hosting application's model and is reached through accessor closures.

Every operation takes the database and the current model and returns
``(model, effect)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar, Union

from . import real, simulated
from .dispatcher import ResultDispatcher
from .effects import Effect, Loopback, Send
from .profile import Profile
from .properties import Properties
from .settings import ServerInfo

M = TypeVar("M")


@dataclass(frozen=True, slots=True)
class SimulatedDatabase(Generic[M]):
    profile: Profile
    get_storage: Callable[[M], dict[str, str]]
    set_storage: Callable[[dict[str, str], M], M]
    dispatcher: ResultDispatcher[M]
    # Simulated responses never leave the process.
    channel: Callable[[Properties], Effect] = field(default=Loopback)


@dataclass(frozen=True, slots=True)
class RealDatabase(Generic[M]):
    server_info: ServerInfo
    get_properties: Callable[[M], Properties]
    set_properties: Callable[[Properties, M], M]
    dispatcher: ResultDispatcher[M]
    channel: Callable[[Properties], Effect] = field(default=Send)
    # Wraps bags that must re-enter our own inbound path.
    response: Callable[[Properties], Effect] = field(default=Loopback)


Database = Union[SimulatedDatabase, RealDatabase]


def _unknown(database: object) -> TypeError:
    return TypeError(f"not a database: {type(database).__name__}")


def install(database: Database, model: M) -> tuple[M, Effect]:
    """One-time startup: load the login script and try a silent session restore."""
    if isinstance(database, SimulatedDatabase):
        return simulated.install(database, model)
    if isinstance(database, RealDatabase):
        return real.install(database, model)
    raise _unknown(database)


def login(database: Database, model: M) -> tuple[M, Effect]:
    if isinstance(database, SimulatedDatabase):
        return simulated.login(database, model)
    if isinstance(database, RealDatabase):
        return real.login(database, model)
    raise _unknown(database)


def get(
    database: Database, model: M, key: str, *, user: str | None = None, tag: int | None = None
) -> tuple[M, Effect]:
    if isinstance(database, SimulatedDatabase):
        return simulated.get(database, model, key, tag=tag)
    if isinstance(database, RealDatabase):
        return real.get(database, model, key, user=user, tag=tag)
    raise _unknown(database)


def put(
    database: Database,
    model: M,
    key: str,
    value: str,
    *,
    user: str | None = None,
    tag: int | None = None,
) -> tuple[M, Effect]:
    if isinstance(database, SimulatedDatabase):
        return simulated.put(database, model, key, value, tag=tag)
    if isinstance(database, RealDatabase):
        return real.put(database, model, key, value, user=user, tag=tag)
    raise _unknown(database)


def remove(
    database: Database, model: M, key: str, *, user: str | None = None, tag: int | None = None
) -> tuple[M, Effect]:
    if isinstance(database, SimulatedDatabase):
        return simulated.remove(database, model, key, tag=tag)
    if isinstance(database, RealDatabase):
        return real.remove(database, model, key, user=user, tag=tag)
    raise _unknown(database)


def scan(
    database: Database,
    model: M,
    fetch_values: bool = False,
    *,
    user: str | None = None,
    tag: int | None = None,
) -> tuple[M, Effect]:
    if isinstance(database, SimulatedDatabase):
        return simulated.scan(database, model, fetch_values, tag=tag)
    if isinstance(database, RealDatabase):
        return real.scan(database, model, fetch_values, user=user, tag=tag)
    raise _unknown(database)


def logout(database: Database, model: M) -> tuple[M, Effect]:
    if isinstance(database, SimulatedDatabase):
        return simulated.logout(database, model)
    if isinstance(database, RealDatabase):
        return real.logout(database, model)
    raise _unknown(database)
