"""In-process stand-in for the networked store.

Operations answer immediately with the same bags the bridge would send back,
delivered through the database's loopback channel. Storage lives in the host
model and is reached through the database's accessors.

A ``put`` whose value starts with ``"!"`` answers with an error whose message
is the rest of the value, and stores nothing. This is a hook for exercising
error display during development; the real backend has no such behavior.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from .effects import NONE, Effect
from .observability.logging import get_logger
from .properties import Properties

if TYPE_CHECKING:
    from .database import SimulatedDatabase

log = get_logger("simulated")

M = TypeVar("M")

ERROR_PREFIX = "!"


def _with_tag(props: Properties, tag: int | None) -> Properties:
    if tag is None:
        return props
    return props.append("tag", str(tag))


def install(database: "SimulatedDatabase", model: M) -> tuple[M, Effect]:
    return model, NONE


def login(database: "SimulatedDatabase", model: M) -> tuple[M, Effect]:
    return model, database.channel(database.profile.to_properties())


def put(
    database: "SimulatedDatabase", model: M, key: str, value: str, *, tag: int | None = None
) -> tuple[M, Effect]:
    if value.startswith(ERROR_PREFIX):
        bag = Properties([("operation", "put"), ("key", key), ("error", value[len(ERROR_PREFIX):])])
        return model, database.channel(_with_tag(bag, tag))

    storage = dict(database.get_storage(model))
    storage[key] = value
    model = database.set_storage(storage, model)
    log.info("simulated_put", key=key)
    bag = Properties([("operation", "put"), ("key", key), ("value", value)])
    return model, database.channel(_with_tag(bag, tag))


def remove(database: "SimulatedDatabase", model: M, key: str, *, tag: int | None = None) -> tuple[M, Effect]:
    storage = dict(database.get_storage(model))
    storage.pop(key, None)
    model = database.set_storage(storage, model)
    log.info("simulated_remove", key=key)
    bag = Properties([("operation", "remove"), ("key", key)])
    return model, database.channel(_with_tag(bag, tag))


def get(database: "SimulatedDatabase", model: M, key: str, *, tag: int | None = None) -> tuple[M, Effect]:
    bag = Properties([("operation", "get"), ("key", key)])
    value = database.get_storage(model).get(key)
    # An absent value field means "not found", which is not the same as "".
    if value is not None:
        bag = bag.append("value", value)
    return model, database.channel(_with_tag(bag, tag))


def scan(
    database: "SimulatedDatabase", model: M, fetch_values: bool = False, *, tag: int | None = None
) -> tuple[M, Effect]:
    storage = database.get_storage(model)
    bag = Properties([("operation", "scan"), ("fetchValues", "true" if fetch_values else "false")])
    keys = sorted(storage)
    for k in keys:
        bag = bag.append("", k)
    if fetch_values:
        for k in keys:
            bag = bag.append("_", storage[k])
    return model, database.channel(_with_tag(bag, tag))


def logout(database: "SimulatedDatabase", model: M) -> tuple[M, Effect]:
    return model, database.channel(Properties([("operation", "logout")]))
