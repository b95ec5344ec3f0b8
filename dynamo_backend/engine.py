from __future__ import annotations

from typing import Callable, TypeVar

from pydantic import ValidationError

from . import real
from .database import Database, RealDatabase, SimulatedDatabase
from .effects import NONE, Effect
from .errors import DynamoBackendError, ErrorKind, classify_error, internal_error, tag_mismatch
from .observability.logging import get_logger
from .profile import Profile
from .properties import Properties

log = get_logger("engine")

M = TypeVar("M")

# Responses to these carry the caller's tag, when one was sent.
TAGGED_OPERATIONS = frozenset({"get", "put", "remove", "scan"})


def update(
    properties: Properties,
    database: Database,
    model: M,
    *,
    expected_tag: int | None = None,
) -> tuple[M, Effect]:
    """
    Interpret one inbound bag.

    Returns the next model and a follow-up effect, or raises
    :class:`DynamoBackendError`. Successful results go through exactly one
    dispatcher callback; the real-backend handshake steps are no-ops for a
    simulated database.
    """
    operation = properties.get("operation")

    if expected_tag is not None and operation in TAGGED_OPERATIONS:
        actual = properties.get("tag")
        if actual != str(expected_tag):
            log.warning("stale_response", operation=operation, expected=expected_tag, actual=actual)
            raise tag_mismatch(expected_tag, actual)

    if properties.get("error") is not None:
        err = classify_error(properties)
        if (
            err.kind is ErrorKind.FETCH_PROFILE_ERROR
            and isinstance(database, RealDatabase)
            and not real.expecting_login(database, model)
        ):
            # Nobody is waiting on this login (e.g. a failed silent restore).
            log.info("unsolicited_profile_error_ignored", error=err.message)
            return model, NONE
        log.warning("operation_failed", operation=operation, kind=err.kind.name, code=err.code)
        raise err

    if operation is None:
        raise internal_error(f"Missing operation in: {properties.pairs()!r}")

    handler = _HANDLERS.get(operation)
    if handler is None:
        raise internal_error(f"Unknown operation: {operation}")
    return handler(properties, database, model)


# A failure of either kind ends the login attempt in flight.
LOGIN_FAILURES = frozenset({ErrorKind.ACCESS_TOKEN_ERROR, ErrorKind.FETCH_PROFILE_ERROR})


def recover(error: DynamoBackendError, database: Database, model: M) -> M:
    """
    Model to continue from after ``update`` raised ``error``.

    ``update`` cannot return a model alongside an error, so hosts pass the
    model they gave it through here before handling the error. A failed login
    drops its nonce, so a replayed identity response is rejected and later
    profile-fetch failures count as unsolicited.
    """
    if error.kind in LOGIN_FAILURES and isinstance(database, RealDatabase):
        return real.abandon_login(database, model)
    return model


# --- handlers ---


def _nop(properties: Properties, database: Database, model: M) -> tuple[M, Effect]:
    return model, NONE


def _login(properties: Properties, database: Database, model: M) -> tuple[M, Effect]:
    try:
        profile = Profile(
            email=properties.get("email") or "",
            name=properties.get("name") or "",
            user_id=properties.get("user_id"),
        )
    except ValidationError:
        raise DynamoBackendError(kind=ErrorKind.RETURNED_PROFILE_ERROR, message="Profile has no user_id.") from None
    if not profile.user_id:
        raise DynamoBackendError(kind=ErrorKind.RETURNED_PROFILE_ERROR, message="Profile has no user_id.")

    if isinstance(database, RealDatabase):
        model = real.on_profile(database, model)
    return database.dispatcher.login(profile, database, model)


def _real_only(
    step: Callable[[RealDatabase, Properties, M], tuple[M, Effect]],
) -> Callable[[Properties, Database, M], tuple[M, Effect]]:
    def _handler(properties: Properties, database: Database, model: M) -> tuple[M, Effect]:
        if isinstance(database, SimulatedDatabase):
            return model, NONE
        return step(database, properties, model)

    return _handler


def _require(properties: Properties, name: str) -> str:
    v = properties.get(name)
    if v is None:
        raise internal_error(f"Missing {name} in {properties.get('operation')} response.")
    return v


def _get(properties: Properties, database: Database, model: M) -> tuple[M, Effect]:
    key = _require(properties, "key")
    return database.dispatcher.get(key, properties.get("value"), database, model)


def _put(properties: Properties, database: Database, model: M) -> tuple[M, Effect]:
    key = _require(properties, "key")
    return database.dispatcher.put(key, properties.get("value"), database, model)


def _remove(properties: Properties, database: Database, model: M) -> tuple[M, Effect]:
    return _put(properties.remove("value"), database, model)


def _scan(properties: Properties, database: Database, model: M) -> tuple[M, Effect]:
    keys = properties.get_all("")
    values = properties.get_all("_")
    return database.dispatcher.scan(keys, values, database, model)


def _logout(properties: Properties, database: Database, model: M) -> tuple[M, Effect]:
    if isinstance(database, RealDatabase):
        model = real.on_logout(database, model)
    return database.dispatcher.logout(database, model)


_HANDLERS: dict[str, Callable[[Properties, Database, M], tuple[M, Effect]]] = {
    "nop": _nop,
    "login": _login,
    "login-with-state": _real_only(real.on_login_with_state),
    "access-token": _real_only(real.on_access_token),
    "localGet": _real_only(real.on_local_get),
    "get": _get,
    "put": _put,
    "remove": _remove,
    "scan": _scan,
    "logout": _logout,
}
