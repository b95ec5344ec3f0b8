"""Adapter for the networked backend.

Outbound operations assemble bags for the bridge. The login handshake runs
in three steps, each a separate trip through ``update``:

1. ``login`` picks a random nonce and loops ``login-with-state`` back to us.
2. ``login-with-state`` remembers the nonce as ``expectedState`` in the
   session properties and asks the bridge to ``login`` with it.
3. ``access-token`` (the identity provider's answer) must echo the nonce.
   The token set is merged into the session properties, cached locally,
   and used to fetch the profile, which comes back as a ``login`` bag.

``install`` also asks for the locally cached token set. If one is found and
has not expired, the profile fetch is replayed without an interactive login.
"""

from __future__ import annotations

import secrets
import time
from typing import TYPE_CHECKING, TypeVar

from .effects import NONE, Effect, FetchProfile, batch
from .errors import DynamoBackendError, ErrorKind, internal_error
from .observability.logging import get_logger
from .properties import EMPTY, Properties, merge

if TYPE_CHECKING:
    from .database import RealDatabase

log = get_logger("real_backend")

M = TypeVar("M")

LOCAL_CACHE_KEY = "DynamoBackend.properties"
EXPECTED_STATE = "expectedState"
TOKEN_FIELDS = ("access_token", "token_type", "expires_in", "scope")


def _random_nonce() -> int:
    return secrets.randbelow(2**31 - 1) + 1


def _with_tag(props: Properties, tag: int | None) -> Properties:
    if tag is None:
        return props
    return props.append("tag", str(tag))


def _require_user(user: str | None) -> str:
    u = str(user or "").strip()
    if not u:
        raise internal_error("Not logged in.")
    return u


# --- outbound operations ---


def install(database: "RealDatabase", model: M) -> tuple[M, Effect]:
    return model, batch(
        [
            database.channel(Properties([("operation", "installLoginScript")])),
            database.channel(Properties([("operation", "localGet"), ("key", LOCAL_CACHE_KEY)])),
        ]
    )


def login(database: "RealDatabase", model: M) -> tuple[M, Effect]:
    n = _random_nonce()
    return model, database.response(
        Properties([("operation", "login-with-state"), ("random", str(n))])
    )


def put(
    database: "RealDatabase",
    model: M,
    key: str,
    value: str,
    *,
    user: str | None = None,
    tag: int | None = None,
) -> tuple[M, Effect]:
    bag = Properties(
        [("operation", "put"), ("user", _require_user(user)), ("key", key), ("value", value)]
    )
    return model, database.channel(_with_tag(bag, tag))


def remove(
    database: "RealDatabase", model: M, key: str, *, user: str | None = None, tag: int | None = None
) -> tuple[M, Effect]:
    bag = Properties([("operation", "remove"), ("user", _require_user(user)), ("key", key)])
    return model, database.channel(_with_tag(bag, tag))


def get(
    database: "RealDatabase", model: M, key: str, *, user: str | None = None, tag: int | None = None
) -> tuple[M, Effect]:
    bag = Properties([("operation", "get"), ("user", _require_user(user)), ("key", key)])
    return model, database.channel(_with_tag(bag, tag))


def scan(
    database: "RealDatabase",
    model: M,
    fetch_values: bool = False,
    *,
    user: str | None = None,
    tag: int | None = None,
) -> tuple[M, Effect]:
    bag = Properties(
        [
            ("operation", "scan"),
            ("user", _require_user(user)),
            ("fetchValues", "true" if fetch_values else "false"),
        ]
    )
    return model, database.channel(_with_tag(bag, tag))


def logout(database: "RealDatabase", model: M) -> tuple[M, Effect]:
    bag = Properties([("operation", "logout")])
    # The bridge sends nothing back for logout, so loop one back ourselves.
    return model, batch([database.channel(bag), database.response(bag)])


# --- inbound handshake steps ---


def expecting_login(database: "RealDatabase", model: M) -> bool:
    return database.get_properties(model).get(EXPECTED_STATE) is not None


def on_login_with_state(database: "RealDatabase", properties: Properties, model: M) -> tuple[M, Effect]:
    state = properties.get("random")
    if not state:
        raise internal_error("Missing random in login-with-state.")
    props = database.get_properties(model).set(EXPECTED_STATE, state)
    model = database.set_properties(props, model)
    log.info("login_started")
    return model, database.channel(Properties([("operation", "login"), ("state", state)]))


def _token_set(properties: Properties, *, now: float) -> Properties:
    out = EMPTY
    for name in reversed(TOKEN_FIELDS):
        v = properties.get(name)
        if v is not None:
            out = out.set(name, v)
    expires_in = properties.get("expires_in")
    if expires_in:
        try:
            expires_at = int(now + float(expires_in))
        except (ValueError, OverflowError):
            # Unknown lifetime: the cached copy is never restored.
            log.warning("token_expires_in_invalid", expires_in=expires_in)
            expires_at = int(now)
        out = out.append("expires_at", str(expires_at))
    return out


def on_access_token(database: "RealDatabase", properties: Properties, model: M) -> tuple[M, Effect]:
    session = database.get_properties(model)
    expected = session.get(EXPECTED_STATE)
    state = properties.get("state")

    if state is None:
        raise DynamoBackendError(kind=ErrorKind.ACCESS_TOKEN_ERROR, message="No state returned from login.")
    if state != expected:
        log.warning("login_state_mismatch")
        raise DynamoBackendError(
            kind=ErrorKind.ACCESS_TOKEN_ERROR, message="Cross-site Request Forgery attempt."
        )

    access_token = properties.get("access_token")
    if not access_token:
        raise DynamoBackendError(kind=ErrorKind.ACCESS_TOKEN_ERROR, message="No access token returned from login.")

    tokens = _token_set(properties, now=time.time())
    model = database.set_properties(merge(tokens, session), model)
    log.info("access_token_received", scope=properties.get("scope"))
    return model, batch(
        [
            database.channel(
                Properties([("operation", "localPut"), ("key", LOCAL_CACHE_KEY), ("value", tokens.to_json())])
            ),
            FetchProfile(access_token),
        ]
    )


def on_local_get(database: "RealDatabase", properties: Properties, model: M) -> tuple[M, Effect]:
    if properties.get("key") != LOCAL_CACHE_KEY:
        return model, NONE
    raw = properties.get("value")
    if raw is None:
        return model, NONE

    try:
        cached = Properties.from_json(raw)
    except ValueError as e:
        log.warning("local_cache_unreadable", error=str(e))
        return model, NONE

    access_token = cached.get("access_token")
    if not access_token:
        return model, NONE

    expires_at = cached.get("expires_at")
    try:
        expired = expires_at is not None and int(expires_at) <= int(time.time())
    except ValueError:
        expired = True
    if expired:
        log.info("local_cache_expired")
        clear = Properties([("operation", "localPut"), ("key", LOCAL_CACHE_KEY)])
        return model, database.channel(clear)

    model = database.set_properties(merge(cached, database.get_properties(model)), model)
    log.info("session_restore_started")
    return model, FetchProfile(access_token)


def on_profile(database: "RealDatabase", model: M) -> M:
    """A profile arrived; the pending login, if any, is complete."""
    props = database.get_properties(model)
    if props.get(EXPECTED_STATE) is None:
        return model
    return database.set_properties(props.remove(EXPECTED_STATE), model)


def abandon_login(database: "RealDatabase", model: M) -> M:
    """A login attempt failed; its nonce must not be accepted again."""
    props = database.get_properties(model)
    if props.get(EXPECTED_STATE) is None:
        return model
    log.info("login_abandoned")
    return database.set_properties(props.remove(EXPECTED_STATE), model)


def on_logout(database: "RealDatabase", model: M) -> M:
    return database.set_properties(EMPTY, model)
