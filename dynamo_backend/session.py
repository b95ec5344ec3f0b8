"""Reference hosting application.

Holds the model the databases' accessors read and write, supplies the result
dispatcher, and implements the recovery contract for expired credentials:
on ``AccessExpired`` the profile is dropped, the failed request remembered,
and ``login`` issued again. Once the new login completes, the remembered
request is replayed one time.

Data requests carry an increasing tag. Only the response to the latest request
is current; older ones surface as ``TagMismatch`` errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable

from . import database as db
from .bridge import Authorizer, Bridge
from .database import Database, RealDatabase, SimulatedDatabase
from .dispatcher import ResultDispatcher
from .effects import NONE, Effect
from .errors import DynamoBackendError, ErrorKind, format_error
from .local_store import LocalStore
from .observability.logging import configure_logging, get_logger
from .profile import Profile, ProfileClient
from .properties import EMPTY, Properties
from .runtime import Runtime
from .settings import Settings, get_settings

log = get_logger("session")


@dataclass(frozen=True, slots=True)
class Request:
    operation: str
    key: str = ""
    value: str = ""
    fetch_values: bool = False


@dataclass(frozen=True, slots=True)
class SessionModel:
    profile: Profile | None = None
    storage: dict[str, str] = field(default_factory=dict)
    properties: Properties = EMPTY
    last_get: tuple[str, str | None] | None = None
    last_put: tuple[str, str | None] | None = None
    keys: list[str] = field(default_factory=list)
    values: list[str] = field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None
    last_request: Request | None = None
    pending: Request | None = None
    replaying: bool = False
    next_tag: int = 0
    expected_tag: int | None = None


SessionOperation = Callable[[Database, SessionModel], tuple[SessionModel, Effect]]


# --- requests ---


def issue(request: Request, database: Database, model: SessionModel) -> tuple[SessionModel, Effect]:
    tag = model.next_tag + 1
    model = replace(model, next_tag=tag, expected_tag=tag, last_request=request)
    user = model.profile.user_id if model.profile else None

    if request.operation == "get":
        return db.get(database, model, request.key, user=user, tag=tag)
    if request.operation == "put":
        return db.put(database, model, request.key, request.value, user=user, tag=tag)
    if request.operation == "remove":
        return db.remove(database, model, request.key, user=user, tag=tag)
    if request.operation == "scan":
        return db.scan(database, model, request.fetch_values, user=user, tag=tag)
    raise ValueError(f"unknown request: {request.operation}")


def get(key: str) -> SessionOperation:
    return lambda database, model: issue(Request("get", key=key), database, model)


def put(key: str, value: str) -> SessionOperation:
    return lambda database, model: issue(Request("put", key=key, value=value), database, model)


def remove(key: str) -> SessionOperation:
    return lambda database, model: issue(Request("remove", key=key), database, model)


def scan(fetch_values: bool = False) -> SessionOperation:
    return lambda database, model: issue(Request("scan", fetch_values=fetch_values), database, model)


def login() -> SessionOperation:
    return db.login


def logout() -> SessionOperation:
    return db.logout


def install() -> SessionOperation:
    return db.install


# --- dispatcher ---


def _on_login(profile: Profile, database: Database, model: SessionModel) -> tuple[SessionModel, Effect]:
    model = replace(model, profile=profile, error=None, error_kind=None)
    log.info("logged_in", user_id=profile.user_id)
    if model.pending is None:
        return model, NONE
    pending = model.pending
    model = replace(model, pending=None, replaying=True)
    log.info("replaying_request", operation=pending.operation)
    return issue(pending, database, model)


def _on_get(key: str, value: str | None, database: Database, model: SessionModel) -> tuple[SessionModel, Effect]:
    return replace(model, last_get=(key, value), error=None, error_kind=None, replaying=False), NONE


def _on_put(key: str, value: str | None, database: Database, model: SessionModel) -> tuple[SessionModel, Effect]:
    return replace(model, last_put=(key, value), error=None, error_kind=None, replaying=False), NONE


def _on_scan(
    keys: list[str], values: list[str], database: Database, model: SessionModel
) -> tuple[SessionModel, Effect]:
    return replace(model, keys=list(keys), values=list(values), error=None, error_kind=None, replaying=False), NONE


def _on_logout(database: Database, model: SessionModel) -> tuple[SessionModel, Effect]:
    log.info("logged_out")
    return (
        replace(
            model,
            profile=None,
            last_get=None,
            last_put=None,
            keys=[],
            values=[],
            pending=None,
            replaying=False,
        ),
        NONE,
    )


def session_dispatcher() -> ResultDispatcher[SessionModel]:
    return ResultDispatcher(
        login=_on_login,
        get=_on_get,
        put=_on_put,
        scan=_on_scan,
        logout=_on_logout,
    )


# --- errors ---


def handle_error(
    err: DynamoBackendError, database: Database, model: SessionModel
) -> tuple[SessionModel, Effect]:
    if err.kind is ErrorKind.ACCESS_EXPIRED and not model.replaying:
        log.info("access_expired_relogin", operation=err.operation)
        model = replace(
            model,
            profile=None,
            pending=model.last_request,
            error=None,
            error_kind=None,
        )
        return db.login(database, model)

    return replace(model, error=format_error(err), error_kind=err.kind, replaying=False), NONE


# --- wiring ---


def make_database(
    settings: Settings, dispatcher: ResultDispatcher[SessionModel] | None = None
) -> Database:
    dispatcher = dispatcher or session_dispatcher()
    if settings.is_real:
        return RealDatabase(
            server_info=settings.server_info(),
            get_properties=lambda m: m.properties,
            set_properties=lambda p, m: replace(m, properties=p),
            dispatcher=dispatcher,
        )
    return SimulatedDatabase(
        profile=Profile(
            email=settings.simulated_email,
            name=settings.simulated_name,
            user_id=settings.simulated_user_id,
        ),
        get_storage=lambda m: m.storage,
        set_storage=lambda s, m: replace(m, storage=s),
        dispatcher=dispatcher,
    )


def make_runtime(
    settings: Settings | None = None,
    *,
    authorizer: Authorizer | None = None,
    bridge: Bridge | None = None,
    profile_client: ProfileClient | None = None,
) -> Runtime[SessionModel]:
    settings = settings or get_settings()
    configure_logging(level=settings.log_level)
    log.info("runtime_configured", settings=settings.to_log_safe_dict())

    database = make_database(settings)
    if isinstance(database, RealDatabase):
        bridge = bridge or Bridge(
            database.server_info,
            authorizer=authorizer,
            local_store=LocalStore(settings.local_cache_path),
        )
        profile_client = profile_client or ProfileClient(
            url=settings.profile_url, timeout_s=settings.profile_timeout_seconds
        )

    runtime: Runtime[SessionModel] = Runtime(
        database=database,
        model=SessionModel(),
        bridge=bridge,
        profile_client=profile_client,
        on_error=handle_error,
        expected_tag=lambda m: m.expected_tag,
    )
    runtime.perform(db.install)
    return runtime
