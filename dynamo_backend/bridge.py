"""Executor for outbound bags: the host side of the protocol.

The bridge receives each bag a :class:`~dynamo_backend.database.RealDatabase`
sends, does the work (identity provider, DynamoDB, local cache), and answers
by calling ``port`` with a response bag.

Items live in a single table keyed by ``user`` (hash) and ``appkey`` (range).
Keys are prefixed with the app name, ``"<app_name>:<key>"``, so several
applications can share one table.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .aws_clients import MissingCredentials, WebIdentityCredentials, dynamodb_table
from .errors import CREDENTIALS_ERROR_CODE
from .local_store import LocalStore
from .observability.logging import get_logger
from .properties import Properties
from .real import LOCAL_CACHE_KEY
from .settings import ServerInfo

log = get_logger("bridge")

Port = Callable[[Properties], None]

AWS_ERROR_TYPE = "AWS error"

_RETRYABLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
}

# Expired or rejected web-identity sessions; reported as one code so the engine
# can tell the application to log in again.
_CREDENTIALS_CODES = {
    "ExpiredTokenException",
    "ExpiredToken",
    "InvalidIdentityToken",
    "InvalidIdentityTokenException",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
}


class Authorizer(Protocol):
    """The identity provider's client side (Login with Amazon)."""

    def install(self) -> None:
        ...

    def authorize(self, state: str) -> Mapping[str, Any]:
        """Run the interactive login; returns the provider's response fields."""
        ...

    def logout(self) -> None:
        ...


def _error_code(exc: Exception) -> str:
    if isinstance(exc, (MissingCredentials, NoCredentialsError)):
        return CREDENTIALS_ERROR_CODE
    if isinstance(exc, ClientError):
        code = str((exc.response or {}).get("Error", {}).get("Code") or "ClientError")
        if code in _CREDENTIALS_CODES:
            return CREDENTIALS_ERROR_CODE
        return code
    if isinstance(exc, BotoCoreError):
        return type(exc).__name__
    return "InternalError"


def error_properties(request: Properties, exc: Exception) -> Properties:
    code = _error_code(exc)
    retryable = code in _RETRYABLE_CODES or (isinstance(exc, BotoCoreError) and code != CREDENTIALS_ERROR_CODE)
    out = Properties(
        [
            ("operation", request.get("operation") or ""),
            ("code", code),
            ("error", str(exc)),
            ("type", AWS_ERROR_TYPE),
            ("retryable", "true" if retryable else "false"),
        ]
    )
    for name in ("user", "key", "tag"):
        v = request.get(name)
        if v is not None:
            out = out.append(name, v)
    return out


class Bridge:
    def __init__(
        self,
        server_info: ServerInfo,
        *,
        authorizer: Authorizer | None = None,
        local_store: LocalStore | None = None,
        table_factory: Callable[[WebIdentityCredentials], Any] | None = None,
    ):
        self.server_info = server_info
        self.authorizer = authorizer
        self.local_store = local_store or LocalStore()
        self.credentials = WebIdentityCredentials(server_info)
        self._table_factory = table_factory or dynamodb_table
        self._handlers: dict[str, Callable[[Properties, Port], None]] = {
            "installLoginScript": self._install_login_script,
            "login": self._login,
            "logout": self._logout,
            "put": self._put,
            "get": self._get,
            "remove": self._remove,
            "scan": self._scan,
            "localGet": self._local_get,
            "localPut": self._local_put,
        }

    # --- key prefixing ---

    def appkey(self, key: str) -> str:
        return f"{self.server_info.app_name}:{key}"

    def strip_appkey(self, appkey: str) -> str:
        return appkey[len(self.server_info.app_name) + 1:]

    def use_access_token(self, access_token: str) -> None:
        self.credentials.set_token(access_token)

    # --- entry point ---

    def dispatch(self, properties: Properties, port: Port) -> None:
        operation = properties.get("operation") or ""
        handler = self._handlers.get(operation)
        if handler is None:
            port(Properties([("operation", operation), ("error", f"unknown operation: {operation}")]))
            return
        log.info("bridge_dispatch", operation=operation)
        handler(properties, port)

    def _table(self):
        return self._table_factory(self.credentials)

    def _item_key(self, properties: Properties) -> dict[str, str]:
        return {
            "user": properties.get("user") or "",
            "appkey": self.appkey(properties.get("key") or ""),
        }

    # --- identity ---

    def _install_login_script(self, properties: Properties, port: Port) -> None:
        if self.authorizer is not None:
            self.authorizer.install()

    def _login(self, properties: Properties, port: Port) -> None:
        res = Properties([("operation", "access-token")])
        if self.authorizer is None:
            port(res.append("error", "No identity provider configured.").append("type", "AccessTokenError"))
            return

        try:
            response = self.authorizer.authorize(properties.get("state") or "")
        except Exception as e:
            log.warning("authorize_failed", error=str(e))
            port(res.append("error", str(e) or type(e).__name__).append("type", "AccessTokenError"))
            return
        if response.get("error"):
            for name in ("error", "error_description", "error_uri"):
                if response.get(name) is not None:
                    res = res.append(name, str(response[name]))
            port(res.append("type", "AccessTokenError"))
            return

        access_token = response.get("access_token")
        if access_token:
            self.use_access_token(str(access_token))
        for name in ("state", "access_token", "token_type", "expires_in", "scope"):
            if response.get(name) is not None:
                res = res.append(name, str(response[name]))
        port(res)

    def _logout(self, properties: Properties, port: Port) -> None:
        # Nothing is sent back; the adapter loops its own logout bag.
        self.credentials.clear()
        self.local_store.put(LOCAL_CACHE_KEY, None)
        if self.authorizer is not None:
            self.authorizer.logout()

    # --- DynamoDB ---

    def _put(self, properties: Properties, port: Port) -> None:
        try:
            self._table().update_item(
                Key=self._item_key(properties),
                UpdateExpression="SET #v = :v",
                ExpressionAttributeNames={"#v": "value"},
                ExpressionAttributeValues={":v": properties.get("value") or ""},
            )
        except (ClientError, BotoCoreError, MissingCredentials) as e:
            log.warning("bridge_put_failed", code=_error_code(e))
            port(error_properties(properties, e))
            return
        port(properties)

    def _get(self, properties: Properties, port: Port) -> None:
        try:
            resp = self._table().get_item(
                Key=self._item_key(properties),
                ProjectionExpression="#v",
                ExpressionAttributeNames={"#v": "value"},
            )
        except (ClientError, BotoCoreError, MissingCredentials) as e:
            log.warning("bridge_get_failed", code=_error_code(e))
            port(error_properties(properties, e))
            return
        item = resp.get("Item")
        res = properties.remove("value")
        if item is not None and item.get("value") is not None:
            res = res.append("value", str(item["value"]))
        port(res)

    def _remove(self, properties: Properties, port: Port) -> None:
        try:
            self._table().delete_item(Key=self._item_key(properties))
        except (ClientError, BotoCoreError, MissingCredentials) as e:
            log.warning("bridge_remove_failed", code=_error_code(e))
            port(error_properties(properties, e))
            return
        port(properties)

    def _scan(self, properties: Properties, port: Port) -> None:
        fetch_values = properties.get("fetchValues") == "true"
        user = properties.get("user") or ""
        items: list[dict[str, Any]] = []
        try:
            table = self._table()
            kwargs: dict[str, Any] = {
                "KeyConditionExpression": Key("user").eq(user) & Key("appkey").begins_with(self.appkey("")),
                "ProjectionExpression": "appkey, #v" if fetch_values else "appkey",
            }
            if fetch_values:
                kwargs["ExpressionAttributeNames"] = {"#v": "value"}
            while True:
                resp = table.query(**kwargs)
                items.extend(resp.get("Items") or [])
                lek = resp.get("LastEvaluatedKey")
                if not lek:
                    break
                kwargs["ExclusiveStartKey"] = lek
        except (ClientError, BotoCoreError, MissingCredentials) as e:
            log.warning("bridge_scan_failed", code=_error_code(e))
            port(error_properties(properties, e))
            return

        res = properties
        pairs = sorted(
            (self.strip_appkey(str(i["appkey"])), str(i.get("value") or ""))
            for i in items
            if i.get("appkey")
        )
        for k, _ in pairs:
            res = res.append("", k)
        if fetch_values:
            for _, v in pairs:
                res = res.append("_", v)
        port(res)

    # --- local credential cache ---

    def _local_get(self, properties: Properties, port: Port) -> None:
        key = properties.get("key") or ""
        res = Properties([("operation", "localGet"), ("key", key)])
        value = self.local_store.get(key)
        if value is not None:
            res = res.append("value", value)
        port(res)

    def _local_put(self, properties: Properties, port: Port) -> None:
        # Nothing is sent back for a cache write.
        self.local_store.put(properties.get("key") or "", properties.get("value"))
