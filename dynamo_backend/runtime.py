from __future__ import annotations

from collections import deque
from typing import Callable, Generic, TypeVar

from .bridge import Bridge
from .database import Database
from .effects import Batch, Effect, FetchProfile, Loopback, NoEffect, Send
from .engine import recover, update
from .errors import DynamoBackendError
from .observability.logging import get_logger
from .profile import ProfileClient
from .properties import Properties

log = get_logger("runtime")

M = TypeVar("M")

ErrorHandler = Callable[[DynamoBackendError, Database, M], tuple[M, Effect]]
Operation = Callable[[Database, M], tuple[M, Effect]]


def _reraise(err: DynamoBackendError, database: Database, model: M) -> tuple[M, Effect]:
    raise err


class Runtime(Generic[M]):
    """
    Single-threaded host loop.

    Executes effects and feeds every inbound bag through ``update`` in arrival
    order. Nothing runs concurrently; a bag produced while handling another one
    waits in the inbound queue.
    """

    def __init__(
        self,
        *,
        database: Database,
        model: M,
        bridge: Bridge | None = None,
        profile_client: ProfileClient | None = None,
        on_error: ErrorHandler | None = None,
        expected_tag: Callable[[M], int | None] | None = None,
    ):
        self.database = database
        self.model = model
        self.bridge = bridge
        self.profile_client = profile_client
        self.on_error = on_error or _reraise
        self._expected_tag = expected_tag
        self.inbound: deque[Properties] = deque()

    # --- inbound ---

    def port(self, properties: Properties) -> None:
        self.inbound.append(properties)

    def deliver(self, properties: Properties) -> None:
        self.port(properties)
        self.drain()

    def drain(self) -> None:
        while self.inbound:
            props = self.inbound.popleft()
            tag = self._expected_tag(self.model) if self._expected_tag else None
            try:
                self.model, effect = update(props, self.database, self.model, expected_tag=tag)
            except DynamoBackendError as e:
                self.model = recover(e, self.database, self.model)
                self.model, effect = self.on_error(e, self.database, self.model)
            self.run(effect)

    # --- outbound ---

    def perform(self, operation: Operation) -> None:
        try:
            self.model, effect = operation(self.database, self.model)
        except DynamoBackendError as e:
            self.model, effect = self.on_error(e, self.database, self.model)
        self.run(effect)
        self.drain()

    def run(self, effect: Effect) -> None:
        if isinstance(effect, NoEffect):
            return
        if isinstance(effect, Batch):
            for e in effect.effects:
                self.run(e)
            return
        if isinstance(effect, Loopback):
            self.port(effect.properties)
            return
        if isinstance(effect, Send):
            if self.bridge is None:
                log.warning("no_bridge", operation=effect.properties.get("operation"))
                return
            self.bridge.dispatch(effect.properties, self.port)
            return
        if isinstance(effect, FetchProfile):
            if self.bridge is not None:
                self.bridge.use_access_token(effect.access_token)
            if self.profile_client is None:
                log.warning("no_profile_client")
                return
            self.port(self.profile_client.fetch(effect.access_token))
            return
        raise TypeError(f"unknown effect: {type(effect).__name__}")
