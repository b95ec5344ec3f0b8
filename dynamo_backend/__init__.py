"""Dual-backend key/value store driven by a property-bag protocol.

``SimulatedDatabase`` keeps everything in the host's model; ``RealDatabase``
talks to DynamoDB through a :class:`~dynamo_backend.bridge.Bridge`. Both are
driven the same way: issue an operation, run the returned effect, and feed
each inbound bag to :func:`~dynamo_backend.engine.update`.
"""

from .database import (
    Database,
    RealDatabase,
    SimulatedDatabase,
    get,
    install,
    login,
    logout,
    put,
    remove,
    scan,
)
from .dispatcher import ResultDispatcher
from .engine import update
from .errors import DynamoBackendError, ErrorKind, classify_error, format_error
from .profile import Profile
from .properties import Properties, merge
from .settings import ServerInfo

__all__ = [
    "Database",
    "DynamoBackendError",
    "ErrorKind",
    "Profile",
    "Properties",
    "RealDatabase",
    "ResultDispatcher",
    "ServerInfo",
    "SimulatedDatabase",
    "classify_error",
    "format_error",
    "get",
    "install",
    "login",
    "logout",
    "merge",
    "put",
    "remove",
    "scan",
    "update",
]
