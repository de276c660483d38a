"""pymirror - Async client-side mirror of Feathers-style record services."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pymirror")
except PackageNotFoundError:
    __version__ = "0+local"
from pymirror.client import MirrorClient
from pymirror.config import MirrorConfig, ServiceConfig, ServiceOptions
from pymirror.exceptions import (
    MirrorApiError,
    MirrorConfigError,
    MirrorConflictError,
    MirrorError,
    MirrorInvalidQueryError,
    MirrorInvalidStateError,
    MirrorNotFoundApiError,
    MirrorNotFoundError,
    MirrorTransportError,
)
from pymirror.models import BoundRecord, FindResult
from pymirror.service import MirrorService
from pymirror.state.events import ServiceEvent, ServiceEventType
from pymirror.state.identity import IdentityResolver, generate_temp_id
from pymirror.state.live import Computed
from pymirror.state.reconcile import EventReconciler
from pymirror.state.store import DataStore

__all__ = [
    "__version__",
    "BoundRecord",
    "Computed",
    "DataStore",
    "EventReconciler",
    "FindResult",
    "IdentityResolver",
    "MirrorApiError",
    "MirrorClient",
    "MirrorConfig",
    "MirrorConfigError",
    "MirrorConflictError",
    "MirrorError",
    "MirrorInvalidQueryError",
    "MirrorInvalidStateError",
    "MirrorNotFoundApiError",
    "MirrorNotFoundError",
    "MirrorService",
    "MirrorTransportError",
    "ServiceConfig",
    "ServiceEvent",
    "ServiceEventType",
    "ServiceOptions",
    "generate_temp_id",
]
