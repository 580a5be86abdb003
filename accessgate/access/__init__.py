"""
Access engine: content gating on a remote authorization, view pingbacks and login.
Decision (authorization) and execution (applier, pingback) are split; AccessService wires them per document.
"""
from accessgate.access.config import resolve_access_config
from accessgate.access.errors import (
    AccessError,
    AuthorizationError,
    ConfigError,
    LoginError,
    PingbackError,
    ViewCancelled,
)
from accessgate.access.expr import evaluate_access_expr, get_value_for_expr
from accessgate.access.models import (
    AccessConfig,
    AccessType,
    LoginOutcome,
    ReauthorizeMessage,
    RunState,
    ViewState,
)
from accessgate.access.service import AccessService, AccessStatus, get_access_service
from accessgate.access.transport import HttpAuthorizationTransport

__all__ = [
    "AccessConfig",
    "AccessError",
    "AccessService",
    "AccessStatus",
    "AccessType",
    "AuthorizationError",
    "ConfigError",
    "HttpAuthorizationTransport",
    "LoginError",
    "LoginOutcome",
    "PingbackError",
    "ReauthorizeMessage",
    "RunState",
    "ViewCancelled",
    "ViewState",
    "evaluate_access_expr",
    "get_access_service",
    "get_value_for_expr",
    "resolve_access_config",
]
