"""
DTO access engine: AccessConfig (output of resolve_access_config), login variants,
broadcast message and the state enums of authorization, view and login flows.
"""
from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, Field


class AccessType(str, Enum):
    """Type of access flow."""

    CLIENT = "client"
    SERVER = "server"
    OTHER = "other"


# ----- login: single URL or named URLs, resolved once at parse time -----


class SingleLogin(BaseModel):
    """`"login": "https://..."`: stored under the empty-string variant."""

    kind: Literal["single"] = "single"
    url: str

    model_config = {"frozen": True}

    def to_login_map(self) -> dict[str, str]:
        return {"": self.url}


class NamedLogins(BaseModel):
    """`"login": {"signin": "https://...", "signup": "https://..."}`."""

    kind: Literal["named"] = "named"
    urls: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def to_login_map(self) -> dict[str, str]:
        return dict(self.urls)


LoginSpec = Annotated[SingleLogin | NamedLogins, Field(discriminator="kind")]


def freeze_json(value: Any) -> Any:
    """Read-only copy of a JSON tree: objects become mapping proxies, arrays tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze_json(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_json(v) for v in value)
    return value


def thaw_json(value: Any) -> Any:
    """Fresh mutable copy of a (possibly frozen) JSON tree."""
    if isinstance(value, Mapping):
        return {k: thaw_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw_json(v) for v in value]
    return value


FrozenLoginMap = Annotated[Mapping[str, str], AfterValidator(freeze_json)]
FrozenJsonTree = Annotated[Mapping[str, Any], AfterValidator(freeze_json)]


class AccessConfig(BaseModel):
    """
    Validated access config. Built only by resolve_access_config.
    Immutable all the way down: login_map and fallback_response are read-only views.
    """

    type: AccessType = AccessType.CLIENT
    authorization_url: str | None = None
    pingback_url: str | None = None
    login_map: FrozenLoginMap = Field(default_factory=lambda: MappingProxyType({}))
    fallback_response: FrozenJsonTree | None = None

    model_config = {"frozen": True}

    def fallback_copy(self) -> dict[str, Any] | None:
        """The fallback response as a new mutable tree (None when not configured)."""
        if self.fallback_response is None:
            return None
        return thaw_json(self.fallback_response)


# ----- cross-document broadcast -----

REAUTHORIZE_MESSAGE_TYPE = "amp-access-reauthorize"


class ReauthorizeMessage(BaseModel):
    """Broadcast payload: peers with the same publisher origin re-run authorization."""

    type: Literal["amp-access-reauthorize"] = REAUTHORIZE_MESSAGE_TYPE
    origin: str

    model_config = {"frozen": True}


# ----- state machines -----


class RunState(str, Enum):
    """Outcome of one authorization run."""

    IDLE = "idle"
    FETCHING = "fetching"
    APPLIED = "applied"
    FALLBACK_APPLIED = "fallback_applied"
    ERRORED = "errored"
    SKIPPED = "skipped"  # type=other without server contact


class ViewState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    WAITING = "waiting"
    VIEWED = "viewed"
    CANCELED = "canceled"


class LoginOutcome(str, Enum):
    """Parsed `success` field of the login dialog payload."""

    SUCCESS = "success"
    REJECTED = "rejected"
    UNKNOWN = "unknown"  # empty/absent: treated as success

    @property
    def reauthorizes(self) -> bool:
        return self is not LoginOutcome.REJECTED
