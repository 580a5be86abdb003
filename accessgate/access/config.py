"""
Access config: resolve_access_config(raw) -> AccessConfig, plus typed wrappers
over accessgate.core.config for the fixed timings of the flow.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from pydantic import TypeAdapter, ValidationError

from accessgate.access.errors import ConfigError
from accessgate.access.models import AccessConfig, AccessType, LoginSpec
from accessgate.core.config import settings

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})

_login_adapter: TypeAdapter = TypeAdapter(LoginSpec)


def get_authorization_timeout_ms() -> int:
    return settings.authorization_timeout_ms


def get_view_timeout_ms() -> int:
    return settings.view_timeout_ms


def get_login_dedup_window_ms() -> int:
    return settings.login_dedup_window_ms


def get_reader_id_scope() -> str:
    return settings.reader_id_scope


def is_proxy_origin(url_or_origin: str) -> bool:
    """True if the document is served from a proxy cache rather than the publisher."""
    host = (urlsplit(url_or_origin).hostname or "").lower()
    if not host:
        return False
    for proxy in settings.proxy_origin_hosts_set:
        if host == proxy or host.endswith("." + proxy):
            return True
    return False


def assert_secure_url(url: Any, field: str) -> str:
    """https://, protocol-relative //, or plain http on localhost only."""
    if not isinstance(url, str) or not url:
        raise ConfigError(f'"{field}" must be a non-empty URL string', {"field": field})
    if url.startswith("//"):
        return url
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme == "https":
        return url
    if scheme == "http" and (parts.hostname or "").lower() in _LOCAL_HOSTS:
        return url
    raise ConfigError(
        f'"{field}" must use https: {url}',
        {"field": field, "url": url},
    )


def _parse_login(login: Any) -> dict[str, str]:
    # Login config is optional for some types.
    if login is None or login == "":
        return {}
    if isinstance(login, str):
        raw = {"kind": "single", "url": login}
    elif isinstance(login, Mapping):
        raw = {"kind": "named", "urls": dict(login)}
    else:
        raise ConfigError('"login" must be either a single URL or a map of URLs')
    try:
        spec = _login_adapter.validate_python(raw)
    except ValidationError as e:
        raise ConfigError(
            '"login" must be either a single URL or a map of URLs',
            {"error": str(e)},
        ) from e
    return spec.to_login_map()


def resolve_access_config(raw: str | bytes | Mapping[str, Any]) -> AccessConfig:
    """
    Parse and validate the declarative access config.

    Accepts the raw JSON text of the config element or an already decoded mapping.
    Raises ConfigError on malformed JSON, unknown type, non-secure URLs and,
    for type client/server, missing authorization/pingback/login.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f'Failed to parse access config JSON: {e}') from e
    else:
        data = raw
    if not isinstance(data, Mapping):
        raise ConfigError("Access config must be a JSON object")

    type_value = data.get("type") or AccessType.CLIENT.value
    try:
        access_type = AccessType(type_value)
    except ValueError as e:
        raise ConfigError(f"Unknown access type: {type_value!r}", {"type": type_value}) from e

    authorization_url = data.get("authorization") or None
    pingback_url = data.get("pingback") or None
    login_map = _parse_login(data.get("login"))
    fallback = data.get("authorizationFallbackResponse")
    if fallback is not None and not isinstance(fallback, Mapping):
        raise ConfigError('"authorizationFallbackResponse" must be a JSON object')

    if authorization_url is not None:
        assert_secure_url(authorization_url, "authorization")
    if pingback_url is not None:
        assert_secure_url(pingback_url, "pingback")
    for name, url in login_map.items():
        assert_secure_url(url, f"login[{name}]" if name else "login")

    if access_type in (AccessType.CLIENT, AccessType.SERVER):
        if not authorization_url:
            raise ConfigError('"authorization" URL must be specified', {"type": access_type.value})
        if not pingback_url:
            raise ConfigError('"pingback" URL must be specified', {"type": access_type.value})
        if not login_map:
            raise ConfigError('At least one "login" URL must be specified', {"type": access_type.value})

    config = AccessConfig(
        type=access_type,
        authorization_url=authorization_url,
        pingback_url=pingback_url,
        login_map=login_map,
        fallback_response=dict(fallback) if fallback is not None else None,
    )
    logger.debug("access_config_resolved", extra={"state": config.type.value})
    return config
