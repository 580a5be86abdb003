"""
Reader identity: one memoized reader id per engine, and outbound URL building
with READER_ID / ACCESS_READER_ID / AUTHDATA(field) variables.
"""
from __future__ import annotations

import asyncio
import logging
import re
import secrets
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote

import redis.asyncio as aioredis

from accessgate.access.config import get_reader_id_scope
from accessgate.access.expr import get_value_for_expr
from accessgate.access.ports import JsonTree, ReaderIdSource, UrlExpander, UrlVar
from accessgate.core.config import settings

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\b([A-Z][A-Z0-9_]*)(?:\(([^)]*)\))?")


def new_reader_id() -> str:
    return "reader-" + secrets.token_urlsafe(18)


class SimpleUrlExpander(UrlExpander):
    """
    Replaces bare upper-case variable names in a URL with URL-encoded values.
    Callable variables receive the argument in parentheses: AUTHDATA(user.id).
    Unknown names are left as-is; None values become empty strings.
    """

    async def expand(self, url: str, variables: Mapping[str, UrlVar]) -> str:
        def replace(m: re.Match) -> str:
            name, arg = m.group(1), m.group(2)
            if name not in variables:
                return m.group(0)
            value = variables[name]
            if callable(value):
                value = value((arg or "").strip())
            elif arg is not None:
                # Plain variable followed by parentheses: keep the parentheses untouched.
                return quote(str(value), safe="") + f"({arg})"
            if value is None:
                return ""
            if isinstance(value, bool):
                value = "true" if value else "false"
            return quote(str(value), safe="")

        return _VAR_RE.sub(replace, url)


class InMemoryReaderIdSource(ReaderIdSource):
    """Per-process reader ids; fine for a single host document session."""

    def __init__(self) -> None:
        self._ids: dict[str, str] = {}

    async def get(self, scope: str, create_if_missing: bool = True) -> str | None:
        if scope not in self._ids:
            if not create_if_missing:
                return None
            self._ids[scope] = new_reader_id()
        return self._ids[scope]


class RedisReaderIdSource(ReaderIdSource):
    """
    Redis-backed reader ids shared by all documents of one reader session.
    Atomic create: SET NX (+ optional expiry), then read back the winner.
    """

    def __init__(self, session_key: str, client: aioredis.Redis | None = None) -> None:
        self.session_key = session_key
        self.client = client or aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.ttl = settings.reader_id_ttl_seconds or None

    def _key(self, scope: str) -> str:
        return f"reader_id:{scope}:{self.session_key}"

    async def get(self, scope: str, create_if_missing: bool = True) -> str | None:
        key = self._key(scope)
        if create_if_missing:
            await self.client.set(key, new_reader_id(), nx=True, ex=self.ttl)
        return await self.client.get(key)


class ReaderIdentity:
    """Lazily resolves the reader id once and shares it with every URL-building call site."""

    def __init__(
        self,
        source: ReaderIdSource,
        url_expander: UrlExpander | None = None,
        *,
        scope: str | None = None,
    ) -> None:
        self._source = source
        self._url_expander = url_expander or SimpleUrlExpander()
        self._scope = scope or get_reader_id_scope()
        self._task: asyncio.Task | None = None

    def _reader_id_task(self) -> asyncio.Task:
        if self._task is None:
            # No consent prompt: the reader id is an essential part of the access system.
            self._task = asyncio.ensure_future(self._source.get(self._scope, create_if_missing=True))
        return self._task

    async def get(self) -> str:
        # Shielded: a cancelled caller must not cancel the shared lookup.
        return await asyncio.shield(self._reader_id_task())

    async def build_url(
        self,
        url: str,
        auth_data: Callable[[], JsonTree | None] | None = None,
    ) -> str:
        """
        Expand url with the reader id. Passing auth_data enables AUTHDATA(field),
        read from the current authorization response at expansion time.
        """
        reader_id = await self.get()
        variables: dict[str, Any] = {
            "READER_ID": reader_id,
            "ACCESS_READER_ID": reader_id,  # synonym
        }
        if auth_data is not None:
            def authdata(field: str) -> Any:
                response = auth_data()
                if response is None:
                    return None
                return get_value_for_expr(response, field)

            variables["AUTHDATA"] = authdata
        return await self._url_expander.expand(url, variables)
