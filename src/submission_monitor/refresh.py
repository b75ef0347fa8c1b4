"""Upstream data refresh gateway.

The gateway asks a connection registry to refresh the configured upstream
connection. Connection names are not always stored verbatim (providers add
prefixes such as ``Query - ``), so the configured identifier is resolved
through an ordered list of strategies; the first strategy that both
resolves a connection and refreshes it successfully wins. When no strategy
succeeds the legacy refresh-everything mechanism is tried. A failed refresh
is reported as a result, never raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence
from urllib.parse import quote

from .http_client import HTTPClient
from .logging_config import get_logger
from .models import RefreshResult

logger = get_logger("refresh")

DEFAULT_PROVIDER_PREFIX = "Query - "
DEFAULT_ALTERNATE_PREFIX = "Connection - "
DEFAULT_REFRESH_TIMEOUT = 300.0

LEGACY_STRATEGY = "legacy"


class ConnectionRegistry(Protocol):
    """Upstream system holding refreshable data connections."""

    async def list_connections(self) -> List[str]:
        ...

    async def refresh_connection(self, name: str) -> bool:
        ...

    async def refresh_all(self) -> bool:
        ...


class ResolutionStrategy(Protocol):
    name: str

    def resolve(self, identifier: str, available: Sequence[str]) -> Optional[str]:
        ...


@dataclass(frozen=True)
class ExactMatch:
    name: str = "exact"

    def resolve(self, identifier: str, available: Sequence[str]) -> Optional[str]:
        return identifier if identifier in available else None


@dataclass(frozen=True)
class PrefixMatch:
    prefix: str
    name: str = "prefix"

    def resolve(self, identifier: str, available: Sequence[str]) -> Optional[str]:
        if not identifier.strip():
            return None
        candidate = f"{self.prefix}{identifier}"
        return candidate if candidate in available else None


@dataclass(frozen=True)
class SubstringMatch:
    name: str = "substring"

    def resolve(self, identifier: str, available: Sequence[str]) -> Optional[str]:
        needle = identifier.strip().lower()
        if not needle:
            return None
        for connection in available:
            if needle in connection.lower():
                return connection
        return None


def default_strategies(
    provider_prefix: str = DEFAULT_PROVIDER_PREFIX,
    alternate_prefix: str = DEFAULT_ALTERNATE_PREFIX,
) -> List[ResolutionStrategy]:
    """Return the standard resolution order: exact, provider prefix, alternate prefix, substring."""
    return [
        ExactMatch(),
        PrefixMatch(provider_prefix, name="provider_prefix"),
        PrefixMatch(alternate_prefix, name="alternate_prefix"),
        SubstringMatch(),
    ]


class RefreshGateway:
    """Triggers an upstream data refresh with graceful degradation."""

    def __init__(
        self,
        registry: Optional[ConnectionRegistry],
        connection_id: str,
        *,
        strategies: Optional[Sequence[ResolutionStrategy]] = None,
        timeout_seconds: float = DEFAULT_REFRESH_TIMEOUT,
        legacy_enabled: bool = True,
    ) -> None:
        self.registry = registry
        self.connection_id = connection_id
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.timeout_seconds = timeout_seconds
        self.legacy_enabled = legacy_enabled

    async def refresh(self) -> bool:
        return (await self.attempt()).success

    async def attempt(self) -> RefreshResult:
        """Run the refresh within the configured timeout."""
        if self.registry is None:
            logger.warning("No connection registry configured; skipping data refresh")
            return RefreshResult(success=False, error="no connection registry configured")
        try:
            return await asyncio.wait_for(self._attempt(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Data refresh timed out after {self.timeout_seconds}s")
            return RefreshResult(success=False, error=f"refresh timed out after {self.timeout_seconds}s")

    async def _attempt(self) -> RefreshResult:
        errors: List[str] = []
        if not self.connection_id.strip():
            logger.warning("No refresh connection identifier configured; using legacy refresh")
            errors.append("no connection identifier configured")
            return await self._legacy(errors)

        try:
            available = list(await self.registry.list_connections())
        except Exception as exc:
            logger.warning(f"Could not list upstream connections: {exc}")
            errors.append(f"list_connections: {exc}")
            available = []

        tried: set[str] = set()
        for strategy in self.strategies:
            connection = strategy.resolve(self.connection_id, available)
            if connection is None or connection in tried:
                continue
            tried.add(connection)
            logger.info(f"Refreshing connection '{connection}' (strategy: {strategy.name})")
            try:
                if await self.registry.refresh_connection(connection):
                    return RefreshResult(success=True, strategy=strategy.name, connection=connection)
                errors.append(f"{strategy.name}: refresh of '{connection}' reported failure")
            except Exception as exc:
                logger.warning(f"Refresh of '{connection}' failed: {exc}")
                errors.append(f"{strategy.name}: {exc}")

        logger.warning(f"Connection '{self.connection_id}' not refreshed")
        return await self._legacy(errors)

    async def _legacy(self, errors: List[str]) -> RefreshResult:
        if self.legacy_enabled:
            logger.warning("Falling back to legacy refresh")
            try:
                if await self.registry.refresh_all():
                    return RefreshResult(success=True, strategy=LEGACY_STRATEGY)
                errors.append("legacy: refresh reported failure")
            except Exception as exc:
                logger.warning(f"Legacy refresh failed: {exc}")
                errors.append(f"legacy: {exc}")

        message = "; ".join(errors) or f"no connection matches '{self.connection_id}'"
        logger.warning(f"Data refresh failed: {message}")
        return RefreshResult(success=False, error=message)


class HttpConnectionRegistry:
    """Connection registry exposed by the upstream data service over HTTP.

    Endpoints::

        GET  {base_url}/connections                 -> ["name", ...] or {"connections": [...]}
        POST {base_url}/connections/{name}/refresh  -> {"success": true}
        POST {base_url}/refresh                     -> {"success": true}
    """

    def __init__(self, base_url: str, http_client: Optional[HTTPClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client or HTTPClient()

    async def list_connections(self) -> List[str]:
        response = await self.http_client.get_async(f"{self.base_url}/connections")
        data = response.json()
        if isinstance(data, dict):
            data = data.get("connections", [])
        names: List[str] = []
        for item in data:
            if isinstance(item, dict):
                item = item.get("name")
            if item:
                names.append(str(item))
        return names

    async def refresh_connection(self, name: str) -> bool:
        response = await self.http_client.post_async(
            f"{self.base_url}/connections/{quote(name, safe='')}/refresh"
        )
        return self._succeeded(response.json())

    async def refresh_all(self) -> bool:
        response = await self.http_client.post_async(f"{self.base_url}/refresh")
        return self._succeeded(response.json())

    @staticmethod
    def _succeeded(payload: Any) -> bool:
        if isinstance(payload, dict):
            return bool(payload.get("success", True))
        return bool(payload)
