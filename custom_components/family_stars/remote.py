"""Remote data service for Family Stars.

The remote store (a Supabase project) is the system of record. This module
provides:
- RemoteDataService: the protocol the managers program against
- RemoteChange: one canonical change event (insert / update / delete)
- RemoteError: transport failure with a normalized error code
- SupabaseRemoteService: PostgREST over HTTP plus the Phoenix realtime
  websocket, both through Home Assistant's shared aiohttp session

Conditional updates (compare-and-set on ``status``) are expressed as an extra
``status=eq.<expected>`` filter on the PATCH; PostgREST returns an empty list
when no row matched, which callers read as a lost race.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp
from homeassistant.helpers.aiohttp_client import async_get_clientsession
from yarl import URL

from . import const

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from homeassistant.core import HomeAssistant


# ==============================================================================
# Events and errors
# ==============================================================================


@dataclass(frozen=True)
class RemoteChange:
    """One canonical change delivered by the remote.

    Attributes:
        kind: CHANGE_INSERT, CHANGE_UPDATE or CHANGE_DELETE
        table: Remote table name
        record: Row after the change (empty for deletes)
        old_record: Row before the change, when the remote sends one
    """

    kind: str
    table: str
    record: dict[str, Any]
    old_record: dict[str, Any] | None = None

    @property
    def row_id(self) -> str | None:
        """Identifier of the changed row (falls back to old_record for deletes)."""
        row_id = self.record.get(const.REMOTE_COLUMN_ID)
        if row_id is None and self.old_record:
            row_id = self.old_record.get(const.REMOTE_COLUMN_ID)
        return row_id


class RemoteError(Exception):
    """Raised when a remote operation fails in transport or is refused.

    Attributes:
        code: One of the REMOTE_ERROR_* constants
        operation: What was attempted (e.g. "insert task_instances")
        status: HTTP status, if a response was received
        retryable: Whether repeating the same request could succeed
        request_id: Server-side request id, when provided
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        operation: str | None = None,
        status: int | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize RemoteError."""
        super().__init__(message)
        self.code = code
        self.operation = operation
        self.status = status
        self.request_id = request_id
        self.retryable = code in (
            const.REMOTE_ERROR_NETWORK,
            const.REMOTE_ERROR_TIMEOUT,
            const.REMOTE_ERROR_RATE_LIMIT,
            const.REMOTE_ERROR_SERVER,
        )


def error_code_for_status(status: int, body: Any = None) -> str:
    """Map an HTTP status (and PostgREST error body) to a REMOTE_ERROR_* code."""
    if isinstance(body, dict) and body.get("code") == const.POSTGREST_NOT_FOUND_CODE:
        return const.REMOTE_ERROR_NOT_FOUND
    if status in (401, 403):
        return const.REMOTE_ERROR_AUTH
    if status == 404:
        return const.REMOTE_ERROR_NOT_FOUND
    if status == 408:
        return const.REMOTE_ERROR_TIMEOUT
    if status == 429:
        return const.REMOTE_ERROR_RATE_LIMIT
    if status in (400, 409, 422):
        return const.REMOTE_ERROR_VALIDATION
    if status >= 500:
        return const.REMOTE_ERROR_SERVER
    return const.REMOTE_ERROR_UNKNOWN


# ==============================================================================
# Protocol
# ==============================================================================


class RemoteDataService(Protocol):
    """Per-table collections with filtered read, insert, CAS update and a feed."""

    async def async_select(
        self, table: str, filters: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Return every row matching equality filters."""

    async def async_insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return the canonical row (with its remote id)."""

    async def async_update(
        self,
        table: str,
        row_id: str,
        fields: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> dict[str, Any] | None:
        """Update one row; None when expected_status no longer matched."""

    async def async_delete(self, table: str, row_id: str) -> bool:
        """Delete one row; False when it was already gone."""

    async def async_subscribe(
        self,
        partition: str,
        on_change: Callable[[RemoteChange], None],
        on_reconnect: Callable[[], Awaitable[None]] | None = None,
    ) -> Callable[[], None]:
        """Start delivering changes for a partition; returns an unsubscribe."""


# ==============================================================================
# Realtime message parsing
# ==============================================================================

_REALTIME_KINDS = {
    "INSERT": const.CHANGE_INSERT,
    "UPDATE": const.CHANGE_UPDATE,
    "DELETE": const.CHANGE_DELETE,
}


def parse_realtime_message(message: Any) -> RemoteChange | None:
    """Decode a Phoenix ``postgres_changes`` frame into a RemoteChange.

    Returns None for replies, heartbeats, system frames, unknown tables and
    anything malformed.
    """
    if not isinstance(message, dict) or message.get("event") != "postgres_changes":
        return None

    payload = message.get("payload")
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return None

    kind = _REALTIME_KINDS.get(str(data.get("type", "")).upper())
    table = data.get("table")
    if kind is None or table not in const.REMOTE_TABLE_TO_COLLECTION:
        return None

    record = data.get("record") or {}
    old_record = data.get("old_record") or None
    if not isinstance(record, dict) or (
        old_record is not None and not isinstance(old_record, dict)
    ):
        return None

    return RemoteChange(kind=kind, table=table, record=record, old_record=old_record)


# ==============================================================================
# Supabase implementation
# ==============================================================================


class SupabaseRemoteService:
    """RemoteDataService backed by Supabase (PostgREST + realtime)."""

    def __init__(self, hass: HomeAssistant, remote_url: str, api_key: str) -> None:
        """Initialize the service.

        Args:
            hass: Home Assistant instance (shared aiohttp session, background tasks)
            remote_url: Project base URL, e.g. https://abc.supabase.co
            api_key: Anon or service key sent as apikey and bearer token
        """
        self.hass = hass
        self._base_url = URL(remote_url.rstrip("/"))
        self._api_key = api_key
        self._session = async_get_clientsession(hass)
        self._timeout = aiohttp.ClientTimeout(total=const.REQUEST_TIMEOUT_SECONDS)

    # --------------------------------------------------------------------------
    # REST
    # --------------------------------------------------------------------------

    def _headers(self, *, representation: bool = False) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if representation:
            headers["Prefer"] = "return=representation"
        return headers

    def _table_url(self, table: str) -> URL:
        return self._base_url.with_path(f"{const.REST_PATH}{table}")

    async def _async_request(
        self,
        method: str,
        table: str,
        operation: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        representation: bool = False,
    ) -> Any:
        """Perform one PostgREST request and return the decoded JSON body.

        Raises:
            RemoteError: on transport failure or a non-2xx response
        """
        try:
            async with self._session.request(
                method,
                self._table_url(table),
                params=params,
                json=json_body,
                headers=self._headers(representation=representation),
                timeout=self._timeout,
            ) as response:
                request_id = response.headers.get("x-request-id")
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None

                if response.status >= 400:
                    code = error_code_for_status(response.status, body)
                    message = (
                        body.get("message") if isinstance(body, dict) else None
                    ) or f"HTTP {response.status}"
                    raise RemoteError(
                        code,
                        message,
                        operation=operation,
                        status=response.status,
                        request_id=request_id,
                    )
                return body
        except TimeoutError as err:
            raise RemoteError(
                const.REMOTE_ERROR_TIMEOUT,
                f"Timed out: {operation}",
                operation=operation,
            ) from err
        except aiohttp.ClientError as err:
            raise RemoteError(
                const.REMOTE_ERROR_NETWORK,
                f"{operation}: {err}",
                operation=operation,
            ) from err

    async def async_select(
        self, table: str, filters: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Return every row of ``table`` matching the equality filters."""
        params = {"select": "*"}
        params.update({column: f"eq.{value}" for column, value in filters.items()})
        body = await self._async_request(
            "GET", table, f"select {table}", params=params
        )
        return body if isinstance(body, list) else []

    async def async_insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert ``row`` and return the canonical row."""
        operation = f"insert {table}"
        body = await self._async_request(
            "POST", table, operation, json_body=row, representation=True
        )
        if isinstance(body, list) and body:
            return body[0]
        if isinstance(body, dict) and body:
            return body
        raise RemoteError(
            const.REMOTE_ERROR_UNKNOWN, "Insert returned no row", operation=operation
        )

    async def async_update(
        self,
        table: str,
        row_id: str,
        fields: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> dict[str, Any] | None:
        """Update one row; returns None when the status guard did not match."""
        params = {const.REMOTE_COLUMN_ID: f"eq.{row_id}"}
        if expected_status is not None:
            params[const.REMOTE_COLUMN_STATUS] = f"eq.{expected_status}"
        body = await self._async_request(
            "PATCH",
            table,
            f"update {table}",
            params=params,
            json_body=fields,
            representation=True,
        )
        if isinstance(body, list) and body:
            return body[0]
        return None

    async def async_delete(self, table: str, row_id: str) -> bool:
        """Delete one row; returns False when no row matched."""
        body = await self._async_request(
            "DELETE",
            table,
            f"delete {table}",
            params={const.REMOTE_COLUMN_ID: f"eq.{row_id}"},
            representation=True,
        )
        return isinstance(body, list) and bool(body)

    async def async_validate(self, family_id: str) -> None:
        """Check the API with a cheap read (used by the config flow)."""
        await self._async_request(
            "GET",
            const.REMOTE_TABLE_PROFILES,
            "validate",
            params={
                "select": const.REMOTE_COLUMN_ID,
                const.REMOTE_COLUMN_FAMILY_ID: f"eq.{family_id}",
                "limit": "1",
            },
        )

    # --------------------------------------------------------------------------
    # Realtime
    # --------------------------------------------------------------------------

    def _realtime_url(self) -> URL:
        scheme = "wss" if self._base_url.scheme == "https" else "ws"
        return self._base_url.with_scheme(scheme).with_path(
            const.REALTIME_PATH
        ).with_query({"apikey": self._api_key, "vsn": "1.0.0"})

    def _join_message(self, partition: str, ref: int) -> dict[str, Any]:
        return {
            "topic": f"realtime:family-{partition}",
            "event": "phx_join",
            "payload": {
                "config": {
                    "broadcast": {"self": False},
                    "presence": {"key": ""},
                    "postgres_changes": [
                        {
                            "event": "*",
                            "schema": "public",
                            "table": table,
                            "filter": f"{const.REMOTE_COLUMN_FAMILY_ID}=eq.{partition}",
                        }
                        for table in const.REMOTE_TABLE_TO_COLLECTION
                    ],
                },
                "access_token": self._api_key,
            },
            "ref": str(ref),
            "join_ref": str(ref),
        }

    async def async_subscribe(
        self,
        partition: str,
        on_change: Callable[[RemoteChange], None],
        on_reconnect: Callable[[], Awaitable[None]] | None = None,
    ) -> Callable[[], None]:
        """Run the realtime feed in a background task until unsubscribed."""
        task = self.hass.async_create_background_task(
            self._async_realtime_loop(partition, on_change, on_reconnect),
            name=f"{const.DOMAIN} realtime {partition}",
        )

        def _unsubscribe() -> None:
            task.cancel()

        return _unsubscribe

    async def _async_realtime_loop(
        self,
        partition: str,
        on_change: Callable[[RemoteChange], None],
        on_reconnect: Callable[[], Awaitable[None]] | None,
    ) -> None:
        """Keep one realtime channel joined, reconnecting after failures."""
        connected_before = False
        while True:
            try:
                await self._async_realtime_session(
                    partition,
                    on_change,
                    on_reconnect if connected_before else None,
                )
            except (aiohttp.ClientError, TimeoutError, ValueError) as err:
                const.LOGGER.warning(
                    "WARNING: Realtime connection for family %s failed: %s",
                    partition,
                    err,
                )
            else:
                const.LOGGER.info(
                    "INFO: Realtime connection for family %s closed", partition
                )
            connected_before = True
            await asyncio.sleep(const.REALTIME_RECONNECT_SECONDS)

    async def _async_realtime_session(
        self,
        partition: str,
        on_change: Callable[[RemoteChange], None],
        on_reconnect: Callable[[], Awaitable[None]] | None,
    ) -> None:
        """Join the channel and dispatch frames until the socket closes."""
        loop = asyncio.get_running_loop()
        ref = 1
        async with self._session.ws_connect(self._realtime_url()) as ws:
            await ws.send_json(self._join_message(partition, ref))
            const.LOGGER.debug("DEBUG: Realtime channel joined for family %s", partition)
            if on_reconnect is not None:
                await on_reconnect()

            next_heartbeat = loop.time() + const.REALTIME_HEARTBEAT_SECONDS
            while not ws.closed:
                timeout = max(0.0, next_heartbeat - loop.time())
                try:
                    msg = await ws.receive(timeout=timeout)
                except TimeoutError:
                    ref += 1
                    await ws.send_json(
                        {
                            "topic": "phoenix",
                            "event": "heartbeat",
                            "payload": {},
                            "ref": str(ref),
                        }
                    )
                    next_heartbeat = loop.time() + const.REALTIME_HEARTBEAT_SECONDS
                    continue

                if msg.type == aiohttp.WSMsgType.TEXT:
                    change = parse_realtime_message(msg.json())
                    if change is not None:
                        on_change(change)
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSED,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.ERROR,
                ):
                    break
