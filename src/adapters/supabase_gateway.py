"""Supabase gateway adapter.

Implements the core GatewayPort on top of the async Supabase client
(PostgREST for rows and procedures, Realtime for change streams). SDK
exceptions are translated into core errors here, and embedded join results
are normalised so the stores never see the list-or-object ambiguity.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Mapping, Optional, Sequence

import httpx
from postgrest.exceptions import APIError

from core.errors import ConflictError, TransportError
from core.filters import AllOf, AnyOf, Eq, Filter, ILike, Neq
from core.models import ChangeEvent, SubscriptionScope
from core.ports import CLOSED, DROPPED, SUBSCRIBED, EventCallback, Join, Order, StatusCallback

LOGGER = logging.getLogger(__name__)

# Postgres unique_violation.
UNIQUE_VIOLATION = "23505"


def first_or_null(value: Any) -> Optional[dict[str, Any]]:
    """Collapse an embedded relation to a single record or ``None``.

    PostgREST returns a to-one join as an object or as a one-element list
    depending on how it infers cardinality.
    """

    if isinstance(value, (list, tuple)):
        return dict(value[0]) if value else None
    if isinstance(value, Mapping):
        return dict(value)
    return None


def select_clause(columns: Sequence[str], joins: Sequence[Join] = ()) -> str:
    parts = list(columns)
    for join in joins:
        parts.append(f"{join.alias}:{join.table}!{join.foreign_key}({','.join(join.columns)})")
    return ",".join(parts)


def apply_filter(builder, expression: Optional[Filter]):
    """Apply a core filter expression to a PostgREST request builder."""

    if expression is None:
        return builder
    if isinstance(expression, Eq):
        return builder.eq(expression.column, expression.value)
    if isinstance(expression, Neq):
        return builder.neq(expression.column, expression.value)
    if isinstance(expression, ILike):
        return builder.ilike(expression.column, expression.pattern)
    if isinstance(expression, AllOf):
        for item in expression.filters:
            builder = apply_filter(builder, item)
        return builder
    if isinstance(expression, AnyOf):
        return builder.or_(expression.inner_postgrest())
    raise TypeError(f"Unsupported filter: {expression!r}")


def realtime_filter(scope: SubscriptionScope) -> Optional[str]:
    if scope.filter is None:
        return None
    return f"{scope.filter.column}=eq.{scope.filter.value}"


def change_event_from_payload(payload: Mapping[str, Any], table: str) -> ChangeEvent:
    """Build a ChangeEvent from a realtime postgres_changes payload."""

    data = payload.get("data") or payload
    event_type = data.get("type") or data.get("eventType") or ""
    new = data.get("record") or data.get("new") or {}
    old = data.get("old_record") or data.get("old") or {}
    return ChangeEvent(
        table=data.get("table") or table,
        event_type=str(getattr(event_type, "value", event_type)).upper(),
        new=dict(new),
        old=dict(old),
    )


def _channel_state(state: Any) -> str:
    return str(getattr(state, "value", state)).upper()


class RealtimeChannelHandle:
    """Subscription handle wrapping one realtime channel."""

    def __init__(self, client, channel, name: str) -> None:
        self._client = client
        self._channel = channel
        self.name = name
        self.closing = False

    async def unsubscribe(self) -> None:
        self.closing = True
        try:
            await self._client.remove_channel(self._channel)
        except Exception as exc:
            raise TransportError(f"Failed to remove channel {self.name}: {exc}") from exc
        LOGGER.debug("Removed realtime channel %s", self.name)


class SupabaseGateway:
    """Thin async wrapper that satisfies the GatewayPort contract."""

    def __init__(self, client, schema: str = "public") -> None:
        self._client = client
        self._schema = schema
        # Keeps dispatched event tasks alive until they finish.
        self._tasks: set[asyncio.Task] = set()

    async def _execute(self, builder) -> Any:
        try:
            response = await builder.execute()
        except APIError as exc:
            message = exc.message or str(exc)
            if exc.code == UNIQUE_VIOLATION:
                raise ConflictError(message) from exc
            raise TransportError(message, code=exc.code) from exc
        except httpx.HTTPError as exc:
            raise TransportError(str(exc)) from exc
        return response.data

    async def query(
        self,
        table: str,
        *,
        columns: Sequence[str] = ("*",),
        filter: Optional[Filter] = None,
        joins: Sequence[Join] = (),
        order: Sequence[Order] = (),
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        builder = self._client.table(table).select(select_clause(columns, joins))
        builder = apply_filter(builder, filter)
        for item in order:
            builder = builder.order(item.column, desc=item.descending)
        if limit is not None:
            builder = builder.limit(limit)

        rows = await self._execute(builder) or []
        for row in rows:
            for join in joins:
                row[join.alias] = first_or_null(row.get(join.alias))
        return rows

    async def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        rows = await self._execute(self._client.table(table).insert(dict(record)))
        if not rows:
            raise TransportError(f"Insert into {table} returned no row")
        return rows[0]

    async def update(self, table: str, row_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        rows = await self._execute(self._client.table(table).update(dict(patch)).eq("id", row_id))
        if not rows:
            raise TransportError(f"Update of {table}/{row_id} matched no row")
        return rows[0]

    async def rpc(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self._execute(self._client.rpc(name, dict(params or {})))

    async def subscribe(
        self,
        scope: SubscriptionScope,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> RealtimeChannelHandle:
        channel_filter = realtime_filter(scope)
        name = f"{scope.table}:{channel_filter or 'all'}:{uuid.uuid4().hex[:8]}"
        channel = self._client.channel(name)
        handle = RealtimeChannelHandle(self._client, channel, name)

        def handle_change(payload: Mapping[str, Any]) -> None:
            event = change_event_from_payload(payload, scope.table)
            # Realtime invokes callbacks synchronously; hand off to the loop.
            task = asyncio.ensure_future(on_event(event))
            self._tasks.add(task)
            task.add_done_callback(self._event_done)

        def handle_status(state: Any, error: Optional[Exception] = None) -> None:
            value = _channel_state(state)
            if value == "SUBSCRIBED":
                status = SUBSCRIBED
            elif value == "CLOSED" and handle.closing:
                status = CLOSED
            else:
                status = DROPPED
            if error is not None:
                LOGGER.warning("Realtime channel %s reported %s: %s", name, value, error)
            if on_status is not None:
                on_status(status)

        kwargs: dict[str, Any] = {"schema": self._schema, "table": scope.table}
        if channel_filter:
            kwargs["filter"] = channel_filter
        channel.on_postgres_changes(scope.event_types, callback=handle_change, **kwargs)
        try:
            await channel.subscribe(handle_status)
        except Exception as exc:
            # The client registered the channel on creation; unregister it.
            try:
                await self._client.remove_channel(channel)
            except Exception as cleanup_exc:
                LOGGER.warning("Failed to remove channel %s: %s", name, cleanup_exc)
            raise TransportError(f"Failed to subscribe to {name}: {exc}") from exc
        LOGGER.debug("Subscribed realtime channel %s", name)
        return handle

    def _event_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Error while processing realtime event", exc_info=exc)
