"""Ports (interfaces) used by the chat core.

Ports define the minimal contracts for the backend gateway and the session
provider so that the core can be reused with different backends.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence

from core.filters import Filter
from core.models import ChangeEvent, SubscriptionScope

EventCallback = Callable[[ChangeEvent], Awaitable[None]]
StatusCallback = Callable[[str], None]
IdentityCallback = Callable[[Optional[str]], None]

# Channel states reported through StatusCallback.
SUBSCRIBED = "subscribed"
CLOSED = "closed"
DROPPED = "dropped"


@dataclass(frozen=True)
class Join:
    """Embed the row of ``table`` referenced through ``foreign_key`` as ``alias``."""

    alias: str
    table: str
    foreign_key: str
    columns: tuple[str, ...]


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False


class SubscriptionHandle(Protocol):
    """A live realtime subscription."""

    async def unsubscribe(self) -> None:
        ...


class GatewayPort(Protocol):
    """Backend operations required by the chat core.

    Join aliases in query results are already normalised to a single record
    or ``None``.
    """

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
        ...

    async def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def update(self, table: str, row_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def rpc(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        ...

    async def subscribe(
        self,
        scope: SubscriptionScope,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> SubscriptionHandle:
        ...


class SessionPort(Protocol):
    """Identity operations required by the chat core."""

    def current_identity(self) -> Optional[str]:
        ...

    def on_change(self, callback: IdentityCallback) -> Callable[[], None]:
        ...
