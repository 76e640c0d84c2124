"""Message store: the ordered log of the single active conversation.

The log is ordered by the server's ``created_at`` (ties keep arrival order)
regardless of the order in which fetches and pushes land. Appends are
idempotent by message id because a send confirmation and a realtime push
can deliver the same row.
"""

from __future__ import annotations

import bisect
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from core import schema
from core.errors import ChatError, NotAuthenticated, ValidationError
from core.filters import Eq
from core.listeners import ListenerSet
from core.models import Message, OperationStatus, message_from_record
from core.ports import GatewayPort, Order, SessionPort

LOGGER = logging.getLogger(__name__)

LOAD = "load"
SEND = "send"

ActivationHook = Callable[[Optional[str]], Awaitable[None]]


def _ordered(messages: Iterable[Message]) -> list[Message]:
    return sorted(messages, key=lambda message: message.created_at)


class MessageStore:
    """Owns the message log and the active conversation pointer."""

    def __init__(self, gateway: GatewayPort, session: SessionPort) -> None:
        self._gateway = gateway
        self._session = session
        self._active_id: Optional[str] = None
        self._log: list[Message] = []
        self._ids: set[str] = set()
        self._statuses = {LOAD: OperationStatus(), SEND: OperationStatus()}
        self._listeners = ListenerSet()
        self._activation_hooks: list[ActivationHook] = []
        self._load_seq = 0

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self._active_id

    @property
    def messages(self) -> list[Message]:
        return list(self._log)

    def status(self, operation: str) -> OperationStatus:
        return self._statuses[operation]

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self._listeners.add(listener)

    def on_activate(self, hook: ActivationHook) -> None:
        """Run ``hook`` after the pointer moves and before history loads."""

        self._activation_hooks.append(hook)

    def _set_log(self, messages: list[Message]) -> None:
        self._log = messages
        self._ids = {message.id for message in messages}

    def reset(self) -> None:
        """Drop the pointer and the log without running activation hooks."""

        self._active_id = None
        self._load_seq += 1
        self._set_log([])
        for status in self._statuses.values():
            status.loading = False
            status.error = None
        self._listeners.notify()

    async def set_active_conversation(self, conversation_id: Optional[str]) -> None:
        """Switch the open conversation, clearing the log and loading history."""

        self._active_id = conversation_id
        self._load_seq += 1
        self._set_log([])
        self._statuses[LOAD].error = None
        self._listeners.notify()

        for hook in self._activation_hooks:
            await hook(conversation_id)

        if conversation_id is not None and conversation_id == self._active_id:
            await self.load_messages(conversation_id)

    async def load_messages(self, conversation_id: str) -> None:
        """Fetch the full history of ``conversation_id`` and replace the log.

        The response is discarded if the pointer moved away or a newer load
        was started meanwhile. Failures propagate to the caller.
        """

        self._load_seq += 1
        token = self._load_seq
        status = self._statuses[LOAD]
        status.loading = True
        try:
            rows = await self._gateway.query(
                schema.MESSAGES_TABLE,
                filter=Eq(schema.MESSAGE_CONVERSATION, conversation_id),
                order=(Order(schema.CREATED_AT),),
            )
        except ChatError as exc:
            if token == self._load_seq:
                status.loading = False
                status.error = exc
                self._listeners.notify()
            raise

        if token != self._load_seq or conversation_id != self._active_id:
            LOGGER.debug("Discarding stale history for conversation %s", conversation_id)
            return

        fetched = [message_from_record(row) for row in rows]
        fetched_ids = {message.id for message in fetched}
        # Pushes that landed while the fetch was in flight may be newer than
        # the fetched page; keep them.
        pushed = [message for message in self._log if message.id not in fetched_ids]
        self._set_log(_ordered(fetched + pushed) if pushed else fetched)
        status.loading = False
        status.error = None
        self._listeners.notify()

    def append_message(self, message: Message) -> bool:
        """Insert ``message`` at its ``created_at`` position.

        Returns ``False`` for duplicates and for messages of any conversation
        other than the active one.
        """

        if message.conversation_id != self._active_id:
            LOGGER.debug("Ignoring message %s for inactive conversation", message.id)
            return False
        if message.id in self._ids:
            return False

        keys = [existing.created_at for existing in self._log]
        index = bisect.bisect_right(keys, message.created_at)
        self._log.insert(index, message)
        self._ids.add(message.id)
        self._listeners.notify()
        return True

    async def send_message(self, conversation_id: str, text: str, media: Any = None) -> Message:
        """Insert a message authored by the current identity.

        The log is not touched: the realtime subscription delivers the stored
        row, which keeps the server as the single source of message content.
        """

        identity = self._session.current_identity()
        if not identity:
            raise NotAuthenticated("Not authenticated")
        body = (text or "").strip()
        if not body:
            raise ValidationError("Message text is empty")

        status = self._statuses[SEND]
        status.loading = True
        status.error = None
        record: dict[str, Any] = {
            schema.MESSAGE_CONVERSATION: conversation_id,
            schema.MESSAGE_SENDER: identity,
            "text": body,
        }
        if media is not None:
            record["media"] = media
        try:
            row = await self._gateway.insert(schema.MESSAGES_TABLE, record)
        except ChatError as exc:
            status.error = exc
            LOGGER.warning("Sending to conversation %s failed: %s", conversation_id, exc)
            raise
        finally:
            status.loading = False
        return message_from_record(row)
