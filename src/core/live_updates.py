"""Live update router: realtime subscriptions feeding the stores.

Two independent scopes are kept:

- conversation scope, for the whole authenticated session: any change on a
  chat row where the identity sits in either slot triggers a full refresh;
- message scope, only while a conversation is open: inserts on that one
  conversation are appended to the message log.

Each scope is owned by a ``SubscriptionManager`` whose ``attach`` always
tears the previous subscriptions down first. A generation counter drops
events from handles that were already replaced, including handles whose
subscribe call resolved after a newer attach.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core import schema
from core.conversations import ConversationStore
from core.errors import ChatError, NotAuthenticated
from core.filters import Eq
from core.messages import MessageStore
from core.models import ChangeEvent, SubscriptionScope, message_from_record
from core.ports import DROPPED, GatewayPort, SessionPort, SubscriptionHandle

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None]]


def conversation_scopes(identity: str) -> tuple[SubscriptionScope, ...]:
    # Realtime filters take a single equality, so one channel per slot.
    return (
        SubscriptionScope(schema.CONVERSATIONS_TABLE, schema.ALL_EVENTS, Eq(schema.PARTICIPANT_A, identity)),
        SubscriptionScope(schema.CONVERSATIONS_TABLE, schema.ALL_EVENTS, Eq(schema.PARTICIPANT_B, identity)),
    )


def message_scope(conversation_id: str) -> SubscriptionScope:
    return SubscriptionScope(
        schema.MESSAGES_TABLE,
        schema.INSERT,
        Eq(schema.MESSAGE_CONVERSATION, conversation_id),
    )


class SubscriptionManager:
    """Holds the live handles of one scope."""

    def __init__(
        self,
        gateway: GatewayPort,
        name: str,
        on_event: EventHandler,
        on_drop: Callable[[], None],
    ) -> None:
        self._gateway = gateway
        self._name = name
        self._on_event = on_event
        self._on_drop = on_drop
        self._handles: list[SubscriptionHandle] = []
        self._scopes: tuple[SubscriptionScope, ...] = ()
        self._generation = 0

    @property
    def scopes(self) -> tuple[SubscriptionScope, ...]:
        return self._scopes

    @property
    def active(self) -> bool:
        return bool(self._handles)

    async def attach(self, *scopes: SubscriptionScope) -> None:
        """Replace whatever is attached with subscriptions for ``scopes``."""

        # One generation per attach; every await below re-checks it.
        self._generation += 1
        generation = self._generation
        self._scopes = scopes
        previous, self._handles = self._handles, []
        for handle in previous:
            await self._release(handle)
        if generation != self._generation:
            return

        async def deliver(event: ChangeEvent) -> None:
            if generation != self._generation:
                LOGGER.debug("Dropping %s event from a detached subscription", self._name)
                return
            await self._on_event(event)

        def status_changed(state: str) -> None:
            if generation == self._generation and state == DROPPED:
                LOGGER.warning("Realtime %s subscription dropped", self._name)
                self._on_drop()

        for scope in scopes:
            handle = await self._gateway.subscribe(scope, deliver, status_changed)
            if generation != self._generation:
                # Superseded while subscribing.
                await self._release(handle)
                return
            self._handles.append(handle)
        LOGGER.debug("Attached %s subscription(s) for %s", len(scopes), self._name)

    async def detach_all(self) -> None:
        self._generation += 1
        self._scopes = ()
        handles, self._handles = self._handles, []
        for handle in handles:
            await self._release(handle)

    async def _release(self, handle: SubscriptionHandle) -> None:
        try:
            await handle.unsubscribe()
        except ChatError as exc:
            LOGGER.warning("Failed to unsubscribe %s channel: %s", self._name, exc)


class LiveUpdateRouter:
    """Bridges realtime push events into the conversation and message stores."""

    def __init__(
        self,
        gateway: GatewayPort,
        session: SessionPort,
        conversations: ConversationStore,
        messages: MessageStore,
        resubscribe_delay: float = 1.0,
    ) -> None:
        self._session = session
        self._conversations = conversations
        self._messages = messages
        self._resubscribe_delay = resubscribe_delay
        self._resubscribe_task: Optional[asyncio.Task] = None
        self._running = False
        self.conversation_subscriptions = SubscriptionManager(
            gateway, "conversation", self._on_conversation_event, self._schedule_resubscribe
        )
        self.message_subscriptions = SubscriptionManager(
            gateway, "message", self._on_message_event, self._schedule_resubscribe
        )

    async def start(self) -> None:
        """Attach the conversation scope for the current identity."""

        identity = self._session.current_identity()
        if not identity:
            raise NotAuthenticated("Not authenticated")
        self._running = True
        try:
            await self.conversation_subscriptions.attach(*conversation_scopes(identity))
        except ChatError as exc:
            LOGGER.warning("Could not subscribe to conversation changes: %s", exc)
            self._schedule_resubscribe()
        await self.follow(self._messages.active_conversation_id)

    async def stop(self) -> None:
        self._running = False
        task, self._resubscribe_task = self._resubscribe_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        await self.message_subscriptions.detach_all()
        await self.conversation_subscriptions.detach_all()

    async def follow(self, conversation_id: Optional[str]) -> None:
        """Point the message scope at ``conversation_id`` (or at nothing)."""

        if conversation_id != self._messages.active_conversation_id:
            # The pointer already moved on; its own follow call will attach.
            return
        if conversation_id is None or not self._running:
            await self.message_subscriptions.detach_all()
            return
        try:
            await self.message_subscriptions.attach(message_scope(conversation_id))
        except ChatError as exc:
            LOGGER.warning("Could not subscribe to conversation %s: %s", conversation_id, exc)
            self._schedule_resubscribe()

    async def resubscribe(self) -> None:
        """Re-establish both scopes from the current identity and pointer."""

        if not self._running:
            return
        identity = self._session.current_identity()
        if not identity:
            await self.stop()
            return
        LOGGER.info("Re-establishing realtime subscriptions")
        await self.conversation_subscriptions.attach(*conversation_scopes(identity))
        await self.follow(self._messages.active_conversation_id)
        # Anything missed while disconnected.
        await self._conversations.refresh_conversations()
        active = self._messages.active_conversation_id
        if active is not None:
            await self._messages.load_messages(active)

    def _schedule_resubscribe(self) -> None:
        if not self._running:
            return
        if self._resubscribe_task is not None and not self._resubscribe_task.done():
            return
        self._resubscribe_task = asyncio.ensure_future(self._delayed_resubscribe())

    async def _delayed_resubscribe(self) -> None:
        await asyncio.sleep(self._resubscribe_delay)
        try:
            await self.resubscribe()
        except ChatError as exc:
            LOGGER.warning("Resubscribe failed: %s", exc)
            self._resubscribe_task = None
            self._schedule_resubscribe()

    async def _on_conversation_event(self, event: ChangeEvent) -> None:
        LOGGER.debug("Conversation %s event, refreshing list", event.event_type)
        await self._conversations.refresh_conversations()

    async def _on_message_event(self, event: ChangeEvent) -> None:
        if not event.new:
            return
        try:
            message = message_from_record(event.new)
        except (KeyError, ValueError):
            LOGGER.warning("Ignoring malformed message event: %r", event.new)
            return
        self._messages.append_message(message)
