"""Chat façade consumed by the presentation layer.

Presentation reads the stores as snapshots and issues intents through this
class; it never mutates the stores directly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from core.config import ChatSettings
from core.contacts import ContactDirectory
from core.conversations import ConversationStore, get_peer
from core.errors import NotAuthenticated, ValidationError
from core.live_updates import LiveUpdateRouter
from core.messages import MessageStore
from core.models import Conversation, ConversationWithPeer, Message, ProfileLite
from core.ports import GatewayPort, SessionPort

LOGGER = logging.getLogger(__name__)


class ChatCore:
    """Owns the stores and the router for one signed-in client."""

    def __init__(self, gateway: GatewayPort, session: SessionPort, settings: Optional[ChatSettings] = None) -> None:
        settings = settings or ChatSettings()
        self._session = session
        self.conversations = ConversationStore(gateway, session)
        self.messages = MessageStore(gateway, session)
        self.contacts = ContactDirectory(gateway, session, settings.contacts)
        self.router = LiveUpdateRouter(
            gateway,
            session,
            self.conversations,
            self.messages,
            resubscribe_delay=settings.resubscribe_delay_seconds,
        )
        self.messages.on_activate(self.router.follow)
        self._identity: Optional[str] = None
        self._unsubscribe_session = None
        self._pending: set[asyncio.Task] = set()

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    async def start(self) -> None:
        """Begin following the session; loads data if already signed in."""

        if self._unsubscribe_session is None:
            self._unsubscribe_session = self._session.on_change(self._identity_changed)
        await self._switch_identity(self._session.current_identity())

    async def stop(self) -> None:
        if self._unsubscribe_session is not None:
            self._unsubscribe_session()
            self._unsubscribe_session = None
        for task in list(self._pending):
            task.cancel()
        await self.router.stop()

    def _identity_changed(self, identity: Optional[str]) -> None:
        # Session callbacks are synchronous; run the switch on the loop.
        task = asyncio.ensure_future(self._switch_identity(identity))
        self._pending.add(task)
        task.add_done_callback(self._switch_done)

    def _switch_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Identity switch failed", exc_info=task.exception())

    async def _switch_identity(self, identity: Optional[str]) -> None:
        if identity == self._identity and (identity is None or self.router.conversation_subscriptions.active):
            return
        LOGGER.info("Identity changed, resetting chat state")
        self._identity = identity
        await self.router.stop()
        self.messages.reset()
        self.conversations.clear()
        if identity is None:
            return
        await self.router.start()
        await self.conversations.refresh_conversations()

    def peer_of(self, conversation: ConversationWithPeer) -> Optional[ProfileLite]:
        if not self._identity:
            return None
        return get_peer(conversation, self._identity)

    async def open_conversation(self, conversation_id: str) -> None:
        await self.messages.set_active_conversation(conversation_id)

    async def close_conversation(self) -> None:
        await self.messages.set_active_conversation(None)

    async def start_conversation(self, peer_identity: str) -> Conversation:
        """Create or reuse the conversation with ``peer_identity`` and open it."""

        conversation = await self.conversations.upsert_or_create_conversation(peer_identity)
        await self.open_conversation(conversation.id)
        return conversation

    async def send_message(self, text: str, media: Any = None) -> Message:
        """Send ``text`` to the active conversation."""

        active = self.messages.active_conversation_id
        if active is None:
            raise ValidationError("No conversation is open")
        return await self.messages.send_message(active, text, media)

    async def message_user(self, peer_identity: str, text: str) -> Message:
        if not self._session.current_identity():
            raise NotAuthenticated("Not authenticated")
        if not (text or "").strip():
            raise ValidationError("Message text is empty")
        await self.start_conversation(peer_identity)
        return await self.send_message(text)
