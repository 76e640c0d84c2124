"""Conversation store: the live list of chats for the current identity.

Refreshes always replace the whole list so readers never see a mix of stale
and fresh rows. Conversation creation is idempotent per identity pair: a
uniqueness conflict means the peer created the row concurrently, so we read
it back instead of failing.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from core import schema
from core.errors import (
    ChatError,
    ConflictError,
    InvalidOperation,
    NotAuthenticated,
)
from core.filters import AllOf, AnyOf, Eq
from core.listeners import ListenerSet
from core.models import (
    Conversation,
    ConversationWithPeer,
    OperationStatus,
    ProfileLite,
    conversation_from_record,
    conversation_with_peer_from_record,
)
from core.ports import GatewayPort, Join, Order, SessionPort

LOGGER = logging.getLogger(__name__)

REFRESH = "refresh"
CREATE = "create"

PROFILE_JOINS = (
    Join(
        alias=schema.PARTICIPANT_A_PROFILE,
        table=schema.PROFILES_TABLE,
        foreign_key=schema.PARTICIPANT_A_FKEY,
        columns=schema.PROFILE_LITE_COLUMNS,
    ),
    Join(
        alias=schema.PARTICIPANT_B_PROFILE,
        table=schema.PROFILES_TABLE,
        foreign_key=schema.PARTICIPANT_B_FKEY,
        columns=schema.PROFILE_LITE_COLUMNS,
    ),
)


def get_peer(conversation: ConversationWithPeer, current_identity: str) -> Optional[ProfileLite]:
    """Return the profile of the participant that is not ``current_identity``.

    ``None`` when the peer profile has not loaded yet or when the identity
    is not part of the conversation.
    """

    if conversation.conversation.participant_a == current_identity:
        return conversation.participant_b_profile
    if conversation.conversation.participant_b == current_identity:
        return conversation.participant_a_profile
    return None


def involving(identity: str) -> AnyOf:
    return AnyOf(Eq(schema.PARTICIPANT_A, identity), Eq(schema.PARTICIPANT_B, identity))


def between(first: str, second: str) -> AnyOf:
    return AnyOf(
        AllOf(Eq(schema.PARTICIPANT_A, first), Eq(schema.PARTICIPANT_B, second)),
        AllOf(Eq(schema.PARTICIPANT_A, second), Eq(schema.PARTICIPANT_B, first)),
    )


class ConversationStore:
    """Owns the conversations visible to the current identity."""

    def __init__(self, gateway: GatewayPort, session: SessionPort) -> None:
        self._gateway = gateway
        self._session = session
        self._conversations: dict[str, ConversationWithPeer] = {}
        self._ordered: list[ConversationWithPeer] = []
        self._statuses = {REFRESH: OperationStatus(), CREATE: OperationStatus()}
        self._listeners = ListenerSet()
        self._refresh_seq = 0

    @property
    def conversations(self) -> list[ConversationWithPeer]:
        """Snapshot ordered by ``updated_at`` descending."""

        return list(self._ordered)

    def get(self, conversation_id: str) -> Optional[ConversationWithPeer]:
        return self._conversations.get(conversation_id)

    def status(self, operation: str) -> OperationStatus:
        return self._statuses[operation]

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self._listeners.add(listener)

    def clear(self) -> None:
        self._refresh_seq += 1
        self._replace({})
        for status in self._statuses.values():
            status.loading = False
            status.error = None
        self._listeners.notify()

    def _replace(self, conversations: dict[str, ConversationWithPeer]) -> None:
        self._conversations = conversations
        # sorted() is stable, so equal timestamps keep the backend order.
        self._ordered = sorted(conversations.values(), key=lambda item: item.updated_at, reverse=True)

    def _require_identity(self) -> str:
        identity = self._session.current_identity()
        if not identity:
            raise NotAuthenticated("Not authenticated")
        return identity

    async def refresh_conversations(self) -> None:
        """Reload every conversation for the current identity.

        Best-effort: backend failures are logged and recorded on the
        ``refresh`` status while the last good list stays in place.
        """

        identity = self._session.current_identity()
        if not identity:
            return

        self._refresh_seq += 1
        token = self._refresh_seq
        status = self._statuses[REFRESH]
        status.loading = True
        try:
            rows = await self._gateway.query(
                schema.CONVERSATIONS_TABLE,
                columns=schema.CONVERSATION_COLUMNS,
                filter=involving(identity),
                joins=PROFILE_JOINS,
                order=(Order(schema.UPDATED_AT, descending=True),),
            )
        except ChatError as exc:
            if token == self._refresh_seq:
                status.loading = False
                status.error = exc
                self._listeners.notify()
            LOGGER.warning("Conversation refresh failed: %s", exc)
            return

        # A newer refresh or an identity switch supersedes this response.
        if token != self._refresh_seq or self._session.current_identity() != identity:
            LOGGER.debug("Discarding stale conversation refresh")
            return

        conversations: dict[str, ConversationWithPeer] = {}
        for row in rows:
            try:
                item = conversation_with_peer_from_record(row)
            except (KeyError, ValueError):
                LOGGER.warning("Skipping malformed conversation row: %r", row)
                continue
            conversations[item.id] = item
        self._replace(conversations)
        status.loading = False
        status.error = None
        self._listeners.notify()

    async def find_conversation(self, first: str, second: str) -> Optional[Conversation]:
        rows = await self._gateway.query(
            schema.CONVERSATIONS_TABLE,
            columns=schema.CONVERSATION_COLUMNS,
            filter=between(first, second),
            limit=1,
        )
        return conversation_from_record(rows[0]) if rows else None

    async def upsert_or_create_conversation(self, peer_identity: str) -> Conversation:
        """Return the single conversation with ``peer_identity``, creating it once."""

        identity = self._require_identity()
        if peer_identity == identity:
            raise InvalidOperation("You cannot chat with yourself.")

        status = self._statuses[CREATE]
        status.loading = True
        status.error = None
        try:
            existing = await self.find_conversation(identity, peer_identity)
            if existing is not None:
                return existing

            try:
                record = await self._gateway.insert(
                    schema.CONVERSATIONS_TABLE,
                    {schema.PARTICIPANT_A: identity, schema.PARTICIPANT_B: peer_identity},
                )
                conversation = conversation_from_record(record)
                LOGGER.info("Created conversation %s with %s", conversation.id, peer_identity)
            except ConflictError:
                # The peer inserted the same pair concurrently; read theirs back.
                resolved = await self.find_conversation(identity, peer_identity)
                if resolved is None:
                    raise
                LOGGER.info("Resolved concurrent creation to conversation %s", resolved.id)
                conversation = resolved
        except ChatError as exc:
            status.error = exc
            raise
        finally:
            status.loading = False

        await self.refresh_conversations()
        return conversation
