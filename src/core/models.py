"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to the backend's row shapes. The ``*_from_record`` helpers are the
only code that reads raw column names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from core import schema
from core.errors import ChatError
from core.filters import Eq


@dataclass(frozen=True)
class ProfileLite:
    """Display projection of a user, joined onto conversation listings."""

    id: str
    display_name: Optional[str]
    username: Optional[str]
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class Conversation:
    id: str
    participant_a: str
    participant_b: str
    created_at: datetime
    updated_at: datetime

    def involves(self, identity: str) -> bool:
        return identity in (self.participant_a, self.participant_b)


@dataclass(frozen=True)
class ConversationWithPeer:
    """A conversation enriched with both participant profiles.

    Either profile is ``None`` until the backend join has resolved it.
    """

    conversation: Conversation
    participant_a_profile: Optional[ProfileLite]
    participant_b_profile: Optional[ProfileLite]

    @property
    def id(self) -> str:
        return self.conversation.id

    @property
    def updated_at(self) -> datetime:
        return self.conversation.updated_at


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    sender_id: str
    text: str
    created_at: datetime
    media: Any = None


@dataclass(frozen=True)
class SubscriptionScope:
    """What a realtime subscription listens to.

    ``filter`` is limited to a single equality because realtime filters are
    evaluated server-side and do not support boolean combinations.
    """

    table: str
    event_types: str
    filter: Optional[Eq] = None


@dataclass(frozen=True)
class ChangeEvent:
    """A row change pushed by the backend."""

    table: str
    event_type: str
    new: Mapping[str, Any] = field(default_factory=dict)
    old: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class OperationStatus:
    """Loading/error flag for one store operation, read by Presentation."""

    loading: bool = False
    error: Optional[ChatError] = None


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse a backend timestamp into an aware datetime (UTC if naive)."""

    if isinstance(value, datetime):
        parsed = value
    elif not value:
        return _EPOCH
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def profile_from_record(record: Optional[Mapping[str, Any]]) -> Optional[ProfileLite]:
    if not record:
        return None
    return ProfileLite(
        id=str(record["id"]),
        display_name=record.get("name"),
        username=record.get("username"),
        avatar_url=record.get("avatar_url"),
    )


def conversation_from_record(record: Mapping[str, Any]) -> Conversation:
    return Conversation(
        id=str(record["id"]),
        participant_a=str(record[schema.PARTICIPANT_A]),
        participant_b=str(record[schema.PARTICIPANT_B]),
        created_at=parse_timestamp(record.get(schema.CREATED_AT)),
        updated_at=parse_timestamp(record.get(schema.UPDATED_AT) or record.get(schema.CREATED_AT)),
    )


def conversation_with_peer_from_record(record: Mapping[str, Any]) -> ConversationWithPeer:
    return ConversationWithPeer(
        conversation=conversation_from_record(record),
        participant_a_profile=profile_from_record(record.get(schema.PARTICIPANT_A_PROFILE)),
        participant_b_profile=profile_from_record(record.get(schema.PARTICIPANT_B_PROFILE)),
    )


def message_from_record(record: Mapping[str, Any]) -> Message:
    return Message(
        id=str(record["id"]),
        conversation_id=str(record[schema.MESSAGE_CONVERSATION]),
        sender_id=str(record[schema.MESSAGE_SENDER]),
        text=record.get("text") or "",
        created_at=parse_timestamp(record.get(schema.CREATED_AT)),
        media=record.get("media"),
    )
