"""Backend table and column names.

The managed backend owns the schema; these names are the only place the
core knows about them.
"""

from __future__ import annotations

PROFILES_TABLE = "profiles"
CONVERSATIONS_TABLE = "chats"
MESSAGES_TABLE = "messages"

# chats
PARTICIPANT_A = "user_id"
PARTICIPANT_B = "user_id2"
UPDATED_AT = "updated_at"

# messages
MESSAGE_CONVERSATION = "chat_id"
MESSAGE_SENDER = "sent_by"
CREATED_AT = "created_at"

PROFILE_LITE_COLUMNS = ("id", "name", "username", "avatar_url")
CONVERSATION_COLUMNS = ("id", PARTICIPANT_A, PARTICIPANT_B, CREATED_AT, UPDATED_AT)

# Aliases for the two profile joins on chats.
PARTICIPANT_A_PROFILE = "user1"
PARTICIPANT_B_PROFILE = "user2"
PARTICIPANT_A_FKEY = "chats_user_id_fkey"
PARTICIPANT_B_FKEY = "chats_user_id2_fkey"

ALL_EVENTS = "*"
INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
