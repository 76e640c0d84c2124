"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ContactSearchConfig:
    """Profile search limits for the add-contact flow."""

    min_chars: int = 2
    limit: int = 20


@dataclass(frozen=True)
class ChatSettings:
    """Settings consumed by the chat core."""

    contacts: ContactSearchConfig = field(default_factory=ContactSearchConfig)
    # Delay before re-establishing realtime channels after a drop.
    resubscribe_delay_seconds: float = 1.0
