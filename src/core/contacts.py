"""Profile search for starting new conversations."""

from __future__ import annotations

from core import schema
from core.config import ContactSearchConfig
from core.errors import NotAuthenticated
from core.filters import AllOf, AnyOf, ILike, Neq
from core.models import ProfileLite, profile_from_record
from core.ports import GatewayPort, SessionPort

SEARCH_COLUMNS = (*schema.PROFILE_LITE_COLUMNS, "email")


def _like_escape(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContactDirectory:
    def __init__(self, gateway: GatewayPort, session: SessionPort, config: ContactSearchConfig) -> None:
        self._gateway = gateway
        self._session = session
        self._config = config

    async def search(self, term: str) -> list[ProfileLite]:
        """Find other users whose username, name or email contains ``term``.

        Terms shorter than the configured minimum return nothing without
        hitting the backend. The current identity is never returned.
        """

        identity = self._session.current_identity()
        if not identity:
            raise NotAuthenticated("Not authenticated")
        query = (term or "").strip()
        if len(query) < self._config.min_chars:
            return []

        pattern = f"%{_like_escape(query)}%"
        rows = await self._gateway.query(
            schema.PROFILES_TABLE,
            columns=SEARCH_COLUMNS,
            filter=AllOf(
                AnyOf(
                    ILike("username", pattern),
                    ILike("name", pattern),
                    ILike("email", pattern),
                ),
                Neq("id", identity),
            ),
            limit=self._config.limit,
        )
        profiles = (profile_from_record(row) for row in rows)
        return [profile for profile in profiles if profile is not None and profile.id != identity]
