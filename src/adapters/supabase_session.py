"""Supabase Auth session adapter.

Implements the core SessionPort and the account operations of the client
(sign in/out, sign up, password reset) on top of ``supabase.auth``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import httpx
from supabase_auth.errors import AuthError as SupabaseAuthError
from supabase_auth.errors import AuthRetryableError

from core.errors import AuthError, TransportError
from core.ports import IdentityCallback

LOGGER = logging.getLogger(__name__)


def _identity_of(session: Any) -> Optional[str]:
    user = getattr(session, "user", None)
    user_id = getattr(user, "id", None)
    return str(user_id) if user_id else None


class SupabaseSession:
    """Tracks the signed-in user and notifies listeners on changes."""

    def __init__(self, auth, password_reset_redirect: Optional[str] = None) -> None:
        self._auth = auth
        self._password_reset_redirect = password_reset_redirect
        self._identity: Optional[str] = None
        self._listeners: list[IdentityCallback] = []
        self._auth_subscription = None

    async def start(self) -> None:
        """Load the persisted session and follow auth state changes."""

        session = await self._call(self._auth.get_session())
        self._set_identity(_identity_of(session))
        if self._auth_subscription is None:
            self._auth_subscription = self._auth.on_auth_state_change(self._auth_state_changed)

    def close(self) -> None:
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None

    def current_identity(self) -> Optional[str]:
        return self._identity

    def on_change(self, callback: IdentityCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _auth_state_changed(self, event: Any, session: Any) -> None:
        LOGGER.debug("Auth state event %s", getattr(event, "value", event))
        self._set_identity(_identity_of(session))

    def _set_identity(self, identity: Optional[str]) -> None:
        if identity == self._identity:
            return
        self._identity = identity
        LOGGER.info("Session identity %s", "set" if identity else "cleared")
        for listener in list(self._listeners):
            listener(identity)

    async def _call(self, awaitable):
        try:
            return await awaitable
        except AuthRetryableError as exc:
            raise TransportError(str(exc)) from exc
        except SupabaseAuthError as exc:
            raise AuthError(getattr(exc, "message", None) or str(exc)) from exc
        except httpx.HTTPError as exc:
            raise TransportError(str(exc)) from exc

    async def sign_in(self, email: str, password: str) -> str:
        response = await self._call(
            self._auth.sign_in_with_password({"email": email, "password": password})
        )
        identity = _identity_of(response)
        if not identity:
            raise AuthError("Sign-in returned no user")
        self._set_identity(identity)
        return identity

    async def sign_out(self) -> None:
        """Sign out; the local identity is cleared even if the call fails."""

        try:
            await self._call(self._auth.sign_out())
        finally:
            self._set_identity(None)

    async def sign_up(self, email: str, password: str, display_name: str) -> bool:
        """Register a user; returns True when email confirmation is pending."""

        response = await self._call(
            self._auth.sign_up(
                {
                    "email": email,
                    "password": password,
                    "options": {"data": {"full_name": display_name}},
                }
            )
        )
        session = getattr(response, "session", None)
        if session is not None:
            self._set_identity(_identity_of(session))
        return session is None

    async def send_password_reset(self, email: str, redirect_to: Optional[str] = None) -> None:
        target = redirect_to or self._password_reset_redirect
        options = {"redirect_to": target} if target else {}
        await self._call(self._auth.reset_password_for_email(email, options))

    async def update_password(self, password: str) -> None:
        await self._call(self._auth.update_user({"password": password}))
