"""Application entry point for the betchat client."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.supabase_gateway import SupabaseGateway
from adapters.supabase_session import SupabaseSession
from client import build_client, login_credentials
from core.chat import ChatCore
from core.errors import ChatError
from core.models import ConversationWithPeer, Message, ProfileLite

NAME = "BETCHAT"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/betchat.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _profile_label(profile: Optional[ProfileLite], fallback_id: str) -> str:
    if profile is not None:
        for value in (profile.display_name, profile.username):
            if value and value.strip():
                return value.strip()
    return fallback_id[:8]


def _conversation_line(core: ChatCore, item: ConversationWithPeer) -> str:
    conversation = item.conversation
    peer_id = (
        conversation.participant_b
        if conversation.participant_a == core.identity
        else conversation.participant_a
    )
    label = _profile_label(core.peer_of(item), peer_id)
    updated = conversation.updated_at.astimezone().strftime("%Y-%m-%d %H:%M")
    return f"{updated} | {label} | {conversation.id}"


def _message_line(core: ChatCore, message: Message) -> str:
    who = "me" if message.sender_id == core.identity else message.sender_id[:8]
    when = message.created_at.astimezone().strftime("%H:%M")
    return f"[{when}] {who}: {message.text}"


async def _connect() -> tuple[ChatCore, SupabaseSession]:
    client = await build_client()
    gateway = SupabaseGateway(client, schema=settings.DB_SCHEMA)
    session = SupabaseSession(client.auth, password_reset_redirect=settings.PASSWORD_RESET_REDIRECT)
    await session.start()
    if session.current_identity() is None:
        email, password = login_credentials()
        await session.sign_in(email, password)
    core = ChatCore(gateway, session, settings.chat_settings())
    await core.start()
    return core, session


async def _list_chats(core: ChatCore) -> None:
    conversations = core.conversations.conversations
    if not conversations:
        print("No conversations yet.")
        return
    for index, item in enumerate(conversations, start=1):
        print(f"{index}. {_conversation_line(core, item)}")


async def _search(core: ChatCore, term: str) -> None:
    profiles = await core.contacts.search(term)
    if not profiles:
        print("No profiles match the search.")
        return
    for profile in profiles:
        username = f"@{profile.username}" if profile.username else "-"
        print(f"{_profile_label(profile, profile.id)} | {username} | {profile.id}")


async def _send(core: ChatCore, peer_id: str, text: str) -> None:
    message = await core.message_user(peer_id, text)
    logging.getLogger(__name__).info(
        "Sent message %s to conversation %s", message.id, message.conversation_id
    )


async def _watch(core: ChatCore, conversation_id: Optional[str]) -> None:
    logger = logging.getLogger(__name__)
    shown: set[str] = set()

    def conversations_changed() -> None:
        logger.info("Conversations: %s", len(core.conversations.conversations))

    def messages_changed() -> None:
        for message in core.messages.messages:
            if message.id in shown:
                continue
            shown.add(message.id)
            print(_message_line(core, message))

    core.conversations.add_listener(conversations_changed)
    core.messages.add_listener(messages_changed)
    if conversation_id:
        await core.open_conversation(conversation_id)
    logger.info("Listening for updates. Press Ctrl+C to stop.")
    await asyncio.Event().wait()


async def _run_command(args: argparse.Namespace) -> None:
    logger = logging.getLogger(__name__)
    core, session = await _connect()
    try:
        if args.command == "search":
            await _search(core, args.term)
        elif args.command == "send":
            await _send(core, args.to, args.text)
        elif args.command == "watch":
            await _watch(core, args.chat)
        else:
            await _list_chats(core)
    except ChatError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
    finally:
        await core.stop()
        session.close()


async def _reset_password(email: str) -> None:
    client = await build_client()
    session = SupabaseSession(client.auth, password_reset_redirect=settings.PASSWORD_RESET_REDIRECT)
    await session.send_password_reset(email)
    print(f"Password reset email sent to {email}.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="betchat")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("chats", help="List your conversations")
    search = subparsers.add_parser("search", help="Find people to message")
    search.add_argument("term")
    send = subparsers.add_parser("send", help="Message a user, creating the conversation if needed")
    send.add_argument("--to", required=True, help="Recipient user id")
    send.add_argument("text")
    watch = subparsers.add_parser("watch", help="Follow conversations and messages live")
    watch.add_argument("--chat", help="Conversation id to open")
    reset = subparsers.add_parser("reset-password", help="Send a password reset email")
    reset.add_argument("email")

    args = parser.parse_args(argv)
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    try:
        if args.command == "reset-password":
            asyncio.run(_reset_password(args.email))
        else:
            asyncio.run(_run_command(args))
    except KeyboardInterrupt:
        logger.info("Stopped")
    except ChatError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
