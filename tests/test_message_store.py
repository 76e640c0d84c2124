from __future__ import annotations

import asyncio

import pytest

from core.errors import NotAuthenticated, TransportError, ValidationError
from core.filters import Eq
from core.messages import LOAD, SEND, MessageStore
from core.models import Message, parse_timestamp
from fakes import FakeGateway, FakeSession, ts


def _message(message_id: str, seconds: int, chat_id: str = "c1", text: str = "hi") -> Message:
    return Message(
        id=message_id,
        conversation_id=chat_id,
        sender_id="u2",
        text=text,
        created_at=parse_timestamp(ts(seconds)),
    )


def _open(store: MessageStore, conversation_id: str) -> None:
    asyncio.run(store.set_active_conversation(conversation_id))


def test_set_active_loads_history_in_order() -> None:
    gateway = FakeGateway()
    gateway.add_message("m2", "c1", "u2", "second", ts(2))
    gateway.add_message("m1", "c1", "u1", "first", ts(1))
    gateway.add_message("x1", "c2", "u1", "elsewhere", ts(1))
    store = MessageStore(gateway, FakeSession("u1"))

    _open(store, "c1")

    assert store.active_conversation_id == "c1"
    assert [message.id for message in store.messages] == ["m1", "m2"]
    assert store.status(LOAD).loading is False


def test_append_is_idempotent_by_id() -> None:
    store = MessageStore(FakeGateway(), FakeSession("u1"))
    _open(store, "c1")

    assert store.append_message(_message("m1", 1)) is True
    assert store.append_message(_message("m2", 2)) is True
    assert store.append_message(_message("m1", 1, text="again")) is False

    assert [message.id for message in store.messages] == ["m1", "m2"]
    assert store.messages[0].text == "hi"


def test_append_orders_by_created_at_not_arrival() -> None:
    store = MessageStore(FakeGateway(), FakeSession("u1"))
    _open(store, "c1")

    for message in (_message("t1", 1), _message("t3", 3), _message("t2", 2)):
        store.append_message(message)

    assert [message.id for message in store.messages] == ["t1", "t2", "t3"]


def test_append_keeps_arrival_order_for_equal_timestamps() -> None:
    store = MessageStore(FakeGateway(), FakeSession("u1"))
    _open(store, "c1")

    store.append_message(_message("a", 5))
    store.append_message(_message("b", 5))

    assert [message.id for message in store.messages] == ["a", "b"]


def test_reload_after_out_of_order_arrivals_is_sorted() -> None:
    gateway = FakeGateway()
    store = MessageStore(gateway, FakeSession("u1"))
    _open(store, "c1")
    for seconds, message_id in ((1, "t1"), (3, "t3"), (2, "t2")):
        gateway.add_message(message_id, "c1", "u2", "hi", ts(seconds))
        store.append_message(_message(message_id, seconds))

    asyncio.run(store.load_messages("c1"))

    assert [message.id for message in store.messages] == ["t1", "t2", "t3"]


def test_append_for_inactive_conversation_ignored() -> None:
    store = MessageStore(FakeGateway(), FakeSession("u1"))
    _open(store, "c1")

    assert store.append_message(_message("m1", 1, chat_id="c2")) is False
    assert store.messages == []


def test_switching_clears_log() -> None:
    gateway = FakeGateway()
    gateway.add_message("m1", "c1", "u2", "hi", ts(1))
    store = MessageStore(gateway, FakeSession("u1"))
    _open(store, "c1")

    _open(store, None)

    assert store.active_conversation_id is None
    assert store.messages == []


def test_stale_load_does_not_overwrite_new_conversation() -> None:
    gateway = FakeGateway()
    gateway.add_message("x1", "cx", "u2", "from x", ts(1))
    gateway.add_message("y1", "cy", "u2", "from y", ts(2))
    store = MessageStore(gateway, FakeSession("u1"))

    async def scenario() -> None:
        gate = gateway.block(lambda table, flt: flt == Eq("chat_id", "cx"))
        slow = asyncio.ensure_future(store.set_active_conversation("cx"))
        await asyncio.sleep(0.01)
        await store.set_active_conversation("cy")
        gate.set()
        await slow

    asyncio.run(scenario())

    assert store.active_conversation_id == "cy"
    assert [message.id for message in store.messages] == ["y1"]


def test_pushes_during_load_are_kept() -> None:
    gateway = FakeGateway()
    gateway.add_message("m1", "c1", "u2", "old", ts(1))
    store = MessageStore(gateway, FakeSession("u1"))

    async def scenario() -> None:
        gate = gateway.block(lambda table, flt: table == "messages")
        loading = asyncio.ensure_future(store.set_active_conversation("c1"))
        await asyncio.sleep(0.01)
        store.append_message(_message("m2", 2))
        gate.set()
        await loading

    asyncio.run(scenario())

    assert [message.id for message in store.messages] == ["m1", "m2"]


def test_load_failure_is_surfaced_and_log_untouched() -> None:
    gateway = FakeGateway()
    gateway.add_message("m1", "c1", "u2", "hi", ts(1))
    store = MessageStore(gateway, FakeSession("u1"))
    _open(store, "c1")

    gateway.fail("query", "messages")
    with pytest.raises(TransportError):
        asyncio.run(store.load_messages("c1"))

    assert [message.id for message in store.messages] == ["m1"]
    assert isinstance(store.status(LOAD).error, TransportError)


def test_send_inserts_without_appending() -> None:
    gateway = FakeGateway()
    store = MessageStore(gateway, FakeSession("u1"))
    _open(store, "c1")

    sent = asyncio.run(store.send_message("c1", "  hello  "))

    assert gateway.inserts == [("messages", {"chat_id": "c1", "sent_by": "u1", "text": "hello"})]
    assert sent.sender_id == "u1"
    assert sent.text == "hello"
    assert store.messages == []


def test_send_rejects_blank_text_before_network() -> None:
    gateway = FakeGateway()
    store = MessageStore(gateway, FakeSession("u1"))

    with pytest.raises(ValidationError):
        asyncio.run(store.send_message("c1", "   "))

    assert gateway.inserts == []


def test_send_requires_identity() -> None:
    gateway = FakeGateway()
    store = MessageStore(gateway, FakeSession(None))

    with pytest.raises(NotAuthenticated):
        asyncio.run(store.send_message("c1", "hello"))

    assert gateway.inserts == []


def test_send_failure_propagates_without_touching_log() -> None:
    gateway = FakeGateway()
    store = MessageStore(gateway, FakeSession("u1"))
    _open(store, "c1")
    store.append_message(_message("m1", 1))

    gateway.fail("insert", "messages")
    with pytest.raises(TransportError):
        asyncio.run(store.send_message("c1", "hello"))

    assert [message.id for message in store.messages] == ["m1"]
    assert isinstance(store.status(SEND).error, TransportError)
    assert store.status(SEND).loading is False


def test_send_attaches_media() -> None:
    gateway = FakeGateway()
    store = MessageStore(gateway, FakeSession("u1"))

    asyncio.run(store.send_message("c1", "look", media={"path": "a.png"}))

    assert gateway.inserts[0][1]["media"] == {"path": "a.png"}


def test_activation_hooks_run_before_load() -> None:
    gateway = FakeGateway()
    store = MessageStore(gateway, FakeSession("u1"))
    seen: list[tuple[object, int]] = []

    async def hook(conversation_id) -> None:
        seen.append((conversation_id, len(gateway.queries)))

    store.on_activate(hook)
    _open(store, "c1")

    assert seen == [("c1", 0)]
    assert len(gateway.queries) == 1
