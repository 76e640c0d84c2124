from __future__ import annotations

import asyncio

import pytest

from core.conversations import REFRESH, ConversationStore, get_peer
from core.errors import ChatError, NotAuthenticated, TransportError
from core.models import Conversation, ConversationWithPeer, ProfileLite
from fakes import BASE_TIME, FakeGateway, FakeSession, ts


def _backend() -> FakeGateway:
    gateway = FakeGateway()
    gateway.add_profile("me", "Me", "me")
    gateway.add_profile("ana", "Ana", "ana")
    gateway.add_profile("bo", None, "bo")
    gateway.tables["chats"].extend(
        [
            {"id": "c1", "user_id": "me", "user_id2": "ana", "created_at": ts(0), "updated_at": ts(10)},
            {"id": "c2", "user_id": "bo", "user_id2": "me", "created_at": ts(0), "updated_at": ts(20)},
            {"id": "c3", "user_id": "ana", "user_id2": "bo", "created_at": ts(0), "updated_at": ts(30)},
        ]
    )
    return gateway


def _with_peer(participant_a: str, participant_b: str) -> ConversationWithPeer:
    return ConversationWithPeer(
        conversation=Conversation("c", participant_a, participant_b, BASE_TIME, BASE_TIME),
        participant_a_profile=ProfileLite(participant_a, participant_a.title(), participant_a),
        participant_b_profile=ProfileLite(participant_b, participant_b.title(), participant_b),
    )


def test_refresh_lists_own_conversations_newest_first() -> None:
    store = ConversationStore(_backend(), FakeSession("me"))

    asyncio.run(store.refresh_conversations())

    assert [item.id for item in store.conversations] == ["c2", "c1"]
    assert get_peer(store.get("c1"), "me").display_name == "Ana"
    assert get_peer(store.get("c2"), "me").username == "bo"


def test_refresh_replaces_the_whole_list() -> None:
    gateway = _backend()
    store = ConversationStore(gateway, FakeSession("me"))
    asyncio.run(store.refresh_conversations())

    gateway.tables["chats"] = [chat for chat in gateway.tables["chats"] if chat["id"] != "c1"]
    asyncio.run(store.refresh_conversations())

    assert [item.id for item in store.conversations] == ["c2"]
    assert store.get("c1") is None


def test_refresh_failure_keeps_last_good_list() -> None:
    gateway = _backend()
    store = ConversationStore(gateway, FakeSession("me"))
    asyncio.run(store.refresh_conversations())

    gateway.fail("query", "chats")
    asyncio.run(store.refresh_conversations())

    assert [item.id for item in store.conversations] == ["c2", "c1"]
    status = store.status(REFRESH)
    assert isinstance(status.error, TransportError)
    assert status.loading is False

    asyncio.run(store.refresh_conversations())
    assert store.status(REFRESH).error is None


def test_refresh_records_any_backend_error_without_raising() -> None:
    gateway = _backend()
    store = ConversationStore(gateway, FakeSession("me"))
    asyncio.run(store.refresh_conversations())

    gateway.fail("query", "chats", ChatError("row level security rejected the read"))
    asyncio.run(store.refresh_conversations())

    assert [item.id for item in store.conversations] == ["c2", "c1"]
    assert isinstance(store.status(REFRESH).error, ChatError)


def test_refresh_skips_malformed_rows() -> None:
    gateway = _backend()
    gateway.tables["chats"].append(
        {"id": "c4", "user_id": "me", "user_id2": "bo", "created_at": ts(0), "updated_at": "yesterday"}
    )
    store = ConversationStore(gateway, FakeSession("me"))

    asyncio.run(store.refresh_conversations())

    assert [item.id for item in store.conversations] == ["c2", "c1"]
    assert store.status(REFRESH).error is None


def test_refresh_without_identity_is_a_noop() -> None:
    gateway = _backend()
    store = ConversationStore(gateway, FakeSession(None))

    asyncio.run(store.refresh_conversations())

    assert store.conversations == []
    assert gateway.queries == []


def test_refresh_discarded_after_identity_switch() -> None:
    gateway = _backend()
    session = FakeSession("me")
    store = ConversationStore(gateway, session)

    async def scenario() -> None:
        gate = gateway.block(lambda table, flt: table == "chats")
        pending = asyncio.ensure_future(store.refresh_conversations())
        await asyncio.sleep(0.01)
        session.set_identity("ana")
        gate.set()
        await pending

    asyncio.run(scenario())

    assert store.conversations == []


def test_listeners_notified_on_refresh() -> None:
    store = ConversationStore(_backend(), FakeSession("me"))
    calls: list[int] = []
    remove = store.add_listener(lambda: calls.append(len(store.conversations)))

    asyncio.run(store.refresh_conversations())
    remove()
    asyncio.run(store.refresh_conversations())

    assert calls == [2]


def test_get_peer_is_symmetric() -> None:
    assert get_peer(_with_peer("me", "peer"), "me").id == "peer"
    assert get_peer(_with_peer("peer", "me"), "me").id == "peer"


def test_get_peer_none_when_profile_missing_or_not_participant() -> None:
    conversation = Conversation("c", "me", "peer", BASE_TIME, BASE_TIME)
    unresolved = ConversationWithPeer(conversation, ProfileLite("me", "Me", "me"), None)

    assert get_peer(unresolved, "me") is None
    assert get_peer(_with_peer("a", "b"), "me") is None


def test_clear_empties_store() -> None:
    store = ConversationStore(_backend(), FakeSession("me"))
    asyncio.run(store.refresh_conversations())

    store.clear()

    assert store.conversations == []


@pytest.mark.parametrize("bad", ["", None])
def test_store_without_identity_rejects_creation(bad) -> None:
    store = ConversationStore(_backend(), FakeSession(bad))
    with pytest.raises(NotAuthenticated):
        asyncio.run(store.upsert_or_create_conversation("ana"))
