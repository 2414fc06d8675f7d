"""End-to-end flows through the hub with in-process connections."""
import asyncio

import pytest

from chatterbox.client.agent import KEY_UNAVAILABLE_PLACEHOLDER, PRIVATE_KEY_ENTRY, PUBLIC_KEY_ENTRY, CryptoAgent
from chatterbox.client.keystore import MemoryKeystore
from chatterbox.core.errors import PersistenceFailure
from chatterbox.core.security import create_access_token
from chatterbox.realtime.connection import Connection
from chatterbox.realtime.hub import ChatHub
from chatterbox.services.crypto import encode_b64
from tests.helpers import Recorder, StubAssistant


def _agent_for(user, keypair):
    keystore = MemoryKeystore(user.id)
    keystore.set(PUBLIC_KEY_ENTRY, encode_b64(keypair.public_key))
    keystore.set(PRIVATE_KEY_ENTRY, encode_b64(keypair.private_key))
    return CryptoAgent(user.id, keystore)


async def _connect(hub, user=None, token=None):
    recorder = Recorder()
    connection = Connection(recorder, token=token or (create_access_token(user.id) if user else None))
    await hub.connect(connection)
    return connection, recorder


async def _send(hub, connection, event, data=None):
    task = hub.dispatch(connection, {"event": event, "data": data})
    if task is not None:
        await task


@pytest.mark.asyncio
async def test_encrypted_exchange_with_read_receipt(repository, room, alice, bob, alice_keys, bob_keys):
    hub = ChatHub(repository, StubAssistant())
    alice_conn, alice_frames = await _connect(hub, alice)
    bob_conn, bob_frames = await _connect(hub, bob)
    alice_agent, bob_agent = _agent_for(alice, alice_keys), _agent_for(bob, bob_keys)

    await _send(hub, alice_conn, "join-room", {"roomId": room.id})
    await _send(hub, bob_conn, "join-room", room.id)

    # bob's join re-keys the room for both subscribers
    alice_bundles = await alice_frames.wait_for("room-key-distribution", count=2)
    bob_bundles = await bob_frames.wait_for("room-key-distribution", count=1)
    assert alice_bundles[-1] == bob_bundles[-1]
    assert set(bob_bundles[-1]["encryptedKeys"]) == {alice.id, bob.id}
    assert await alice_agent.handle_key_distribution(alice_bundles[-1])
    assert await bob_agent.handle_key_distribution(bob_bundles[-1])

    encrypted = alice_agent.encrypt("meet at noon", alice_agent.room_key(room.id))
    await _send(
        hub,
        alice_conn,
        "send-message",
        {
            "roomId": room.id,
            "ciphertext": encode_b64(encrypted.ciphertext),
            "nonce": encode_b64(encrypted.nonce),
            "isEncrypted": True,
        },
    )

    [delivered] = await bob_frames.wait_for("receive-message")
    assert delivered["content"] is None
    assert delivered["sender"]["id"] == alice.id
    opened, missing = bob_agent.open_message(delivered)
    assert opened["content"] == "meet at noon"
    assert missing is False
    [echo] = await alice_frames.wait_for("receive-message")
    assert echo["id"] == delivered["id"]

    receipt = {"messageId": delivered["id"], "roomId": room.id, "userId": bob.id}
    await _send(hub, bob_conn, "mark-read", receipt)
    await _send(hub, bob_conn, "mark-read", receipt)

    await hub.disconnect(alice_conn)
    await hub.disconnect(bob_conn)
    assert alice_frames.of("message-read") == [{"messageId": delivered["id"], "userId": bob.id}]
    assert bob_frames.of("message-read") == []
    assert await repository.get_read_by(delivered["id"]) == [bob.id]

    [stored] = await repository.list_messages(room.id)
    assert stored.is_encrypted is True
    assert stored.content is None
    assert b"meet at noon" not in stored.ciphertext


@pytest.mark.asyncio
async def test_assistant_mention_posts_reply_only(repository, room, alice, bob):
    assistant = StubAssistant(reply="It is 42.")
    hub = ChatHub(repository, assistant, assistant_name="Helper")
    alice_conn, alice_frames = await _connect(hub, alice)
    bob_conn, bob_frames = await _connect(hub, bob)
    await _send(hub, alice_conn, "join-room", room.id)
    await _send(hub, bob_conn, "join-room", room.id)

    await _send(hub, alice_conn, "send-message", {"roomId": room.id, "content": "@ai what is the answer?"})

    [reply] = await bob_frames.wait_for("receive-message")
    assert reply["content"] == "It is 42."
    assert reply["sender"] == {"id": None, "username": "Helper", "isAssistant": True}
    assert assistant.calls == [("what is the answer?", room.id)]
    await alice_frames.wait_for("receive-message")

    [stored] = await repository.list_messages(room.id)
    assert stored.sender_id is None
    await hub.disconnect(alice_conn)
    await hub.disconnect(bob_conn)


@pytest.mark.asyncio
async def test_assistant_failure_is_silent(repository, room, alice, failing_assistant):
    hub = ChatHub(repository, failing_assistant)
    alice_conn, alice_frames = await _connect(hub, alice)
    await _send(hub, alice_conn, "join-room", room.id)

    await _send(hub, alice_conn, "send-message", {"roomId": room.id, "content": "@ai hello?"})
    await hub.disconnect(alice_conn)

    assert alice_frames.of("receive-message") == []
    assert alice_frames.of("error") == []
    assert await repository.list_messages(room.id) == []


@pytest.mark.asyncio
async def test_receiver_without_key_sees_placeholder_and_asks(repository, room, alice, bob, alice_keys, bob_keys):
    hub = ChatHub(repository, StubAssistant())
    alice_conn, _ = await _connect(hub, alice)
    bob_conn, bob_frames = await _connect(hub, bob)
    await _send(hub, bob_conn, "join-room", room.id)
    alice_agent, bob_agent = _agent_for(alice, alice_keys), _agent_for(bob, bob_keys)
    alice_agent.store_room_key(room.id, bob_agent.crypto.generate_room_key())

    encrypted = alice_agent.encrypt("psst", alice_agent.room_key(room.id))
    await _send(
        hub,
        alice_conn,
        "send-message",
        {
            "roomId": room.id,
            "ciphertext": encode_b64(encrypted.ciphertext),
            "nonce": encode_b64(encrypted.nonce),
            "isEncrypted": True,
        },
    )
    [delivered] = await bob_frames.wait_for("receive-message")
    opened, missing = bob_agent.open_message(delivered)
    assert opened["content"] == KEY_UNAVAILABLE_PLACEHOLDER
    assert missing is True

    await _send(hub, bob_conn, "request-room-key", room.id)
    bundles = await bob_frames.wait_for("room-key-distribution", count=2)
    assert await bob_agent.handle_key_distribution(bundles[-1])
    assert bob_agent.room_key(room.id) is not None
    await hub.disconnect(alice_conn)
    await hub.disconnect(bob_conn)


@pytest.mark.asyncio
async def test_bad_handshake_token_reports_error(repository):
    hub = ChatHub(repository, StubAssistant())
    connection, frames = await _connect(hub, token="forged")
    await hub.disconnect(connection)

    assert frames.of("error") == [{"message": "Invalid token"}]
    assert connection.user is None


@pytest.mark.asyncio
async def test_late_authentication_enables_room_operations(repository, room, alice):
    hub = ChatHub(repository, StubAssistant())
    connection, frames = await _connect(hub)

    await _send(hub, connection, "join-room", room.id)
    await _send(hub, connection, "authenticate", {"token": create_access_token(alice.id)})
    await _send(hub, connection, "join-room", room.id)
    await hub.disconnect(connection)

    assert frames.of("error") == [{"message": "Authentication required"}]
    assert frames.of("authenticated") == [{"userId": alice.id, "username": "alice"}]
    assert len(frames.of("room-key-distribution")) == 1


@pytest.mark.asyncio
async def test_frames_sent_right_behind_authenticate_see_the_identity(repository, room, alice):
    hub = ChatHub(repository, StubAssistant())
    connection, frames = await _connect(hub)

    authenticating = hub.dispatch(connection, {"event": "authenticate", "data": {"token": create_access_token(alice.id)}})
    joining = hub.dispatch(connection, {"event": "join-room", "data": room.id})
    typing = hub.dispatch(connection, {"event": "typing", "data": {"roomId": room.id, "isTyping": True}})
    await asyncio.gather(authenticating, joining, typing)
    await hub.disconnect(connection)

    assert frames.of("error") == []
    assert frames.of("authenticated") == [{"userId": alice.id, "username": "alice"}]
    assert len(frames.of("room-key-distribution")) == 1


@pytest.mark.asyncio
async def test_outsider_cannot_join_or_rekey_a_room(repository, room, alice, make_user):
    outsider = make_user("mallory")
    hub = ChatHub(repository, StubAssistant())
    alice_conn, alice_frames = await _connect(hub, alice)
    outsider_conn, outsider_frames = await _connect(hub, outsider)
    await _send(hub, alice_conn, "join-room", room.id)

    await _send(hub, outsider_conn, "join-room", room.id)
    await _send(hub, outsider_conn, "request-room-key", room.id)
    await _send(hub, alice_conn, "send-message", {"roomId": room.id, "content": "members only"})
    await alice_frames.wait_for("receive-message")
    await hub.disconnect(alice_conn)
    await hub.disconnect(outsider_conn)

    assert outsider_frames.of("error") == [
        {"message": "Not a member of this room"},
        {"message": "Not a member of this room"},
    ]
    assert outsider_frames.of("receive-message") == []
    assert outsider_frames.of("room-key-distribution") == []
    assert len(alice_frames.of("room-key-distribution")) == 1

@pytest.mark.asyncio
async def test_typing_reaches_everyone_but_the_typist(repository, room, alice, bob):
    hub = ChatHub(repository, StubAssistant())
    alice_conn, alice_frames = await _connect(hub, alice)
    bob_conn, bob_frames = await _connect(hub, bob)
    await _send(hub, alice_conn, "join-room", room.id)
    await _send(hub, bob_conn, "join-room", room.id)

    await _send(hub, alice_conn, "typing", {"roomId": room.id, "user": "spoofed", "isTyping": True})
    await hub.disconnect(alice_conn)
    await hub.disconnect(bob_conn)

    assert bob_frames.of("user-typing") == [
        {"roomId": room.id, "user": "alice", "userId": alice.id, "isTyping": True}
    ]
    assert alice_frames.of("user-typing") == []


@pytest.mark.asyncio
async def test_disconnect_stops_delivery(repository, room, alice, bob):
    hub = ChatHub(repository, StubAssistant())
    alice_conn, _ = await _connect(hub, alice)
    bob_conn, bob_frames = await _connect(hub, bob)
    await _send(hub, bob_conn, "join-room", room.id)
    await hub.disconnect(bob_conn)

    await _send(hub, alice_conn, "send-message", {"roomId": room.id, "content": "anyone?"})
    await hub.disconnect(alice_conn)

    assert hub.gateway.subscribers(room.id) == []
    assert bob_frames.of("receive-message") == []


@pytest.mark.asyncio
async def test_persistence_failure_reports_error(repository, room, alice, mocker):
    hub = ChatHub(repository, StubAssistant())
    mocker.patch.object(
        repository, "create_message", side_effect=PersistenceFailure("Failed to send message")
    )
    alice_conn, frames = await _connect(hub, alice)
    await _send(hub, alice_conn, "join-room", room.id)

    await _send(hub, alice_conn, "send-message", {"roomId": room.id, "content": "hello"})
    await hub.disconnect(alice_conn)

    assert frames.of("error") == [{"message": "Failed to send message"}]
    assert frames.of("receive-message") == []


@pytest.mark.asyncio
async def test_disabled_encryption_switch(repository, room, alice):
    hub = ChatHub(repository, StubAssistant(), e2ee_enabled=False)
    connection, frames = await _connect(hub, alice)

    await _send(hub, connection, "join-room", room.id)
    await _send(hub, connection, "request-room-key", room.id)
    await _send(hub, connection, "send-message", {"roomId": room.id, "content": "plain hello"})
    await hub.disconnect(connection)

    assert frames.of("room-key-distribution") == []
    assert frames.of("error") == [{"message": "End-to-end encryption is disabled"}]
    assert [message["content"] for message in frames.of("receive-message")] == ["plain hello"]


@pytest.mark.asyncio
async def test_send_to_unknown_room_reports_error(repository, alice):
    hub = ChatHub(repository, StubAssistant())
    connection, frames = await _connect(hub, alice)

    await _send(hub, connection, "send-message", {"roomId": "nowhere", "content": "hi"})
    await hub.disconnect(connection)

    assert frames.of("error") == [{"message": "Room not found"}]
