import asyncio

import pytest

from chatterbox.core.errors import AuthenticationFailure, NotFoundError, ValidationFailure
from chatterbox.core.security import create_access_token
from chatterbox.db.time import utcnow
from chatterbox.models import Message, User
from chatterbox.realtime.connection import Connection
from chatterbox.realtime.gateway import ConnectionGateway
from chatterbox.schemas.events import SendMessagePayload
from chatterbox.services.crypto import CryptoService, encode_b64
from chatterbox.services.messages import (
    AssistantQuery,
    MessagePipeline,
    RegularMessage,
    classify_intent,
    serialize_message,
)
from tests.helpers import Recorder, StubAssistant


def _payload(**fields):
    return SendMessagePayload.model_validate({"roomId": "room-1", **fields})


class SlowRepository:
    """Repository double whose writes take a per-content delay."""

    def __init__(self, delays):
        self.delays = delays
        self.users = {"user-a": User(id="user-a", username="alice")}
        self._ids = 0

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def room_exists(self, room_id):
        return room_id == "room-1"

    async def create_message(self, new_message):
        await asyncio.sleep(self.delays.get(new_message.content, 0))
        self._ids += 1
        message = Message(
            id=self._ids,
            room_id=new_message.room_id,
            sender_id=new_message.sender_id,
            content=new_message.content,
            ciphertext=new_message.ciphertext,
            nonce=new_message.nonce,
            is_encrypted=new_message.is_encrypted,
            created_at=utcnow(),
        )
        message.sender = self.users.get(new_message.sender_id)
        return message


def test_plaintext_mention_becomes_assistant_query():
    intent = classify_intent(_payload(content="@ai what's the weather?"))
    assert intent == AssistantQuery(prompt="what's the weather?")


def test_mention_is_case_insensitive_and_standalone_only():
    assert isinstance(classify_intent(_payload(content="hey @AI help")), AssistantQuery)
    assert classify_intent(_payload(content="mail me@ai.example")) == RegularMessage(
        content="mail me@ai.example"
    )
    assert isinstance(classify_intent(_payload(content="@aiden hi")), RegularMessage)


def test_bare_marker_is_a_regular_message():
    assert classify_intent(_payload(content="@ai")) == RegularMessage(content="@ai")


def test_encrypted_payload_is_always_regular():
    key = CryptoService.generate_room_key()
    encrypted = CryptoService.encrypt("@ai hello", key)

    intent = classify_intent(
        _payload(
            ciphertext=encode_b64(encrypted.ciphertext),
            nonce=encode_b64(encrypted.nonce),
            isEncrypted=True,
            content="@ai leaked?",
        )
    )

    assert isinstance(intent, RegularMessage)
    assert intent.is_encrypted is True
    assert intent.content is None
    assert intent.nonce == encrypted.nonce


@pytest.mark.parametrize(
    "fields, message",
    [
        ({"content": "   "}, "Message content is required"),
        ({"isEncrypted": True, "ciphertext": "abcd"}, "Encrypted messages require ciphertext and nonce"),
        ({"isEncrypted": True, "ciphertext": "abcd", "nonce": encode_b64(b"x" * 8)}, "Nonce must be 24 bytes"),
        ({"content": "x" * 10_001}, "Message content is too long"),
    ],
)
def test_invalid_submissions_are_rejected(fields, message):
    with pytest.raises(ValidationFailure, match=message):
        classify_intent(_payload(**fields))


def test_serialize_assistant_message():
    message = Message(id=3, room_id="room-1", sender_id=None, content="hi", is_encrypted=False, created_at=utcnow())

    data = serialize_message(message, "Helper")

    assert data["sender"] == {"id": None, "username": "Helper", "isAssistant": True}
    assert data["content"] == "hi"
    assert data["readBy"] == []


def test_serialize_encrypted_message_hides_content():
    message = Message(
        id=4,
        room_id="room-1",
        sender_id="user-a",
        content="should not leak",
        ciphertext=b"\x01\x02",
        nonce=b"\x00" * 24,
        is_encrypted=True,
        created_at=utcnow(),
    )
    message.sender = User(id="user-a", username="alice")

    data = serialize_message(message)

    assert data["content"] is None
    assert data["ciphertext"] == encode_b64(b"\x01\x02")
    assert data["sender"]["username"] == "alice"


@pytest.mark.asyncio
async def test_concurrent_sends_are_delivered_in_persistence_order():
    repository = SlowRepository({"first": 0.05, "second": 0.0})
    gateway = ConnectionGateway(repository)
    pipeline = MessagePipeline(repository, gateway, StubAssistant())

    recorder = Recorder()
    listener = Connection(recorder)
    listener.start()
    gateway.subscribe(listener, "room-1")
    sender = Connection(Recorder(), token=create_access_token("user-a"))

    await asyncio.gather(
        pipeline.submit(sender, _payload(content="first")),
        pipeline.submit(sender, _payload(content="second")),
    )
    await listener.close()

    delivered = [message["content"] for message in recorder.of("receive-message")]
    assert delivered == ["second", "first"]


@pytest.mark.asyncio
async def test_submit_to_unknown_room_fails():
    repository = SlowRepository({})
    pipeline = MessagePipeline(repository, ConnectionGateway(repository), StubAssistant())
    sender = Connection(Recorder(), token=create_access_token("user-a"))

    with pytest.raises(NotFoundError, match="Room not found"):
        await pipeline.submit(sender, SendMessagePayload.model_validate({"roomId": "nowhere", "content": "hi"}))


@pytest.mark.asyncio
async def test_submit_requires_a_valid_credential():
    repository = SlowRepository({})
    pipeline = MessagePipeline(repository, ConnectionGateway(repository), StubAssistant())

    with pytest.raises(AuthenticationFailure):
        await pipeline.submit(Connection(Recorder(), token="garbage"), _payload(content="hi"))
    with pytest.raises(AuthenticationFailure, match="User not found"):
        await pipeline.submit(
            Connection(Recorder(), token=create_access_token("ghost")), _payload(content="hi")
        )


@pytest.mark.asyncio
async def test_payload_token_overrides_connection_credential():
    repository = SlowRepository({})
    gateway = ConnectionGateway(repository)
    pipeline = MessagePipeline(repository, gateway, StubAssistant())

    message = await pipeline.submit(
        Connection(Recorder()), _payload(content="hi", token=create_access_token("user-a"))
    )

    assert message.sender_id == "user-a"
