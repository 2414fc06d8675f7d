import pytest

from chatterbox.core.errors import NotFoundError, ValidationFailure
from chatterbox.core.security import decode_access_token
from chatterbox.repositories.chat_repo import NewMessage
from chatterbox.scripts import issue_token


@pytest.mark.asyncio
async def test_get_keyed_members_for_missing_room(repository):
    assert await repository.get_keyed_members("missing") is None


@pytest.mark.asyncio
async def test_create_message_loads_sender(repository, room, alice):
    message = await repository.create_message(NewMessage(room_id=room.id, sender_id=alice.id, content="hi"))

    assert message.id is not None
    assert message.sender.username == "alice"
    assert message.read_by == []


@pytest.mark.asyncio
async def test_repeat_acknowledgement_records_one_receipt(repository, room, alice, bob):
    message = await repository.create_message(NewMessage(room_id=room.id, sender_id=alice.id, content="hi"))

    results = [await repository.add_reader(message.id, bob.id, room.id) for _ in range(3)]

    assert results == [True, False, False]
    assert await repository.get_read_by(message.id) == [bob.id]


@pytest.mark.asyncio
async def test_add_reader_unknown_message(repository, alice):
    with pytest.raises(NotFoundError):
        await repository.add_reader(12345, alice.id)


@pytest.mark.asyncio
async def test_create_room_duplicate_name(repository, room, alice):
    with pytest.raises(ValidationFailure):
        await repository.create_room(room.name, alice.id)


@pytest.mark.asyncio
async def test_set_public_key_unknown_user(repository):
    with pytest.raises(NotFoundError):
        await repository.set_public_key("ghost", b"\x00" * 32)


@pytest.mark.asyncio
async def test_get_or_create_user_is_stable(repository):
    first = await repository.get_or_create_user("ivan")
    second = await repository.get_or_create_user("ivan")
    assert first.id == second.id


@pytest.mark.asyncio
async def test_issue_token_script(mocker, session_factory):
    mocker.patch.object(issue_token, "SessionLocal", session_factory)
    mocker.patch.object(issue_token, "create_tables", mocker.AsyncMock())

    user_id, token = await issue_token.issue_token("judy")

    assert decode_access_token(token) == user_id
