"""Test suite for the send-message workflow."""

import asyncio

import pytest

from pair_chat.domain.exceptions import StoreError, TransactionConflictError, ValidationError
from pair_chat.repositories import paths
from pair_chat.repositories.memory import InMemoryChatStore
from pair_chat.services.messages import MessageService
from pair_chat.services.notifier import InMemoryNotifier

from helpers import RecordingConnection, make_request


@pytest.mark.asyncio
async def test_first_message_creates_room_and_both_chat_list_entries(message_service, store):
    """The first message of a pair writes the room, the message and two inbox rows."""
    result = await message_service.send_message(make_request(body="hi", timestamp=100))

    assert result.roomId == "alice-bob"
    room = await store.get(paths.room_path("alice-bob"))
    assert room.exists
    assert room.data["lastMessage"] == "hi"
    assert room.data["lastMessageTimestamp"] == 100
    assert [p["id"] for p in room.data["participants"]] == ["alice", "bob"]

    message = await store.get(paths.message_path("alice-bob", result.messageId))
    assert message.data == {
        "senderId": "alice",
        "senderName": "Alice",
        "senderProfilePictureRef": "pics/alice.png",
        "body": "hi",
        "timestamp": 100,
        "seen": False,
    }

    for owner in ("alice", "bob"):
        entry = await store.get(paths.chat_list_entry_path(owner, "alice-bob"))
        assert entry.exists
        assert entry.data["chatId"] == "alice-bob"
        assert entry.data["lastMessage"] == "hi"
        assert entry.data["participants"] == room.data["participants"]


@pytest.mark.asyncio
async def test_reply_updates_existing_rows_without_duplicates(message_service, store):
    await message_service.send_message(make_request(body="hi", timestamp=100))
    await message_service.send_message(
        make_request(sender="bob", receiver="alice", body="hey", timestamp=200,
                     senderName="Robert")
    )

    rooms = await store.query(paths.CHAT_ROOMS)
    assert len(rooms) == 1
    room = rooms[0]
    assert room.data["lastMessage"] == "hey"
    assert room.data["lastMessageTimestamp"] == 200
    # Participants keep the first sender's snapshot.
    assert room.data["participants"][0] == {
        "id": "alice",
        "displayName": "Alice",
        "profilePictureRef": "pics/alice.png",
    }

    messages = await store.query(paths.messages_collection("alice-bob"))
    assert len(messages) == 2
    for owner in ("alice", "bob"):
        entries = await store.query(paths.chat_list_collection(owner))
        assert len(entries) == 1
        assert entries[0].data["lastMessage"] == "hey"
        assert entries[0].data["lastMessageTimestamp"] == 200


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "field", ["senderId", "senderName", "senderProfilePictureRef", "receiverId",
              "receiverName", "receiverProfilePictureRef", "body", "timestamp"]
)
async def test_missing_fields_rejected_before_store_access(field, message_service, store):
    request = make_request(**{field: None})
    with pytest.raises(ValidationError):
        await message_service.send_message(request)
    assert await store.query(paths.CHAT_ROOMS) == []


@pytest.mark.asyncio
async def test_blank_and_invalid_values_rejected(message_service):
    with pytest.raises(ValidationError):
        await message_service.send_message(make_request(body="   "))
    with pytest.raises(ValidationError):
        await message_service.send_message(make_request(timestamp=0))
    with pytest.raises(ValidationError):
        await message_service.send_message(make_request(receiver="alice"))


@pytest.mark.asyncio
async def test_send_publishes_new_message(message_service, notifier):
    connection = RecordingConnection()
    await notifier.subscribe(connection, "alice-bob")

    result = await message_service.send_message(make_request())

    assert connection.names() == ["new-message"]
    data = connection.events[0]["data"]
    assert data["chatId"] == "alice-bob"
    assert data["message"]["id"] == result.messageId
    assert data["message"]["seen"] is False


@pytest.mark.asyncio
async def test_publish_failure_does_not_fail_send(store):
    class BrokenNotifier(InMemoryNotifier):
        async def publish(self, chat_id, event, payload):
            raise RuntimeError("broker down")

    service = MessageService(store, BrokenNotifier())
    result = await service.send_message(make_request())
    assert (await store.get(paths.message_path(result.roomId, result.messageId))).exists


@pytest.mark.asyncio
async def test_concurrent_first_messages_create_one_room(message_service, store):
    """Senders racing from both directions converge on a single room."""
    requests = [
        make_request(sender="alice", receiver="bob", body=f"a{i}", timestamp=100 + i)
        for i in range(5)
    ] + [
        make_request(sender="bob", receiver="alice", body=f"b{i}", timestamp=200 + i)
        for i in range(5)
    ]
    results = await asyncio.gather(*[message_service.send_message(r) for r in requests])

    assert {r.roomId for r in results} == {"alice-bob"}
    assert len(await store.query(paths.CHAT_ROOMS)) == 1
    assert len(await store.query(paths.messages_collection("alice-bob"))) == 10
    assert len(await store.query(paths.chat_list_collection("alice"))) == 1
    assert len(await store.query(paths.chat_list_collection("bob"))) == 1

    room = (await store.get(paths.room_path("alice-bob"))).data
    bodies = {r.body for r in requests}
    assert room["lastMessage"] in bodies
    for owner in ("alice", "bob"):
        entry = (await store.get(paths.chat_list_entry_path(owner, "alice-bob"))).data
        assert entry["lastMessage"] == room["lastMessage"]


@pytest.mark.asyncio
async def test_conflict_exhaustion_surfaces_store_error(notifier):
    store = InMemoryChatStore(max_attempts=1)
    service = MessageService(store, notifier)

    results = await asyncio.gather(
        service.send_message(make_request(body="one", timestamp=1)),
        service.send_message(make_request(body="two", timestamp=2)),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], TransactionConflictError)
    assert isinstance(errors[0], StoreError)
    # The failed send left nothing behind.
    assert len(await store.query(paths.messages_collection("alice-bob"))) == 1
