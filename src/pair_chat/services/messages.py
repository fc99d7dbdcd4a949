"""Atomic send-message workflow."""

import structlog

from ..domain.exceptions import StoreError, ValidationError
from ..domain.identity import normalize_id, room_id
from ..domain.models import ChatListEntry, ChatRoom, Message, SendMessageRequest, SendResult
from ..repositories import paths
from ..repositories.base import ChatStore, Transaction
from .notifier import NEW_MESSAGE, RealtimeNotifier, publish_best_effort

logger = structlog.get_logger()

_TEXT_FIELDS = (
    "senderName",
    "senderProfilePictureRef",
    "receiverName",
    "receiverProfilePictureRef",
    "body",
)


def validate_send_request(request: SendMessageRequest) -> SendMessageRequest:
    """Return a normalized copy of ``request`` or raise ``ValidationError``."""
    missing = [
        name
        for name in ("senderId", "receiverId", *_TEXT_FIELDS)
        if getattr(request, name) is None or not str(getattr(request, name)).strip()
    ]
    if request.timestamp is None:
        missing.append("timestamp")
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if request.timestamp <= 0:
        raise ValidationError("timestamp must be a positive integer")

    sender_id = normalize_id(request.senderId, "senderId")
    receiver_id = normalize_id(request.receiverId, "receiverId")
    if sender_id == receiver_id:
        raise ValidationError("senderId and receiverId must differ")

    return request.model_copy(update={"senderId": sender_id, "receiverId": receiver_id})


class MessageService:
    """Sends messages: room upsert, message append and both chat-list rows in one commit."""

    def __init__(self, store: ChatStore, notifier: RealtimeNotifier) -> None:
        self.store = store
        self.notifier = notifier

    async def send_message(self, request: SendMessageRequest) -> SendResult:
        request = validate_send_request(request)
        chat_id = room_id(request.senderId, request.receiverId)
        participants = [request.sender, request.receiver]
        message = Message(
            id=self.store.new_id(),
            senderId=request.senderId,
            senderName=request.senderName,
            senderProfilePictureRef=request.senderProfilePictureRef,
            body=request.body,
            timestamp=request.timestamp,
            seen=False,
        )

        room = ChatRoom(
            id=chat_id,
            participants=participants,
            lastMessage=message.body,
            lastMessageTimestamp=message.timestamp,
        )
        entry = ChatListEntry(id=chat_id, chatId=chat_id, **room.model_dump(exclude={"id"}))

        async def commit(transaction: Transaction) -> None:
            existing = await transaction.get(paths.room_path(chat_id))
            if not existing.exists:
                transaction.set(paths.room_path(chat_id), room.to_document())
            else:
                # Participants are fixed by the first message of the pair.
                transaction.update(
                    paths.room_path(chat_id),
                    {
                        "lastMessage": room.lastMessage,
                        "lastMessageTimestamp": room.lastMessageTimestamp,
                    },
                )

            transaction.set(paths.message_path(chat_id, message.id), message.to_document())

            # Same summary for both owners; only the owning user differs.
            for owner_id in (request.senderId, request.receiverId):
                transaction.set(
                    paths.chat_list_entry_path(owner_id, chat_id),
                    entry.to_document(),
                    merge=True,
                )

        try:
            await self.store.run_transaction(commit)
        except StoreError as e:
            logger.error(
                "send_message_failed",
                chat_id=chat_id,
                sender_id=request.senderId,
                error=str(e),
            )
            raise

        logger.info(
            "message_sent",
            chat_id=chat_id,
            message_id=message.id,
            sender_id=request.senderId,
            body_length=len(message.body),
        )

        await publish_best_effort(
            self.notifier,
            chat_id,
            NEW_MESSAGE,
            {"chatId": chat_id, "message": message.model_dump(exclude_none=True)},
        )
        return SendResult(messageId=message.id, roomId=chat_id, message=message)
