"""Two-tier message deletion and per-user chat removal."""

from typing import Optional

import structlog

from ..domain.exceptions import DocumentMissingError, ForbiddenError, NotFoundError, StoreError
from ..domain.identity import normalize_id
from ..domain.models import Message
from ..repositories import paths
from ..repositories.base import ChatStore
from .notifier import CHAT_DELETED, MESSAGE_DELETED, RealtimeNotifier, publish_best_effort

logger = structlog.get_logger()


class DeletionService:
    """Hides messages per user, hard-deletes them for everyone, and drops chat-list rows.

    Hard deletes do not touch the cached ``lastMessage`` on the room or the
    chat-list entries; clients refresh from the ``message-deleted`` event.
    """

    def __init__(self, store: ChatStore, notifier: RealtimeNotifier) -> None:
        self.store = store
        self.notifier = notifier

    async def delete_message(
        self,
        chat_id: str,
        message_id: str,
        user_id: Optional[str],
        for_everyone: bool = False,
    ) -> None:
        chat_id = normalize_id(chat_id, "chatId")
        message_id = normalize_id(message_id, "messageId")
        user_id = normalize_id(user_id, "userId")
        path = paths.message_path(chat_id, message_id)

        snapshot = await self.store.get(path)
        if not snapshot.exists:
            logger.warning("message_not_found", chat_id=chat_id, message_id=message_id)
            raise NotFoundError("Message not found")
        message = Message.from_document(snapshot.id, snapshot.data)

        try:
            if for_everyone:
                if normalize_id(message.senderId, "senderId") != user_id:
                    logger.warning(
                        "delete_for_everyone_forbidden",
                        chat_id=chat_id,
                        message_id=message_id,
                        user_id=user_id,
                    )
                    raise ForbiddenError("Only the sender can delete a message for everyone")
                await self.store.delete(path)
            else:
                await self.store.update(path, {("deletedFor", user_id): True})
        except DocumentMissingError:
            # Hard-deleted by the sender between our read and write.
            raise NotFoundError("Message not found")
        except StoreError as e:
            logger.error(
                "delete_message_failed", chat_id=chat_id, message_id=message_id, error=str(e)
            )
            raise

        logger.info(
            "message_deleted",
            chat_id=chat_id,
            message_id=message_id,
            user_id=user_id,
            for_everyone=for_everyone,
        )
        await publish_best_effort(
            self.notifier,
            chat_id,
            MESSAGE_DELETED,
            {"chatId": chat_id, "messageId": message_id, "forEveryone": for_everyone},
        )

    async def delete_chat(self, chat_id: str, user_id: Optional[str]) -> None:
        """Remove the caller's chat-list entry only."""
        chat_id = normalize_id(chat_id, "chatId")
        user_id = normalize_id(user_id, "userId")
        path = paths.chat_list_entry_path(user_id, chat_id)

        snapshot = await self.store.get(path)
        if not snapshot.exists:
            logger.warning("chat_list_entry_not_found", chat_id=chat_id, user_id=user_id)
            raise NotFoundError("Chat not found")

        try:
            await self.store.delete(path)
        except StoreError as e:
            logger.error("delete_chat_failed", chat_id=chat_id, user_id=user_id, error=str(e))
            raise

        logger.info("chat_deleted", chat_id=chat_id, user_id=user_id)
        await publish_best_effort(
            self.notifier, chat_id, CHAT_DELETED, {"chatId": chat_id, "userId": user_id}
        )
