"""Read paths: message pages and chat lists."""

from typing import List, Optional

import structlog

from ..domain.identity import normalize_id
from ..domain.models import ChatListEntry, Message
from ..repositories import paths
from ..repositories.base import ChatStore, Filter, OrderBy

logger = structlog.get_logger()

DEFAULT_PAGE_SIZE = 50


class QueryService:
    """Cursor-paginated message reads and recency-ordered chat lists."""

    def __init__(self, store: ChatStore, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.store = store
        self.page_size = page_size

    async def list_messages(
        self,
        chat_id: str,
        requesting_user_id: Optional[str],
        before_timestamp: Optional[int] = None,
    ) -> List[Message]:
        """Most recent messages first, hiding those the requester deleted for themselves.

        Keeps reading older messages until ``page_size`` visible ones are found
        or the chat runs out, so hidden messages never leave a page short.
        """
        chat_id = normalize_id(chat_id, "chatId")
        user_id = normalize_id(requesting_user_id, "requestingUserId")

        visible: List[Message] = []
        fetched = 0
        cursor = before_timestamp
        while len(visible) < self.page_size:
            filters = []
            if cursor is not None:
                filters.append(Filter("timestamp", "<", cursor))

            snapshots = await self.store.query(
                paths.messages_collection(chat_id),
                filters=filters,
                order_by=OrderBy("timestamp", descending=True),
                limit=self.page_size,
            )
            messages = [Message.from_document(s.id, s.data) for s in snapshots]
            fetched += len(messages)
            visible.extend(m for m in messages if not m.is_hidden_for(user_id))
            if len(messages) < self.page_size:
                break
            cursor = messages[-1].timestamp

        visible = visible[:self.page_size]
        logger.debug(
            "messages_listed",
            chat_id=chat_id,
            user_id=user_id,
            fetched=fetched,
            returned=len(visible),
        )
        return visible

    async def list_chats(self, user_id: Optional[str]) -> List[ChatListEntry]:
        """All of a user's chat-list entries, newest activity first."""
        user_id = normalize_id(user_id, "userId")

        snapshots = await self.store.query(
            paths.chat_list_collection(user_id),
            order_by=OrderBy("lastMessageTimestamp", descending=True),
        )
        return [ChatListEntry.from_document(s.id, s.data) for s in snapshots]
