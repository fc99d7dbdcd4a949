"""Seen receipts."""

from typing import List, Optional

import structlog

from ..domain.exceptions import StoreError, ValidationError
from ..domain.identity import normalize_id
from ..repositories import paths
from ..repositories.base import ChatStore, Filter, Transaction
from .notifier import MESSAGES_SEEN, RealtimeNotifier, publish_best_effort

logger = structlog.get_logger()


class SeenTracker:
    """Flips ``seen`` on the other participant's messages up to a timestamp."""

    def __init__(self, store: ChatStore, notifier: RealtimeNotifier) -> None:
        self.store = store
        self.notifier = notifier

    async def mark_seen(
        self, chat_id: str, user_id: Optional[str], upto_timestamp: Optional[int]
    ) -> int:
        """Mark unseen messages from the other participant as seen; return how many changed.

        Only ``seen == False`` messages are selected, so repeating a call with
        the same or an earlier timestamp writes nothing. Messages deleted while
        the call is in flight are skipped.
        """
        chat_id = normalize_id(chat_id, "chatId")
        user_id = normalize_id(user_id, "userId")
        if upto_timestamp is None:
            raise ValidationError("Missing required field: uptoTimestamp")
        if upto_timestamp <= 0:
            raise ValidationError("uptoTimestamp must be a positive integer")

        try:
            found = await self.store.query(
                paths.messages_collection(chat_id),
                filters=[
                    Filter("timestamp", "<=", upto_timestamp),
                    Filter("senderId", "!=", user_id),
                    Filter("seen", "==", False),
                ],
            )
            candidates = [s.path for s in found]
            updated = await self._flip_seen(candidates, user_id) if candidates else 0
        except StoreError as e:
            logger.error("mark_seen_failed", chat_id=chat_id, user_id=user_id, error=str(e))
            raise

        logger.info(
            "messages_marked_seen",
            chat_id=chat_id,
            user_id=user_id,
            upto_timestamp=upto_timestamp,
            updated=updated,
        )
        await publish_best_effort(
            self.notifier,
            chat_id,
            MESSAGES_SEEN,
            {"chatId": chat_id, "userId": user_id, "uptoTimestamp": upto_timestamp},
        )
        return updated

    async def _flip_seen(self, candidates: List[str], user_id: str) -> int:
        """Re-read candidates in a transaction; a concurrent delete forces a retry, not a failure."""

        async def commit(transaction: Transaction) -> int:
            snapshots = [await transaction.get(path) for path in candidates]
            unseen = [
                s for s in snapshots
                if s.exists and s.data.get("seen") is False and s.data.get("senderId") != user_id
            ]
            for snapshot in unseen:
                transaction.update(snapshot.path, {"seen": True})
            return len(unseen)

        return await self.store.run_transaction(commit)
