"""Domain models for the chat application.

Field names are camelCase because they mirror the stored document layout and
the JSON exchanged with clients.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field


class Participant(BaseModel):
    """A chat participant, embedded by value in rooms and chat-list entries."""

    id: str
    displayName: str
    profilePictureRef: str


class ChatRoom(BaseModel):
    """Shared conversation between two participants."""

    id: str
    participants: List[Participant]
    lastMessage: str
    lastMessageTimestamp: int

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id"})


class Message(BaseModel):
    """Message stored under a room. Only ``seen`` and ``deletedFor`` ever change."""

    id: str
    senderId: str
    senderName: str
    senderProfilePictureRef: str
    body: str
    timestamp: int
    seen: bool = False
    deletedFor: Optional[Dict[str, bool]] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Message":
        return cls(id=doc_id, **data)

    def to_document(self) -> Dict[str, Any]:
        """Stored form: everything but the id, without absent optional fields."""
        return self.model_dump(exclude={"id"}, exclude_none=True)

    def is_hidden_for(self, user_id: str) -> bool:
        return bool(self.deletedFor and self.deletedFor.get(user_id) is True)


class ChatListEntry(BaseModel):
    """Per-user inbox row summarising one chat."""

    id: str
    chatId: str
    participants: List[Participant]
    lastMessage: str
    lastMessageTimestamp: int

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "ChatListEntry":
        return cls(id=doc_id, **data)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id"})


class SendMessageRequest(BaseModel):
    """Inbound message. Fields are optional here; the service enforces presence."""

    senderId: Optional[str] = None
    senderName: Optional[str] = None
    senderProfilePictureRef: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("senderProfilePictureRef", "senderProfilePic"),
    )
    receiverId: Optional[str] = None
    receiverName: Optional[str] = None
    receiverProfilePictureRef: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("receiverProfilePictureRef", "receiverProfilePic"),
    )
    body: Optional[str] = Field(None, validation_alias=AliasChoices("body", "message"))
    timestamp: Optional[int] = None

    @property
    def sender(self) -> Participant:
        return Participant(
            id=self.senderId,
            displayName=self.senderName,
            profilePictureRef=self.senderProfilePictureRef,
        )

    @property
    def receiver(self) -> Participant:
        return Participant(
            id=self.receiverId,
            displayName=self.receiverName,
            profilePictureRef=self.receiverProfilePictureRef,
        )


class SendResult(BaseModel):
    """Outcome of a committed send."""

    messageId: str
    roomId: str
    message: Message
