"""Test helpers."""

from typing import Any, Dict, List

from pair_chat.domain.models import SendMessageRequest


class RecordingConnection:
    """Stands in for a WebSocket and records every event it is sent."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events: List[Dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.events.append(data)

    def names(self) -> List[str]:
        return [e["event"] for e in self.events]


def make_request(sender: str = "alice", receiver: str = "bob", body: str = "hi", timestamp: int = 100, **overrides) -> SendMessageRequest:
    fields = {
        "senderId": sender,
        "senderName": sender.title(),
        "senderProfilePictureRef": f"pics/{sender}.png",
        "receiverId": receiver,
        "receiverName": receiver.title(),
        "receiverProfilePictureRef": f"pics/{receiver}.png",
        "body": body,
        "timestamp": timestamp,
    }
    fields.update(overrides)
    return SendMessageRequest(**fields)
