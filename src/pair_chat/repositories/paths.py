"""Logical document layout."""

CHAT_ROOMS = "chatRooms"
MESSAGES = "messages"
USERS = "users"
CHAT_LIST = "chatList"


def room_path(room_id: str) -> str:
    return f"{CHAT_ROOMS}/{room_id}"


def messages_collection(room_id: str) -> str:
    return f"{room_path(room_id)}/{MESSAGES}"


def message_path(room_id: str, message_id: str) -> str:
    return f"{messages_collection(room_id)}/{message_id}"


def chat_list_collection(user_id: str) -> str:
    return f"{USERS}/{user_id}/{CHAT_LIST}"


def chat_list_entry_path(user_id: str, chat_id: str) -> str:
    return f"{chat_list_collection(user_id)}/{chat_id}"
