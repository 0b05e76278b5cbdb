CHATS_PATH = "chats"
MESSAGES_PATH = "messages"
USERS_PATH = "users"


def chat_path(chat_id: str) -> str:
    return f"{CHATS_PATH}/{chat_id}"


def last_message_path(chat_id: str) -> str:
    return f"{CHATS_PATH}/{chat_id}/lastMessage"


def unread_count_path(chat_id: str) -> str:
    return f"{CHATS_PATH}/{chat_id}/unreadCount"


def messages_path(chat_id: str) -> str:
    return f"{MESSAGES_PATH}/{chat_id}"


def message_path(chat_id: str, message_id: str) -> str:
    return f"{MESSAGES_PATH}/{chat_id}/{message_id}"


def user_path(user_id: str) -> str:
    return f"{USERS_PATH}/{user_id}"


def split_path(path: str) -> list:
    return [part for part in path.strip("/").split("/") if part]
