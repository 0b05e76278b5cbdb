from typing import List

from ..chats.registry import ChatRegistry
from ..chats.schemas import Chat


def filter_chats(chats: List[Chat], term: str) -> List[Chat]:
    """
    Keep the chats whose group name, or any participant's display name,
    contains ``term`` (case-insensitive). Order is preserved.
    """
    needle = (term or "").strip().lower()
    if not needle:
        return list(chats)

    matches = []
    for chat in chats:
        if chat.isGroup and chat.groupName and needle in chat.groupName.lower():
            matches.append(chat)
        elif any(needle in info.displayName.lower() for info in chat.participantsInfo.values()):
            matches.append(chat)
    return matches


class SearchIndex:
    """Stateless lookup over a user's current chat list"""

    def __init__(self, registry: ChatRegistry):
        self.registry = registry

    async def search(self, term: str, user_id: str) -> List[Chat]:
        return filter_chats(await self.registry.list_chats_for(user_id), term)
