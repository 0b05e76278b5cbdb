import logging
from typing import Dict, List, Optional

from ..errors import NotFoundError
from ..store.base import StoreAdapter
from ..store.optimistic import SKIP, compare_and_set
from ..store.paths import CHATS_PATH, chat_path, messages_path, unread_count_path

logger = logging.getLogger(__name__)


def count_unread(messages_data: Optional[Dict[str, dict]], user_id: str, since: int = 0) -> int:
    """
    Messages sent by someone else that are not marked read.

    Only messages timestamped at or after ``since`` count, so a participant
    added to a group is not charged for history from before they joined.
    """
    unread_count = 0
    for msg_data in (messages_data or {}).values():
        if not isinstance(msg_data, dict) or 'senderId' not in msg_data:
            continue
        if msg_data.get('timestamp', 0) < since:
            continue
        if msg_data['senderId'] != user_id and not msg_data.get('isRead', False):
            unread_count += 1
    return unread_count


def joined_at(chat_data: dict, user_id: str) -> int:
    info = (chat_data.get('participantsInfo') or {}).get(user_id)
    if not isinstance(info, dict):
        return 0
    return info.get('joinedAt', 0)


class UnreadCounterTracker:
    """
    Per-participant unread counters stored at ``chats/<chatId>/unreadCount``.

    The store has no atomic increment, so every change is an optimistic
    read-modify-write of the whole counter map, retried on conflict. The map's
    keys are exactly the chat's participants, so a membership change racing a
    counter update invalidates the counter write and forces a fresh read.
    """

    def __init__(self, store: StoreAdapter, max_attempts: int = 3):
        self.store = store
        self.max_attempts = max_attempts

    async def _mutate(self, chat_id: str, mutate) -> Dict[str, int]:
        counts = await compare_and_set(self.store, unread_count_path(chat_id), mutate, self.max_attempts)
        return counts or {}

    async def on_message_sent(self, chat_id: str, sender_id: str) -> Dict[str, int]:
        """Increment every participant except the sender in a single write."""
        def mutate(counts):
            if not counts:
                return SKIP
            return {uid: count if uid == sender_id else count + 1 for uid, count in counts.items()}

        counts = await self._mutate(chat_id, mutate)
        logger.info(f"Updated unread counts for participants in chat {chat_id}")
        return counts

    async def on_message_read(self, chat_id: str, reader_id: str, count: int = 1) -> int:
        """Decrement the reader's counter, never below zero."""
        def mutate(counts):
            if not counts or reader_id not in counts:
                return SKIP
            current = counts[reader_id]
            updated = max(0, current - count)
            if updated == current:
                return SKIP
            counts[reader_id] = updated
            return counts

        counts = await self._mutate(chat_id, mutate)
        new_count = counts.get(reader_id, 0)
        logger.info(f"Unread count for user {reader_id} in chat {chat_id} is now {new_count}")
        return new_count

    async def on_message_deleted(self, chat_id: str, sender_id: str, count: int = 1) -> Dict[str, int]:
        """Take an unread message back from everyone but its sender."""
        def mutate(counts):
            if not counts:
                return SKIP
            return {uid: c if uid == sender_id else max(0, c - count) for uid, c in counts.items()}

        return await self._mutate(chat_id, mutate)

    async def reset(self, chat_id: str, reader_id: str) -> None:
        """
        Set the reader's counter to zero.

        A decrement racing this reset either lands first and is overwritten, or
        loses the conditional write and re-reads the zero.
        """
        def mutate(counts):
            if not counts or counts.get(reader_id, 0) == 0:
                return SKIP
            counts[reader_id] = 0
            return counts

        await self._mutate(chat_id, mutate)
        logger.info(f"Reset unread count to 0 for user {reader_id} in chat {chat_id}")

    async def get_count(self, chat_id: str, user_id: str) -> int:
        counts = await self.store.get(unread_count_path(chat_id)) or {}
        return counts.get(user_id, 0)

    async def recompute(self, chat_id: str, user_id: str) -> int:
        """
        Recount a user's unread messages from the message log and store the result.

        Raises:
            NotFoundError: If the chat doesn't exist or the user is not a participant
        """
        messages_data = await self.store.get(messages_path(chat_id))
        result = {'count': 0}

        # Membership, join time and counter are checked in the same snapshot so
        # a user who just left never gets a counter back
        def mutate(chat_data):
            if not chat_data:
                raise NotFoundError(f"Chat {chat_id} not found")
            if user_id not in chat_data.get('participants', []):
                raise NotFoundError(f"User {user_id} is not a participant of chat {chat_id}")
            unread_count = count_unread(messages_data, user_id, joined_at(chat_data, user_id))
            result['count'] = unread_count
            counts = chat_data.get('unreadCount') or {}
            if counts.get(user_id) == unread_count:
                return SKIP
            counts[user_id] = unread_count
            chat_data['unreadCount'] = counts
            return chat_data

        await compare_and_set(self.store, chat_path(chat_id), mutate, self.max_attempts)
        return result['count']

    async def recompute_for_user(self, user_id: str, chat_id: Optional[str] = None) -> dict:
        """
        Recompute a user's unread counts in one chat, or in every chat they take part in.

        Returns:
            dict: Statistics about the recomputation
        """
        if chat_id:
            chat_ids = [chat_id]
        else:
            chats_data = await self.store.get(CHATS_PATH) or {}
            chat_ids = [cid for cid, data in chats_data.items()
                        if isinstance(data, dict) and user_id in data.get('participants', [])]

        fixed_counts = 0
        results = []
        for cid in chat_ids:
            try:
                old_count = await self.get_count(cid, user_id)
                new_count = await self.recompute(cid, user_id)
            except NotFoundError:
                if chat_id:
                    raise
                continue
            if old_count != new_count:
                fixed_counts += 1
            results.append({
                'chat_id': cid,
                'old_count': old_count,
                'new_count': new_count,
                'fixed': old_count != new_count,
            })

        return {
            'status': 'success',
            'processed_chats': len(results),
            'fixed_counts': fixed_counts,
            'details': results,
        }

    async def find_inconsistencies(self) -> List[dict]:
        """
        Scan every chat for stored counters that disagree with the message log,
        or participants with no counter at all.
        """
        inconsistencies = []
        chats_data = await self.store.get(CHATS_PATH) or {}
        for chat_id, chat_data in chats_data.items():
            if not isinstance(chat_data, dict):
                continue
            counts = chat_data.get('unreadCount') or {}
            messages_data = await self.store.get(messages_path(chat_id))
            for user_id in chat_data.get('participants', []):
                actual_count = count_unread(messages_data, user_id, joined_at(chat_data, user_id))
                if user_id not in counts:
                    inconsistencies.append({
                        'chat_id': chat_id,
                        'user_id': user_id,
                        'type': 'missing_counter',
                        'stored_count': None,
                        'actual_count': actual_count,
                    })
                elif counts[user_id] != actual_count:
                    inconsistencies.append({
                        'chat_id': chat_id,
                        'user_id': user_id,
                        'type': 'count_mismatch',
                        'stored_count': counts[user_id],
                        'actual_count': actual_count,
                    })
        return inconsistencies

    async def repair_all(self) -> dict:
        """
        Find and fix every unread count inconsistency

        Returns:
            dict: Statistics about the repair operation
        """
        inconsistencies = await self.find_inconsistencies()
        details = []
        for item in inconsistencies:
            try:
                new_count = await self.recompute(item['chat_id'], item['user_id'])
            except Exception as e:
                logger.error(f"Error fixing unread count for chat {item['chat_id']}, user {item['user_id']}: {str(e)}")
                continue
            details.append({
                'chat_id': item['chat_id'],
                'user_id': item['user_id'],
                'old_count': item['stored_count'],
                'new_count': new_count,
                'type': item['type'],
            })

        logger.info(f"Repaired {len(details)} of {len(inconsistencies)} unread count inconsistencies")
        return {
            'status': 'success',
            'total_inconsistencies': len(inconsistencies),
            'fixed_count': len(details),
            'details': details,
        }
