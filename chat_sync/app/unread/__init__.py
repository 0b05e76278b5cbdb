from .tracker import UnreadCounterTracker, count_unread
