from .index import SearchIndex, filter_chats
