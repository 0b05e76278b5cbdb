from .base import StoreAdapter
from .memory import MemoryStore
from .optimistic import SKIP, compare_and_set
