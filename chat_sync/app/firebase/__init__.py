from .firebase import FirebaseDB
from .store import FirebaseStore
