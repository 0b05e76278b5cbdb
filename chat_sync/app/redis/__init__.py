from .events import EventPublisher
