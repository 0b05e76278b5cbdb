import pytest
from faker import Faker

from chat_sync.app.config import Settings
from chat_sync.app.engine import ChatEngine
from chat_sync.app.store.memory import MemoryStore
from chat_sync.app.time_utils import MonotonicClock
from chat_sync.app.users.identity import Identity, UserProfile, UserRole


class Ticker:
    """Clock source that advances one millisecond on every reading"""

    def __init__(self, start: int = 1_700_000_000_000):
        self.value = start

    def __call__(self) -> int:
        self.value += 1
        return self.value


@pytest.fixture
def anyio_backend():
    return 'asyncio'


@pytest.fixture
def fake():
    faker = Faker()
    faker.seed_instance(242)
    return faker


@pytest.fixture
def users(fake):
    return {
        'alice': UserProfile(uid='alice', displayName='Alice Nguyen', photoURL=fake.image_url()),
        'bob': UserProfile(uid='bob', displayName='Bob Tran', photoURL=fake.image_url()),
        'carol': UserProfile(uid='carol', displayName='Carol Le'),
        'admin': UserProfile(uid='admin', displayName='Site Admin', role=UserRole.ADMIN.value),
    }


@pytest.fixture
def store(users):
    return MemoryStore({'users': {uid: profile.model_dump(exclude_none=True) for uid, profile in users.items()}})


@pytest.fixture
def settings():
    return Settings(counter_max_attempts=10, redis_enabled=False, max_image_size=1024)


@pytest.fixture
def failures():
    """Projection failures reported by the message log"""
    return []


@pytest.fixture
def engine(store, settings, failures):
    async def record(failure):
        failures.append(failure)

    return ChatEngine(store, clock=MonotonicClock(Ticker()), settings=settings, on_projection_failure=record)


@pytest.fixture
def create_chat(engine):
    """Create a chat with the creator bound as the caller"""
    async def create(participants, creator=None, is_group=False, group_name=None):
        creator = creator or participants[0]
        with engine.identity.authenticated(Identity(id=creator)):
            return await engine.registry.create_chat(participants, creator, is_group=is_group,
                                                     group_name=group_name)

    return create
