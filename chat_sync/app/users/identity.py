import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar, Token
from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel

from ..errors import NotFoundError
from ..store.base import StoreAdapter
from ..store.paths import user_path

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


PRIVILEGED_ROLES = {UserRole.ADMIN.value}


def can_moderate(role: Optional[str]) -> bool:
    """Whether a role may act on chats and messages it does not own"""
    return role in PRIVILEGED_ROLES


class Identity(BaseModel):
    """The authenticated caller of the current operation"""
    id: str
    role: str = UserRole.USER.value


class UserProfile(BaseModel):
    uid: str
    displayName: str
    photoURL: Optional[str] = None
    role: str = UserRole.USER.value


_current_identity: ContextVar[Optional[Identity]] = ContextVar("current_identity", default=None)


class IdentityAdapter(ABC):
    """
    Boundary to the identity provider.

    The caller's identity is bound per request (or per task) through a context
    variable, so concurrent operations never see each other's caller.
    """

    def current_identity(self) -> Optional[Identity]:
        return _current_identity.get()

    def set_current(self, identity: Optional[Identity]) -> Token:
        return _current_identity.set(identity)

    def reset_current(self, token: Token) -> None:
        _current_identity.reset(token)

    @contextmanager
    def authenticated(self, identity: Identity) -> Iterator[Identity]:
        token = self.set_current(identity)
        try:
            yield identity
        finally:
            self.reset_current(token)

    @abstractmethod
    async def lookup(self, user_id: str) -> UserProfile:
        """
        Resolve a user's profile.

        Raises:
            NotFoundError: If the user is unknown
        """

    async def is_privileged(self, user_id: str) -> bool:
        try:
            profile = await self.lookup(user_id)
        except NotFoundError:
            return False
        return can_moderate(profile.role)


class StoreIdentityAdapter(IdentityAdapter):
    """Reads user profiles from ``users/<uid>`` in the chat store"""

    def __init__(self, store: StoreAdapter):
        self.store = store

    async def lookup(self, user_id: str) -> UserProfile:
        user_data = await self.store.get(user_path(user_id))
        if not user_data:
            logger.warning(f"User {user_id} not found")
            raise NotFoundError(f"User {user_id} not found")
        return UserProfile(uid=user_id, **{k: v for k, v in user_data.items() if k != 'uid'})

    async def register(self, profile: UserProfile) -> UserProfile:
        await self.store.set(user_path(profile.uid), profile.model_dump(exclude_none=True))
        logger.info(f"Registered user profile {profile.uid}")
        return profile
