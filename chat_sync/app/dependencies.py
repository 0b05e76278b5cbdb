import asyncio
import logging
from functools import lru_cache
from typing import Annotated, Any, Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth

from .config import is_dev_environment, settings
from .engine import ChatEngine, build_store
from .errors import NotFoundError
from .media.s3_store import S3BlobStore
from .messages.schemas import ProjectionFailure
from .redis.events import PROJECTION_FAILED, EventPublisher
from .users.identity import Identity

logger = logging.getLogger(__name__)

security = HTTPBearer(scheme_name='Authorization')


async def verify_token(token: str) -> Dict[str, Any]:
    """
    Resolve a bearer token to its claims.

    In DEV the token is the user id itself; in PROD it must be a Firebase ID token.
    """
    if is_dev_environment():
        logger.debug(f"Development mode token: {token}")
        if not token.strip():
            raise HTTPException(status_code=401, detail="Empty token")
        return {'uid': token.strip()}

    try:
        return await asyncio.to_thread(auth.verify_id_token, token, check_revoked=True)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token format")
    except auth.ExpiredIdTokenError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except auth.RevokedIdTokenError:
        raise HTTPException(status_code=401, detail="Token has been revoked")
    except auth.InvalidIdTokenError:
        raise HTTPException(status_code=401, detail="Invalid ID token")
    except auth.CertificateFetchError:
        raise HTTPException(status_code=500, detail="Error fetching certificates")
    except auth.UserDisabledError:
        raise HTTPException(status_code=403, detail="User account is disabled")
    except Exception as e:
        logger.error(f"Token verification error: {str(e)}")
        raise HTTPException(status_code=500, detail="Authentication error")


async def decode_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict[str, Any]:
    return await verify_token(credentials.credentials)


@lru_cache()
def get_event_publisher() -> EventPublisher:
    return EventPublisher(enabled=settings.redis_enabled)


@lru_cache()
def get_engine() -> ChatEngine:
    publisher = get_event_publisher()

    async def publish_projection_failure(failure: ProjectionFailure):
        await publisher.publish(PROJECTION_FAILED, failure.chatId, failure.model_dump())

    return ChatEngine(build_store(settings), settings=settings, on_projection_failure=publish_projection_failure)


@lru_cache()
def get_blob_store() -> S3BlobStore:
    return S3BlobStore(settings)


async def get_current_identity(
        decoded_token: Annotated[Dict[str, Any], Depends(decode_token)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
) -> Identity:
    """
    Bind the caller to the current request.

    Raises:
        HTTPException(401): If the token's user has no profile
    """
    user_id = decoded_token.get('uid')
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token carries no user id")
    try:
        profile = await engine.identity.lookup(user_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")

    identity = Identity(id=user_id, role=profile.role)
    engine.identity.set_current(identity)
    return identity
