import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from ..chats.schemas import Chat
from ..dependencies import get_engine, verify_token
from ..engine import ChatEngine
from ..errors import NotFoundError

logger = logging.getLogger(__name__)

# WebSocket routes authenticate through the query string, not the bearer header
router = APIRouter()


@router.websocket('/ws/chats')
async def chat_list_socket(websocket: WebSocket, engine: ChatEngine = Depends(get_engine)):
    """
    Push the caller's ordered chat list on connect and after every change.

    Connect with ``/ws/chats?token=<token>``.
    """
    token = websocket.query_params.get('token')
    try:
        if not token:
            raise HTTPException(status_code=401, detail="Missing authentication token")
        decoded_token = await verify_token(token)
        profile = await engine.identity.lookup(decoded_token.get('uid', ''))
    except (HTTPException, NotFoundError) as e:
        logger.warning(f"Rejected WebSocket connection: {getattr(e, 'detail', str(e))}")
        await websocket.close(code=4001, reason="Unauthorized - Invalid or missing token")
        return

    user_id = profile.uid
    await websocket.accept()
    logger.info(f"WebSocket connected for user {user_id}")

    loop = asyncio.get_running_loop()
    updates: asyncio.Queue = asyncio.Queue()

    # Store listeners may fire from another thread
    def on_change(chats: List[Chat]):
        loop.call_soon_threadsafe(updates.put_nowait, chats)

    async def forward_updates():
        while True:
            chats = await updates.get()
            await websocket.send_json({
                'event': 'chats',
                'chats': [chat.model_dump(mode='json') for chat in chats],
            })

    async def drain_client():
        # Client frames carry nothing; reading them detects the disconnect
        while True:
            await websocket.receive_text()

    unsubscribe = engine.registry.watch_chats_for(user_id, on_change)
    sender = asyncio.create_task(forward_updates())
    receiver = asyncio.create_task(drain_client())
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        if receiver in done and isinstance(receiver.exception(), WebSocketDisconnect):
            logger.info(f"WebSocket disconnected for user {user_id}")
        elif sender in done:
            logger.error(f"Error pushing chat list to user {user_id}: {str(sender.exception())}")
            try:
                await websocket.close(code=1011, reason="Chat list updates failed")
            except Exception as e:
                logger.warning(f"Error closing WebSocket for user {user_id}: {str(e)}")
        else:
            logger.error(f"Error reading from WebSocket for user {user_id}: {str(receiver.exception())}")
    finally:
        unsubscribe()
        for task in (sender, receiver):
            task.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)
