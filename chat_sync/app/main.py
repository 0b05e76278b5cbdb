import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .chats.router import router as chats_router
from .config import get_prefix, settings
from .errors import ChatSyncError
from .logging_config import setup_logging
from .messages.router import router as messages_router
from .unread.router import router as maintenance_router
from .ws.router import router as ws_router

setup_logging()

logger = logging.getLogger(__name__)

origins = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]

API_VERSION = '/api/v1'
PREFIX = get_prefix(API_VERSION)

logger.info(f"Start HTTP server with prefix: {PREFIX}")

app = FastAPI(root_path=PREFIX, title="Chat Sync API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatSyncError)
async def chat_sync_error_handler(request: Request, exc: ChatSyncError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/health", tags=["Health"])
async def health():
    return {
        "status": "healthy",
        "environment": settings.environment,
        "store": settings.store_backend,
    }


app.include_router(chats_router)
app.include_router(messages_router)
app.include_router(maintenance_router)
app.include_router(ws_router)
