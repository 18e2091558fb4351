"""
Chat assistant backend
Main entry point: session store, memory management and streaming conversations.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config.settings import settings
from datetime import datetime
import logfire
from contextlib import asynccontextmanager

from agents.chat_agent import PydanticAIChatBackend
from db.connection import init_db, close_db
from db.storage import InMemoryStateStorage, MongoStateStorage, StateStorage
from models.chat_store import ChatStore

# ================================================
# Handlers
# ================================================
from handlers.conversation_handler import router as conversation_router
from handlers.session_handler import router as session_router


# ================================================
# Logfire Configuration
# ================================================
logfire.configure(
    token=settings.LOGFIRE_AUTH_TOKEN,
    send_to_logfire="if-token-present",
    inspect_arguments=True,
)
logfire.instrument_pydantic_ai()


# ============================================================================
# APPLICATION LIFECYCLE
# ============================================================================


async def build_storage() -> StateStorage:
    if settings.PERSISTENCE_BACKEND == "mongo":
        await init_db()
        return MongoStateStorage()
    logfire.info("Using in-memory state storage")
    return InMemoryStateStorage()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup and shutdown events
    """
    # Startup
    logfire.info("Starting chat assistant server...")
    try:
        storage = await build_storage()
        store = ChatStore(PydanticAIChatBackend(), storage)
        await store.init()
        app.state.store = store
        logfire.info("Chat store initialized successfully")
    except Exception as e:
        logfire.error(f"Failed to initialize chat store: {str(e)}")
        raise

    yield

    # Shutdown
    logfire.info("Shutting down chat assistant server...")
    try:
        await app.state.store.shutdown()
        logfire.info("Chat store flushed successfully")
    except Exception as e:
        logfire.error(f"Error shutting down chat store: {str(e)}")
    finally:
        await close_db()

# ================================================
# FastAPI Configuration
# ================================================
app = FastAPI(
    title="Chat Assistant",
    description="Chat sessions with streaming responses and two-tier conversation memory",
    version="1.0.0",
    lifespan=lifespan
)

# ================================================
# CORS Configuration
# ================================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ================================================
# Routers
# ================================================
app.include_router(conversation_router)
app.include_router(session_router)

# ================================================
# Health Check Endpoint
# ================================================
@app.get("/health")
async def health_check():
    store = getattr(app.state, "store", None)
    return {
        "name": "Chat Assistant",
        "status": "healthy" if store is not None else "starting",
        "version": "1.0.0",
        "pending_requests": len(store.pool) if store is not None else 0,
        "created_at": str(datetime.now().isoformat())
        }

# ================================================
# Main Function
# ================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
