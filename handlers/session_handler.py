"""
FastAPI Router for session management

Thin HTTP surface over the chat store's session lifecycle operations.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
import logfire

from models.chat_store import ChatStore
from schemas.chat_schema import ChatMessage
from schemas.session_schema import (
    MoveSessionRequest,
    NewSessionRequest,
    SessionListResponse,
    SessionResponse,
    SessionSummary,
)

# Create FastAPI router for session endpoints
router = APIRouter(prefix="/sessions", tags=["sessions"])


def get_store(request: Request) -> ChatStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat store not initialized"
        )
    return store


def _current(store: ChatStore) -> SessionResponse:
    return SessionResponse(index=store.current_session_index, session=store.current_session())


@router.get("", response_model=SessionListResponse)
async def list_sessions(store: ChatStore = Depends(get_store)) -> SessionListResponse:
    return SessionListResponse(
        sessions=[
            SessionSummary(
                index=index,
                id=session.id,
                topic=session.topic,
                message_count=len(session.messages),
                last_update=session.last_update,
            )
            for index, session in enumerate(store.sessions)
        ],
        current_session_index=store.current_session_index,
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def new_session(body: NewSessionRequest, store: ChatStore = Depends(get_store)) -> SessionResponse:
    store.new_session(body.mask)
    return _current(store)


@router.get("/current", response_model=SessionResponse)
async def current_session(store: ChatStore = Depends(get_store)) -> SessionResponse:
    return _current(store)


@router.get("/current/messages-with-memory", response_model=List[ChatMessage])
async def messages_with_memory(store: ChatStore = Depends(get_store)) -> List[ChatMessage]:
    """Messages the next turn would send ahead of the user message."""
    return store.get_messages_with_memory()


@router.post("/current/reset", response_model=SessionResponse)
async def reset_session(store: ChatStore = Depends(get_store)) -> SessionResponse:
    store.reset_session()
    return _current(store)


@router.post("/current/clear-context", response_model=SessionResponse)
async def clear_context(store: ChatStore = Depends(get_store)) -> SessionResponse:
    store.clear_context()
    return _current(store)


@router.post("/move", response_model=SessionListResponse)
async def move_session(body: MoveSessionRequest, store: ChatStore = Depends(get_store)) -> SessionListResponse:
    if not store.move_session(body.from_index, body.to_index):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No session at index {body.from_index}"
        )
    return await list_sessions(store)


@router.post("/undo-delete", response_model=SessionListResponse)
async def undo_delete(store: ChatStore = Depends(get_store)) -> SessionListResponse:
    if not store.undo_delete():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Nothing to undo"
        )
    return await list_sessions(store)


@router.post("/clear-all", status_code=status.HTTP_204_NO_CONTENT)
async def clear_all(store: ChatStore = Depends(get_store)) -> None:
    logfire.warning("Clear-all requested over HTTP")
    await store.clear_all_data()


@router.post("/{index}/select", response_model=SessionResponse)
async def select_session(index: int, store: ChatStore = Depends(get_store)) -> SessionResponse:
    store.select_session(index)
    return _current(store)


@router.delete("/{index}", response_model=SessionListResponse)
async def delete_session(index: int, store: ChatStore = Depends(get_store)) -> SessionListResponse:
    if not store.delete_session(index):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No session at index {index}"
        )
    return await list_sessions(store)
