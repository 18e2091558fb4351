"""
FastAPI WebSocket Router for chat conversations

The endpoint accepts user turns and stop requests and streams message and
session changes back to the client.

Example:
    Frontend connection:
    const ws = new WebSocket('ws://localhost:8000/conversation');
    ws.send(JSON.stringify({action: 'user_input', content: 'Hello'}));
"""

from fastapi import WebSocket, APIRouter, WebSocketException
import logfire

from models.conversation_model import ConversationModel

# Create FastAPI router for WebSocket endpoints
router = APIRouter()


@router.websocket("/conversation")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for chat conversations against the application's store.

    Args:
        websocket: FastAPI WebSocket connection object

    Raises:
        WebSocketException: If the conversation fails unexpectedly
    """
    store = getattr(websocket.app.state, "store", None)
    if store is None:
        logfire.error("Conversation requested before the chat store was initialized")
        await websocket.close(code=1013, reason="Chat store not ready")
        return

    try:
        await websocket.accept()
        logfire.info("WebSocket connection accepted")

        conversation_model = ConversationModel(
            websocket, store, getattr(websocket.app.state, "retriever", None)
        )
        await conversation_model.run()

        logfire.info("Conversation completed")

    except WebSocketException as ws_error:
        logfire.error(f"WebSocket error in conversation: {ws_error}")
        await _safe_close_websocket(websocket, code=ws_error.code, reason=str(ws_error.reason))
        raise

    except Exception as e:
        logfire.error(f"Unexpected error in WebSocket endpoint: {e}")
        await _safe_close_websocket(websocket, code=1011, reason="Internal Server Error")
        raise WebSocketException(code=1011, reason=f"Internal server error: {e}")


async def _safe_close_websocket(
    websocket: WebSocket,
    code: int = 1011,
    reason: str = "Internal Server Error"
) -> None:
    """
    Close the connection, logging instead of raising if that fails.

    Args:
        websocket: WebSocket connection to close
        code: WebSocket close code (default: 1011 for internal error)
        reason: Close reason message
    """
    try:
        if websocket.client_state.name != "DISCONNECTED":
            await websocket.close(code=code, reason=reason)
            logfire.info(f"WebSocket connection closed with code {code}: {reason}")
    except Exception as close_error:
        logfire.warning(f"Error closing WebSocket connection: {close_error}")
