"""
WebSocket Communication Handler for chat conversations

This module wraps a FastAPI WebSocket with message validation on the way in
and event serialization on the way out.

Example:
    handler = WebSocketHandler(websocket)
    async for message in handler.receive_messages():
        # Process incoming messages
        pass
"""

import asyncio
import json
from typing import Any, AsyncGenerator, Dict, Union

import logfire
from fastapi import WebSocket, WebSocketDisconnect, WebSocketException
from pydantic import BaseModel, ValidationError

from schemas.websocket_schema import MessageEvent, SessionEvent, WebSocketError, WebSocketInput


OutgoingEvent = Union[MessageEvent, SessionEvent, WebSocketError]


class WebSocketHandler:
    """
    WebSocket communication handler for chat conversations.

    Attributes:
        websocket: FastAPI WebSocket connection object
    """

    def __init__(self, websocket: WebSocket) -> None:
        """
        Initialize WebSocket handler.

        Args:
            websocket: FastAPI WebSocket connection object

        Raises:
            ValueError: If websocket is None
        """
        if websocket is None:
            raise ValueError("WebSocket connection cannot be None")

        self.websocket: WebSocket = websocket
        logfire.info("WebSocketHandler initialized")

    async def receive_messages(self) -> AsyncGenerator[WebSocketInput, None]:
        """
        Asynchronously receive and validate messages from WebSocket.

        Invalid JSON or schema violations are reported back to the client and
        skipped; the generator ends when the client disconnects.

        Yields:
            WebSocketInput: Validated message object
        """
        while True:
            try:
                message_data: str = await self.websocket.receive_text()
            except WebSocketDisconnect:
                logfire.info("WebSocket client disconnected")
                return

            logfire.debug(f"Received WebSocket message: {len(message_data)} characters")

            try:
                parsed_data: Dict[str, Any] = json.loads(message_data)
            except json.JSONDecodeError as json_error:
                logfire.error(f"Invalid JSON in WebSocket message: {json_error}")
                await self.send_error(f"Invalid JSON format: {json_error}")
                continue

            try:
                message = WebSocketInput(**parsed_data)
            except ValidationError as validation_error:
                logfire.error(f"Message validation failed: {validation_error}")
                await self.send_error(f"Message validation error: {validation_error}")
                continue

            yield message

    async def send_event(self, event: BaseModel) -> None:
        """
        Send a serialized event to the client.

        Raises:
            WebSocketException: If the message cannot be sent
        """
        try:
            await self.websocket.send_text(event.model_dump_json())
        except WebSocketDisconnect:
            raise
        except Exception as e:
            logfire.error(f"Failed to send {type(event).__name__}: {e}")
            raise WebSocketException(code=1011, reason=f"Failed to send event: {e}")

    async def send_error(self, error: str) -> None:
        """Report an error for one client message without closing the connection."""
        try:
            await self.websocket.send_text(WebSocketError(error=error).model_dump_json())
            logfire.warning(f"Error message sent to client: {error}")
        except Exception as send_error:
            logfire.warning(f"Could not send error message to client: {send_error}")

    async def forward_events(self, queue: "asyncio.Queue[OutgoingEvent]") -> None:
        """Send queued events in order until cancelled."""
        while True:
            event = await queue.get()
            await self.send_event(event)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        try:
            if self.websocket.client_state.name != "DISCONNECTED":
                await self.websocket.close(code=code, reason=reason)
                logfire.info(f"WebSocket connection closed with code {code}: {reason}")
        except Exception as close_error:
            logfire.warning(f"Error closing WebSocket connection: {close_error}")
