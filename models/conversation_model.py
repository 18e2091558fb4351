"""
Conversation model for handling one websocket conversation.
"""

import asyncio
from typing import Optional, Set

import logfire
from fastapi import WebSocket

from models.chat_store import ChatStore
from schemas.chat_schema import ChatMessage, ChatSession
from schemas.websocket_schema import Action, MessageEvent, SessionEvent, WebSocketInput
from services.retrieval import ContextRetriever
from services.websocket_handler import OutgoingEvent, WebSocketHandler


class ConversationModel:
    """
    Bridges a websocket client and the chat store.

    Client actions become store calls; store changes are queued as events and
    forwarded to the client in the order they happened.
    """

    def __init__(self, websocket: WebSocket, store: ChatStore, retriever: Optional[ContextRetriever] = None):
        self.websocket_handler = WebSocketHandler(websocket)
        self.store = store
        self.retriever = retriever
        self.events: "asyncio.Queue[OutgoingEvent]" = asyncio.Queue()
        self.turn_tasks: Set[asyncio.Task] = set()

    def on_store_change(self, kind: str, session: Optional[ChatSession], message: Optional[ChatMessage]) -> None:
        if session is not None and message is not None:
            self.events.put_nowait(MessageEvent(session_id=session.id, message=message.model_copy()))
        elif kind in ("session", "sessions"):
            self.events.put_nowait(
                SessionEvent(
                    session_id=session.id if session else None,
                    topic=session.topic if session else None,
                )
            )

    async def resolve_context(self, message: WebSocketInput) -> str:
        if message.context is not None:
            return message.context
        if self.retriever is None:
            return ""
        return await self.retriever.build_context(message.content or "")

    async def process_message(self, message: WebSocketInput) -> None:
        """
        Apply one validated client message to the store.

        Args:
            message: WebSocket message carrying an action
        """
        if message.action is Action.USER_INPUT:
            if not message.content or not message.content.strip():
                await self.websocket_handler.send_error("User input cannot be empty")
                return
            context = await self.resolve_context(message)
            turn = self.store.submit(message.content, context)
            self.turn_tasks.add(turn.task)
            turn.task.add_done_callback(self.turn_tasks.discard)
            logfire.debug(f"User turn submitted: {message.content[:50]}...")

        elif message.action is Action.STOP:
            if message.message_id is None or not self.store.stop_response(message.message_id, message.session_id):
                await self.websocket_handler.send_error(f"No in-flight response for message {message.message_id}")

        elif message.action is Action.STOP_ALL:
            self.store.stop_all()

    async def run(self) -> None:
        """
        Main conversation loop.

        Runs until the client disconnects. Responses already streaming keep
        running in the store after the client goes away.
        """
        unsubscribe = self.store.subscribe(self.on_store_change)
        sender = asyncio.create_task(self.websocket_handler.forward_events(self.events))
        try:
            async for message in self.websocket_handler.receive_messages():
                await self.process_message(message)
        except Exception as e:
            logfire.error(f"Error in conversation loop: {e}")
            raise
        finally:
            unsubscribe()
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
