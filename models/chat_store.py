"""
Chat store for handling session lifecycle and the conversation flow.

The store owns the ordered session list (front = most recent), the selected
session index and the global id counter. It drives each user turn:

1. The user and assistant placeholder messages are appended to the session.
2. The memory compactor picks the messages to send.
3. The streaming chat call runs with its controller registered in the pool.
4. Updates rewrite the assistant message; the terminal event deregisters the
   controller and, on success, triggers topic derivation and compaction.

All state changes are synchronous method calls on the event loop, so readers
never observe a half-applied change. Listeners registered with subscribe()
are called after each change.

Example:
    store = ChatStore(PydanticAIChatBackend(), InMemoryStateStorage())
    await store.init()
    turn = await store.on_user_input("Hello")
    await store.shutdown()
"""

import asyncio
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, List, Optional, Set

import logfire

from agents.chat_agent import ChatAbortedError, ChatBackend, ChatController, ChatOptions, is_aborted_error
from agents.prompts import system_instruction
from config.settings import settings
from db.migrations import PersistedState, migrate_state
from db.storage import StateStorage
from models.chat_turn import ChatTurn
from models.length_metric import LengthMetric, char_length
from models.memory_compactor import MemoryCompactor
from schemas.chat_schema import (
    ChatMessage,
    ChatSession,
    Mask,
    StoreState,
    create_empty_session,
    create_message,
)
from services.background import BackgroundTasks
from services.controller_pool import MEMORY_SLOT, TOPIC_SLOT, ChatControllerPool


Listener = Callable[[str, Optional[ChatSession], Optional[ChatMessage]], None]


@dataclass(frozen=True)
class UndoEntry:
    """Session list and selection as they were before a delete."""
    sessions: List[ChatSession]
    current_session_index: int
    expires_at: float


class ChatStore:
    """
    Session store and turn orchestrator.

    Attributes:
        pool: Controller pool for in-flight requests
        tasks: Background tasks (compaction, topic, persistence)
        compactor: Memory compactor used for every turn
        store_key: Persistence key
        undo_seconds: How long a delete can be undone
    """

    def __init__(
        self,
        backend: ChatBackend,
        storage: Optional[StateStorage] = None,
        pool: Optional[ChatControllerPool] = None,
        metric: LengthMetric = char_length,
        clock: Callable[[], float] = time.monotonic,
        store_key: Optional[str] = None,
        undo_seconds: Optional[float] = None,
    ) -> None:
        self._backend = backend
        self._storage = storage
        self._clock = clock
        self.pool = pool or ChatControllerPool()
        self.tasks = BackgroundTasks()
        self.compactor = MemoryCompactor(backend, self.pool, self.tasks, self._on_session_change, metric=metric)
        self.store_key = store_key or settings.STORE_KEY
        self.undo_seconds = settings.UNDO_DELETE_SECONDS if undo_seconds is None else undo_seconds

        self._state = StoreState()
        self._undo: Optional[UndoEntry] = None
        self._listeners: List[Listener] = []
        self._turn_tasks: Set[asyncio.Task] = set()
        self._persist_lock = asyncio.Lock()

    # ================================================
    # Lifecycle
    # ================================================
    async def init(self, payload: Optional[bytes] = None) -> None:
        """
        Load state from payload bytes, else from storage, else start empty.

        Older payload versions are migrated; malformed payloads raise.
        """
        if payload is not None:
            envelope = PersistedState.from_bytes(payload)
        elif self._storage is not None:
            envelope = await self._storage.load(self.store_key)
        else:
            envelope = None

        if envelope is None:
            self._state = StoreState()
            logfire.info("Chat store initialized with a fresh session")
        else:
            self._state = migrate_state(envelope.state, envelope.version)
            logfire.info(
                f"Chat store loaded {len(self._state.sessions)} sessions (version {envelope.version})"
            )

        if not self._state.sessions:
            self._state.sessions.append(create_empty_session())
        self._undo = None
        self._notify("init", None, None)

    def dump(self) -> bytes:
        return PersistedState.from_store(self._state).to_bytes()

    def snapshot(self) -> StoreState:
        return self._state.model_copy(deep=True)

    async def flush(self) -> None:
        """Write the current state to storage; writes are serialized."""
        if self._storage is None:
            return
        async with self._persist_lock:
            payload = PersistedState.from_store(self._state)
            await self._storage.save(self.store_key, payload)

    async def shutdown(self) -> None:
        """Stop in-flight requests, wait for every turn to end and for background work, then flush."""
        logfire.info("Shutting down chat store...")
        # just-submitted turns must start before they are cancelled
        await asyncio.sleep(0)
        self.pool.stop_all()
        turns = list(self._turn_tasks)
        for task in turns:
            task.cancel()
        if turns:
            await asyncio.gather(*turns, return_exceptions=True)
        await self.tasks.drain()
        await self.flush()
        logfire.info("Chat store shut down")

    # ================================================
    # Change Notification
    # ================================================
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register listener(kind, session, message); returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, session: Optional[ChatSession], message: Optional[ChatMessage]) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, session, message)
            except Exception as e:
                logfire.error(f"Store listener failed on {kind}: {e!r}")

    def _commit(
        self,
        kind: str,
        session: Optional[ChatSession] = None,
        message: Optional[ChatMessage] = None,
        persist: bool = True,
    ) -> None:
        self._notify(kind, session, message)
        if persist and self._storage is not None:
            self.tasks.spawn(self.flush(), name="persist")

    def _on_session_change(self, session: ChatSession, persist: bool) -> None:
        self._commit("session", session, None, persist)

    # ================================================
    # Sessions
    # ================================================
    @property
    def sessions(self) -> List[ChatSession]:
        return list(self._state.sessions)

    @property
    def global_id(self) -> int:
        return self._state.global_id

    @property
    def current_session_index(self) -> int:
        return self._clamp_index(self._state.current_session_index)

    def _clamp_index(self, index: int) -> int:
        return min(len(self._state.sessions) - 1, max(0, index))

    def current_session(self) -> ChatSession:
        index = self._clamp_index(self._state.current_session_index)
        if index != self._state.current_session_index:
            logfire.debug(f"Clamping stale session index {self._state.current_session_index} to {index}")
            self._state.current_session_index = index
        return self._state.sessions[index]

    def select_session(self, index: int) -> None:
        self._state.current_session_index = self._clamp_index(index)
        self._commit("select")

    def new_session(self, mask: Optional[Mask] = None) -> ChatSession:
        """Insert a fresh session at the front and select it."""
        session = create_empty_session()
        self._state.global_id += 1
        session.id = self._state.global_id

        if mask is not None:
            session.mask = mask.model_copy(deep=True)
            session.topic = mask.name

        self._state.sessions.insert(0, session)
        self._state.current_session_index = 0
        logfire.info(f"New session created: {session.id}")
        self._commit("sessions", session)
        return session

    def _stop_background(self, session: ChatSession) -> None:
        """Stop the compaction and topic calls still running for session."""
        self.pool.stop(session.id, MEMORY_SLOT)
        self.pool.stop(session.id, TOPIC_SLOT)

    def clear_sessions(self) -> None:
        for session in self._state.sessions:
            self._stop_background(session)
        self._state.sessions = [create_empty_session()]
        self._state.current_session_index = 0
        self._commit("sessions")

    def move_session(self, from_index: int, to_index: int) -> bool:
        """
        Move a session, keeping the selected session selected.

        Returns:
            False if from_index does not name a session
        """
        sessions = list(self._state.sessions)
        if not 0 <= from_index < len(sessions):
            logfire.warning(f"Cannot move session at invalid index {from_index}")
            return False
        to_index = min(len(sessions) - 1, max(0, to_index))

        session = sessions.pop(from_index)
        sessions.insert(to_index, session)

        old_index = self._state.current_session_index
        new_index = to_index if old_index == from_index else old_index
        if from_index < old_index <= to_index:
            new_index -= 1
        elif to_index <= old_index < from_index:
            new_index += 1

        self._state.sessions = sessions
        self._state.current_session_index = new_index
        self._commit("sessions")
        return True

    def delete_session(self, index: int) -> bool:
        """
        Delete a session, keeping a single undo entry for undo_seconds.

        Deleting the only session replaces it with a fresh one.

        Returns:
            False if index does not name a session
        """
        sessions = self._state.sessions
        if not 0 <= index < len(sessions):
            logfire.warning(f"Cannot delete session at invalid index {index}")
            return False

        deleting_last_session = len(sessions) == 1
        current_index = self._state.current_session_index
        undo = UndoEntry(
            sessions=list(sessions),
            current_session_index=current_index,
            expires_at=self._clock() + self.undo_seconds,
        )

        remaining = list(sessions)
        deleted = remaining.pop(index)
        self._stop_background(deleted)
        next_index = min(current_index - int(index < current_index), len(remaining) - 1)

        if deleting_last_session:
            next_index = 0
            remaining.append(create_empty_session())

        self._state.sessions = remaining
        self._state.current_session_index = next_index
        self._undo = undo
        logfire.info(f"Session {deleted.id} deleted")
        self._commit("sessions")
        return True

    def undo_delete(self) -> bool:
        """Restore the state before the last delete if the undo window is still open."""
        undo, self._undo = self._undo, None
        if undo is None:
            return False
        if self._clock() > undo.expires_at:
            logfire.info("Undo window for deleted session has expired")
            return False

        self._state.sessions = list(undo.sessions)
        self._state.current_session_index = undo.current_session_index
        logfire.info("Deleted session restored")
        self._commit("sessions")
        return True

    def reset_session(self) -> None:
        """Clear messages and memory of the current session in place."""
        session = self.current_session()
        self._stop_background(session)
        session.reset()
        self._commit("session", session)

    def clear_context(self) -> None:
        """Exclude all current messages from the context of later turns."""
        session = self.current_session()
        session.clear_context()
        self._commit("session", session)

    async def clear_all_data(self) -> None:
        """Stop all requests, wipe persisted state and start over from empty."""
        logfire.warning("Clearing all chat data")
        self.pool.stop_all()
        await self.tasks.cancel_all()
        if self._storage is not None:
            await self._storage.clear(self.store_key)
        self._state = StoreState()
        self._undo = None
        self._commit("init", persist=False)

    # ================================================
    # Messages
    # ================================================
    def update_message(self, session_index: int, message_index: int, **fields) -> bool:
        """Set fields on one message; returns False when either index is out of range."""
        unknown = set(fields) - set(ChatMessage.model_fields)
        if unknown:
            raise ValueError(f"Unknown message fields: {sorted(unknown)}")

        sessions = self._state.sessions
        if not 0 <= session_index < len(sessions):
            return False
        session = sessions[session_index]
        if not 0 <= message_index < len(session.messages):
            return False

        message = session.messages[message_index]
        for name, value in fields.items():
            setattr(message, name, value)
        self._commit("message", session, message)
        return True

    def update_stat(self, session: ChatSession, message: ChatMessage) -> None:
        session.record_stat(message)

    def on_new_message(self, session: ChatSession, message: ChatMessage) -> None:
        session.touch()
        self.update_stat(session, message)
        self._commit("session", session, message)
        if not self._has_session(session):
            logfire.info(f"Skipping summarization for deleted session {session.id}")
            return
        self.summarize_session(session)

    def _has_session(self, session: ChatSession) -> bool:
        return any(s is session for s in self._state.sessions)

    def summarize_session(self, session: Optional[ChatSession] = None) -> Optional[asyncio.Task]:
        return self.compactor.summarize_session(session or self.current_session())

    def get_messages_with_memory(self) -> List[ChatMessage]:
        return self.compactor.get_messages_with_memory(self.current_session())

    def get_memory_prompt(self) -> ChatMessage:
        return self.compactor.get_memory_prompt(self.current_session())

    # ================================================
    # User Turns
    # ================================================
    def _prepare_turn(self, content: str, context: str):
        session = self.current_session()
        config = session.mask.llm_config

        user_message = create_message(role="user", content=content)
        bot_message = create_message(role="assistant", streaming=True, model=config.model)

        # masks with fixed context messages replace the default instruction
        system_messages: List[ChatMessage] = []
        if not session.mask.context:
            system_messages.append(
                create_message(role="system", content=system_instruction(config.model, context))
            )

        recent_messages = self.compactor.get_messages_with_memory(session)
        send_messages = system_messages + recent_messages + [user_message]

        session.append_message(user_message)
        session.append_message(bot_message)

        turn = ChatTurn(session.id, user_message, bot_message)
        turn.start()
        self._commit("message", session, user_message, persist=False)
        self._commit("message", session, bot_message)

        options = ChatOptions(
            messages=send_messages,
            config=config.model_copy(),
            stream=True,
            on_update=partial(self._on_turn_update, turn, session),
            on_finish=partial(self._on_turn_finish, turn, session),
            on_error=partial(self._on_turn_error, turn, session),
            on_controller=partial(self._on_turn_controller, turn, session),
        )
        logfire.info(f"Sending turn {bot_message.id} in session {session.id}: {len(send_messages)} messages")
        return turn, options

    def _on_turn_controller(self, turn: ChatTurn, session: ChatSession, controller: ChatController) -> None:
        self.pool.add(session.id, turn.bot_message.id, controller)

    def _on_turn_update(self, turn: ChatTurn, session: ChatSession, text: str) -> None:
        if turn.done:
            return
        turn.update(text)
        self._commit("message", session, turn.bot_message, persist=False)

    def _on_turn_finish(self, turn: ChatTurn, session: ChatSession, text: str) -> None:
        if turn.done:
            logfire.warning(f"Ignoring finish for already ended turn {turn.bot_message.id}")
            return
        turn.complete(text)
        self.pool.remove(session.id, turn.bot_message.id)
        if text:
            self.on_new_message(session, turn.bot_message)
        self._commit("message", session, turn.bot_message)

    def _on_turn_error(self, turn: ChatTurn, session: ChatSession, error: Exception) -> None:
        if turn.done:
            logfire.warning(f"Ignoring error for already ended turn {turn.bot_message.id}: {error!r}")
            return
        aborted = is_aborted_error(error)
        turn.fail(error, aborted)
        self.pool.remove(session.id, turn.bot_message.id)
        if aborted:
            logfire.info(f"[Chat] turn {turn.bot_message.id} stopped by user")
        else:
            logfire.error(f"[Chat] failed: {error!r}")
        self._commit("message", session, turn.bot_message)

    async def _run_turn(self, turn: ChatTurn, options: ChatOptions) -> ChatTurn:
        try:
            await self._backend.chat(options)
        except asyncio.CancelledError:
            if not turn.done:
                options.on_error(ChatAbortedError())
            raise
        except Exception as e:
            if turn.done:
                raise
            options.on_error(e)

        if not turn.done:
            options.on_error(RuntimeError("Chat backend returned without finishing the response"))
        return turn

    async def on_user_input(self, content: str, context: str = "") -> ChatTurn:
        """
        Send a user turn and wait until its response has finished.

        Args:
            content: The user's message
            context: Retrieved reference text for the system instruction

        Returns:
            The finished turn; transport errors end up on the turn and its
            messages rather than being raised
        """
        turn, options = self._prepare_turn(content, context)
        return await self._run_turn(turn, options)

    def submit(self, content: str, context: str = "") -> ChatTurn:
        """Append the turn's messages now and stream the response in a new task (turn.task)."""
        turn, options = self._prepare_turn(content, context)
        turn.task = asyncio.create_task(self._run_turn(turn, options), name=f"turn-{turn.bot_message.id}")
        self._turn_tasks.add(turn.task)
        turn.task.add_done_callback(self._turn_tasks.discard)
        return turn

    def stop_response(self, message_id: int, session_id: Optional[int] = None) -> bool:
        """
        Stop the in-flight response for message_id.

        Without session_id the response is looked up in every session, so it
        can still be stopped after the selection has changed.
        """
        if session_id is None:
            return self.pool.stop_slot(message_id)
        return self.pool.stop(session_id, message_id)

    def stop_all(self) -> None:
        self.pool.stop_all()
