"""
Chat turn lifecycle.

One ChatTurn follows a single user submission through

    PENDING -> STREAMING -> COMPLETED | ERRORED | CANCELLED

STREAMING loops on itself for each incremental update. The three right-hand
states are terminal; any transition out of them raises InvalidTurnTransition.
"""

import asyncio
from enum import Enum
from typing import Dict, FrozenSet, Optional

import logfire

from schemas.chat_schema import ChatMessage
from utils.format import pretty_object


class TurnState(Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATES: FrozenSet[TurnState] = frozenset(
    {TurnState.COMPLETED, TurnState.ERRORED, TurnState.CANCELLED}
)

_TRANSITIONS: Dict[TurnState, FrozenSet[TurnState]] = {
    TurnState.PENDING: frozenset({TurnState.STREAMING}),
    TurnState.STREAMING: frozenset(
        {TurnState.STREAMING, TurnState.COMPLETED, TurnState.ERRORED, TurnState.CANCELLED}
    ),
    TurnState.COMPLETED: frozenset(),
    TurnState.ERRORED: frozenset(),
    TurnState.CANCELLED: frozenset(),
}


class InvalidTurnTransition(RuntimeError):
    """Raised when a turn is moved along an edge its lifecycle does not allow."""

    def __init__(self, current: TurnState, target: TurnState) -> None:
        super().__init__(f"Cannot move chat turn from {current.value} to {target.value}")
        self.current = current
        self.target = target


class ChatTurn:
    """
    A user message and the assistant reply it produces.

    The turn owns the writes to both messages for the duration of the request;
    the session they live in is referenced by session_id only.

    Attributes:
        session_id: Id of the session the messages were appended to
        user_message: The submitted user message
        bot_message: The assistant placeholder filled in while streaming
        state: Current lifecycle state
        error: The error that ended the turn, if any
        task: Task driving the request when started through ChatStore.submit
    """

    def __init__(self, session_id: int, user_message: ChatMessage, bot_message: ChatMessage) -> None:
        self.session_id = session_id
        self.user_message = user_message
        self.bot_message = bot_message
        self.state = TurnState.PENDING
        self.error: Optional[Exception] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def _move(self, target: TurnState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTurnTransition(self.state, target)
        if target is not self.state:
            logfire.debug(f"Turn {self.bot_message.id}: {self.state.value} -> {target.value}")
        self.state = target

    def start(self) -> None:
        self._move(TurnState.STREAMING)
        self.bot_message.streaming = True

    def update(self, text: str) -> None:
        # only start() leaves PENDING
        if self.state is not TurnState.STREAMING:
            raise InvalidTurnTransition(self.state, TurnState.STREAMING)
        self._move(TurnState.STREAMING)
        self.bot_message.streaming = True
        if text:
            self.bot_message.content = text

    def complete(self, text: str) -> None:
        self._move(TurnState.COMPLETED)
        self.bot_message.streaming = False
        if text:
            self.bot_message.content = text

    def fail(self, error: Exception, aborted: bool) -> None:
        """
        End the turn with an error rendered inline after the partial reply.

        Deliberate cancellation leaves both messages unflagged so they stay in
        the context of later turns.
        """
        self._move(TurnState.CANCELLED if aborted else TurnState.ERRORED)
        self.error = error
        self.bot_message.content += "\n\n" + pretty_object({"error": True, "message": str(error)})
        self.bot_message.streaming = False
        self.user_message.is_error = not aborted
        self.bot_message.is_error = not aborted
