"""
Chat agent using Pydantic AI.

This module implements the model chat call consumed by the chat store, the
memory compactor and the topic summarizer:

    await backend.chat(ChatOptions(
        messages=[...], config=llm_config, stream=True,
        on_update=..., on_finish=..., on_error=..., on_controller=...,
    ))

Streaming calls report on_update zero or more times, in order, with the full
text received so far, then exactly one of on_finish / on_error. Aborting the
ChatController handed to on_controller ends the call with
on_error(ChatAbortedError()).
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import logfire
from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model
from pydantic_ai.models.groq import GroqModel
from pydantic_ai.providers.groq import GroqProvider
from pydantic_ai.settings import ModelSettings

from config.settings import settings
from schemas.chat_schema import ChatMessage, LLMConfig


# ----------------------------------------------
# Errors
# ----------------------------------------------
class ChatAbortedError(Exception):
    """The request was deliberately stopped through its controller."""

    def __init__(self, message: str = "The operation was aborted") -> None:
        super().__init__(message)


def is_aborted_error(error: BaseException) -> bool:
    return isinstance(error, ChatAbortedError) or "aborted" in str(error)


# ----------------------------------------------
# Call Contract
# ----------------------------------------------
class ChatController:
    """Cancellation handle for one in-flight model call."""

    def __init__(self) -> None:
        self._aborted: bool = False
        self._task: Optional[asyncio.Task] = None

    def bind(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        self._aborted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class ChatOptions(BaseModel):
    """Input schema for a model chat call."""
    messages: List[ChatMessage]
    config: LLMConfig
    stream: bool = True
    on_update: Optional[Callable[[str], None]] = None
    on_finish: Callable[[str], None]
    on_error: Callable[[Exception], None]
    on_controller: Optional[Callable[[ChatController], None]] = None


class ChatBackend(ABC):
    """
    Base class for model backends.

    Subclasses implement complete(); chat() wraps it with the controller,
    ordering and exactly-one-terminal-event guarantees.
    """

    @abstractmethod
    async def complete(
        self,
        messages: List[ChatMessage],
        config: LLMConfig,
        on_update: Optional[Callable[[str], None]] = None,
    ) -> str:
        """
        Run the model and return the final text.

        Args:
            messages: Ordered conversation to send
            config: Model configuration
            on_update: Called with the accumulated text per streamed chunk;
                None for one-shot calls
        """
        ...

    async def chat(self, options: ChatOptions) -> None:
        controller = ChatController()

        def emit_update(text: str) -> None:
            if controller.aborted or options.on_update is None:
                return
            options.on_update(text)

        inner = asyncio.create_task(
            self.complete(options.messages, options.config, emit_update if options.stream else None)
        )
        controller.bind(inner)
        if options.on_controller is not None:
            options.on_controller(controller)

        try:
            text = await inner
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not controller.aborted or (current is not None and current.cancelling()):
                inner.cancel()
                raise
            logfire.info("Chat request aborted by controller")
            options.on_error(ChatAbortedError())
            return
        except Exception as e:
            if controller.aborted:
                options.on_error(ChatAbortedError())
                return
            logfire.error(f"Chat request failed: {e!r}")
            options.on_error(e)
            return

        if controller.aborted:
            options.on_error(ChatAbortedError())
            return
        options.on_finish(text)


# ----------------------------------------------
# Pydantic AI Backend
# ----------------------------------------------
def to_model_messages(messages: List[ChatMessage]) -> List[ModelMessage]:
    """Convert chat messages to pydantic-ai message history, skipping empty ones."""
    history: List[ModelMessage] = []
    for message in messages:
        if not message.content:
            continue
        if message.role == "assistant":
            history.append(ModelResponse(parts=[TextPart(content=message.content)]))
        elif message.role == "system":
            history.append(ModelRequest(parts=[SystemPromptPart(content=message.content)]))
        else:
            history.append(ModelRequest(parts=[UserPromptPart(content=message.content)]))
    return history


class PydanticAIChatBackend(ChatBackend):
    """
    Chat backend running a plain-text pydantic-ai Agent.

    The last message of a request becomes the prompt; everything before it is
    passed as message history. Models are Groq models resolved by name unless
    a fixed model is injected.
    """

    def __init__(self, model: Optional[Model] = None, api_key: Optional[str] = None) -> None:
        self._model = model
        self._api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self._provider: Optional[GroqProvider] = None
        self._models: Dict[str, Model] = {}
        self.agent = Agent(output_type=str, retries=3)

    def resolve_model(self, name: str) -> Model:
        if self._model is not None:
            return self._model
        if name not in self._models:
            if not self._api_key:
                raise RuntimeError("GROQ_API_KEY not set. Please configure it in environment or .env")
            if self._provider is None:
                self._provider = GroqProvider(api_key=self._api_key)
            self._models[name] = GroqModel(name, provider=self._provider)
        return self._models[name]

    async def complete(
        self,
        messages: List[ChatMessage],
        config: LLMConfig,
        on_update: Optional[Callable[[str], None]] = None,
    ) -> str:
        if not messages:
            raise ValueError("Cannot send an empty conversation")

        history = to_model_messages(messages[:-1])
        prompt = messages[-1].content
        model = self.resolve_model(config.model)
        model_settings = ModelSettings(temperature=config.temperature, max_tokens=config.max_tokens)
        logfire.debug(f"Sending {len(messages)} messages to {config.model} (stream={on_update is not None})")

        if on_update is None:
            result = await self.agent.run(
                prompt,
                message_history=history or None,
                model=model,
                model_settings=model_settings,
            )
            return result.output

        async with self.agent.run_stream(
            prompt,
            message_history=history or None,
            model=model,
            model_settings=model_settings,
        ) as result:
            async for text in result.stream_text(debounce_by=None):
                on_update(text)
            return await result.get_output()
