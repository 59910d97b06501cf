"""Core abstractions for language model clients."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Coroutine, Dict, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..messages import AssistantMessage, BaseMessage
from ..tools.models import ToolCallRequest
from ..tools.registry import ToolRegistry
from ..logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ModelRequest(BaseModel):
    """Input of one model turn.

    Attributes:
        messages: The prompt, in model shape.
        tools: Tools the model may call.
        response_messages: Model-visible messages produced earlier in this run.
        step: Zero-based number of the turn within the run.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    messages: List[BaseMessage]
    tools: Optional[ToolRegistry] = None
    response_messages: List[BaseMessage] = Field(default_factory=list)
    step: int = 0


class ModelResponse(BaseModel):
    """Normalized output of one model turn.

    Attributes:
        message: The assistant message of this turn, tool calls included.
        tool_calls: Tool calls requested by the model, in emission order.
        finish_reason: Why the model stopped (``stop``, ``tool-calls``, ``length``, ...).
        usage: Token counts reported by the provider.
        response_messages: Every model-visible response message of the run so
            far, this turn's message last. Filled in by ``ModelClient.generate``
            when the implementation leaves it empty.
        raw: Provider-specific response payload for advanced use cases.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    message: AssistantMessage
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = Field(default_factory=dict)
    response_messages: List[BaseMessage] = Field(default_factory=list)
    raw: Any = None

    @property
    def text(self) -> str:
        return self.message.content


class ModelClient(ABC):
    """Abstract base class for model clients.

    Implementations translate a ``ModelRequest`` into a provider call in
    ``_generate_impl``; ``generate`` adds retries with exponential backoff.
    """

    def __init__(self, max_retries: int = 3, base_retry_delay: float = 1.0):
        self.max_retries = max_retries
        self.base_retry_delay = base_retry_delay

    async def _execute_with_retry(self, func: Callable[..., Coroutine[Any, Any, T]], *args: Any, **kwargs: Any) -> T:
        """
        Executes a function with retry logic.

        Args:
            func: The asynchronous function to execute.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            Exception: The last encountered exception if all retries fail.
        """
        delay = self.base_retry_delay
        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if attempt == self.max_retries:
                    raise e

                logger.warning(f"API Error (Retry: {attempt + 1}/{self.max_retries}): {e}. Waiting {delay}s...")
                await asyncio.sleep(delay)
                delay *= 2  # Exponential backoff

        msg = f"Failed to get response after {self.max_retries} retries."
        logger.error(msg)
        raise TimeoutError(msg)

    async def generate(self, request: ModelRequest) -> ModelResponse:
        """
        Runs one model turn.

        Args:
            request: Prompt, tools and the run's earlier response messages.

        Returns:
            The normalized response.
        """
        response = await self._execute_with_retry(self._generate_impl, request)
        if not response.response_messages:
            response.response_messages = list(request.response_messages) + [response.message]
        return response

    @abstractmethod
    async def _generate_impl(self, request: ModelRequest) -> ModelResponse:
        pass
