from typing import Any, Dict, Iterable, List, Optional, cast

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletion

from agentic_loop.loop_core import AssistantMessage, ModelClient, ModelRequest, ModelResponse, get_logger
from .adapter import OpenAIMessageAdapter

logger = get_logger(__name__)


class OpenAIModelClient(ModelClient):
    """
    Model client for OpenAI's chat completions API.
    Runs exactly one model turn per ``generate`` call; the agentic loop drives tool execution.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model_name: str,
        temp: float = 1.0,
        max_tokens: int = 3000,
        max_retries: int = 3,
        base_retry_delay: float = 1.0,
    ):
        """
        Initializes the OpenAI model client.

        Args:
            client: The initialized AsyncOpenAI client.
            model_name: The identifier for the OpenAI model to use (e.g., 'gpt-4o-mini').
            temp: The temperature for text generation, controlling randomness.
            max_tokens: The maximum number of tokens to generate in the response.
            max_retries: Retries of a failed API call.
            base_retry_delay: Delay before the first retry, doubled after each attempt.
        """
        super().__init__(max_retries=max_retries, base_retry_delay=base_retry_delay)
        self.client: AsyncOpenAI = client
        self.model: str = model_name
        self.temperature = temp
        self.max_tokens = max_tokens

    async def _generate_impl(self, request: ModelRequest) -> ModelResponse:
        messages = OpenAIMessageAdapter.to_openai_messages(request.messages)
        tools = OpenAIMessageAdapter.to_openai_tools(request.tools)

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": cast(Iterable[Any], messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            kwargs["tools"] = tools

        logger.debug("Sending request to OpenAI model '%s' (step %d).", self.model, request.step)
        response: ChatCompletion = await self.client.chat.completions.create(**kwargs)

        if not response.choices:
            logger.warning("OpenAI returned a response without choices.")

        tool_calls = OpenAIMessageAdapter.get_tool_calls(response)
        text = (response.choices[0].message.content or "") if response.choices else ""
        calls: Optional[List[Dict[str, Any]]] = [
            {"tool_call_id": call.tool_call_id, "tool_name": call.tool_name, "args": call.args} for call in tool_calls
        ] or None

        return ModelResponse(
            message=AssistantMessage(content=text, tool_calls=calls),
            tool_calls=tool_calls,
            finish_reason=OpenAIMessageAdapter.finish_reason(response),
            usage=OpenAIMessageAdapter.usage(response),
            raw=response,
        )
