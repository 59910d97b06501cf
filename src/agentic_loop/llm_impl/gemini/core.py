from typing import Any, Dict, List, Optional

from google.genai import types
from google.genai.client import AsyncClient
from google.genai.types import GenerateContentResponse

from agentic_loop.loop_core import AssistantMessage, ModelClient, ModelRequest, ModelResponse, get_logger
from .adapter import GeminiMessageAdapter

logger = get_logger(__name__)


class GeminiModelClient(ModelClient):
    """
    Model client for Google's Gemini models.
    Runs exactly one model turn per ``generate`` call; the agentic loop drives tool execution.
    """

    def __init__(
        self,
        aclient: AsyncClient,
        model_name: str,
        temp: float = 1.0,
        max_tokens: int = 3000,
        max_retries: int = 3,
        base_retry_delay: float = 1.0,
    ):
        """
        Initializes the Gemini model client.

        Args:
            aclient: The initialized async Google GenAI client (``genai.Client(...).aio``).
            model_name: The identifier for the Gemini model to use (e.g., 'gemini-flash-latest').
            temp: The temperature for text generation, controlling randomness.
            max_tokens: The maximum number of tokens to generate in the response.
            max_retries: Retries of a failed API call.
            base_retry_delay: Delay before the first retry, doubled after each attempt.
        """
        super().__init__(max_retries=max_retries, base_retry_delay=base_retry_delay)
        self.client: AsyncClient = aclient
        self.model: str = model_name
        self.temperature = temp
        self.max_tokens = max_tokens

    async def _generate_impl(self, request: ModelRequest) -> ModelResponse:
        system_instruction, contents = GeminiMessageAdapter.to_contents(request.messages)
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
            tools=GeminiMessageAdapter.to_gemini_tools(request.tools),
        )

        logger.debug("Sending request to Gemini model '%s' (step %d).", self.model, request.step)
        response: GenerateContentResponse = await self.client.models.generate_content(
            model=self.model, contents=contents, config=config
        )

        tool_calls = GeminiMessageAdapter.get_tool_calls(response)
        calls: Optional[List[Dict[str, Any]]] = [
            {"tool_call_id": call.tool_call_id, "tool_name": call.tool_name, "args": call.args} for call in tool_calls
        ] or None

        return ModelResponse(
            message=AssistantMessage(content=GeminiMessageAdapter.text(response), tool_calls=calls),
            tool_calls=tool_calls,
            finish_reason=GeminiMessageAdapter.finish_reason(response, bool(tool_calls)),
            usage=GeminiMessageAdapter.usage(response),
            raw=response,
        )
