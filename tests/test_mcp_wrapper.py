import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from mcp.types import Tool as MCPTool, TextContent, CallToolResult, ListToolsResult, ImageContent
from agentic_loop.mcp_wrapper import MCPClientWrapper
from agentic_loop.loop_core import ToolExecutionError, ToolRegistry
from typing import Any, Iterator


@pytest.fixture
def mock_registry() -> Any:
    return MagicMock(spec=ToolRegistry)


@pytest.fixture
def mock_session() -> Any:
    session = AsyncMock()
    session.initialize = AsyncMock()
    # Ensure context manager returns the session itself
    session.__aenter__.return_value = session
    return session


@pytest.fixture
def patched_transport(mock_session: Any) -> Iterator[Any]:
    with patch("agentic_loop.mcp_wrapper.wrapper.stdio_client", new_callable=MagicMock) as mock_stdio:
        mock_stdio.return_value = AsyncMock()
        mock_stdio.return_value.__aenter__.return_value = (AsyncMock(), AsyncMock())

        with patch("agentic_loop.mcp_wrapper.wrapper.ClientSession", return_value=mock_session):
            yield mock_stdio


@pytest.mark.asyncio
async def test_mcp_wrapper_lifecycle(mock_session: Any, patched_transport: Any) -> None:
    """Test that the MCP wrapper correctly initializes and closes the session."""
    async with MCPClientWrapper("cmd", ["arg"]) as wrapper:
        assert wrapper._session is not None
        assert mock_session.initialize.call_count > 0

    assert wrapper._session is None


@pytest.mark.asyncio
async def test_load_requires_connection(mock_registry: Any) -> None:
    with pytest.raises(RuntimeError, match="not connected"):
        await MCPClientWrapper("cmd", []).load_into(mock_registry)


@pytest.mark.asyncio
async def test_load_into_registers_tools(mock_registry: Any, mock_session: Any, patched_transport: Any) -> None:
    """Test that tools from MCP are registered into the ToolRegistry."""
    tools_result = ListToolsResult(
        tools=[
            MCPTool(name="tool1", description="desc1", inputSchema={"type": "object", "title": "Args"}),
            MCPTool(name="tool2", description="desc2", inputSchema={"type": "object"}),
        ]
    )
    mock_session.list_tools = AsyncMock(return_value=tools_result)

    async with MCPClientWrapper("cmd", ["arg"], require_approval=["tool2"]) as wrapper:
        await wrapper.load_into(mock_registry)

    assert mock_session.list_tools.call_count > 0
    assert mock_registry.register.call_count == 2

    calls = mock_registry.register.call_args_list
    assert calls[0].kwargs["name_or_tool"] == "tool1"
    assert calls[0].kwargs["description"] == "desc1"
    assert calls[0].kwargs["parameters"] == {"type": "object", "additionalProperties": False}
    assert calls[0].kwargs["require_approval"] is False
    assert calls[1].kwargs["name_or_tool"] == "tool2"
    assert calls[1].kwargs["require_approval"] is True


@pytest.mark.asyncio
async def test_mcp_proxy_execution(mock_registry: Any, mock_session: Any, patched_transport: Any) -> None:
    """Test that the registered execute function calls the MCP session."""
    tools_result = ListToolsResult(tools=[MCPTool(name="test_tool", description="desc", inputSchema={})])
    mock_session.list_tools = AsyncMock(return_value=tools_result)
    mock_session.call_tool = AsyncMock(
        return_value=CallToolResult(content=[TextContent(type="text", text="Result from MCP")])
    )

    async with MCPClientWrapper("cmd", ["arg"]) as wrapper:
        await wrapper.load_into(mock_registry)

        execute = mock_registry.register.call_args.kwargs["execute"]
        result = await execute({"param": "value"}, None)

    mock_session.call_tool.assert_called_with("test_tool", arguments={"param": "value"})
    assert result == "Result from MCP"


@pytest.mark.asyncio
async def test_mcp_error_results_raise(mock_session: Any, patched_transport: Any) -> None:
    tools_result = ListToolsResult(tools=[MCPTool(name="flaky", description="desc", inputSchema={})])
    mock_session.list_tools = AsyncMock(return_value=tools_result)
    mock_session.call_tool = AsyncMock(
        return_value=CallToolResult(content=[TextContent(type="text", text="server exploded")], isError=True)
    )
    registry = ToolRegistry()

    async with MCPClientWrapper("cmd", ["arg"]) as wrapper:
        await wrapper.load_into(registry)
        execute = registry.tools["flaky"].execute
        assert execute is not None

        with pytest.raises(ToolExecutionError, match="server exploded"):
            await execute({}, None)


def test_render_content() -> None:
    empty = CallToolResult(content=[])
    mixed = CallToolResult(
        content=[
            TextContent(type="text", text="caption"),
            ImageContent(type="image", data="aGk=", mimeType="image/png"),
        ]
    )

    assert MCPClientWrapper._render_content(empty) == "Success"
    assert MCPClientWrapper._render_content(mixed) == "caption\n[Image: image/png]"
