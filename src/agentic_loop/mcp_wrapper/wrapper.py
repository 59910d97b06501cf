"""Bridge MCP server tools into ToolRegistry entries through async stdio client sessions."""

from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any, Collection, Dict, Optional, Type, cast

from mcp import ClientSession
from mcp.client.stdio import stdio_client, StdioServerParameters
from mcp.types import CallToolResult, Tool as MCPTool, TextContent, ImageContent, EmbeddedResource

from agentic_loop.loop_core import SchemaValidator, ToolExecutionContext, ToolExecutionError, ToolRegistry
from agentic_loop.loop_core import get_logger

logger = get_logger(__name__)

__all__ = ["MCPClientWrapper"]


class MCPClientWrapper:
    """Wrapper for the Model Context Protocol (MCP) client to integrate with ToolRegistry."""

    def __init__(
        self,
        command: str,
        args: list[str],
        env: Optional[dict[str, str]] = None,
        require_approval: Collection[str] = (),
    ):
        """Initializes the wrapper with parameters for the MCP server process.

        Args:
            command: The command to run the server.
            args: List of arguments for the command.
            env: Optional dictionary of environment variables.
            require_approval: Names of server tools whose calls need human approval.
        """
        self._server_params = StdioServerParameters(command=command, args=args, env=env)
        self._session: Optional[ClientSession] = None
        self._exit_stack = AsyncExitStack()
        self._require_approval = frozenset(require_approval)

    async def __aenter__(self) -> "MCPClientWrapper":
        """Opens the connection (transport) and initializes the session.

        Returns:
            The initialized MCPClientWrapper instance.
        """
        logger.debug("Initializing MCP client session...")
        read, write = await self._exit_stack.enter_async_context(stdio_client(self._server_params))

        self._session = await self._exit_stack.enter_async_context(ClientSession(read, write))

        await self._session.initialize()
        logger.info("MCP client session initialized successfully.")
        return self

    async def __aexit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        """Cleanly closes all connections."""
        logger.debug("Closing MCP client session...")
        await self._exit_stack.aclose()
        self._session = None
        logger.info("MCP client session closed.")

    async def load_into(self, registry: ToolRegistry) -> None:
        """Loads all tools from the MCP server and registers them in the given registry.

        Args:
            registry: The ToolRegistry to register the tools into.

        Raises:
            RuntimeError: If the MCP Client is not connected.
        """
        if not self._session:
            raise RuntimeError("MCP Client is not connected. Use 'async with'.")

        logger.debug("Fetching tools from MCP server...")
        result = await self._session.list_tools()
        logger.info("Found %d tools from MCP server.", len(result.tools))

        for tool in result.tools:
            self._register_single_tool(registry, tool)

    def _register_single_tool(self, registry: ToolRegistry, tool: MCPTool) -> None:
        """Creates the execute function and registers it.

        Args:
            registry: The ToolRegistry to register the tool into.
            tool: The MCPTool object containing tool metadata.
        """
        tool_name = tool.name
        tool_description = tool.description or f"Tool {tool_name} provided by MCP server."

        async def mcp_execute(args: Dict[str, Any], context: Optional[ToolExecutionContext] = None) -> Any:
            """Delegate a tool call to the active client session.

            Args:
                args: Validated arguments forwarded to the remote MCP tool.
                context: Execution context of the call; unused by remote tools.

            Returns:
                A normalized string representation of MCP content blocks.
            """
            if not self._session:
                raise RuntimeError(f"Cannot call tool '{tool_name}': MCP session is not active.")

            logger.info("Delegating tool '%s' to MCP Server...", tool_name)
            logger.debug("Tool arguments: %s", args)

            mcp_result = await self._session.call_tool(tool_name, arguments=dict(args or {}))
            result_text = self._render_content(mcp_result)
            if mcp_result.isError:
                raise ToolExecutionError(f"MCP tool '{tool_name}' failed: {result_text}")

            logger.debug(
                "Tool '%s' result: %s", tool_name, result_text[:200] + "..." if len(result_text) > 200 else result_text
            )
            return result_text

        parameters = SchemaValidator.sanitize_schema(tool.inputSchema or {"type": "object", "properties": {}})

        try:
            registry.register(
                name_or_tool=tool_name,
                description=tool_description,
                execute=mcp_execute,
                parameters=parameters,
                require_approval=tool_name in self._require_approval,
            )
            logger.info("MCP Tool '%s' successfully registered.", tool_name)
        except Exception as e:
            logger.error("Error registering MCP Tool '%s': %s", tool_name, e)

    @staticmethod
    def _render_content(mcp_result: CallToolResult) -> str:
        if not mcp_result.content:
            return "Success"

        output = []
        for c in mcp_result.content:
            if c.type == "text":
                output.append(cast(TextContent, c).text)
            elif c.type == "image":
                output.append(f"[Image: {cast(ImageContent, c).mimeType}]")
            elif c.type == "resource":
                output.append(f"[Resource: {cast(EmbeddedResource, c).resource.uri}]")
            else:
                output.append(f"[Unknown content type: {c.type}]")
        return "\n".join(output)
