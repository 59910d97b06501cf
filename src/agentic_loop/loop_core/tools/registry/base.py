"""Tool registry and helpers for turning callables into tool definitions."""

import asyncio
import functools
import inspect
from typing import Any, Callable, Dict, List, Optional, Union, cast

from pydantic import create_model

from ..models import ToolDefinition
from ..schema import SchemaValidator, ToolParameterFactory
from ...exceptions import ToolNotFoundError, ToolRegistrationError, ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)

# ToolDefinition fields that may be passed to ``register`` and ``tool`` as keywords.
CAPABILITY_FIELDS = (
    "id",
    "require_approval",
    "needs_approval_fn",
    "suspend_schema",
    "resume_schema",
    "on_input_available",
    "on_output",
    "to_model_output",
    "args_model",
)


class ToolRegistry:
    """
    A central registry to manage and access all available tools.

    This class holds the tool declarations sent to the model and maps tool
    names to their ``execute(args, context)`` implementations. Provider
    specific registries override ``tool_object`` to render the declarations
    in the provider's format.
    """

    def __init__(self) -> None:
        """Initialize the ToolRegistry."""
        self.tools: Dict[str, ToolDefinition] = {}

    def register(
        self,
        name_or_tool: Union[str, ToolDefinition, Callable],
        description: Optional[str] = None,
        execute: Optional[Callable] = None,
        parameters: Optional[Any] = None,
        **capabilities: Any,
    ) -> ToolDefinition:
        """
        Register a new tool.

        A tool can be given as a ready ``ToolDefinition``, as a plain callable
        whose signature and docstring describe it, or as a name together with
        an ``execute`` callable. When ``execute`` is omitted for a named tool,
        the tool is client-side: its calls end pending and their results are
        supplied out of band.

        Args:
            name_or_tool: A `ToolDefinition`, the name of the tool (str), or a Callable.
            description: What the tool does. Required for named tools without a callable to inspect.
            execute: For named tools, either a plain callable (schema inferred when
                ``parameters`` is None) or an ``execute(args, context)`` coroutine
                when ``parameters`` is given.
            parameters: JSON schema of the tool's input parameters.
            **capabilities: Extra ``ToolDefinition`` fields such as ``require_approval``
                or ``suspend_schema``.

        Returns:
            The registered definition.

        Raises:
            ToolRegistrationError: If arguments are missing or the tool already exists.
        """
        unknown = set(capabilities) - set(CAPABILITY_FIELDS)
        if unknown:
            raise ToolRegistrationError(f"Unknown tool options: {', '.join(sorted(unknown))}")

        if isinstance(name_or_tool, ToolDefinition):
            tool = name_or_tool.model_copy(update=capabilities) if capabilities else name_or_tool
        elif callable(name_or_tool):
            tool = self._generate_tool_definition(name_or_tool, description=description, **capabilities)
        elif execute is not None and parameters is None:
            tool = self._generate_tool_definition(execute, name=name_or_tool, description=description, **capabilities)
        else:
            if description is None:
                raise ToolRegistrationError("If passing name and parameters, description is required.")
            tool = ToolDefinition(
                name=name_or_tool,
                description=description,
                execute=execute,
                parameters=parameters if parameters is not None else {"type": "object", "properties": {}},
                **capabilities,
            )

        if tool.name in self.tools:
            msg = f"Tool '{tool.name}' is already registered."
            logger.error(msg)
            raise ToolRegistrationError(msg)

        self.tools[tool.name] = tool
        logger.info(f"Successfully registered tool: '{tool.name}'")
        return tool

    def unregister(self, tool_name: str) -> None:
        """Unregister a tool from the registry.

        Args:
            tool_name: The name of the tool to remove.

        Raises:
            ToolNotFoundError: If the tool does not exist in the registry.
        """
        if tool_name in self.tools:
            del self.tools[tool_name]
            logger.info(f"Successfully unregistered tool: '{tool_name}'")
        else:
            raise ToolNotFoundError(f"Tool '{tool_name}' not found in the registry.")

    def tool(self, func: Optional[Callable] = None, **capabilities: Any) -> Any:
        """A decorator to turn a function into a tool.

        Usable bare (``@registry.tool``) or with options
        (``@registry.tool(require_approval=True)``).

        Returns:
            The original function, after registering it as a tool.
        """

        def decorator(inner: Callable) -> Callable:
            self.register(inner, **capabilities)
            return inner

        if func is None:
            return decorator
        return decorator(func)

    def resolve(self, name: str) -> Optional[ToolDefinition]:
        """Find a tool by its registry key, falling back to a definition whose ``id`` matches.

        Args:
            name: The name the model used.

        Returns:
            The definition, or ``None`` when nothing matches.
        """
        tool = self.tools.get(name)
        if tool is not None:
            return tool
        for candidate in self.tools.values():
            if candidate.id is not None and candidate.id == name:
                return candidate
        return None

    @property
    def names(self) -> List[str]:
        """Registered tool names in registration order."""
        return list(self.tools)

    @property
    def tool_object(self) -> Any:
        """Provider-neutral tool declarations.

        Returns:
            A list of ``{"name", "description", "parameters"}`` dictionaries.
        """
        return [
            {"name": tool.name, "description": tool.description, "parameters": tool.parameters}
            for tool in self.tools.values()
        ]

    @property
    def implementations(self) -> Dict[str, Optional[Callable]]:
        """Returns a dictionary mapping tool names to their ``execute`` callables."""
        return {name: tool.execute for name, tool in self.tools.items()}

    def _generate_tool_definition(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        **capabilities: Any,
    ) -> ToolDefinition:
        """Generate a ToolDefinition from a callable function.

        Args:
            func: The function to generate a definition for.
            name: Optional name override for the tool.
            description: Optional description override for the tool.
            **capabilities: Extra ``ToolDefinition`` fields.

        Returns:
            A ToolDefinition object containing the tool's metadata, schema and bound ``execute``.

        Raises:
            ToolValidationError: If the function is missing a docstring or parameter descriptions.
        """
        tool_name = name or func.__name__
        if description is None:
            description = self._get_docstring_from_func(func, tool_name)

        fields = ToolParameterFactory.build_fields(func, tool_name)

        # create_model expects **field_definitions: Any
        dynamic_params_model = create_model(f"{tool_name}Params", **cast(Dict[str, Any], fields))
        parameters_schema = SchemaValidator.model_schema(dynamic_params_model)

        capabilities.setdefault("args_model", dynamic_params_model)
        return ToolDefinition(
            name=tool_name,
            description=description,
            execute=bind_callable(func),
            parameters=parameters_schema,
            **capabilities,
        )

    @staticmethod
    def _get_docstring_from_func(func: Callable, tool_name: str) -> str:
        doc = inspect.getdoc(func)
        if not doc:
            msg = f"Tool '{tool_name}' missing docstring. LLMs need a description of what the tool does."
            logger.error(msg)
            raise ToolValidationError(msg)
        return doc


def bind_callable(func: Callable) -> Callable[..., Any]:
    """Wrap a plain tool function into ``execute(args, context)``.

    Arguments are passed as keywords. Synchronous functions run in a worker
    thread; ``context`` is forwarded when the function declares it.
    """
    wants_context = ToolParameterFactory.accepts_context(func)

    @functools.wraps(func)
    async def execute(args: Dict[str, Any], context: Any = None) -> Any:
        kwargs = dict(args or {})
        if wants_context:
            kwargs["context"] = context
        if inspect.iscoroutinefunction(func):
            return await func(**kwargs)
        return await asyncio.to_thread(func, **kwargs)

    return execute
