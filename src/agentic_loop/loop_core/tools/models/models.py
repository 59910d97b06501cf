from typing import Any, Awaitable, Callable, Optional, Type, Union

from pydantic import BaseModel

SchemaLike = Union[Type[BaseModel], dict, str]


class ToolDefinition(BaseModel):
    """
    Describes a tool and the capabilities the tool call step may use.

    Attributes:
        name: The unique name of the tool.
        description: A brief description of what the tool does.
        execute: ``execute(args, context)`` implementing the tool. ``None`` marks a
            client-side tool whose result is supplied out of band.
        parameters: JSON schema of the tool's input parameters.
        args_model: Optional Pydantic model used for validating and coercing arguments.
        id: Optional alternative identifier the tool can be resolved by.
        require_approval: Every call needs human approval before it executes.
        needs_approval_fn: ``needs_approval_fn(args)`` deciding approval per call.
        suspend_schema: Schema of the payload the tool passes to ``context.suspend``.
            Its presence marks the tool as able to suspend.
        resume_schema: Schema of the data expected when a suspended call resumes.
        on_input_available: Hook called with the arguments before approval and execution.
        on_output: Hook called with the result after a successful execution.
        to_model_output: Converts a result into the form shown to the model.
    """

    name: str
    description: str
    execute: Optional[Callable[..., Awaitable[Any]]] = None
    parameters: Optional[Any] = None
    args_model: Optional[Type[BaseModel]] = None
    id: Optional[str] = None
    require_approval: bool = False
    needs_approval_fn: Optional[Callable[..., Any]] = None
    suspend_schema: Optional[SchemaLike] = None
    resume_schema: Optional[SchemaLike] = None
    on_input_available: Optional[Callable[..., Any]] = None
    on_output: Optional[Callable[..., Any]] = None
    to_model_output: Optional[Callable[[Any], Any]] = None

    @property
    def has_suspend_schema(self) -> bool:
        """Whether the tool declares it may suspend itself."""
        return self.suspend_schema is not None
