import inspect
from typing import Any, Annotated, Callable, Dict, Tuple, get_args, get_origin

from pydantic import BaseModel, ConfigDict, Field
from pydantic.fields import FieldInfo

from ...exceptions import ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)

# Parameters filled in by the engine instead of the model.
INJECTED_PARAMETERS = ("self", "context")


class FieldTuple(BaseModel):
    """Typed (annotation, FieldInfo) pair handed to Pydantic's create_model."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    annotation: Any
    field: FieldInfo

    def as_definition(self) -> Tuple[Any, FieldInfo]:
        return self.annotation, self.field


class ToolParameterFactory:
    """Turns the signature of a tool callable into Pydantic field definitions."""

    @classmethod
    def build_fields(cls, func: Callable[..., Any], tool_name: str) -> Dict[str, Tuple[Any, FieldInfo]]:
        """Collect the model-facing parameters of ``func``.

        ``self``, ``context`` and variadic parameters are skipped; the engine
        supplies ``context`` itself.

        Args:
            func: The tool callable.
            tool_name: The name of the tool for error reporting.

        Returns:
            A mapping of parameter name to ``(annotation, FieldInfo)``.
        """
        fields: Dict[str, Tuple[Any, FieldInfo]] = {}
        for param_name, param in inspect.signature(func).parameters.items():
            if param_name in INJECTED_PARAMETERS:
                continue
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            fields[param_name] = cls.build_field_tuple(param_name, param, tool_name).as_definition()
        return fields

    @classmethod
    def build_field_tuple(cls, param_name: str, param: inspect.Parameter, tool_name: str) -> FieldTuple:
        """Creates the (annotation, FieldInfo) pair for a single function parameter.

        The description comes from ``Annotated[T, Field(description=...)]``; a
        ``Field(...)`` used as the default value is accepted as well.

        Args:
            param_name: The name of the parameter.
            param: The inspect.Parameter object.
            tool_name: The name of the tool for error reporting.

        Returns:
            A FieldTuple containing the type annotation and Pydantic Field configuration.
        """
        annotation = param.annotation
        if annotation is inspect.Parameter.empty:
            msg = f"Parameter '{param_name}' in tool '{tool_name}' has no type annotation."
            logger.error(msg)
            raise ToolValidationError(msg)

        default = param.default
        if isinstance(default, FieldInfo):
            if not default.description:
                cls._raise_missing_description(param_name, tool_name)
            return FieldTuple(annotation=annotation, field=default)

        description = cls._extract_description(annotation, param_name, tool_name)
        pydantic_default = default if default is not inspect.Parameter.empty else ...
        return FieldTuple(annotation=annotation, field=Field(default=pydantic_default, description=description))

    @staticmethod
    def accepts_context(func: Callable[..., Any]) -> bool:
        """Whether ``func`` declares a ``context`` parameter."""
        return "context" in inspect.signature(func).parameters

    @classmethod
    def _extract_description(cls, annotation: Any, param_name: str, tool_name: str) -> str:
        if get_origin(annotation) is Annotated:
            for metadata in get_args(annotation):
                if isinstance(metadata, FieldInfo) and metadata.description:
                    return metadata.description
        cls._raise_missing_description(param_name, tool_name)
        return ""

    @staticmethod
    def _raise_missing_description(param_name: str, tool_name: str) -> None:
        msg = (
            f"Parameter '{param_name}' in tool '{tool_name}' is missing a description.\n"
            f"Usage: {param_name}: Annotated[Type, Field(description='...')] = ..."
        )
        logger.error(msg)
        raise ToolValidationError(msg)
