import json
from typing import Any, Dict, Optional, Set

import jsonref  # type: ignore
from pydantic import BaseModel

from ...exceptions import ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)


class SchemaValidator:
    """
    Helper class for validating and sanitizing JSON schemas for LLM tools.
    """

    @staticmethod
    def assert_no_recursive_refs(schema: Dict[str, Any]) -> None:
        """
        Checks if the schema contains recursive references by traversing the graph.
        Raises ToolValidationError if a cycle is detected.

        Args:
            schema: The JSON schema to check.

        Raises:
            ToolValidationError: If a recursive reference is found.
        """
        defs = schema.get("$defs", {}) or schema.get("definitions", {})

        def check(node: Any, path: Set[str]) -> None:
            if isinstance(node, dict):
                if "$ref" in node:
                    ref = node["$ref"]
                    if ref in path:
                        msg = (
                            f"Recursive structure detected: {ref}. "
                            "Recursive structures are not allowed in tool inputs. "
                            "Use parent_id, lists, or a workflow loop instead."
                        )
                        logger.error(msg)
                        raise ToolValidationError(msg)

                    # e.g. #/$defs/MyModel
                    if ref.startswith("#"):
                        parts = ref.split("/")
                        if len(parts) >= 3:
                            def_name = parts[-1]
                            if def_name in defs:
                                check(defs[def_name], path | {ref})
                    return

                for v in node.values():
                    check(v, path)
            elif isinstance(node, list):
                for item in node:
                    check(item, path)

        check(schema, set())

    @staticmethod
    def sanitize_schema(schema: Any) -> Any:
        """
        Cleans up the schema for better compatibility with LLM providers.
        Removes $defs, $schema, $id, title.
        Simplifies Optional fields (anyOf with null).
        Enforces additionalProperties: false for objects.

        Args:
            schema: The JSON schema to sanitize.

        Returns:
            The sanitized schema.
        """
        if not isinstance(schema, dict):
            return schema

        new_schema = schema.copy()

        for key in ["$defs", "$schema", "$id", "title", "definitions"]:
            new_schema.pop(key, None)

        if "anyOf" in new_schema:
            any_of = new_schema["anyOf"]
            non_null = [x for x in any_of if x.get("type") != "null"]

            if len(non_null) == 1:
                simplified = non_null[0]

                if isinstance(simplified, dict):
                    # The parent's description wins over the nested one
                    merged = simplified.copy()
                    if "description" in new_schema:
                        merged["description"] = new_schema["description"]
                    return SchemaValidator.sanitize_schema(merged)

        if new_schema.get("type") == "object":
            if "additionalProperties" not in new_schema:
                new_schema["additionalProperties"] = False

        for key, value in new_schema.items():
            if isinstance(value, dict):
                new_schema[key] = SchemaValidator.sanitize_schema(value)
            elif isinstance(value, list):
                new_schema[key] = [
                    SchemaValidator.sanitize_schema(item) if isinstance(item, dict) else item for item in value
                ]

        return new_schema

    @classmethod
    def model_schema(cls, model: type[BaseModel]) -> Dict[str, Any]:
        """Resolve and sanitize the JSON schema of a Pydantic model.

        Args:
            model: The model class.

        Returns:
            A self-contained schema without ``$ref`` entries.
        """
        raw_schema = model.model_json_schema()
        cls.assert_no_recursive_refs(raw_schema)
        # proxies=False returns plain dicts instead of JsonRef objects
        resolved = jsonref.replace_refs(raw_schema, proxies=False)
        return cls.sanitize_schema(resolved)

    @classmethod
    def to_json_string(cls, schema: Any) -> Optional[str]:
        """Render a schema given as model class, dict or string as a JSON string.

        Args:
            schema: A Pydantic model class, a schema dict, a JSON string or ``None``.

        Returns:
            The schema as JSON text, or ``None`` when no schema was given.
        """
        if schema is None:
            return None
        if isinstance(schema, str):
            return schema
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            return json.dumps(cls.model_schema(schema))
        return json.dumps(cls.sanitize_schema(schema))
