# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Tool capability contract.

A tool exposes static metadata (name, description, typed parameters and a
dangerous flag), a synchronous ``validate`` step and an async ``execute``.
Concrete tools subclass ``BaseTool`` and only implement ``execute``.
"""
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from openjragent.core.state import ToolResult


ParameterType = Literal["string", "number", "integer", "boolean", "object", "array"]

_TYPE_CHECKS: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


class ToolParameter(BaseModel):
    """One typed parameter of a tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: ParameterType
    description: str = ""
    required: bool = False
    default: Any = None
    enum: tuple[Any, ...] | None = None


class ToolDefinition(BaseModel):
    """Tool metadata exposed to the model."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()
    dangerous: bool = False

    def to_json_schema(self) -> dict[str, Any]:
        """Render as an OpenAI-style function definition."""
        properties: dict[str, Any] = {}
        for param in self.parameters:
            prop: dict[str, Any] = {"type": param.type, "description": param.description}
            if param.enum is not None:
                prop["enum"] = list(param.enum)
            if param.default is not None:
                prop["default"] = param.default
            properties[param.name] = prop
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": [p.name for p in self.parameters if p.required],
                },
            },
        }


class ValidationResult(BaseModel):
    """Outcome of argument validation."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    errors: tuple[str, ...] = Field(default=())


def validate_arguments(parameters: tuple[ToolParameter, ...], args: dict[str, Any]) -> ValidationResult:
    """Check arguments against a parameter list.

    Verifies required parameters are present, values match their declared
    type (booleans are not numbers) and enum constraints hold.

    Args:
        parameters: Declared tool parameters.
        args: Arguments supplied by the model.

    Returns:
        Validation result listing every problem found.
    """
    errors: list[str] = []
    for param in parameters:
        if param.name not in args or args[param.name] is None:
            if param.required:
                errors.append(f"Missing required parameter: {param.name}")
            continue

        value = args[param.name]
        expected = _TYPE_CHECKS[param.type]
        if (isinstance(value, bool) and param.type != "boolean") or not isinstance(value, expected):
            errors.append(f"Parameter {param.name} should be of type {param.type}, got {type(value).__name__}")
            continue

        if param.enum is not None and value not in param.enum:
            allowed = ", ".join(str(v) for v in param.enum)
            errors.append(f"Parameter {param.name} must be one of: {allowed}")

    return ValidationResult(valid=not errors, errors=tuple(errors))


class Tool(Protocol):
    """Capability interface every tool satisfies."""

    name: str
    description: str
    parameters: tuple[ToolParameter, ...]
    dangerous: bool

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        """Validate arguments before execution."""
        ...

    def get_definition(self) -> ToolDefinition:
        """Return the metadata exposed to the model."""
        ...

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        """Run the tool with validated arguments."""
        ...


class BaseTool(ABC):
    """Convenience base class for tools.

    Subclasses declare ``name``, ``description``, ``parameters`` and
    ``dangerous`` as class attributes and implement ``execute``.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    parameters: ClassVar[tuple[ToolParameter, ...]] = ()
    dangerous: ClassVar[bool] = False

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        """Validate arguments against ``parameters``."""
        return validate_arguments(self.parameters, args)

    def get_definition(self) -> ToolDefinition:
        """Return the metadata exposed to the model."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            dangerous=self.dangerous,
        )

    @abstractmethod
    async def execute(self, args: dict[str, Any]) -> ToolResult:
        """Run the tool.

        Args:
            args: Validated arguments.

        Returns:
            Tool result. Implementations may raise; the manager converts
            exceptions into failed results.
        """
