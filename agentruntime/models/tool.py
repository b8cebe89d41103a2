"""Tool contract models: schemas, results, and proposed file changes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ParameterType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: ParameterType = ParameterType.STRING
    description: str = ""
    required: bool = True
    enum_values: tuple[str, ...] | None = None


@dataclass(frozen=True)
class ToolSchema:
    """Declarative parameter list, convertible to each provider's function-call format."""

    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()

    def _json_schema(self, upper_types: bool = False) -> dict:
        properties: dict[str, dict] = {}
        required: list[str] = []
        for param in self.parameters:
            type_name = param.type.value.upper() if upper_types else param.type.value
            definition: dict = {"type": type_name, "description": param.description}
            if param.enum_values:
                definition["enum"] = list(param.enum_values)
            properties[param.name] = definition
            if param.required:
                required.append(param.name)
        schema: dict = {
            "type": "OBJECT" if upper_types else "object",
            "properties": properties,
        }
        if required:
            schema["required"] = required
        return schema

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self._json_schema(),
            },
        }

    def to_anthropic(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self._json_schema(),
        }

    def to_google(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self._json_schema(upper_types=True),
        }

    def to_generic(self) -> dict:
        """Provider-neutral form accepted by ``LLMConfig.tools``."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self._json_schema(),
        }


class FileOperationType(str, Enum):
    CREATE = "Create"
    OVERWRITE = "Overwrite"
    INSERT = "Insert"
    EDIT = "Edit"
    DELETE = "Delete"
    DELETE_FILE = "DeleteFile"


@dataclass(frozen=True)
class FileChange:
    """A proposed or applied file mutation, used for approval and diff display."""

    file_path: str
    operation_type: FileOperationType
    before_content: str | None = None
    after_content: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    old_text: str | None = None
    new_text: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def line_range(self) -> tuple[int, int] | None:
        if self.start_line is None:
            return None
        return (self.start_line, self.end_line if self.end_line is not None else self.start_line)

    @property
    def summary(self) -> str:
        text = f"{self.operation_type.value} {self.file_path}"
        if self.line_range:
            start, end = self.line_range
            text += f" (lines {start}-{end})" if end != start else f" (line {start})"
        return text


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool execution.

    ``lock_pending`` marks failures caused by another session holding the
    file lock; they are retryable and must not fail the checklist item.
    """

    success: bool
    output: str = ""
    error: str | None = None
    file_change: FileChange | None = None
    lock_pending: bool = False

    @classmethod
    def ok(cls, output: str, file_change: FileChange | None = None) -> ToolResult:
        return cls(success=True, output=output, file_change=file_change)

    @classmethod
    def fail(
        cls,
        error: str,
        file_change: FileChange | None = None,
        lock_pending: bool = False,
    ) -> ToolResult:
        return cls(
            success=False,
            output="",
            error=error,
            file_change=file_change,
            lock_pending=lock_pending,
        )

    @property
    def display(self) -> str:
        """Text recorded in the context log for this result."""
        if self.success:
            return self.output
        return f"ERROR: {self.error or 'Unknown error'}"
