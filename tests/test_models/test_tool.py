"""Tests for tool schema and result models."""

from agentruntime.models.tool import (
    FileChange,
    FileOperationType,
    ParameterType,
    ToolParameter,
    ToolResult,
    ToolSchema,
)

_SCHEMA = ToolSchema("read_file", "Read a file", (
    ToolParameter("path", description="File path"),
    ToolParameter("start_line", ParameterType.INTEGER, "First line", required=False),
    ToolParameter("mode", description="Mode", required=False, enum_values=("a", "b")),
))


class TestToolSchema:
    def test_anthropic_format(self):
        d = _SCHEMA.to_anthropic()
        assert d["name"] == "read_file"
        assert d["input_schema"]["required"] == ["path"]
        assert d["input_schema"]["properties"]["start_line"]["type"] == "integer"
        assert d["input_schema"]["properties"]["mode"]["enum"] == ["a", "b"]

    def test_openai_format(self):
        d = _SCHEMA.to_openai()
        assert d["type"] == "function"
        assert d["function"]["parameters"]["type"] == "object"

    def test_google_format_uppercases_types(self):
        d = _SCHEMA.to_google()
        assert d["parameters"]["type"] == "OBJECT"
        assert d["parameters"]["properties"]["path"]["type"] == "STRING"

    def test_no_required_key_when_all_optional(self):
        schema = ToolSchema("list_dir", "List", (ToolParameter("path", required=False),))
        assert "required" not in schema.to_generic()["parameters"]


class TestToolResult:
    def test_ok_display(self):
        assert ToolResult.ok("content").display == "content"

    def test_fail_display(self):
        result = ToolResult.fail("nope", lock_pending=True)
        assert result.display == "ERROR: nope"
        assert result.lock_pending
        assert not result.success


class TestFileChange:
    def test_summary_with_range(self):
        change = FileChange("a.py", FileOperationType.DELETE, start_line=3, end_line=5)
        assert change.summary == "Delete a.py (lines 3-5)"

    def test_summary_single_line(self):
        change = FileChange("a.py", FileOperationType.INSERT, start_line=4)
        assert change.summary == "Insert a.py (line 4)"

    def test_summary_no_range(self):
        assert FileChange("a.py", FileOperationType.CREATE).summary == "Create a.py"
