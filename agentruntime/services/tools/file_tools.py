"""File tool handlers: reading, searching and lock-coordinated mutation."""

from __future__ import annotations

import fnmatch
import logging
import os

from agentruntime.infra.file_lock import LockStatus
from agentruntime.infra.file_ops import (
    FileOperation,
    WriteMode,
    execute_operation,
    normalize_path,
    numbered,
)
from agentruntime.models.tool import (
    FileChange,
    FileOperationType,
    ParameterType,
    ToolParameter,
    ToolResult,
    ToolSchema,
)
from agentruntime.services.tools.args import flag, optional_int, require
from agentruntime.services.tools.context import ToolContext
from agentruntime.services.tools.registry import AgentTool

logger = logging.getLogger(__name__)

MAX_LIST_ENTRIES = 500
MAX_SEARCH_RESULTS = 200
MAX_READ_CHARS = 32_000


def _resolve(ctx: ToolContext, path: str) -> str:
    return normalize_path(path, ctx.working_dir)


def _not_found(kind: str, path: str, resolved: str) -> str:
    if path != resolved:
        return (
            f"{kind} not found: '{path}' (resolved to: '{resolved}'). "
            "Use an absolute path if CWD is unknown."
        )
    return f"{kind} not found: '{path}'. Use an absolute path if needed."


def _read_text(path: str) -> str | None:
    if not os.path.isfile(path):
        return None
    with open(path, encoding="utf-8") as f:
        return f.read()


def _head_tail(text: str, max_chars: int, head_ratio: float = 0.6) -> str:
    head = int(max_chars * head_ratio)
    tail = max_chars - head
    omitted = len(text) - head - tail
    return f"{text[:head]}\n\n... [{omitted} chars omitted] ...\n\n{text[-tail:]}"


# --- Read-only tools ---


async def handle_read_file(ctx: ToolContext, arguments: dict) -> ToolResult:
    path = require(arguments, "path")
    resolved = _resolve(ctx, path)
    if not os.path.isfile(resolved):
        return ToolResult.fail(_not_found("File", path, resolved))
    try:
        content = _read_text(resolved) or ""
    except (OSError, UnicodeDecodeError) as e:
        return ToolResult.fail(f"Error reading file: {e}")

    start_line = optional_int(arguments, "start_line")
    if start_line is not None:
        end_line = optional_int(arguments, "end_line")
        lines = content.split("\n")
        start = max(0, start_line - 1)
        end = min(len(lines), end_line if end_line is not None else len(lines))
        if start >= len(lines):
            return ToolResult.fail(
                f"Start line {start_line} exceeds file length ({len(lines)} lines)"
            )
        return ToolResult.ok(numbered(lines[start:end], start + 1))

    if len(content) > MAX_READ_CHARS:
        line_count = len(content.split("\n"))
        return ToolResult.ok(
            f"File has {line_count} lines, {len(content)} chars. "
            "Use start_line/end_line for specific sections.\n\n"
            + _head_tail(content, MAX_READ_CHARS)
        )
    return ToolResult.ok(content)


async def handle_list_dir(ctx: ToolContext, arguments: dict) -> ToolResult:
    path = arguments.get("path") or "."
    resolved = _resolve(ctx, path)
    if not os.path.isdir(resolved):
        return ToolResult.fail(_not_found("Directory", path, resolved))

    entries: list[str] = []
    try:
        if flag(arguments, "recursive"):
            for root, dirs, files in os.walk(resolved):
                dirs[:] = sorted(d for d in dirs if not d.startswith("."))
                rel_root = os.path.relpath(root, resolved)
                for name in dirs + sorted(f for f in files if not f.startswith(".")):
                    rel = name if rel_root == "." else os.path.join(rel_root, name)
                    entries.append(rel + ("/" if name in dirs else ""))
                if len(entries) > MAX_LIST_ENTRIES:
                    break
        else:
            for name in os.listdir(resolved):
                if name.startswith("."):
                    continue
                suffix = "/" if os.path.isdir(os.path.join(resolved, name)) else ""
                entries.append(name + suffix)
    except OSError as e:
        return ToolResult.fail(f"Error listing directory: {e}")

    if not entries:
        return ToolResult.ok("(empty directory)")
    return ToolResult.ok("\n".join(sorted(entries)[:MAX_LIST_ENTRIES]))


async def handle_search_files(ctx: ToolContext, arguments: dict) -> ToolResult:
    pattern = require(arguments, "pattern")
    path = arguments.get("path") or "."
    resolved = _resolve(ctx, path)
    if not os.path.isdir(resolved):
        return ToolResult.fail(_not_found("Directory", path, resolved))

    recursive = arguments.get("recursive", "true").lower() != "false"
    matches: list[str] = []
    for root, dirs, files in os.walk(resolved):
        dirs[:] = sorted(d for d in dirs if not d.startswith(".")) if recursive else []
        for name in sorted(files):
            if name.startswith(".") or not fnmatch.fnmatch(name, pattern):
                continue
            matches.append(os.path.relpath(os.path.join(root, name), resolved))
            if len(matches) >= MAX_SEARCH_RESULTS:
                break
        if len(matches) >= MAX_SEARCH_RESULTS:
            break

    if not matches:
        return ToolResult.ok(f"No files matching '{pattern}' found in {path}")
    return ToolResult.ok(f"Found {len(matches)} files:\n" + "\n".join(matches))


# --- Change previews ---


def prepare_write(ctx: ToolContext, arguments: dict) -> FileChange | None:
    path = require(arguments, "path")
    content = arguments.get("content")
    if content is None:
        return None
    resolved = _resolve(ctx, path)
    before = _read_text(resolved)
    append = arguments.get("mode") == WriteMode.APPEND.value
    if before is None:
        op_type = FileOperationType.CREATE
    else:
        op_type = FileOperationType.INSERT if append else FileOperationType.OVERWRITE
    after = before + content if append and before is not None else content
    return FileChange(resolved, op_type, before_content=before, after_content=after)


def prepare_edit(ctx: ToolContext, arguments: dict) -> FileChange | None:
    path = require(arguments, "path")
    old_text = arguments.get("old_text")
    new_text = arguments.get("new_text", "")
    resolved = _resolve(ctx, path)
    before = _read_text(resolved)
    if before is None or not old_text or old_text not in before:
        return None
    count = -1 if flag(arguments, "replace_all") else 1
    return FileChange(
        resolved,
        FileOperationType.EDIT,
        before_content=before,
        after_content=before.replace(old_text, new_text, count),
        old_text=old_text,
        new_text=new_text,
    )


def prepare_insert(ctx: ToolContext, arguments: dict) -> FileChange | None:
    path = require(arguments, "path")
    line_number = optional_int(arguments, "line_number")
    content = arguments.get("content")
    resolved = _resolve(ctx, path)
    before = _read_text(resolved)
    if before is None or line_number is None or content is None:
        return None
    lines = before.split("\n")
    index = max(0, min(line_number - 1, len(lines)))
    new_lines = content.split("\n")
    lines[index:index] = new_lines
    return FileChange(
        resolved,
        FileOperationType.INSERT,
        before_content=before,
        after_content="\n".join(lines),
        start_line=line_number,
        end_line=line_number + len(new_lines) - 1,
    )


def prepare_delete_lines(ctx: ToolContext, arguments: dict) -> FileChange | None:
    path = require(arguments, "path")
    start_line = optional_int(arguments, "start_line")
    end_line = optional_int(arguments, "end_line")
    resolved = _resolve(ctx, path)
    before = _read_text(resolved)
    if before is None or start_line is None or end_line is None:
        return None
    lines = before.split("\n")
    del lines[max(0, start_line - 1):end_line]
    return FileChange(
        resolved,
        FileOperationType.DELETE,
        before_content=before,
        after_content="\n".join(lines),
        start_line=start_line,
        end_line=end_line,
    )


def prepare_delete_file(ctx: ToolContext, arguments: dict) -> FileChange | None:
    resolved = _resolve(ctx, require(arguments, "path"))
    before = _read_text(resolved)
    if before is None:
        return None
    return FileChange(resolved, FileOperationType.DELETE_FILE, before_content=before)


# --- Lock-coordinated mutation ---


async def apply_operation(
    ctx: ToolContext,
    operation: FileOperation,
    change: FileChange | None,
    display_path: str,
) -> ToolResult:
    """Run ``operation`` under the session's file lock.

    A contended lock is reported as a retryable failure with
    ``lock_pending`` set rather than as an error of the operation.
    """
    holder = ctx.locks.lock_holder(operation.path)
    if holder is not None and holder != ctx.session_id and ctx.on_lock_wait is not None:
        ctx.on_lock_wait(operation.path, holder)

    lock = await ctx.locks.acquire_lock(operation, ctx.session_id, timeout=ctx.lock_timeout)
    try:
        if lock.status == LockStatus.ACQUIRED:
            outcome = execute_operation(operation)
        elif lock.status == LockStatus.MERGED and lock.result is not None:
            logger.debug("Operation on %s merged by the lock coordinator", operation.path)
            outcome = lock.result
        elif lock.status == LockStatus.QUEUED:
            return ToolResult.fail(
                "File is locked by another session. "
                f"Queue position: {lock.position}. Please retry shortly.",
                file_change=change,
                lock_pending=True,
            )
        else:
            return ToolResult.fail(
                f"Timeout waiting for file lock on {display_path}. "
                "Another session may be holding the lock.",
                file_change=change,
                lock_pending=True,
            )
    finally:
        await ctx.locks.release_lock(operation.path, ctx.session_id)

    if outcome.success:
        return ToolResult.ok(outcome.output, file_change=change)
    return ToolResult.fail(outcome.output, file_change=change)


async def handle_write_file(ctx: ToolContext, arguments: dict) -> ToolResult:
    path = require(arguments, "path")
    if "content" not in arguments:
        raise ValueError("Missing required argument: content")
    mode = WriteMode.APPEND if arguments.get("mode") == "append" else WriteMode.OVERWRITE
    change = prepare_write(ctx, arguments)
    operation = FileOperation.write(_resolve(ctx, path), arguments["content"], mode)
    return await apply_operation(ctx, operation, change, path)


async def handle_edit_file(ctx: ToolContext, arguments: dict) -> ToolResult:
    path = require(arguments, "path")
    old_text = require(arguments, "old_text")
    new_text = arguments.get("new_text", "")
    if old_text == new_text:
        return ToolResult.fail("old_text and new_text are identical. No changes needed.")
    change = prepare_edit(ctx, arguments)
    operation = FileOperation.edit(
        _resolve(ctx, path), old_text, new_text, flag(arguments, "replace_all"),
    )
    return await apply_operation(ctx, operation, change, path)


async def handle_insert_lines(ctx: ToolContext, arguments: dict) -> ToolResult:
    path = require(arguments, "path")
    line_number = optional_int(arguments, "line_number")
    if line_number is None:
        raise ValueError("Missing required argument: line_number")
    if "content" not in arguments:
        raise ValueError("Missing required argument: content")
    change = prepare_insert(ctx, arguments)
    operation = FileOperation.insert_lines(_resolve(ctx, path), line_number, arguments["content"])
    return await apply_operation(ctx, operation, change, path)


async def handle_delete_lines(ctx: ToolContext, arguments: dict) -> ToolResult:
    path = require(arguments, "path")
    start_line = optional_int(arguments, "start_line")
    end_line = optional_int(arguments, "end_line")
    if start_line is None:
        raise ValueError("Missing required argument: start_line")
    if end_line is None:
        end_line = start_line
    if end_line < start_line:
        return ToolResult.fail(f"end_line ({end_line}) must be >= start_line ({start_line})")
    change = prepare_delete_lines(ctx, arguments)
    operation = FileOperation.delete_lines(_resolve(ctx, path), start_line, end_line)
    return await apply_operation(ctx, operation, change, path)


async def handle_delete_file(ctx: ToolContext, arguments: dict) -> ToolResult:
    path = require(arguments, "path")
    resolved = _resolve(ctx, path)
    if not os.path.isfile(resolved):
        return ToolResult.fail(_not_found("File", path, resolved))
    change = prepare_delete_file(ctx, arguments)
    try:
        os.remove(resolved)
    except OSError as e:
        return ToolResult.fail(f"Error deleting file: {e}")
    return ToolResult.ok(f"Deleted file: {resolved}", file_change=change)


def _param(name: str, description: str, required: bool = True,
           kind: ParameterType = ParameterType.STRING,
           enum_values: tuple[str, ...] | None = None) -> ToolParameter:
    return ToolParameter(name, kind, description, required, enum_values)


_INT = ParameterType.INTEGER
_BOOL = ParameterType.BOOLEAN

TOOLS = [
    AgentTool(
        ToolSchema("read_file", "Read the contents of a file at the specified path", (
            _param("path", "Path to the file to read"),
            _param("start_line", "Starting line number (1-based, optional)", False, _INT),
            _param("end_line", "Ending line number (1-based, inclusive, optional)", False, _INT),
        )),
        handle_read_file,
    ),
    AgentTool(
        ToolSchema("list_dir", "List the contents of a directory", (
            _param("path", "Directory path to list (default: current directory)", False),
            _param("recursive", "List recursively (default: false)", False, _BOOL),
        )),
        handle_list_dir,
    ),
    AgentTool(
        ToolSchema("search_files", "Search for files by name pattern (glob)", (
            _param("path", "Directory path to search in", False),
            _param("pattern", "Glob pattern to match (e.g., '*.py', 'test_*.py')"),
            _param("recursive", "Search recursively (default: true)", False, _BOOL),
        )),
        handle_search_files,
    ),
    AgentTool(
        ToolSchema(
            "write_file",
            "Create a NEW file or COMPLETELY REWRITE an existing file. For small changes "
            "to existing files, prefer edit_file, insert_lines, or delete_lines instead.",
            (
                _param("path", "Path to the file to write"),
                _param("content", "Content to write to the file"),
                _param("mode", "Write mode: 'overwrite' (default) or 'append'", False,
                       enum_values=("overwrite", "append")),
            ),
        ),
        handle_write_file,
        prepare_change=prepare_write,
    ),
    AgentTool(
        ToolSchema(
            "edit_file",
            "Replace exact text in a file. old_text must match the file exactly, "
            "including whitespace.",
            (
                _param("path", "Path to the file to edit"),
                _param("old_text", "Exact text to find"),
                _param("new_text", "Replacement text"),
                _param("replace_all", "Replace every occurrence (default: false)", False, _BOOL),
            ),
        ),
        handle_edit_file,
        prepare_change=prepare_edit,
    ),
    AgentTool(
        ToolSchema("insert_lines", "Insert lines at a specific line number in a file", (
            _param("path", "Path to the file"),
            _param("line_number", "Line number to insert before (1-based)", kind=_INT),
            _param("content", "Content to insert (may span multiple lines)"),
        )),
        handle_insert_lines,
        prepare_change=prepare_insert,
    ),
    AgentTool(
        ToolSchema("delete_lines", "Delete a range of lines from a file", (
            _param("path", "Path to the file"),
            _param("start_line", "First line to delete (1-based)", kind=_INT),
            _param("end_line", "Last line to delete (1-based, inclusive)", kind=_INT),
        )),
        handle_delete_lines,
        prepare_change=prepare_delete_lines,
    ),
    AgentTool(
        ToolSchema(
            "delete_file",
            "Delete a file at the specified path. This operation ALWAYS requires user "
            "approval before execution.",
            (_param("path", "Path to the file to delete"),),
        ),
        handle_delete_file,
        prepare_change=prepare_delete_file,
        always_requires_approval=True,
    ),
]
