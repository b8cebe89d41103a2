"""File mutation operations shared by file tools and the lock coordinator."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class WriteMode(str, Enum):
    OVERWRITE = "overwrite"
    APPEND = "append"


class OperationKind(str, Enum):
    WRITE = "write_file"
    EDIT = "edit_file"
    INSERT_LINES = "insert_lines"
    DELETE_LINES = "delete_lines"


@dataclass(frozen=True)
class FileOperation:
    """A file mutation that may need coordination with other sessions.

    Use the classmethod constructors; only the fields relevant to
    ``kind`` are meaningful.
    """

    kind: OperationKind
    path: str
    content: str = ""
    mode: WriteMode = WriteMode.OVERWRITE
    old_text: str = ""
    new_text: str = ""
    replace_all: bool = False
    line_number: int = 0
    start_line: int = 0
    end_line: int = 0

    @classmethod
    def write(cls, path: str, content: str, mode: WriteMode = WriteMode.OVERWRITE) -> FileOperation:
        return cls(OperationKind.WRITE, path, content=content, mode=mode)

    @classmethod
    def edit(cls, path: str, old_text: str, new_text: str, replace_all: bool = False) -> FileOperation:
        return cls(OperationKind.EDIT, path, old_text=old_text, new_text=new_text, replace_all=replace_all)

    @classmethod
    def insert_lines(cls, path: str, line_number: int, content: str) -> FileOperation:
        return cls(OperationKind.INSERT_LINES, path, content=content, line_number=line_number)

    @classmethod
    def delete_lines(cls, path: str, start_line: int, end_line: int) -> FileOperation:
        return cls(OperationKind.DELETE_LINES, path, start_line=start_line, end_line=end_line)

    @property
    def requires_exclusive_lock(self) -> bool:
        return self.kind == OperationKind.WRITE and self.mode == WriteMode.OVERWRITE

    def with_path(self, path: str) -> FileOperation:
        return FileOperation(
            kind=self.kind,
            path=path,
            content=self.content,
            mode=self.mode,
            old_text=self.old_text,
            new_text=self.new_text,
            replace_all=self.replace_all,
            line_number=self.line_number,
            start_line=self.start_line,
            end_line=self.end_line,
        )


@dataclass(frozen=True)
class OperationResult:
    success: bool
    output: str


def normalize_path(path: str, cwd: str | None = None) -> str:
    """Expand ``~``, resolve against ``cwd``, and collapse ``..`` segments."""
    expanded = os.path.expanduser(path)
    if not os.path.isabs(expanded) and cwd:
        expanded = os.path.join(os.path.expanduser(cwd), expanded)
    return os.path.abspath(expanded)


def numbered(lines: list[str], start: int = 1) -> str:
    return "\n".join(f"{start + i}| {line}" for i, line in enumerate(lines))


def _read(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


def _write(path: str, content: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


def execute_write(path: str, content: str, mode: WriteMode) -> OperationResult:
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if mode == WriteMode.APPEND and os.path.exists(path):
            with open(path, "a", encoding="utf-8") as f:
                f.write(content)
            return OperationResult(True, f"Appended {len(content)} chars to {path}")
        _write(path, content)
        return OperationResult(True, f"Wrote {len(content)} chars to {path}")
    except OSError as e:
        return OperationResult(False, f"Error writing file: {e}")


def execute_edit(path: str, old_text: str, new_text: str, replace_all: bool) -> OperationResult:
    if not os.path.exists(path):
        return OperationResult(False, f"File not found: {path}")
    try:
        content = _read(path)
        if old_text not in content:
            lines = content.split("\n")
            preview = "\n".join(lines[:10])
            return OperationResult(
                False,
                "Text not found in file. The old_text must match exactly.\n\n"
                f"File has {len(lines)} lines. First 10 lines:\n{preview}",
            )
        occurrences = content.count(old_text)
        if replace_all:
            content = content.replace(old_text, new_text)
        else:
            content = content.replace(old_text, new_text, 1)
        _write(path, content)
    except OSError as e:
        return OperationResult(False, f"Error editing file: {e}")

    result_lines = content.split("\n")
    preview = numbered(result_lines[:20])
    suffix = f"\n... ({len(result_lines) - 20} more lines)" if len(result_lines) > 20 else ""
    if replace_all:
        head = f"Replaced {occurrences} occurrence(s) in {path}."
    else:
        head = f"Replaced 1 occurrence in {path}."
    return OperationResult(True, f"{head}\n\nFile preview:\n{preview}{suffix}")


def execute_insert_lines(path: str, line_number: int, content: str) -> OperationResult:
    if not os.path.exists(path):
        return OperationResult(False, f"File not found: {path}")
    try:
        existing = _read(path)
        stripped = content.strip()
        if stripped and stripped in existing:
            return OperationResult(
                True,
                "ALREADY EXISTS: The content you're trying to insert already exists "
                "in the file. No changes made. Use read_file to verify the current state.",
            )
        lines = existing.split("\n")
        index = max(0, min(line_number - 1, len(lines)))
        new_lines = content.split("\n")
        lines[index:index] = new_lines
        _write(path, "\n".join(lines))
    except OSError as e:
        return OperationResult(False, f"Error inserting lines: {e}")

    preview_start = max(0, index - 2)
    preview_end = min(len(lines), index + len(new_lines) + 2)
    preview = numbered(lines[preview_start:preview_end], preview_start + 1)
    return OperationResult(
        True,
        f"Inserted {len(new_lines)} line(s) at line {line_number}.\n\n"
        f"Preview around insertion:\n{preview}",
    )


def execute_delete_lines(path: str, start_line: int, end_line: int) -> OperationResult:
    if not os.path.exists(path):
        return OperationResult(False, f"File not found: {path}")
    try:
        lines = _read(path).split("\n")
        start = max(0, start_line - 1)
        end = min(len(lines), end_line)
        if start >= len(lines):
            return OperationResult(
                False, f"start_line {start_line} exceeds file length ({len(lines)} lines)"
            )
        deleted = max(0, end - start)
        del lines[start:end]
        _write(path, "\n".join(lines))
    except OSError as e:
        return OperationResult(False, f"Error deleting lines: {e}")
    return OperationResult(True, f"Deleted {deleted} line(s) from {path}")


def execute_operation(op: FileOperation) -> OperationResult:
    """Apply ``op`` to disk and describe what happened."""
    logger.debug("Executing %s on %s", op.kind.value, op.path)
    if op.kind == OperationKind.WRITE:
        return execute_write(op.path, op.content, op.mode)
    if op.kind == OperationKind.EDIT:
        return execute_edit(op.path, op.old_text, op.new_text, op.replace_all)
    if op.kind == OperationKind.INSERT_LINES:
        return execute_insert_lines(op.path, op.line_number, op.content)
    return execute_delete_lines(op.path, op.start_line, op.end_line)
