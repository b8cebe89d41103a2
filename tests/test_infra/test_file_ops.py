"""Tests for file mutation operations."""

import os

from agentruntime.infra.file_ops import (
    FileOperation,
    WriteMode,
    execute_operation,
    normalize_path,
    numbered,
)


class TestNormalizePath:
    def test_relative_to_cwd(self, tmp_path):
        assert normalize_path("a/../b.txt", str(tmp_path)) == str(tmp_path / "b.txt")

    def test_absolute_unchanged(self, tmp_path):
        path = str(tmp_path / "x.txt")
        assert normalize_path(path, "/elsewhere") == path

    def test_home_expansion(self):
        assert normalize_path("~/x.txt") == os.path.join(os.path.expanduser("~"), "x.txt")


class TestNumbered:
    def test_start_offset(self):
        assert numbered(["a", "b"], 5) == "5| a\n6| b"


class TestWrite:
    def test_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "file.txt"
        result = execute_operation(FileOperation.write(str(path), "hello"))
        assert result.success
        assert path.read_text() == "hello"
        assert "Wrote 5 chars" in result.output

    def test_append(self, tmp_path):
        path = tmp_path / "log.txt"
        path.write_text("one\n")
        result = execute_operation(FileOperation.write(str(path), "two\n", WriteMode.APPEND))
        assert result.success
        assert path.read_text() == "one\ntwo\n"


class TestEdit:
    def test_replace_first(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("x = 1\nx = 1\n")
        result = execute_operation(FileOperation.edit(str(path), "x = 1", "x = 2"))
        assert result.success
        assert path.read_text() == "x = 2\nx = 1\n"
        assert "Replaced 1 occurrence" in result.output

    def test_replace_all(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("x = 1\nx = 1\n")
        result = execute_operation(FileOperation.edit(str(path), "x = 1", "y", replace_all=True))
        assert result.success
        assert path.read_text() == "y\ny\n"
        assert "Replaced 2 occurrence(s)" in result.output

    def test_text_not_found(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("hello\n")
        result = execute_operation(FileOperation.edit(str(path), "missing", "x"))
        assert not result.success
        assert "Text not found" in result.output
        assert path.read_text() == "hello\n"

    def test_missing_file(self, tmp_path):
        result = execute_operation(FileOperation.edit(str(tmp_path / "nope"), "a", "b"))
        assert not result.success
        assert "File not found" in result.output


class TestInsertLines:
    def test_insert_in_middle(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("one\nthree")
        result = execute_operation(FileOperation.insert_lines(str(path), 2, "two"))
        assert result.success
        assert path.read_text() == "one\ntwo\nthree"

    def test_past_end_appends(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("one")
        execute_operation(FileOperation.insert_lines(str(path), 50, "last"))
        assert path.read_text() == "one\nlast"

    def test_existing_content_is_not_duplicated(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("import os\nprint(1)")
        result = execute_operation(FileOperation.insert_lines(str(path), 1, "import os"))
        assert result.success
        assert result.output.startswith("ALREADY EXISTS")
        assert path.read_text() == "import os\nprint(1)"


class TestDeleteLines:
    def test_delete_range(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("1\n2\n3\n4")
        result = execute_operation(FileOperation.delete_lines(str(path), 2, 3))
        assert result.success
        assert path.read_text() == "1\n4"
        assert "Deleted 2 line(s)" in result.output

    def test_start_past_end(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("1\n2")
        result = execute_operation(FileOperation.delete_lines(str(path), 10, 12))
        assert not result.success
        assert "exceeds file length" in result.output
