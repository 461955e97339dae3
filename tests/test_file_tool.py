from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import pytest

from rubrduck.core.errors import ToolError
from rubrduck.tools.builtin.file_ops import FileTool, format_file_size


def _run(tool: FileTool, **args: object) -> str:
    return asyncio.run(tool.execute(json.dumps(args)))


def test_write_then_read(tmp_path: Path) -> None:
    tool = FileTool(tmp_path)
    out = _run(tool, type="write", path="notes/a.txt", content="hello")
    assert out.startswith(f"Successfully wrote 5 bytes to {tmp_path / 'notes' / 'a.txt'}")
    assert _run(tool, type="read", path="notes/a.txt") == "hello"


def test_append(tmp_path: Path) -> None:
    tool = FileTool(tmp_path)
    _run(tool, type="write", path="log.txt", content="a\n")
    out = _run(tool, type="append", path="log.txt", content="b\n")
    assert out.startswith("Successfully appended 2 bytes")
    assert (tmp_path / "log.txt").read_text(encoding="utf-8") == "a\nb\n"


def test_oversized_write_rejected(tmp_path: Path) -> None:
    with pytest.raises(ToolError, match="too large"):
        _run(FileTool(tmp_path), type="write", path="big.txt", content="x" * (200 * 1024 + 1))
    assert not (tmp_path / "big.txt").exists()


def test_read_large_file_shows_preview(tmp_path: Path) -> None:
    (tmp_path / "huge.bin").write_bytes(b"a" * (1024 * 1024 + 10))
    out = _run(FileTool(tmp_path), type="read", path="huge.bin")
    assert out.startswith(f"File too large ({1024 * 1024 + 10} bytes). Showing first 1KB:")


def test_paths_cannot_escape_root(tmp_path: Path) -> None:
    tool = FileTool(tmp_path / "project")
    (tmp_path / "project").mkdir()
    with pytest.raises(ToolError, match="outside project bounds"):
        _run(tool, type="read", path="../secret.txt")
    with pytest.raises(ToolError, match="outside project bounds"):
        _run(tool, type="read", path="/etc/passwd")


def test_list_directory(tmp_path: Path) -> None:
    (tmp_path / "b.txt").write_text("12345", encoding="utf-8")
    (tmp_path / "a_dir").mkdir()
    out = _run(FileTool(tmp_path), type="list", path="")
    lines = out.splitlines()
    assert lines[0] == f"Contents of {tmp_path}:"
    assert lines[2].startswith("a_dir")
    assert "<DIR>" in lines[2]
    assert lines[3].startswith("b.txt")
    assert "5 B" in lines[3]


def test_list_truncates_at_max_results(tmp_path: Path) -> None:
    for i in range(5):
        (tmp_path / f"f{i}.txt").write_text("", encoding="utf-8")
    out = _run(FileTool(tmp_path), type="list", path=".", max_results=2)
    assert "... and 3 more entries" in out


def test_search_skips_hidden_entries(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "Agent.py").write_text("", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "agent.cfg").write_text("", encoding="utf-8")
    (tmp_path / ".agent_hidden").write_text("", encoding="utf-8")

    out = _run(FileTool(tmp_path), type="search", path="", pattern="agent")
    assert out.splitlines()[0] == "Found 1 files matching 'agent':"
    assert f"- {os.path.join('src', 'Agent.py')}" in out

    none = _run(FileTool(tmp_path), type="search", path="", pattern="zzz")
    assert none == f"No files found matching pattern 'zzz' in {tmp_path}"


def test_search_requires_pattern(tmp_path: Path) -> None:
    with pytest.raises(ToolError, match="search pattern is required"):
        _run(FileTool(tmp_path), type="search", path="")


def test_invalid_operation_type(tmp_path: Path) -> None:
    with pytest.raises(ToolError, match="invalid arguments"):
        _run(FileTool(tmp_path), type="delete", path="a.txt")


def test_read_only_file_is_not_overwritten(tmp_path: Path) -> None:
    target = tmp_path / "ro.txt"
    target.write_text("keep", encoding="utf-8")
    target.chmod(0o444)
    with pytest.raises(ToolError, match="read-only"):
        _run(FileTool(tmp_path), type="write", path="ro.txt", content="new")
    assert target.read_text(encoding="utf-8") == "keep"


def test_format_file_size() -> None:
    assert format_file_size(512) == "512 B"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(5 * 1024 * 1024) == "5.0 MB"
