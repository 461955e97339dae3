"""
内置工具：file_operations（read / write / append / list / search）。

约束：
- 所有路径都被限制在项目根目录内（越界报错，不做静默修正）；
- 单次 write 内容超过 200KB 直接拒绝（建议拆分或 append），超过 50KB 记录告警；
- search 按文件名做大小写不敏感的子串匹配，跳过隐藏文件与隐藏目录。
"""

from __future__ import annotations

import json
import logging
import os
import stat
import time
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from rubrduck.core.errors import ToolError, UserError
from rubrduck.tools.protocol import ToolSpec, resolve_workspace_path

logger = logging.getLogger(__name__)

READ_LIMIT_BYTES = 1024 * 1024
READ_PREVIEW_BYTES = 1024
LARGE_WRITE_BYTES = 50 * 1024
MAX_WRITE_BYTES = 200 * 1024
DEFAULT_MAX_RESULTS = 50


class _FileOpsArgs(BaseModel):
    """file_operations 输入参数。"""

    model_config = ConfigDict(extra="ignore")

    type: Literal["read", "write", "append", "list", "search"]
    path: str = ""
    content: str = ""
    pattern: str = ""
    max_results: Optional[int] = None


FILE_OPERATIONS_SPEC = ToolSpec(
    name="file_operations",
    description="Perform file system operations including read, write, list, and search",
    parameters={
        "type": "object",
        "properties": {
            "type": {
                "type": "string",
                "enum": ["read", "write", "list", "search", "append"],
                "description": "The type of file operation to perform",
            },
            "path": {"type": "string", "description": "The file or directory path (relative to project root)"},
            "content": {"type": "string", "description": "Content to write to file (only for write operations)"},
            "pattern": {"type": "string", "description": "Search pattern for file search (only for search operations)"},
            "max_results": {
                "type": "integer",
                "description": "Maximum number of results to return (for list and search operations)",
                "default": DEFAULT_MAX_RESULTS,
            },
        },
        "required": ["type", "path"],
    },
)


def format_file_size(size: int) -> str:
    """人类可读文件大小（1024 进制：B/KB/MB/...）。"""

    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"


def _check_writable(path: Path) -> None:
    if path.exists() and not (path.stat().st_mode & stat.S_IWUSR):
        raise ToolError("file is read-only")


class FileTool:
    """
    file_operations 工具。

    参数：
    - base_path：项目根目录（所有路径相对于它解析）
    """

    def __init__(self, base_path: Path) -> None:
        self._base_path = Path(base_path).resolve()
        self.spec = FILE_OPERATIONS_SPEC

    @property
    def base_path(self) -> Path:
        return self._base_path

    async def execute(self, arguments: str) -> str:
        try:
            args = _FileOpsArgs.model_validate(json.loads(arguments))
        except (ValueError, ValidationError) as e:
            raise ToolError(f"invalid arguments: {e}") from e

        try:
            full_path = resolve_workspace_path(self._base_path, args.path)
        except UserError as e:
            raise ToolError(f"invalid path: {e}") from e

        max_results = args.max_results or DEFAULT_MAX_RESULTS
        if args.type == "read":
            return self._read(full_path)
        if args.type == "write":
            return self._write(full_path, args.content)
        if args.type == "append":
            return self._append(full_path, args.content)
        if args.type == "list":
            return self._list(full_path, max_results)
        return self._search(full_path, args.pattern, max_results)

    def _read(self, path: Path) -> str:
        logger.debug("Reading file: %s", path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ToolError(f"failed to read file: {e}") from e
        if len(data) > READ_LIMIT_BYTES:
            head = data[:READ_PREVIEW_BYTES].decode("utf-8", errors="replace")
            return f"File too large ({len(data)} bytes). Showing first 1KB:\n\n{head}"
        return data.decode("utf-8", errors="replace")

    def _write(self, path: Path, content: str) -> str:
        size = len(content.encode("utf-8"))
        logger.debug("Writing file: %s (%d bytes)", path, size)
        if size > MAX_WRITE_BYTES:
            logger.error("File content is extremely large: path=%s size_kb=%d", path, size // 1024)
            raise ToolError(
                f"file content is too large ({size // 1024} KB) for a single write operation. "
                "Consider breaking this into smaller incremental updates or using append operations"
            )
        if size > LARGE_WRITE_BYTES:
            logger.warning("Writing large file: path=%s size_kb=%d", path, size // 1024)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ToolError(f"failed to create directory: {e}") from e
        _check_writable(path)

        start = time.monotonic()
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ToolError(f"failed to write file: {e}") from e
        elapsed = time.monotonic() - start

        if size > LARGE_WRITE_BYTES:
            return f"Successfully wrote {size // 1024} KB to {path} (took {elapsed:.3f}s)"
        return f"Successfully wrote {size} bytes to {path} (took {elapsed:.3f}s)"

    def _append(self, path: Path, content: str) -> str:
        size = len(content.encode("utf-8"))
        logger.debug("Appending to file: %s (%d bytes)", path, size)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ToolError(f"failed to create directory: {e}") from e
        _check_writable(path)

        start = time.monotonic()
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise ToolError(f"failed to append to file: {e}") from e
        elapsed = time.monotonic() - start

        if size > LARGE_WRITE_BYTES:
            return f"Successfully appended {size // 1024} KB to {path} (took {elapsed:.3f}s)"
        return f"Successfully appended {size} bytes to {path} (took {elapsed:.3f}s)"

    def _list(self, path: Path, max_results: int) -> str:
        logger.debug("Listing directory: %s", path)
        try:
            entries = sorted(os.scandir(path), key=lambda e: e.name)
        except OSError as e:
            raise ToolError(f"failed to read directory: {e}") from e

        lines = [f"Contents of {path}:", ""]
        for count, entry in enumerate(entries):
            if count >= max_results:
                lines.append("")
                lines.append(f"... and {len(entries) - max_results} more entries")
                break
            try:
                info = entry.stat(follow_symlinks=False)
            except OSError:
                continue
            size = "<DIR>" if entry.is_dir() else format_file_size(info.st_size)
            lines.append(f"{entry.name:<40} {size:>8} {stat.filemode(info.st_mode)}")
        return "\n".join(lines) + "\n"

    def _search(self, root: Path, pattern: str, max_results: int) -> str:
        logger.debug("Searching files: root=%s pattern=%s", root, pattern)
        if not pattern:
            raise ToolError("search pattern is required")

        needle = pattern.lower()
        results: List[str] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if name.startswith("."):
                    continue
                if needle in name.lower():
                    results.append(os.path.relpath(os.path.join(dirpath, name), root))
                    if len(results) >= max_results:
                        break
            if len(results) >= max_results:
                break

        if not results:
            return f"No files found matching pattern '{pattern}' in {root}"
        lines = [f"Found {len(results)} files matching '{pattern}':", ""]
        lines.extend(f"- {r}" for r in results)
        return "\n".join(lines) + "\n"


__all__ = ["FILE_OPERATIONS_SPEC", "FileTool", "format_file_size"]
