"""
操作分类与风险评估（按工具名分派到 file/shell/git 分析器）。

说明：
- 分析器只做“解析 arguments → (operation_type, risk, preview)”，不做 allow/deny 决策；
- 未知工具不会失败：一律按 high 风险生成可审批的分析结果；
- arguments 不是合法 JSON object 时抛 `ValueError`，由审批系统转换为拒绝。
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from rubrduck.safety.approvals import RiskLevel, max_risk

FILE_TOOL = "file_operations"
SHELL_TOOL = "shell_execute"
GIT_TOOL = "git_operations"

DANGEROUS_FILE_EXTENSIONS: Tuple[str, ...] = (".exe", ".sh", ".bat", ".cmd", ".ps1", ".py", ".js", ".php")
SYSTEM_PATH_PREFIXES: Tuple[str, ...] = ("/etc/", "/var/", "/usr/", "/bin/", "/sbin/", "/System/")
SENSITIVE_KEYWORDS: Tuple[str, ...] = (
    "password",
    "secret",
    "key",
    "token",
    "credential",
    "api_key",
    "private_key",
    "ssh_key",
)
LARGE_CONTENT_BYTES = 1024 * 1024

# 顺序无关：任一命中即 critical
SHELL_METACHARACTERS: Tuple[str, ...] = ("&&", "||", ";", "|", ">>", "<<", "2>", "&>", ">", "<", "$(", "`", "&")
SHELL_EXEC_KEYWORDS: Tuple[str, ...] = ("eval", "exec", "source")
DESTRUCTIVE_COMMANDS = frozenset(
    {
        "rm",
        "rmdir",
        "del",
        "format",
        "mkfs",
        "dd",
        "shred",
        "sudo",
        "su",
        "chmod",
        "chown",
        "passwd",
        "useradd",
        "wget",
        "curl",
        "nc",
        "netcat",
        "ssh",
        "scp",
        "rsync",
    }
)

_EXEC_KEYWORD_RE = re.compile(r"(?<![\w.-])(?:" + "|".join(SHELL_EXEC_KEYWORDS) + r")(?![\w.-])")

GIT_RISK_BY_OPERATION: Dict[str, RiskLevel] = {
    "commit": RiskLevel.LOW,
    "add": RiskLevel.LOW,
    "status": RiskLevel.LOW,
    "log": RiskLevel.LOW,
    "diff": RiskLevel.LOW,
    "show": RiskLevel.LOW,
    "push": RiskLevel.MEDIUM,
    "pull": RiskLevel.MEDIUM,
    "fetch": RiskLevel.MEDIUM,
    "reset": RiskLevel.HIGH,
    "revert": RiskLevel.HIGH,
    "checkout": RiskLevel.HIGH,
    "branch": RiskLevel.HIGH,
    "merge": RiskLevel.HIGH,
    "force": RiskLevel.CRITICAL,
    "delete": RiskLevel.CRITICAL,
    "prune": RiskLevel.CRITICAL,
}
GIT_CRITICAL_ARGS = frozenset({"force", "--force", "-f", "delete", "--delete", "-D", "prune", "--prune"})

PREVIEW_MAX_LINES = 10


@dataclass(frozen=True)
class OperationAnalysis:
    """单次工具调用的分类结果。"""

    operation_type: str
    risk: RiskLevel
    preview: str


def _load_args(arguments: str) -> Dict[str, Any]:
    """解析 arguments JSON（必须为 object）。"""

    obj = json.loads(arguments)
    if not isinstance(obj, dict):
        raise ValueError("tool arguments must be a JSON object")
    return obj


def _str_field(args: Dict[str, Any], key: str) -> str:
    value = args.get(key)
    return value if isinstance(value, str) else ""


def assess_file_write_risk(path: str, content: str) -> RiskLevel:
    """
    评估文件写入风险（取各规则命中的最大值）。

    规则：
    - 可执行/脚本扩展名 → high
    - 系统目录前缀 → critical
    - 内容超过 1MB → medium
    - 内容包含敏感关键词 → high
    """

    levels = [RiskLevel.LOW]
    lowered_path = path.lower()
    if any(lowered_path.endswith(ext) for ext in DANGEROUS_FILE_EXTENSIONS):
        levels.append(RiskLevel.HIGH)
    if any(path.startswith(prefix) for prefix in SYSTEM_PATH_PREFIXES):
        levels.append(RiskLevel.CRITICAL)
    if len(content.encode("utf-8")) > LARGE_CONTENT_BYTES:
        levels.append(RiskLevel.MEDIUM)
    lowered_content = content.lower()
    if any(keyword in lowered_content for keyword in SENSITIVE_KEYWORDS):
        levels.append(RiskLevel.HIGH)
    return max_risk(levels)


def assess_shell_command_risk(command: str) -> RiskLevel:
    """
    评估 shell 命令风险。

    规则：
    - 任意 shell 元字符（管道/重定向/串联/命令替换/后台）或 eval/exec/source → critical
    - 以 `.` 作为命令词（source 的别名）→ critical
    - 任一命令词为已知破坏性命令（rm/sudo/chmod/网络下载/远程 shell 等）→ high
    - 其余 → low

    说明：规则只会提升等级，追加危险片段不会让等级下降。
    """

    if any(meta in command for meta in SHELL_METACHARACTERS):
        return RiskLevel.CRITICAL
    if _EXEC_KEYWORD_RE.search(command):
        return RiskLevel.CRITICAL

    words = command.split()
    if words and words[0] == ".":
        return RiskLevel.CRITICAL

    for word in words:
        base = word.rsplit("/", 1)[-1]
        if base in DESTRUCTIVE_COMMANDS:
            return RiskLevel.HIGH
    return RiskLevel.LOW


def assess_git_operation_risk(operation: str, args: str = "") -> RiskLevel:
    """按子命令分桶评估 git 风险；args 中显式 force/delete/prune 升级为 critical。"""

    risk = GIT_RISK_BY_OPERATION.get(operation.strip(), RiskLevel.MEDIUM)
    if any(word in GIT_CRITICAL_ARGS for word in args.split()):
        risk = RiskLevel.CRITICAL
    return risk


def file_write_preview(path: str, content: str) -> str:
    """文件写入预览：路径、大小、前 10 行。"""

    lines = content.split("\n")
    out = [f"File: {path}", f"Size: {len(content.encode('utf-8'))} bytes"]
    if len(lines) > PREVIEW_MAX_LINES:
        out.append(f"Preview (first {PREVIEW_MAX_LINES} lines):")
        out.extend(f"  {line}" for line in lines[:PREVIEW_MAX_LINES])
        out.append(f"  ... and {len(lines) - PREVIEW_MAX_LINES} more lines")
    else:
        out.append("Content:")
        out.extend(f"  {line}" for line in lines)
    return "\n".join(out) + "\n"


def shell_command_preview(command: str, working_dir: str = "") -> str:
    where = working_dir or "Current project directory"
    return f"Command: {command}\nWorking Directory: {where}"


def git_operation_preview(operation: str, args: str) -> str:
    return f"Git {operation}: {args}"


def analyze_file_operation(args: Dict[str, Any]) -> OperationAnalysis:
    """file_operations：read/list/search 低风险；write/append 走写入风险评估。"""

    op = _str_field(args, "type")
    path = _str_field(args, "path")
    if op == "read":
        return OperationAnalysis("file_read", RiskLevel.LOW, f"Reading file: {path}")
    if op in ("write", "append"):
        content = _str_field(args, "content")
        return OperationAnalysis("file_write", assess_file_write_risk(path, content), file_write_preview(path, content))
    if op == "list":
        return OperationAnalysis("file_list", RiskLevel.LOW, f"Listing directory: {path}")
    if op == "search":
        return OperationAnalysis("file_search", RiskLevel.LOW, f"Searching in: {path}")
    return OperationAnalysis("file_unknown", RiskLevel.MEDIUM, "Unknown file operation")


def analyze_shell_operation(args: Dict[str, Any]) -> OperationAnalysis:
    command = _str_field(args, "command")
    return OperationAnalysis(
        "shell_execute",
        assess_shell_command_risk(command),
        shell_command_preview(command, _str_field(args, "working_dir")),
    )


def analyze_git_operation(args: Dict[str, Any]) -> OperationAnalysis:
    operation = _str_field(args, "operation")
    git_args = _str_field(args, "args")
    return OperationAnalysis(
        "git_operation",
        assess_git_operation_risk(operation, git_args),
        git_operation_preview(operation, git_args),
    )


def analyze_operation(tool: str, arguments: str) -> OperationAnalysis:
    """
    按工具名分派到对应分析器。

    参数：
    - tool：工具名
    - arguments：原始 arguments JSON 字符串

    异常：
    - ValueError（含 json.JSONDecodeError）：已知工具的 arguments 无法解析
    """

    if tool == FILE_TOOL:
        return analyze_file_operation(_load_args(arguments))
    if tool == SHELL_TOOL:
        return analyze_shell_operation(_load_args(arguments))
    if tool == GIT_TOOL:
        return analyze_git_operation(_load_args(arguments))
    return OperationAnalysis("unknown", RiskLevel.HIGH, "Unknown operation type")


def describe_operation(operation_type: str, arguments: str) -> str:
    """生成一句话可读描述（解析失败时退化为 `<type> operation`）。"""

    try:
        args = _load_args(arguments)
    except ValueError:
        args = {}
    if operation_type == "file_write" and "path" in args:
        return f"Write file: {_str_field(args, 'path')}"
    if operation_type == "shell_execute" and "command" in args:
        return f"Execute command: {_str_field(args, 'command')}"
    if operation_type == "git_operation" and "operation" in args:
        return f"Git {_str_field(args, 'operation')}"
    return f"{operation_type} operation"


def extract_metadata(tool: str, arguments: str) -> Dict[str, Any]:
    """抽取结构化元数据（file_type/file_path、command、git_operation）。"""

    try:
        args = _load_args(arguments)
    except ValueError:
        return {}
    if tool == FILE_TOOL:
        return {"file_type": _str_field(args, "type"), "file_path": _str_field(args, "path")}
    if tool == SHELL_TOOL:
        return {"command": _str_field(args, "command")}
    if tool == GIT_TOOL:
        return {"git_operation": _str_field(args, "operation")}
    return {}
