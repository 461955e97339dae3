"""共享工具函数（消除跨模块重复）。"""
from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    """返回带时区的当前 UTC 时间。"""
    return datetime.now(timezone.utc)


def truncate_text(text: str, limit: int, *, marker: str = "...<truncated>") -> str:
    """超过 limit 个字符时截断并追加 marker。"""
    if limit < 0:
        raise ValueError("limit 必须 >= 0")
    if len(text) <= limit:
        return text
    return text[:limit] + marker
