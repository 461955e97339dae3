"""
Core 模块（Agent 编排、事件、错误与进程执行器）。

说明：
- 此处不做 re-export：`core.agent` 依赖 config/sandbox/tools，避免包导入时的循环依赖。
"""
