"""Research Core 顶层包。

该包实现研究服务的流式客户端核心，
包括配置加载、领域模型、事件归一化、会话状态机、
提交控制、调试 trace 与会话持久化等能力。
"""

from research_core.session import SubmissionController, normalize

__all__ = ["SubmissionController", "normalize"]
