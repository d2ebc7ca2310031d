"""研究服务传输层。

该包下的模块负责：
- 定义 Provider 与事件流句柄的抽象接口 (base)。
- 提供基于 httpx 的具体实现 (research_client)。
"""

from research_core.config.settings import settings
from research_core.providers.base import EventStream, ResearchProvider
from research_core.providers.research_client import HttpEventStream, ResearchClient


def create_provider() -> ResearchProvider:
    """按当前配置创建默认 Provider 实例。"""

    return ResearchClient(settings)


__all__ = ["EventStream", "HttpEventStream", "ResearchClient", "ResearchProvider", "create_provider"]
