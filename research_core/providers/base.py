"""研究服务的传输抽象。

会话层不直接依赖 httpx，而是依赖这里的两个协议：

- ResearchProvider: 发起查询拿到 requestId，并据此打开事件流。
- EventStream: 一个已打开的连接句柄，按到达顺序产出帧的 data 文本，
  可以在任意时刻 close()；关闭后不再产出任何帧。

测试与 GUI 都可以替换实现，而不改动状态机。
"""

from typing import Iterator, Protocol


class EventStream(Protocol):
    @property
    def closed(self) -> bool:
        ...

    def frames(self) -> Iterator[str]:
        """逐帧产出 data 文本；连接异常时抛出 TransportError。"""

        ...

    def close(self) -> None:
        ...


class ResearchProvider(Protocol):
    """研究服务客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - create_query(q): 发起查询并返回 requestId，失败抛出 TransportError。
    - open_stream(request_id): 打开与该查询对应的事件流。
    """

    name: str

    def create_query(self, query: str) -> str:
        ...

    def open_stream(self, request_id: str) -> EventStream:
        ...
