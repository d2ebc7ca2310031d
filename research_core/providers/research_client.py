"""研究服务 HTTP 适配器。

本模块负责：

1. 把用户问题包装为 ``{q, budget, maxBadAttempt}`` 并 POST 到 ``/query``。
2. 从响应中取出 requestId（关联令牌）。
3. 打开 ``/stream/{requestId}`` 的 text/event-stream 连接，
   按 SSE 规则把 ``data:`` 行拼成帧，逐帧交给会话层。
4. 把 httpx 的网络/HTTP 异常统一包装为 TransportError。

帧内容的解释（三种答案结构等）不在这里做，见 session.normalizer。
"""

from typing import Iterator, List, Optional
from urllib.parse import quote

import httpx

from research_core.domain.exceptions import TransportError, ValidationError
from research_core.infrastructure.logging.logger import logger


class HttpEventStream:
    """基于 httpx 流式响应的事件流句柄。

    open() 建立连接；frames() 在调用线程上阻塞读取；close() 可以从
    任意线程调用，之后读到的内容全部丢弃。
    """

    def __init__(self, url: str, timeout: httpx.Timeout):
        self._url = url
        self._timeout = timeout
        self._client: Optional[httpx.Client] = None
        self._response: Optional[httpx.Response] = None
        self._closed = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> "HttpEventStream":
        client = httpx.Client(timeout=self._timeout, trust_env=False)
        try:
            request = client.build_request(
                "GET",
                self._url,
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            )
            resp = client.send(request, stream=True)
        except httpx.RequestError as e:
            client.close()
            raise TransportError(code="NETWORK_ERROR", message=str(e), url=self._url)
        if resp.status_code >= 400:
            resp.close()
            client.close()
            raise TransportError(
                code="API_ERROR",
                message=f"Event stream returned HTTP {resp.status_code}",
                http_status=resp.status_code,
                url=self._url,
            )
        self._client = client
        self._response = resp
        return self

    def frames(self) -> Iterator[str]:
        if self._response is None:
            raise TransportError(code="STREAM_NOT_OPEN", message="Event stream is not open", url=self._url)
        data_lines: List[str] = []
        try:
            for line in self._response.iter_lines():
                if self._closed:
                    return
                if not line:
                    # 空行表示一个事件结束
                    if data_lines:
                        yield "\n".join(data_lines)
                        data_lines = []
                    continue
                if line.startswith(":"):
                    continue
                field_name, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if field_name == "data":
                    data_lines.append(value)
            if data_lines and not self._closed:
                yield "\n".join(data_lines)
        except (httpx.HTTPError, httpx.StreamError) as e:
            if self._closed:
                return
            raise TransportError(code="STREAM_ERROR", message=str(e), url=self._url)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            self._response.close()
        if self._client is not None:
            self._client.close()


class ResearchClient:
    """研究服务客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - create_query / open_stream: 对外统一调用入口。
    """

    name = "research"

    def __init__(self, settings):
        # Settings 里包含 base_url、预算、超时等配置
        self._settings = settings

    @property
    def base_url(self) -> str:
        return self._settings.research_base_url.rstrip("/")

    def create_query(self, query: str) -> str:
        """发起查询并返回 requestId。

        网络失败、HTTP 错误、响应不是 JSON 或缺少 requestId 时都抛出
        TransportError，调用方据此直接把会话标记为 Errored。
        """

        payload = self._build_payload(query)
        url = f"{self.base_url}/query"
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise TransportError(code="NETWORK_ERROR", message=str(e), url=url)
        if resp.status_code >= 400:
            raise TransportError(code="API_ERROR", message=resp.text, http_status=resp.status_code, url=url)
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(code="BAD_RESPONSE", message=f"Query response is not JSON: {e}", url=url)
        request_id = data.get("requestId") if isinstance(data, dict) else None
        if not request_id:
            raise TransportError(code="MISSING_REQUEST_ID", message="Query response carries no requestId", url=url)
        logger.info("Query accepted", extra={"extra": {"request_id": str(request_id)}})
        return str(request_id)

    def open_stream(self, request_id: str) -> HttpEventStream:
        if not request_id:
            raise ValidationError(code="MISSING_REQUEST_ID", message="request_id is required to open a stream")
        url = f"{self.base_url}/stream/{quote(str(request_id), safe='')}"
        timeout = httpx.Timeout(self._settings.http_timeout, read=self._settings.stream_read_timeout)
        return HttpEventStream(url, timeout).open()

    def _build_payload(self, query: str) -> dict:
        return {
            "q": query,
            "budget": self._settings.query_budget,
            "maxBadAttempt": self._settings.max_bad_attempt,
        }
