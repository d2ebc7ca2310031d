import httpx
import pytest

from research_core.domain.exceptions import TransportError, ValidationError
from research_core.providers.research_client import ResearchClient


class SettingsStub:
    research_base_url = "http://localhost:3000/api/v1"
    query_budget = 1000000
    max_bad_attempt = 3
    http_timeout = 1.0
    stream_read_timeout = None


class Resp:
    def __init__(self, status_code=200, data=None, text="", lines=()):
        self.status_code = status_code
        self._data = data
        self.text = text
        self._lines = list(lines)
        self.closed = False

    def json(self):
        if self._data is None:
            raise ValueError("not json")
        return self._data

    def iter_lines(self):
        for line in self._lines:
            yield line

    def close(self):
        self.closed = True


def _client_factory(captured, post_resp=None, stream_resp=None, error=None):
    class Client:
        def __init__(self, *a, **kw):
            captured["client_kwargs"] = kw
            self.closed = False

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, **_):
            if error is not None:
                raise error
            captured["url"] = url
            captured["payload"] = json
            return post_resp

        def build_request(self, method, url, headers=None):
            captured["stream_url"] = url
            captured["headers"] = headers
            return (method, url)

        def send(self, request, stream=False):
            if error is not None:
                raise error
            captured["stream"] = stream
            return stream_resp

        def close(self):
            self.closed = True

    return Client


def test_create_query_payload_and_request_id(monkeypatch):
    captured = {}
    monkeypatch.setattr("httpx.Client", _client_factory(captured, post_resp=Resp(data={"requestId": "abc"})))
    request_id = ResearchClient(SettingsStub()).create_query("What is X?")
    assert request_id == "abc"
    assert captured["url"] == "http://localhost:3000/api/v1/query"
    assert captured["payload"] == {"q": "What is X?", "budget": 1000000, "maxBadAttempt": 3}


@pytest.mark.parametrize(
    "resp, code",
    [
        (Resp(data={"status": "ok"}), "MISSING_REQUEST_ID"),
        (Resp(data=None), "BAD_RESPONSE"),
        (Resp(status_code=500, text="boom"), "API_ERROR"),
    ],
)
def test_create_query_failures(monkeypatch, resp, code):
    monkeypatch.setattr("httpx.Client", _client_factory({}, post_resp=resp))
    with pytest.raises(TransportError) as exc:
        ResearchClient(SettingsStub()).create_query("q")
    assert exc.value.code == code


def test_create_query_network_error(monkeypatch):
    monkeypatch.setattr("httpx.Client", _client_factory({}, error=httpx.ConnectError("refused")))
    with pytest.raises(TransportError) as exc:
        ResearchClient(SettingsStub()).create_query("q")
    assert exc.value.code == "NETWORK_ERROR"


def test_open_stream_parses_sse_frames(monkeypatch):
    captured = {}
    lines = [
        ": keep-alive",
        'data: {"type": "progress", "step": 1}',
        "",
        "event: message",
        'data: {"type": "final",',
        'data: "answer": "done"}',
        "",
        'data: {"type": "error"}',
    ]
    resp = Resp(lines=lines)
    monkeypatch.setattr("httpx.Client", _client_factory(captured, stream_resp=resp))
    stream = ResearchClient(SettingsStub()).open_stream("req/1")
    assert captured["stream_url"] == "http://localhost:3000/api/v1/stream/req%2F1"
    assert captured["headers"]["Accept"] == "text/event-stream"
    assert captured["stream"] is True
    frames = list(stream.frames())
    assert frames == [
        '{"type": "progress", "step": 1}',
        '{"type": "final",\n"answer": "done"}',
        '{"type": "error"}',
    ]
    stream.close()
    assert stream.closed
    assert resp.closed


def test_open_stream_http_error(monkeypatch):
    resp = Resp(status_code=404)
    monkeypatch.setattr("httpx.Client", _client_factory({}, stream_resp=resp))
    with pytest.raises(TransportError) as exc:
        ResearchClient(SettingsStub()).open_stream("req-1")
    assert exc.value.http_status == 404
    assert resp.closed


def test_open_stream_requires_request_id():
    with pytest.raises(ValidationError):
        ResearchClient(SettingsStub()).open_stream("")


def test_frames_stop_after_close(monkeypatch):
    resp = Resp(lines=["data: 1", "", "data: 2", ""])
    monkeypatch.setattr("httpx.Client", _client_factory({}, stream_resp=resp))
    stream = ResearchClient(SettingsStub()).open_stream("req-1")
    received = []
    for frame in stream.frames():
        received.append(frame)
        stream.close()
    assert received == ["1"]
