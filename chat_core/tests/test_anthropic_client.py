import httpx

from chat_core.domain.models import ChatRequest, ErrorKind, Message
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.descriptors import AnthropicDescriptor


class Client:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


def make_client(http, **kw):
    cfg = dict(name="claude", api_key="ak-test-123456", model_name="claude-3-5-sonnet-latest")
    cfg.update(kw)
    return AnthropicClient(AnthropicDescriptor(**cfg), http)


def test_anthropic_system_is_top_level():
    http = Client(httpx.Response(200, json={"content": [{"type": "text", "text": "yo"}]}))
    req = ChatRequest(model="claude", system_prompt="persona", history=(Message("user", "hi"),))
    reply = make_client(http).call(req)

    assert reply.text == "yo"
    call = http.calls[0]
    assert call["url"] == "https://api.anthropic.com/v1/messages"
    assert call["headers"]["x-api-key"] == "ak-test-123456"
    assert call["headers"]["anthropic-version"] == "2023-06-01"
    body = call["json"]
    assert body["system"] == "persona"
    assert body["model"] == "claude-3-5-sonnet-latest"
    assert body["messages"] == [{"role": "user", "content": "hi"}]
    assert all(m["role"] != "system" for m in body["messages"])


def test_anthropic_full_messages_url_kept():
    http = Client(httpx.Response(200, json={"content": [{"text": "ok"}]}))
    make_client(http, api_base_url="https://gw.example.com/v1/messages").call(
        ChatRequest(model="claude", system_prompt="s", history=(Message("user", "hi"),))
    )
    assert http.calls[0]["url"] == "https://gw.example.com/v1/messages"


def test_anthropic_error_status():
    http = Client(httpx.Response(529, text="overloaded"))
    reply = make_client(http).call(ChatRequest(model="claude", system_prompt="s"))
    assert reply.error is ErrorKind.PROVIDER
    assert reply.text == "抱歉，AI响应出错，请稍后再试。错误代码: 529"


def test_anthropic_network_error():
    http = Client(httpx.ConnectError("refused"))
    reply = make_client(http).call(ChatRequest(model="claude", system_prompt="s"))
    assert reply.error is ErrorKind.TRANSPORT
    assert reply.text == AnthropicClient.UNAVAILABLE_MESSAGE
