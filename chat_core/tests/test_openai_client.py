import httpx

from chat_core.domain.models import ChatRequest, ErrorKind, Message
from chat_core.providers.descriptors import OpenAIDescriptor
from chat_core.providers.openai_client import OpenAIClient


class Client:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


def make_request():
    return ChatRequest(
        model="gpt",
        system_prompt="sys",
        history=(Message("user", "hi"), Message("assistant", "hello"), Message("user", "again")),
    )


def make_client(http, **kw):
    cfg = dict(name="gpt", api_key="sk-test-123456", api_model_name="gpt-4o-mini")
    cfg.update(kw)
    return OpenAIClient(OpenAIDescriptor(**cfg), http)


def test_openai_payload_and_reply():
    http = Client(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
    reply = make_client(http).call(make_request())

    assert reply.ok
    assert reply.text == "ok"
    call = http.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer sk-test-123456"
    body = call["json"]
    assert body["model"] == "gpt-4o-mini"
    assert body["messages"][0] == {"role": "system", "content": "sys"}
    assert [m["role"] for m in body["messages"][1:]] == ["user", "assistant", "user"]
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 2000


def test_openai_base_url_normalization():
    http = Client(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
    make_client(http, api_base_url="https://proxy.example.com/v1/").call(make_request())
    assert http.calls[0]["url"] == "https://proxy.example.com/v1/chat/completions"


def test_openai_uses_logical_name_without_override():
    http = Client(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
    make_client(http, api_model_name=None).call(make_request())
    assert http.calls[0]["json"]["model"] == "gpt"


def test_openai_missing_key_is_configuration_error():
    http = Client()
    reply = make_client(http, api_key=None).call(make_request())
    assert reply.error is ErrorKind.CONFIGURATION
    assert reply.text == OpenAIClient.MISSING_KEY_MESSAGE
    assert http.calls == []


def test_openai_status_messages():
    cases = {
        401: "API认证失败，请联系管理员更新API密钥",
        429: "API请求太频繁或已达到配额限制，请稍后再试",
        503: "OpenAI服务器暂时不可用，请稍后再试",
        418: "AI服务调用失败，请稍后再试",
    }
    for status, text in cases.items():
        http = Client(httpx.Response(status, json={"error": {"message": "nope"}}))
        reply = make_client(http).call(make_request())
        assert reply.error is ErrorKind.PROVIDER
        assert reply.text == text
        assert "sk-test-123456" not in reply.text


def test_openai_timeout_becomes_transport_error():
    http = Client(httpx.ConnectTimeout("timed out"))
    reply = make_client(http).call(make_request())
    assert reply.error is ErrorKind.TRANSPORT
    assert reply.text == OpenAIClient.UNAVAILABLE_MESSAGE


def test_openai_structured_error_in_success_body():
    http = Client(httpx.Response(200, json={"error": {"message": "bad key"}}))
    reply = make_client(http).call(make_request())
    assert reply.error is ErrorKind.STRUCTURED_ERROR
    assert reply.text == "API返回错误: bad key"


def test_openai_unrecognized_body():
    http = Client(httpx.Response(200, json={"foo": "bar"}))
    reply = make_client(http).call(make_request())
    assert reply.error is ErrorKind.UNRECOGNIZED_FORMAT
    assert reply.text == OpenAIClient.UNRECOGNIZED_MESSAGE


def test_openai_per_model_timeouts():
    http = Client(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
    make_client(http, connect_timeout=5, request_timeout=12).call(make_request())
    timeout = http.calls[0]["timeout"]
    assert timeout.connect == 5
    assert timeout.read == 12
