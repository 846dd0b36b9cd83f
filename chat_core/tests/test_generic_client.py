import httpx

from chat_core.domain.models import ChatRequest, ErrorKind, Message
from chat_core.providers.descriptors import GenericAPIDescriptor
from chat_core.providers.generic_client import GenericAPIClient


class Client:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers})
        return self.responses.pop(0)


def make_request():
    return ChatRequest(model="custom", system_prompt="sys", history=(Message("user", "hi"),))


def test_generic_template_messages_are_extended():
    template = {"model": "qwen", "messages": [{"role": "system", "content": "preset"}], "stream": False}
    descriptor = GenericAPIDescriptor(
        name="custom",
        api_url="https://llm.example.com/chat",
        api_key="key-123456789",
        request_template=template,
        headers={"X-Token": "{api_key}", "X-Retry": 3},
        auth_header="X-Auth",
        auth_format="Token {api_key}",
    )
    http = Client(httpx.Response(200, json={"reply": "done"}))
    reply = GenericAPIClient(descriptor, http).call(make_request())

    assert reply.text == "done"
    call = http.calls[0]
    assert call["url"] == "https://llm.example.com/chat"
    assert call["json"]["model"] == "qwen"
    assert call["json"]["stream"] is False
    assert [m["content"] for m in call["json"]["messages"]] == ["preset", "sys", "hi"]
    assert call["headers"]["X-Token"] == "key-123456789"
    assert call["headers"]["X-Retry"] == "3"
    assert call["headers"]["X-Auth"] == "Token key-123456789"
    # 模板本身不被修改
    assert descriptor.request_template["messages"] == [{"role": "system", "content": "preset"}]


def test_generic_creates_messages_when_template_has_none():
    descriptor = GenericAPIDescriptor(name="custom", api_url="https://llm.example.com/chat")
    http = Client(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
    GenericAPIClient(descriptor, http).call(make_request())
    body = http.calls[0]["json"]
    assert body["messages"] == [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]
    assert "Authorization" not in http.calls[0]["headers"]


def test_generic_custom_response_path():
    descriptor = GenericAPIDescriptor(
        name="custom",
        api_url="https://llm.example.com/chat",
        response_content_path="output.choices.0.text",
    )
    http = Client(httpx.Response(200, json={"output": {"choices": [{"text": "from path"}]}}))
    reply = GenericAPIClient(descriptor, http).call(make_request())
    assert reply.text == "from path"


def test_generic_missing_url_is_configuration_error():
    http = Client()
    reply = GenericAPIClient(GenericAPIDescriptor(name="custom"), http).call(make_request())
    assert reply.error is ErrorKind.CONFIGURATION
    assert reply.text == "模型配置错误：未指定API URL"
    assert http.calls == []


def test_generic_error_status():
    descriptor = GenericAPIDescriptor(name="custom", api_url="https://llm.example.com/chat")
    http = Client(httpx.Response(502, text="bad gateway"))
    reply = GenericAPIClient(descriptor, http).call(make_request())
    assert reply.text == "抱歉，API调用失败，错误代码: 502"
