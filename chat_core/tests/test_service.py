import threading
from dataclasses import dataclass

import httpx
import pytest

from chat_core.agents.orchestrator import ConversationOrchestrator
from chat_core.api.service import TOO_FREQUENT_MESSAGE, ChatService, build_service
from chat_core.config.settings import Settings
from chat_core.domain.exceptions import SessionError
from chat_core.domain.models import ProviderReply
from chat_core.infrastructure.storage.json_store import JsonPreferenceStore
from chat_core.prompts import PersonaCatalog
from chat_core.providers.registry import ModelRegistry


@dataclass(frozen=True)
class Descriptor:
    name: str
    type: str = "fake"
    description: str = ""


class EchoAdapter:
    kind = "fake"

    def __init__(self, name):
        self.name = name

    def build_request(self, req):
        return {}

    def call(self, req):
        return ProviderReply(text=f"{self.name}:{req.history[-1].content}")


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class MemoryPreferences:
    def __init__(self):
        self.data = {}

    def get_user_model(self, user_id):
        return self.data.get((user_id, "model"))

    def set_user_model(self, user_id, model):
        self.data[(user_id, "model")] = model

    def get_user_persona(self, user_id):
        return self.data.get((user_id, "persona"))

    def set_user_persona(self, user_id, persona):
        self.data[(user_id, "persona")] = persona

    def get_default_model(self):
        return None


def make_service(names=("gpt", "claude"), adapter=EchoAdapter, **kw):
    source = {"names": list(names)}
    registry = ModelRegistry(
        lambda: [Descriptor(n) for n in source["names"]],
        lambda d: adapter(d.name),
        default_model="gpt",
    )
    personas = PersonaCatalog({"default": "你是助手"})
    orchestrator = ConversationOrchestrator(registry, personas, MemoryPreferences())
    service = ChatService(orchestrator, registry, personas, max_workers=2, max_pending=2, **kw)
    return service, source


def test_reply_through_worker_pool():
    service, _ = make_service()
    try:
        futures = [service.submit(f"u{i}", "hi") for i in range(6)]
        assert [f.result(timeout=5) for f in futures] == [["gpt:hi"]] * 6
        assert service.reply("u1", "again") == ["gpt:again"]
    finally:
        service.shutdown()


def test_min_request_interval():
    clock = Clock()
    service, _ = make_service(min_request_interval=0.5, clock=clock)
    try:
        assert service.reply("u1", "one") == ["gpt:one"]
        clock.now = 0.2
        assert service.reply("u1", "two") == [TOO_FREQUENT_MESSAGE]
        assert service.reply("u2", "other user") == ["gpt:other user"]
        clock.now = 0.8
        assert service.reply("u1", "three") == ["gpt:three"]
        summary = service.get_conversation_summary("u1")
        assert "two" not in summary
        assert "对话历史（4条消息）" in summary
    finally:
        service.shutdown()


class GatedAdapter(EchoAdapter):
    """内容为 a/b 的请求在 gate 打开前一直阻塞。"""

    gate = threading.Event()
    started = threading.Event()

    def call(self, req):
        if req.history[-1].content in ("a", "b"):
            GatedAdapter.started.set()
            assert GatedAdapter.gate.wait(timeout=5)
        return super().call(req)


def test_same_user_backlog_does_not_block_other_users():
    GatedAdapter.gate = threading.Event()
    GatedAdapter.started = threading.Event()
    service, _ = make_service(adapter=GatedAdapter)
    try:
        first = service.submit("u1", "a")
        second = service.submit("u1", "b")
        assert GatedAdapter.started.wait(timeout=5)

        assert service.submit("u2", "hello").result(timeout=1) == ["gpt:hello"]
        assert not first.done()
        assert not second.done()

        GatedAdapter.gate.set()
        assert first.result(timeout=5) == ["gpt:a"]
        assert second.result(timeout=5) == ["gpt:b"]
        history = service.orchestrator.store.get("u1").history
        assert [m.content for m in history] == ["a", "gpt:a", "b", "gpt:b"]
    finally:
        GatedAdapter.gate.set()
        service.shutdown()


def test_rate_limit_forgets_idle_users():
    clock = Clock()
    service, _ = make_service(min_request_interval=0.5, clock=clock)
    try:
        for i in range(5):
            assert service.reply(f"u{i}", "hi") == ["gpt:hi"]
        clock.now = 1.0
        assert service.reply("u9", "hi") == ["gpt:hi"]
        assert service._last_request == {"u9": 1.0}
    finally:
        service.shutdown()


def test_model_admin_operations():
    service, source = make_service()
    try:
        assert service.list_models() == ["gpt", "claude"]
        assert service.model_details("gpt")["status"] == "available"
        assert service.model_details("nope") == {}
        assert service.reset_model_status("gpt") is True
        assert service.reset_model_status("nope") is False
        source["names"] = ["claude"]
        assert service.refresh_models() == ["claude"]
    finally:
        service.shutdown()


def test_user_settings_and_clear():
    service, _ = make_service()
    try:
        service.set_user_model("u1", "claude")
        assert service.reply("u1", "hi") == ["claude:hi"]
        service.clear_conversation("u1")
        assert service.get_conversation_summary("u1") == "没有对话历史"
        assert service.list_personas() == ["default"]
    finally:
        service.shutdown()


def test_submit_after_shutdown():
    service, _ = make_service()
    service.shutdown()
    with pytest.raises(SessionError):
        service.submit("u1", "hi")


def test_build_service_from_settings(tmp_path):
    class Client:
        def __init__(self):
            self.calls = []

        def post(self, url, json=None, headers=None, timeout=None):
            self.calls.append({"url": url, "json": json, "timeout": timeout})
            return httpx.Response(200, json={"choices": [{"message": {"content": "你好\n---\n还有事吗"}}]})

    persona_dir = tmp_path / "personas"
    persona_dir.mkdir()
    (persona_dir / "猫娘.md").write_text("喵", encoding="utf-8")
    cfg = Settings(
        models={
            "gpt": {"type": "openai", "api_key": "sk-test-123456", "api_model_name": "gpt-4o-mini"},
            "bad": {"type": "unknown"},
        },
        default_model="gpt",
        fallback_model="gpt",
        storage_root=str(tmp_path / "storage"),
        persona_dir=str(persona_dir),
        min_request_interval=0,
        http_timeout=12,
    )
    http = Client()
    service = build_service(cfg, http_client=http)
    try:
        assert service.list_models() == ["gpt"]
        assert service.list_personas() == ["default", "猫娘"]
        assert service.reply("u1", "hi") == ["你好", "还有事吗"]
        assert http.calls[0]["json"]["model"] == "gpt-4o-mini"
        assert http.calls[0]["timeout"].read == 12

        service.set_user_persona("u1", "猫娘")
        prefs = JsonPreferenceStore(root=tmp_path / "storage")
        assert prefs.get_user_persona("u1") == "猫娘"
    finally:
        service.shutdown()


def test_module_helpers_use_default_service(monkeypatch):
    from chat_core.api import service as service_module

    service, _ = make_service()
    monkeypatch.setattr("chat_core.api.service._service", service)
    try:
        assert service_module.get_default_service() is service
        assert service_module.chat("u1", "hi") == ["gpt:hi"]
        assert service_module.list_models() == ["gpt", "claude"]
        assert service_module.model_details("claude")["name"] == "claude"
        assert service_module.reset_model_status("nope") is False
        service_module.clear_conversation("u1")
        assert service_module.get_conversation_summary("u1") == "没有对话历史"
    finally:
        service.shutdown()
