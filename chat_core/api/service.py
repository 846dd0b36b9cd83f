"""对外 API 服务模块。

ChatService 是组合根：由 Settings 构建共享的 httpx.Client、模型注册表、
人设目录、偏好存储和编排器，并在有界线程池中执行 reply。传输层、控制台
或 GUI 只需要依赖这里暴露的方法（或模块级的简化函数）。
"""

import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import httpx

from chat_core.agents.orchestrator import ConversationOrchestrator, OrchestratorConfig
from chat_core.config.settings import Settings, load_settings, settings
from chat_core.domain.conversation import ConversationStore, UserPreferenceStore
from chat_core.domain.exceptions import NotFoundError, SessionError
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonPreferenceStore
from chat_core.prompts import PersonaCatalog
from chat_core.providers import create_adapter, create_http_client
from chat_core.providers.descriptors import SUPPORTED_TYPES, load_model_descriptors
from chat_core.providers.registry import CooldownPolicy, ModelRegistry

TOO_FREQUENT_MESSAGE = "请求过于频繁，请稍后再试"


class ConfigSource:
    """当前生效的 Settings；refresh 时可通过 loader 重新读取所有配置源。"""

    def __init__(self, cfg: Settings, loader: Optional[Callable[[], Settings]] = None):
        self.current = cfg
        self._loader = loader

    def reload(self) -> Settings:
        if self._loader is not None:
            self.current = self._loader()
        return self.current

    def model_descriptors(self) -> List[Any]:
        cfg = self.current
        defaults = cfg.provider_defaults()
        timeouts = {"connect_timeout": cfg.connect_timeout, "request_timeout": cfg.http_timeout}
        merged = {kind: {**timeouts, **defaults.get(kind, {})} for kind in SUPPORTED_TYPES}
        return load_model_descriptors(cfg.models, merged)


class ChatService:
    """聊天核心的对外入口。

    - submit/reply 在线程池中执行，排队数超过上限时提交方阻塞等待。
    - 同一用户的请求串行执行，只有正在处理的那一轮占用工作线程。
    - 同一用户两次请求间隔小于 min_request_interval 时直接返回提示，
      不进入线程池，也不修改会话历史。
    """

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        registry: ModelRegistry,
        personas: PersonaCatalog,
        config_source: Optional[ConfigSource] = None,
        max_workers: int = 4,
        max_pending: int = 20,
        min_request_interval: float = 0.0,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._orchestrator = orchestrator
        self._registry = registry
        self._personas = personas
        self._config_source = config_source
        self._http_client = http_client
        self._min_interval = min_request_interval
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="chat-worker")
        self._slots = threading.BoundedSemaphore(max_workers + max_pending)
        self._last_request: Dict[str, float] = {}
        self._rate_lock = threading.Lock()
        self._waiting: Dict[str, Deque[Tuple[str, Future]]] = {}
        self._queue_lock = threading.Lock()
        self._closed = False

    @property
    def orchestrator(self) -> ConversationOrchestrator:
        return self._orchestrator

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    # ---- 对话 ----

    def submit(self, user_id: str, text: str) -> "Future[List[str]]":
        """提交一轮对话。

        同一用户的请求按提交顺序排队，前一轮结束后才把下一轮交给线程池，
        排队中的请求不占用工作线程。
        """

        if self._closed:
            raise SessionError(code="SERVICE_CLOSED", message="服务已关闭")
        future: "Future[List[str]]" = Future()
        if not self._allow_request(user_id):
            logger.info("Request too frequent", extra={"extra": {"user_id": user_id}})
            future.set_result([TOO_FREQUENT_MESSAGE])
            return future

        self._slots.acquire()
        future.add_done_callback(lambda _: self._slots.release())
        with self._queue_lock:
            waiting = self._waiting.get(user_id)
            if waiting is not None:
                waiting.append((text, future))
                return future
            self._waiting[user_id] = deque()
        self._dispatch(user_id, text, future)
        return future

    def reply(self, user_id: str, text: str) -> List[str]:
        """同步获取回复；空列表表示模型选择不回复。"""

        return self.submit(user_id, text).result()

    def clear_conversation(self, user_id: str) -> None:
        self._orchestrator.clear(user_id)

    def get_conversation_summary(self, user_id: str) -> str:
        return self._orchestrator.summary(user_id)

    def set_user_model(self, user_id: str, model: str) -> None:
        self._orchestrator.set_user_model(user_id, model)

    def set_user_persona(self, user_id: str, persona: str) -> None:
        self._orchestrator.set_user_persona(user_id, persona)

    # ---- 模型管理 ----

    def list_models(self) -> List[str]:
        return self._registry.list_models()

    def model_details(self, name: str) -> Dict[str, Any]:
        try:
            return self._registry.details(name)
        except NotFoundError:
            return {}

    def reset_model_status(self, name: str) -> bool:
        try:
            self._registry.reset(name)
        except NotFoundError:
            return False
        return True

    def refresh_models(self) -> List[str]:
        if self._config_source is not None:
            self._config_source.reload()
        return self._registry.refresh()

    # ---- 人设 ----

    def list_personas(self) -> List[str]:
        return self._personas.names()

    def refresh_personas(self) -> List[str]:
        if self._config_source is None:
            return self._personas.refresh()
        cfg = self._config_source.reload()
        return self._personas.refresh(cfg.personas)

    # ---- 生命周期 ----

    def shutdown(self, wait: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait)
        if self._http_client is not None:
            self._http_client.close()
        logger.info("Chat service stopped")

    def _dispatch(self, user_id: str, text: str, future: "Future[List[str]]") -> None:
        try:
            inner = self._executor.submit(self._orchestrator.reply, user_id, text)
        except RuntimeError:
            future.set_exception(SessionError(code="SERVICE_CLOSED", message="服务已关闭"))
            self._advance(user_id)
            return
        inner.add_done_callback(lambda done: self._finish(user_id, done, future))

    def _finish(self, user_id: str, done: Future, future: "Future[List[str]]") -> None:
        if done.cancelled():
            future.cancel()
        elif done.exception() is not None:
            future.set_exception(done.exception())
        else:
            future.set_result(done.result())
        self._advance(user_id)

    def _advance(self, user_id: str) -> None:
        with self._queue_lock:
            waiting = self._waiting.get(user_id)
            if not waiting:
                self._waiting.pop(user_id, None)
                return
            text, future = waiting.popleft()
        self._dispatch(user_id, text, future)

    def _allow_request(self, user_id: str) -> bool:
        if self._min_interval <= 0:
            return True
        now = self._clock()
        with self._rate_lock:
            last = self._last_request.get(user_id)
            if last is not None and now - last < self._min_interval:
                return False
            expired = [uid for uid, t in self._last_request.items() if now - t >= self._min_interval]
            for uid in expired:
                del self._last_request[uid]
            self._last_request[user_id] = now
            return True


def build_service(
    cfg: Optional[Settings] = None,
    preferences: Optional[UserPreferenceStore] = None,
    http_client: Optional[httpx.Client] = None,
) -> ChatService:
    """根据配置组装完整的 ChatService。

    未传入 cfg 时使用全局 settings，并在 refresh 时重新读取配置源。
    """

    source = ConfigSource(cfg, None) if cfg is not None else ConfigSource(settings, load_settings)
    current = source.current
    owned_client = http_client is None
    client = http_client or create_http_client(current.connect_timeout, current.http_timeout)
    prefs = preferences or JsonPreferenceStore(root=current.storage_root)

    registry = ModelRegistry(
        descriptor_source=source.model_descriptors,
        adapter_factory=lambda descriptor: create_adapter(descriptor, client),
        default_model=lambda: prefs.get_default_model() or source.current.fallback_model,
        policy=CooldownPolicy(
            failure_threshold=current.failure_threshold,
            cooldown_seconds=current.cooldown_seconds,
            strategy=current.cooldown_strategy,
            max_cooldown_seconds=current.max_cooldown_seconds,
        ),
    )
    personas = PersonaCatalog(current.personas, current.persona_dir)
    orchestrator = ConversationOrchestrator(
        registry=registry,
        personas=personas,
        preferences=prefs,
        store=ConversationStore(current.max_conversation_length),
        config=OrchestratorConfig(
            max_conversation_length=current.max_conversation_length,
            max_segments=current.max_segments,
            fallback_model=current.default_model,
            default_persona=current.default_persona,
        ),
    )
    logger.info(
        "Chat service started",
        extra={"extra": {
            "models": registry.list_models(),
            "personas": personas.names(),
            "workers": current.worker_pool_size,
        }},
    )
    return ChatService(
        orchestrator=orchestrator,
        registry=registry,
        personas=personas,
        config_source=source,
        max_workers=current.worker_pool_size,
        max_pending=current.max_pending_requests,
        min_request_interval=current.min_request_interval,
        http_client=client if owned_client else None,
    )


_service: Optional[ChatService] = None
_service_lock = threading.Lock()


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    with _service_lock:
        if _service is None:
            _service = build_service()
        return _service


def chat(user_id: str, text: str) -> List[str]:
    """处理一条用户消息，返回要发送的消息段。"""
    return get_default_service().reply(user_id, text)


def clear_conversation(user_id: str) -> None:
    get_default_service().clear_conversation(user_id)


def get_conversation_summary(user_id: str) -> str:
    return get_default_service().get_conversation_summary(user_id)


def list_models() -> List[str]:
    return get_default_service().list_models()


def model_details(name: str) -> Dict[str, Any]:
    return get_default_service().model_details(name)


def reset_model_status(name: str) -> bool:
    return get_default_service().reset_model_status(name)


def refresh_models() -> List[str]:
    return get_default_service().refresh_models()
