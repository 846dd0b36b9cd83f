"""模型注册表与健康状态。

每个逻辑模型对应一个适配器和一条健康记录，状态机如下::

    Available --失败--> Degraded(failure_count)
              --failure_count >= 阈值--> Cooling(until)
              --冷却结束--> Available

- 健康记录各自持有一把锁，不同模型之间的调用互不串行；invoke 路径上
  没有全局锁。
- refresh() 重新构建整张映射后一次性替换引用，读路径拿到的永远是完整的
  旧表或新表；仍然存在的模型保留原健康记录。
- resolve() 只做"偏向"：所有模型都在冷却时仍然放行原请求（fail open）。
"""

import dataclasses
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from chat_core.domain.exceptions import NotFoundError
from chat_core.domain.models import ChatRequest, ErrorKind, Message, ModelHealth, ProviderReply
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderAdapter

NO_MODEL_MESSAGE = "抱歉，请求的模型不存在，且没有可用的默认模型，请联系管理员设置可用模型。"

STATUS_AVAILABLE = "available"
STATUS_DEGRADED = "degraded"
STATUS_COOLING = "cooling"


@dataclass(frozen=True)
class CooldownPolicy:
    """冷却策略。

    fixed: 每次进入冷却都是 cooldown_seconds。
    exponential: cooldown_seconds * 2 ** (failure_count - failure_threshold)，
    以 max_cooldown_seconds 封顶。
    """

    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    strategy: str = "exponential"
    max_cooldown_seconds: float = 900.0

    def backoff(self, failure_count: int) -> float:
        if self.strategy == "fixed":
            return self.cooldown_seconds
        exponent = min(max(0, failure_count - self.failure_threshold), 32)
        return min(self.cooldown_seconds * (2 ** exponent), self.max_cooldown_seconds)


class _HealthRecord:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.health = ModelHealth()

    def _expire(self, now: float) -> None:
        # 调用方持有锁
        until = self.health.cooldown_until
        if until is not None and now >= until:
            self.health.cooldown_until = None
            self.health.failure_count = 0

    def is_available(self, now: float) -> bool:
        with self.lock:
            self._expire(now)
            return self.health.cooldown_until is None

    def record_failure(self, error: str, now: float, policy: CooldownPolicy) -> Optional[float]:
        """记录一次失败；若因此进入（或延长）冷却，返回冷却截止时间。"""

        with self.lock:
            self._expire(now)
            health = self.health
            health.failure_count += 1
            health.last_error = error
            if health.failure_count >= policy.failure_threshold:
                health.cooldown_until = now + policy.backoff(health.failure_count)
                return health.cooldown_until
            return None

    def record_success(self) -> None:
        with self.lock:
            self.health.failure_count = 0
            self.health.cooldown_until = None

    def reset(self) -> None:
        with self.lock:
            self.health = ModelHealth()

    def snapshot(self, now: float) -> ModelHealth:
        with self.lock:
            self._expire(now)
            return dataclasses.replace(self.health)


@dataclass(frozen=True)
class _ModelEntry:
    descriptor: Any
    adapter: ProviderAdapter
    health: _HealthRecord


class ModelRegistry:
    """持有已配置的适配器，跟踪健康状态并选择可用模型。

    Args:
        descriptor_source: 返回模型描述列表的函数，refresh() 时重新调用。
        adapter_factory: 由模型描述创建适配器。
        default_model: 配置的默认模型名，或返回它的函数（管理员可在运行时修改）。
        policy: 冷却策略。
        clock: 单调时钟，测试时可替换。
    """

    def __init__(
        self,
        descriptor_source: Callable[[], Iterable[Any]],
        adapter_factory: Callable[[Any], ProviderAdapter],
        default_model: Union[str, Callable[[], Optional[str]], None] = None,
        policy: Optional[CooldownPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._descriptor_source = descriptor_source
        self._adapter_factory = adapter_factory
        self._default_model = default_model
        self._policy = policy or CooldownPolicy()
        self._clock = clock
        self._entries: Dict[str, _ModelEntry] = {}
        self._refresh_lock = threading.Lock()
        self.refresh()

    # ---- 选择与调用 ----

    def resolve(self, name: str) -> str:
        """返回本次应使用的模型名。"""

        entries = self._entries
        now = self._clock()
        entry = entries.get(name)
        if entry is not None and entry.health.is_available(now):
            return name

        default = self._default_name()
        if default and default != name:
            default_entry = entries.get(default)
            if default_entry is not None and default_entry.health.is_available(now):
                self._log_fallback(name, default, "default")
                return default

        for candidate, candidate_entry in entries.items():
            if candidate != name and candidate_entry.health.is_available(now):
                self._log_fallback(name, candidate, "first_available")
                return candidate

        # 没有可用模型：放行原请求；原请求不存在时退到默认/第一个已注册模型
        if entry is not None or not entries:
            return name
        fallback = default if default in entries else next(iter(entries))
        self._log_fallback(name, fallback, "fail_open")
        return fallback

    def invoke(self, name: str, system_prompt: str, history: Iterable[Message]) -> ProviderReply:
        resolved = self.resolve(name)
        entry = self._entries.get(resolved)
        if entry is None:
            logger.error("No model available", extra={"extra": {"requested": name}})
            return ProviderReply.failure(ErrorKind.NOT_FOUND, NO_MODEL_MESSAGE, detail=name)

        req = ChatRequest(model=resolved, system_prompt=system_prompt, history=tuple(history))
        started = time.perf_counter()
        reply = entry.adapter.call(req)
        elapsed = round(time.perf_counter() - started, 3)

        if reply.ok:
            entry.health.record_success()
            logger.info(
                "Model replied",
                extra={"extra": {"model": resolved, "elapsed_seconds": elapsed, "reply_length": len(reply.text)}},
            )
            return reply

        error = reply.detail or (reply.error.value if reply.error else "error")
        until = entry.health.record_failure(error, self._clock(), self._policy)
        logger.warning(
            "Model call failed",
            extra={"extra": {
                "model": resolved,
                "error_kind": reply.error.value if reply.error else None,
                "elapsed_seconds": elapsed,
                "cooling": until is not None,
            }},
        )
        return reply

    # ---- 管理接口 ----

    def reset(self, name: str) -> None:
        entry = self._entries.get(name)
        if entry is None:
            raise NotFoundError(code="MODEL_NOT_FOUND", message=f"模型不存在: {name}", http_status=404)
        entry.health.reset()
        logger.info("Model status reset", extra={"extra": {"model": name}})

    def refresh(self) -> List[str]:
        """从配置重新加载全部模型，返回新的模型名列表（注册顺序）。"""

        with self._refresh_lock:
            previous = self._entries
            entries: Dict[str, _ModelEntry] = {}
            for descriptor in self._descriptor_source():
                if descriptor.name in entries:
                    logger.warning("Duplicate model name ignored", extra={"extra": {"model": descriptor.name}})
                    continue
                try:
                    adapter = self._adapter_factory(descriptor)
                except (KeyError, ValueError, TypeError):
                    logger.exception("Failed to create adapter", extra={"extra": {"model": descriptor.name}})
                    continue
                old = previous.get(descriptor.name)
                health = old.health if old is not None else _HealthRecord()
                entries[descriptor.name] = _ModelEntry(descriptor, adapter, health)
            self._entries = entries
        removed = [n for n in previous if n not in entries]
        logger.info(
            "Models refreshed",
            extra={"extra": {"models": list(entries), "removed": removed}},
        )
        return list(entries)

    def has_model(self, name: str) -> bool:
        return name in self._entries

    def list_models(self) -> List[str]:
        return list(self._entries)

    def details(self, name: str) -> Dict[str, Any]:
        entry = self._entries.get(name)
        if entry is None:
            raise NotFoundError(code="MODEL_NOT_FOUND", message=f"模型不存在: {name}", http_status=404)
        now = self._clock()
        health = entry.health.snapshot(now)
        if health.cooldown_until is not None:
            status = STATUS_COOLING
            available_in = round(max(0.0, health.cooldown_until - now), 1)
        else:
            status = STATUS_DEGRADED if health.failure_count else STATUS_AVAILABLE
            available_in = 0.0
        return {
            "name": name,
            "type": entry.descriptor.type,
            "description": entry.descriptor.description,
            "status": status,
            "failure_count": health.failure_count,
            "available_in": available_in,
            "last_error": health.last_error,
        }

    # ---- 辅助方法 ----

    def _default_name(self) -> Optional[str]:
        if callable(self._default_model):
            return self._default_model()
        return self._default_model

    @staticmethod
    def _log_fallback(requested: str, chosen: str, reason: str) -> None:
        logger.warning(
            "Model unavailable, falling back",
            extra={"extra": {"requested": requested, "chosen": chosen, "reason": reason}},
        )
