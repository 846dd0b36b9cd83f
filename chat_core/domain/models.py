"""统一的对话与结果数据模型。

本模块定义了编排层、注册表与各 Provider 适配器之间共享的标准数据结构：

- Message: 会话历史中的一条消息（user/assistant），追加后不可变。
- ChatRequest: 交给适配器的规范请求 (system_prompt, history)。
- ProviderReply: 适配器的统一返回值，总是包含可展示的文本。
- ModelHealth: 单个模型的健康状态，只由 ModelRegistry 修改。
- PersonaDescriptor: 人设（名称 + 提示词）。

所有 Provider 适配器都必须只依赖这些模型，并负责在各自的 API JSON
和这些模型之间做转换。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple


# 会话历史中的消息角色。system 提示词不进入历史，由 ChatRequest 单独携带
Role = Literal["user", "assistant"]


class ErrorKind(str, Enum):
    """错误类别，供注册表做健康统计、供日志做归类。"""

    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    PROVIDER = "provider"
    EMPTY_RESPONSE = "empty_response"
    STRUCTURED_ERROR = "structured_error"
    UNRECOGNIZED_FORMAT = "unrecognized_format"
    NOT_FOUND = "not_found"
    SESSION = "session"


@dataclass(frozen=True)
class Message:
    """一条会话消息。"""

    role: Role
    content: str

    def to_payload(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    """一次完整的规范请求。

    - model: 逻辑模型名（由注册表解析后填入）。
    - system_prompt: 人设提示词 + 固定的多段/不回复指令。
    - history: 截至本轮（含本轮用户消息）的会话历史快照。
    """

    model: str
    system_prompt: str
    history: Tuple[Message, ...] = ()


@dataclass(frozen=True)
class ProviderReply:
    """适配器的统一返回值。

    text 总是可以直接展示给用户：成功时是模型回复，失败时是用户安全的
    错误描述。error 为 None 表示成功；detail 仅用于日志，不展示给用户。
    """

    text: str
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, kind: ErrorKind, text: str, detail: Optional[str] = None) -> "ProviderReply":
        return cls(text=text, error=kind, detail=detail)


@dataclass
class ModelHealth:
    """单个模型的健康状态。

    cooldown_until 使用注册表时钟（默认 time.monotonic）的时间戳。
    """

    failure_count: int = 0
    cooldown_until: Optional[float] = None
    last_error: Optional[str] = None


@dataclass(frozen=True)
class PersonaDescriptor:
    """人设描述。"""

    name: str
    prompt: str
