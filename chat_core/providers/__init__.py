"""LLM Provider 集成层。

该包下的模块负责：
- 定义适配器协议与 HTTP 基类 (base)。
- 解析各家响应 (normalizer)。
- 校验模型配置 (descriptors)。
- 维护模型健康状态并选择可用模型 (registry)。
- 提供各 API 方言的具体实现 (openai_client、anthropic_client 等)。
"""

from typing import Any, Dict, Type

import httpx

from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.base import DEFAULT_CONNECT_TIMEOUT, DEFAULT_REQUEST_TIMEOUT, ProviderAdapter
from chat_core.providers.deepseek_client import DeepSeekClient
from chat_core.providers.generic_client import GenericAPIClient
from chat_core.providers.local_client import LocalLLMClient
from chat_core.providers.openai_client import OpenAIClient

ADAPTER_TYPES: Dict[str, Type[Any]] = {
    "openai": OpenAIClient,
    "anthropic": AnthropicClient,
    "deepseek": DeepSeekClient,
    "api": GenericAPIClient,
    "local": LocalLLMClient,
}


def create_http_client(
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    read_timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> httpx.Client:
    """创建所有适配器共享的 HTTP 客户端，由组合根持有并负责关闭。"""

    return httpx.Client(timeout=httpx.Timeout(read_timeout, connect=connect_timeout), trust_env=False)


def create_adapter(descriptor: Any, http_client: httpx.Client) -> ProviderAdapter:
    """根据模型描述的 type 创建适配器实例。"""

    try:
        adapter_cls = ADAPTER_TYPES[descriptor.type]
    except KeyError:
        raise KeyError(f"Unknown provider type: {descriptor.type!r}") from None
    return adapter_cls(descriptor, http_client)
