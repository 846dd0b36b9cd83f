"""模型描述与配置校验。

本模块将"逻辑模型名"与"具体厂商模型"解耦：

- 逻辑名（name）：用户/管理员看到的名称，例如 "gpt-4o" 或 "猫娘专用"。
- 各适配器类型（type）有自己的配置结构，加载时一次性用 Pydantic 校验，
  之后不可变；刷新时整体替换。

配置示例（config.yaml）::

    models:
      gpt-4o:
        type: openai
        api_model_name: gpt-4o
      claude:
        type: anthropic
        model_name: claude-3-5-sonnet-latest
"""

from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from chat_core.infrastructure.logging.logger import logger


class BaseDescriptor(BaseModel):
    """所有模型描述的公共字段。"""

    model_config = ConfigDict(frozen=True, extra="ignore", protected_namespaces=())

    name: str
    description: str = ""
    temperature: float = 0.7
    max_tokens: int = Field(default=2000, ge=1)
    connect_timeout: Optional[float] = Field(default=None, ge=1.0)
    request_timeout: Optional[float] = Field(default=None, ge=1.0)
    response_content_path: Optional[str] = None


class OpenAIDescriptor(BaseDescriptor):
    type: Literal["openai"] = "openai"
    description: str = "OpenAI模型"
    api_key: Optional[str] = None
    api_base_url: str = "https://api.openai.com"
    api_model_name: Optional[str] = None

    @property
    def provider_model(self) -> str:
        return self.api_model_name or self.name


class AnthropicDescriptor(BaseDescriptor):
    type: Literal["anthropic"] = "anthropic"
    description: str = "Anthropic Claude模型"
    api_key: Optional[str] = None
    api_base_url: str = "https://api.anthropic.com"
    model_name: Optional[str] = None
    anthropic_version: str = "2023-06-01"

    @property
    def provider_model(self) -> str:
        return self.model_name or self.name


class DeepSeekDescriptor(BaseDescriptor):
    type: Literal["deepseek"] = "deepseek"
    description: str = "DeepSeek AI Model"
    api_key: Optional[str] = None
    api_base_url: str = "https://api.deepseek.com"
    model_name: str = "deepseek-chat"
    persona_as_system_prompt: bool = True
    enable_search: bool = False
    top_p: Optional[float] = None
    stop_sequences: List[str] = Field(default_factory=list)


class GenericAPIDescriptor(BaseDescriptor):
    type: Literal["api"] = "api"
    description: str = "通用API模型"
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    request_template: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, Any] = Field(default_factory=dict)
    auth_header: str = "Authorization"
    auth_format: str = "Bearer {api_key}"


class LocalDescriptor(BaseDescriptor):
    type: Literal["local"] = "local"
    description: str = "本地大语言模型"
    api_endpoint: str = "http://localhost:1234/v1/chat/completions"
    api_key: Optional[str] = None
    local_model_name: Optional[str] = None

    @property
    def provider_model(self) -> str:
        return self.local_model_name or self.name


ModelDescriptor = Annotated[
    Union[OpenAIDescriptor, AnthropicDescriptor, DeepSeekDescriptor, GenericAPIDescriptor, LocalDescriptor],
    Field(discriminator="type"),
]

SUPPORTED_TYPES = ("openai", "anthropic", "deepseek", "api", "local")

_descriptor_adapter: TypeAdapter = TypeAdapter(ModelDescriptor)


def parse_descriptor(name: str, raw: Mapping[str, Any], defaults: Optional[Mapping[str, Any]] = None) -> Any:
    """校验单个模型配置，失败时抛出 pydantic.ValidationError。"""

    merged: Dict[str, Any] = {k: v for k, v in (defaults or {}).items() if v is not None}
    merged.update({k: v for k, v in raw.items() if v is not None and v != ""})
    merged["name"] = name
    merged["type"] = str(raw.get("type") or "openai").lower()
    return _descriptor_adapter.validate_python(merged)


def load_model_descriptors(
    models: Mapping[str, Any],
    provider_defaults: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> List[Any]:
    """从配置映射加载模型描述，保持配置中的注册顺序。

    不支持的类型或校验失败的条目会被记录并跳过，不影响其他模型。
    """

    provider_defaults = provider_defaults or {}
    descriptors: List[Any] = []
    for name, raw in models.items():
        if not isinstance(raw, Mapping):
            logger.warning("Model config is not a mapping, skipped", extra={"extra": {"model": name}})
            continue
        kind = str(raw.get("type") or "openai").lower()
        if kind not in SUPPORTED_TYPES:
            logger.warning("Unsupported model type", extra={"extra": {"model": name, "type": kind}})
            continue
        try:
            descriptor = parse_descriptor(str(name), raw, provider_defaults.get(kind))
        except ValidationError as e:
            logger.error(
                "Invalid model config, skipped",
                extra={"extra": {
                    "model": name,
                    "type": kind,
                    "errors": e.errors(include_url=False, include_input=False, include_context=False),
                }},
            )
            continue
        descriptors.append(descriptor)
        logger.info("Loaded model", extra={"extra": {"model": name, "type": kind}})
    return descriptors
