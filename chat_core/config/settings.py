"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。模型与人设的定义只从
config.yaml 读取（嵌套结构不适合放在环境变量里）。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 模型选择 ----
    default_model: str = Field(default="gpt-3.5-turbo", description="默认逻辑模型名")
    fallback_model: str = Field(
        default="gpt-3.5-turbo",
        description="用户与管理员都未指定模型时使用的兜底逻辑模型名",
    )
    default_persona: str = Field(default="default", description="默认人设名称")
    persona_as_system_prompt: bool = Field(
        default=True,
        description="人设作为 system 消息发送；关闭时作为首条 user 消息（仅对支持的适配器生效）",
    )

    # ---- 全局 Provider 凭证，按类型合并进模型配置 ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com", description="OpenAI API 基础URL")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API 密钥")
    anthropic_base_url: str = Field(default="https://api.anthropic.com", description="Anthropic API 基础URL")
    deepseek_api_key: Optional[str] = Field(default=None, description="DeepSeek API 密钥")
    deepseek_base_url: str = Field(default="https://api.deepseek.com", description="DeepSeek API 基础URL")
    local_api_endpoint: str = Field(
        default="http://localhost:1234/v1/chat/completions",
        description="本地模型服务端点",
    )

    # ---- 模型与人设定义 ----
    models: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="逻辑模型名 -> 模型配置")
    personas: Dict[str, str] = Field(default_factory=dict, description="人设名 -> 提示词")
    persona_dir: str = Field(default="personas", description="人设 .md 文件目录")

    # ---- 会话 ----
    max_conversation_length: int = Field(default=20, ge=1, le=200, description="每个用户保留的最大消息数")
    max_segments: int = Field(default=3, ge=0, description="单次回复最多发送的消息段数，0 表示不限制")
    min_request_interval: float = Field(default=0.5, ge=0.0, description="同一用户两次请求的最小间隔（秒）")

    # ---- 健康状态 ----
    failure_threshold: int = Field(default=3, ge=1, description="连续失败多少次后进入冷却")
    cooldown_seconds: float = Field(default=60.0, ge=0.0, description="冷却基础时长（秒）")
    cooldown_strategy: Literal["fixed", "exponential"] = Field(default="exponential", description="冷却退避策略")
    max_cooldown_seconds: float = Field(default=900.0, ge=0.0, description="指数退避上限（秒）")

    # ---- HTTP / 线程池 ----
    connect_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 连接超时（秒）")
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 读取超时（秒）")
    worker_pool_size: int = Field(default=4, ge=1, le=64, description="处理 reply 的工作线程数")
    max_pending_requests: int = Field(default=20, ge=0, description="线程池排队上限")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key", "anthropic_api_key", "deepseek_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    def provider_defaults(self) -> Dict[str, Dict[str, Any]]:
        """按适配器类型给出全局默认值，单个模型配置中的同名字段优先。"""

        return {
            "openai": {"api_key": self.openai_api_key, "api_base_url": self.openai_base_url},
            "anthropic": {"api_key": self.anthropic_api_key, "api_base_url": self.anthropic_base_url},
            "deepseek": {
                "api_key": self.deepseek_api_key,
                "api_base_url": self.deepseek_base_url,
                "persona_as_system_prompt": self.persona_as_system_prompt,
            },
            "local": {"api_endpoint": self.local_api_endpoint},
        }


def load_settings(**overrides: Any) -> Settings:
    """重新读取所有配置源，供 refresh 使用。"""

    return Settings(**overrides)


settings = Settings()
