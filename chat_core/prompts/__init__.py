"""人设与系统提示词。

人设来源有两处：配置中的 personas 映射，以及 persona_dir 目录下的
`<名称>.md` 文件（同名时以文件为准）。无论来源如何，"default" 人设总是
存在；请求未知人设时回退到 default。

build_system_prompt() 在人设提示词后追加固定的特殊指令，告诉模型如何
分段回复以及如何表示"不回复"。
"""

import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from chat_core.domain.models import PersonaDescriptor
from chat_core.infrastructure.logging.logger import logger

DEFAULT_PERSONA = "default"
DEFAULT_PERSONA_PROMPT = "你是一个有用的AI助手，请用中文回答问题。"

SEGMENT_SEPARATOR = "\n---\n"
NO_RESPONSE_SENTINEL = "[NO_RESPONSE]"

SPECIAL_INSTRUCTIONS = (
    "\n\n特殊指令说明：\n"
    "1. 如果你想发送多条消息，请在消息之间使用 \\n---\\n 作为分隔符。系统会将你的回复拆分成多条单独发送。\n"
    f"2. 如果你认为某个问题不需要回复，可以回复 {NO_RESPONSE_SENTINEL} 表示不发送任何消息。"
)


def build_system_prompt(persona_prompt: str) -> str:
    """人设提示词 + 固定的分段/不回复指令。"""

    return persona_prompt + SPECIAL_INSTRUCTIONS


class PersonaCatalog:
    """人设目录。

    refresh() 构建新表后整体替换，读取方不需要加锁。
    """

    def __init__(
        self,
        personas: Optional[Mapping[str, str]] = None,
        persona_dir: Union[str, Path, None] = None,
    ):
        self._configured = dict(personas or {})
        self._persona_dir = Path(persona_dir) if persona_dir else None
        self._personas: Dict[str, PersonaDescriptor] = {}
        self._refresh_lock = threading.Lock()
        self.refresh()

    def refresh(self, personas: Optional[Mapping[str, str]] = None) -> List[str]:
        """重新加载人设；传入 personas 时同时替换配置中的人设定义。"""

        with self._refresh_lock:
            if personas is not None:
                self._configured = dict(personas)
            loaded: Dict[str, PersonaDescriptor] = {}
            for name, prompt in self._configured.items():
                if prompt and str(prompt).strip():
                    loaded[name] = PersonaDescriptor(name=name, prompt=str(prompt).strip())
            loaded.update(self._load_dir())
            if DEFAULT_PERSONA not in loaded:
                logger.warning("Default persona not configured, using built-in prompt")
                loaded[DEFAULT_PERSONA] = PersonaDescriptor(DEFAULT_PERSONA, DEFAULT_PERSONA_PROMPT)
            self._personas = loaded
        logger.info("Personas loaded", extra={"extra": {"personas": list(loaded)}})
        return list(loaded)

    def get(self, name: Optional[str]) -> PersonaDescriptor:
        personas = self._personas
        persona = personas.get(name or DEFAULT_PERSONA)
        if persona is None:
            logger.warning("Unknown persona, using default", extra={"extra": {"persona": name}})
            persona = personas[DEFAULT_PERSONA]
        return persona

    def has(self, name: str) -> bool:
        return name in self._personas

    def names(self) -> List[str]:
        return sorted(self._personas)

    def _load_dir(self) -> Dict[str, PersonaDescriptor]:
        found: Dict[str, PersonaDescriptor] = {}
        if self._persona_dir is None or not self._persona_dir.is_dir():
            return found
        for path in sorted(self._persona_dir.glob("*.md")):
            try:
                content = path.read_text(encoding="utf-8").strip()
            except OSError:
                logger.exception("Failed to read persona file", extra={"extra": {"path": str(path)}})
                continue
            if content:
                found[path.stem] = PersonaDescriptor(name=path.stem, prompt=content)
        return found
