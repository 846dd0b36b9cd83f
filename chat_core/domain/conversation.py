"""会话历史与用户偏好。

- ConversationSession: 单个用户的有界、有序消息历史，自带一把锁，
  同一用户的多次 reply() 在这把锁上串行。
- ConversationStore: user_id -> ConversationSession 的映射，仅在
  "获取或创建" 时短暂持有映射锁，不同用户之间互不阻塞。
- UserPreferenceStore: 外部持久化的用户模型/人设选择（协议）。
"""

import threading
from typing import Dict, List, Optional, Protocol, Tuple

from .models import Message


class ConversationSession:
    def __init__(self, user_id: str, max_length: int = 20):
        self.user_id = user_id
        self.max_length = max(1, max_length)
        self.lock = threading.RLock()
        self.truncated_replies = 0
        self._messages: List[Message] = []

    @property
    def history(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def remove(self, message: Message) -> bool:
        """按对象身份移除一条消息（用于失败回滚）。"""

        for idx in range(len(self._messages) - 1, -1, -1):
            if self._messages[idx] is message:
                del self._messages[idx]
                return True
        return False

    def trim(self) -> int:
        """从最旧一端裁剪到 max_length，返回被裁掉的条数。"""

        overflow = len(self._messages) - self.max_length
        if overflow <= 0:
            return 0
        del self._messages[:overflow]
        return overflow

    def clear(self) -> None:
        self._messages.clear()


class ConversationStore:
    """内存中的会话映射。"""

    def __init__(self, max_length: int = 20):
        self.max_length = max_length
        self._sessions: Dict[str, ConversationSession] = {}
        self._lock = threading.Lock()

    def get_or_create(self, user_id: str) -> ConversationSession:
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                session = ConversationSession(user_id, self.max_length)
                self._sessions[user_id] = session
            return session

    def get(self, user_id: str) -> Optional[ConversationSession]:
        with self._lock:
            return self._sessions.get(user_id)

    def clear(self, user_id: str) -> None:
        session = self.get(user_id)
        if session is None:
            return
        with session.lock:
            session.clear()


class UserPreferenceStore(Protocol):
    """用户偏好存储协议，由外部持久化层实现。"""

    def get_user_model(self, user_id: str) -> Optional[str]:
        ...

    def set_user_model(self, user_id: str, model: str) -> None:
        ...

    def get_user_persona(self, user_id: str) -> Optional[str]:
        ...

    def set_user_persona(self, user_id: str, persona: str) -> None:
        ...

    def get_default_model(self) -> Optional[str]:
        ...
