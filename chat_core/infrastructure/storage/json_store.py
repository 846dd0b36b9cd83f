import copy
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError
from chat_core.infrastructure.logging.logger import logger


class JsonPreferenceStore:
    """UserPreferenceStore 的 JSON 文件实现。

    文件结构::

        {"default_model": "...", "users": {"<user_id>": {"model": "...", "persona": "..."}}}

    修改先作用于内存数据的副本，写临时文件并 os.replace 成功后才替换内存数据；
    写入失败时内存和磁盘都保持原值，临时文件也会被删除。
    """

    FILE_NAME = "preferences.json"

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / self.FILE_NAME
        self._lock = threading.Lock()
        self._data = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def get_user_model(self, user_id: str) -> Optional[str]:
        return self._get_user_field(user_id, "model")

    def set_user_model(self, user_id: str, model: str) -> None:
        self._set_user_field(user_id, "model", model)

    def get_user_persona(self, user_id: str) -> Optional[str]:
        return self._get_user_field(user_id, "persona")

    def set_user_persona(self, user_id: str, persona: str) -> None:
        self._set_user_field(user_id, "persona", persona)

    def get_default_model(self) -> Optional[str]:
        with self._lock:
            return self._data.get("default_model") or None

    def set_default_model(self, model: Optional[str]) -> None:
        with self._lock:
            data = copy.deepcopy(self._data)
            if model:
                data["default_model"] = model
            else:
                data.pop("default_model", None)
            self._commit(data)

    def _get_user_field(self, user_id: str, field: str) -> Optional[str]:
        with self._lock:
            user = self._data["users"].get(str(user_id)) or {}
            return user.get(field) or None

    def _set_user_field(self, user_id: str, field: str, value: str) -> None:
        with self._lock:
            data = copy.deepcopy(self._data)
            data["users"].setdefault(str(user_id), {})[field] = value
            self._commit(data)

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {"users": {}}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        if not isinstance(data, dict):
            raise BusinessError(code="STORE_READ_ERROR", message=f"{self._path} is not a JSON object")
        if not isinstance(data.get("users"), dict):
            data["users"] = {}
        return data

    def _commit(self, data: Dict[str, Any]) -> None:
        # 调用方持有锁
        tmp_path = self._root / f"{self.FILE_NAME}.{uuid4().hex}.tmp"
        try:
            tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            logger.error("Failed to write preferences", extra={"extra": {"path": str(self._path), "error": str(e)}})
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        self._data = data
