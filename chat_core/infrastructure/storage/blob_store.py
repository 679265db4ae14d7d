import os
from pathlib import Path
from typing import Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import HistoryStore
from chat_core.domain.exceptions import StorageError


class JsonFileBlobStore(HistoryStore):
    """把会话集合的序列化 blob 存到 <storage_root>/<slot>.json。

    写入先落临时文件再 os.replace，避免进程中断留下半截文件。
    """

    def __init__(self, root: str | Path | None = None, slot: str | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / f"{slot or settings.history_slot}.json"

    @property
    def path(self) -> Path:
        return self._path

    def save(self, blob: str) -> None:
        tmp_path = self._root / f"{self._path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(blob, encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e))

    def load(self) -> Optional[str]:
        if not self._path.exists():
            return None
        try:
            return self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e))

    def clear(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(code="STORE_DELETE_ERROR", message=str(e))
