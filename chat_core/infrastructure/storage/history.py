"""会话集合的序列化与仓库。

blob 格式为 JSON 数组，每个会话一条记录::

    [{"id": "...", "title": "...", "messages": [{"text": "...", "author": "user"}]}]

读取时忽略未知字段；blob 缺失、损坏或读失败都按“没有历史”处理，从不抛出。
"""

import json
from typing import Any, Dict, List, Sequence

from chat_core.domain.conversation import DEFAULT_TITLE, Conversation, HistoryStore
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import Author, Message
from chat_core.infrastructure.logging.logger import logger


def encode_conversations(conversations: Sequence[Conversation]) -> str:
    payload = [
        {
            "id": conv.id,
            "title": conv.title,
            "messages": [{"text": m.text, "author": m.author.value} for m in conv.messages],
        }
        for conv in conversations
    ]
    return json.dumps(payload, ensure_ascii=False, indent=2)


def decode_conversations(blob: str) -> List[Conversation]:
    """解析 blob；结构不合法时抛出 ValueError。"""

    data = json.loads(blob)
    if not isinstance(data, list):
        raise ValueError("conversation history must be a JSON array")
    return [_to_conversation(item) for item in data]


def _to_conversation(data: Any) -> Conversation:
    if not isinstance(data, dict) or not data.get("id"):
        raise ValueError(f"invalid conversation record: {data!r}")
    messages = data.get("messages") or []
    if not isinstance(messages, list):
        raise ValueError(f"invalid messages for conversation {data['id']!r}")
    return Conversation(
        id=str(data["id"]),
        title=DEFAULT_TITLE if data.get("title") is None else str(data["title"]),
        messages=tuple(_to_message(m) for m in messages),
    )


def _to_message(data: Dict[str, Any]) -> Message:
    if not isinstance(data, dict):
        raise ValueError(f"invalid message record: {data!r}")
    return Message(text=str(data.get("text") or ""), author=Author.parse(data.get("author")))


class HistoryRepository:
    """组合编解码与 HistoryStore，向引擎提供 Conversation 级别的读写。"""

    def __init__(self, store: HistoryStore):
        self._store = store

    def save(self, conversations: Sequence[Conversation]) -> None:
        self._store.save(encode_conversations(conversations))

    def load(self) -> List[Conversation]:
        try:
            blob = self._store.load()
        except BusinessError as e:
            logger.warning(f"History read failed: {e.message}", extra={"extra": {"code": e.code}})
            return []
        if not blob:
            return []
        try:
            return decode_conversations(blob)
        except ValueError as e:
            # json.JSONDecodeError 也是 ValueError
            logger.warning(f"History blob is corrupt, starting fresh: {e}")
            return []

    def clear(self) -> None:
        self._store.clear()
