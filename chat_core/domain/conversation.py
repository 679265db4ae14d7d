from dataclasses import dataclass, field, replace
from typing import Optional, Protocol, Tuple
from uuid import uuid4

from .models import Author, Message


DEFAULT_TITLE = "New Chat"
TITLE_LENGTH = 25


def _new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class Conversation:
    """一个会话：有序的消息记录。

    实例不可变，任何修改都通过 replace 生成新对象，
    由 ConversationEngine 整体替换集合中的旧条目。
    """

    title: str = DEFAULT_TITLE
    messages: Tuple[Message, ...] = ()
    id: str = field(default_factory=_new_id)

    def with_message(self, message: Message) -> "Conversation":
        """追加一条消息；空会话收到第一条用户消息时，用其前 25 个字符作为标题。"""

        title = self.title
        if not self.messages and message.author is Author.USER:
            title = message.text[:TITLE_LENGTH]
        return replace(self, title=title, messages=self.messages + (message,))

    def truncated_before(self, index: int) -> "Conversation":
        return replace(self, messages=self.messages[:index])

    def index_of(self, message: Message) -> int:
        """按对象身份查找消息位置，找不到返回 -1。"""

        for i, m in enumerate(self.messages):
            if m is message:
                return i
        return -1


class HistoryStore(Protocol):
    """持久化网关：按固定槽位保存整个会话集合的序列化 blob。

    实现者只负责读写不透明的字符串，不理解也不修改会话内容。
    """

    def save(self, blob: str) -> None:
        ...

    def load(self) -> Optional[str]:
        ...

    def clear(self) -> None:
        ...
