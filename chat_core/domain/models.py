"""统一的消息与调用结果数据模型。

本模块定义了会话引擎与各 Provider 之间共享的标准数据结构：

- Author: 消息作者（用户 / 助手）。
- Message: 一条不可变的对话消息。
- Success / Failure: 一次 Dispatch 的归一化结果（Outcome）。

所有 Provider 协议差异都在 providers.normalizer 中被抹平为 Outcome，
会话引擎只依赖这里的模型，不感知具体厂商 JSON。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Union


# 发给 Provider 的消息角色（OpenAI / Ollama 均使用该取值）
Role = Literal["user", "assistant"]


class Author(str, Enum):
    """消息作者。序列化时使用 value。"""

    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, raw: object) -> "Author":
        """解析持久化中的作者标记。

        兼容旧数据里的 "Me" / "Bot" 写法；除用户以外的任何标记都视为助手，
        与 to_wire_history 的角色映射保持一致。
        """

        tag = str(raw or "").strip().lower()
        if tag in ("user", "me"):
            return cls.USER
        return cls.ASSISTANT


@dataclass(frozen=True)
class Message:
    """一条对话消息，创建后不可修改。"""

    text: str
    author: Author


@dataclass(frozen=True)
class Success:
    """Dispatch 成功，text 为助手回复。"""

    text: str
    ok: Literal[True] = True


@dataclass(frozen=True)
class Failure:
    """Dispatch 失败，text 为可直接展示在对话中的错误信息。"""

    text: str
    ok: Literal[False] = False


Outcome = Union[Success, Failure]
