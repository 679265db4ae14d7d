"""Dispatch 抽象接口。

ConversationEngine 不直接依赖 httpx 或具体后端协议，而是依赖此协议：

- send(provider, model, history): 执行一次非流式对话，返回 Outcome，不抛异常。
- discover_local_models(provider): 查询本地后端模型列表，失败返回空列表。

测试中可以用任意满足该协议的假对象替换 DispatchClient。
"""

from typing import List, Optional, Protocol, Sequence

from chat_core.domain.models import Message, Outcome
from chat_core.providers.registry import ProviderDescriptor


class ChatDispatcher(Protocol):
    async def send(self, provider: ProviderDescriptor, model: str, history: Sequence[Message]) -> Outcome:
        ...

    async def discover_local_models(self, provider: Optional[ProviderDescriptor] = None) -> List[str]:
        ...
