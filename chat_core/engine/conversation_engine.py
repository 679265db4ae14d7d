"""会话引擎核心模块。

持有会话集合与“当前会话”游标，实现发送 / 重试 / 新建 / 清空等变更规则，
并在每次变更后（无痕模式除外）通过 HistoryRepository 持久化。

并发模型：
- 所有变更方法都是同步的，由 UI / 事件循环逐个调用；
- 发送与重试在返回前就完成用户可见的变更和保存，然后在当前事件循环上
  调度一次 Dispatch 任务；
- Dispatch 完成后按会话 id（而不是游标或下标）回写助手消息，
  会话已被清空时直接丢弃结果。
集合中的条目只做整体替换（Conversation 不可变），并发读取总能看到完整快照。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import Author, Message
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.storage.history import HistoryRepository
from chat_core.providers.base import ChatDispatcher
from chat_core.providers.registry import ProviderDescriptor, ProviderRegistry


class ConversationEngine:
    def __init__(
        self,
        registry: ProviderRegistry,
        dispatcher: ChatDispatcher,
        repository: Optional[HistoryRepository] = None,
        cfg=settings,
        incognito: Optional[bool] = None,
    ):
        self._registry = registry
        self._dispatcher = dispatcher
        self._repository = repository
        self._settings = cfg
        self._incognito = cfg.incognito if incognito is None else incognito
        self._conversations: List[Conversation] = []
        self._current_id: Optional[str] = None
        self._pending: Set[asyncio.Task] = set()

        try:
            provider = registry.get(cfg.default_provider)
        except KeyError:
            provider = registry.default()
        self._provider: Optional[ProviderDescriptor] = provider
        self._model = provider.default_model if provider else ""

    # ---- 状态读取 ----

    @property
    def conversations(self) -> Tuple[Conversation, ...]:
        return tuple(self._conversations)

    @property
    def current_id(self) -> Optional[str]:
        return self._current_id

    @property
    def current_conversation(self) -> Optional[Conversation]:
        if self._current_id is None:
            return None
        return self.get_conversation(self._current_id)

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def current_provider(self) -> Optional[ProviderDescriptor]:
        return self._provider

    @property
    def current_model(self) -> str:
        return self._model

    @property
    def incognito(self) -> bool:
        return self._incognito

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        return None

    # ---- 会话集合变更 ----

    def load(self) -> None:
        """从持久化恢复会话集合；没有历史时生成一个欢迎会话。"""

        conversations = self._repository.load() if self._repository else []
        if not conversations:
            greeting = self._settings.welcome_message
            if greeting:
                seed = Conversation(
                    title=self._settings.welcome_title,
                    messages=(Message(greeting, Author.ASSISTANT),),
                )
            else:
                seed = Conversation()
            conversations = [seed]
        self._conversations = list(conversations)
        self._current_id = self._conversations[0].id
        log_event(logging.INFO, "Loaded conversations", {}, count=len(self._conversations))

    def new_chat(self) -> Conversation:
        conv = Conversation()
        self._conversations.insert(0, conv)
        self._current_id = conv.id
        log_event(logging.INFO, "Created new conversation", {"conversation_id": conv.id})
        self._persist()
        return conv

    def select_conversation(self, conversation_id: str) -> bool:
        if self.get_conversation(conversation_id) is None:
            return False
        self._current_id = conversation_id
        return True

    def clear_history(self) -> Conversation:
        """丢弃全部会话与持久化数据，只留下一个新的空会话。"""

        if self._repository is not None:
            try:
                self._repository.clear()
            except BusinessError as e:
                log_event(logging.ERROR, "History clear failed", {}, code=e.code, error=e.message)
        conv = Conversation()
        self._conversations = [conv]
        self._current_id = conv.id
        log_event(logging.INFO, "Cleared history", {"conversation_id": conv.id})
        self._persist()
        return conv

    def send_user_message(self, text: str) -> Optional[asyncio.Task]:
        """追加用户消息并调度一次 Dispatch。

        空白输入或没有当前会话时什么都不做，返回 None；
        否则返回调度出的任务，任务完成时助手回复已写回对应会话。
        没有运行中的事件循环时抛出 RuntimeError，此时会话与存储都不会被修改。
        """

        loop = asyncio.get_running_loop()
        current = self.current_conversation
        if not text or not text.strip() or current is None or self._provider is None:
            return None
        updated = current.with_message(Message(text, Author.USER))
        self._replace(updated)
        self._persist()
        return self._spawn(loop, updated.id, updated.messages)

    def retry(self, conversation: Conversation, message: Message) -> Optional[asyncio.Task]:
        """从某条助手消息处重新生成：丢弃它及其后的所有消息，再请求一次。"""

        loop = asyncio.get_running_loop()
        if message.author is not Author.ASSISTANT or self._provider is None:
            return None
        live = self.get_conversation(conversation.id)
        if live is None:
            return None
        index = live.index_of(message)
        if index < 0:
            return None
        truncated = live.truncated_before(index)
        self._replace(truncated)
        self._persist()
        log_event(
            logging.INFO,
            "Retrying assistant message",
            {"conversation_id": truncated.id},
            truncated_to=index,
        )
        return self._spawn(loop, truncated.id, truncated.messages)

    async def wait_idle(self) -> None:
        """等待所有在途的 Dispatch 完成。"""

        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ---- Provider / 模型选择 ----

    def select_provider(self, name: str) -> bool:
        try:
            provider = self._registry.get(name)
        except KeyError:
            return False
        self._provider = provider
        self._model = provider.default_model
        return True

    def select_model(self, model: str) -> bool:
        if self._provider is None or model not in self._provider.models:
            return False
        self._model = model
        return True

    async def refresh_local_models(self) -> List[str]:
        """刷新本地后端模型列表，返回刷新后的列表（失败时保持原列表）。"""

        local = self._registry.find_local_provider()
        if local is None:
            return []
        names = await self._dispatcher.discover_local_models(local)
        self._registry.update_local_models(names)
        if self._provider is local and self._model not in local.models:
            self._model = local.default_model
        return list(local.models)

    def set_incognito(self, enabled: bool) -> None:
        self._incognito = enabled

    # ---- 内部实现 ----

    def _spawn(
        self,
        loop: asyncio.AbstractEventLoop,
        conversation_id: str,
        history: Tuple[Message, ...],
    ) -> asyncio.Task:
        coro = self._dispatch(conversation_id, self._provider, self._model, history)
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _dispatch(
        self,
        conversation_id: str,
        provider: ProviderDescriptor,
        model: str,
        history: Tuple[Message, ...],
    ) -> None:
        outcome = await self._dispatcher.send(provider, model, history)
        reply = Message(outcome.text, Author.ASSISTANT)
        live = self.get_conversation(conversation_id)
        log_ctx: Dict[str, Any] = {"conversation_id": conversation_id, "provider": provider.name}
        if live is None:
            log_event(logging.INFO, "Dropped reply for removed conversation", log_ctx)
            return
        self._replace(live.with_message(reply))
        log_event(logging.INFO, "Stored assistant message", log_ctx, ok=outcome.ok)
        self._persist()

    def _replace(self, conversation: Conversation) -> bool:
        for i, conv in enumerate(self._conversations):
            if conv.id == conversation.id:
                self._conversations[i] = conversation
                return True
        return False

    def _persist(self) -> None:
        if self._incognito or self._repository is None:
            return
        try:
            self._repository.save(self._conversations)
        except BusinessError as e:
            # 保存失败不影响内存中的会话，下次变更会再次尝试
            log_event(logging.ERROR, "History save failed", {}, code=e.code, error=e.message)
