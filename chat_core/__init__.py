"""Chat Core 顶层包。

该包提供多 Provider 对话客户端的核心实现，
包括配置加载、领域模型、Provider 目录与调度、
会话引擎以及会话历史的持久化。
"""

from chat_core.api.service import create_engine
from chat_core.engine.conversation_engine import ConversationEngine

__all__ = ["ConversationEngine", "create_engine"]
