"""对外 API 服务模块。

提供装配好的 ConversationEngine 以及供上层 UI 使用的简化导出函数。
不做单例缓存：每次 create_engine 都得到一套独立的目录、客户端与仓库。
"""

from typing import Any, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import HistoryStore
from chat_core.engine.conversation_engine import ConversationEngine
from chat_core.infrastructure.logging.logger import setup_logger
from chat_core.infrastructure.storage.blob_store import JsonFileBlobStore
from chat_core.infrastructure.storage.history import HistoryRepository
from chat_core.providers import create_dispatch_client, create_registry


def create_engine(cfg=None, store: Optional[HistoryStore] = None) -> ConversationEngine:
    """装配并加载一个会话引擎。

    Args:
        cfg: 配置对象，默认使用全局 settings
        store: 持久化网关（可选，默认写到 storage_root 下的 JSON 文件）

    Returns:
        已从历史记录恢复的 ConversationEngine
    """
    cfg = cfg or settings
    setup_logger(cfg)
    if store is None:
        store = JsonFileBlobStore(root=cfg.storage_root, slot=cfg.history_slot)
    engine = ConversationEngine(
        registry=create_registry(cfg),
        dispatcher=create_dispatch_client(cfg),
        repository=HistoryRepository(store),
        cfg=cfg,
    )
    engine.load()
    return engine


def conversation_summaries(engine: ConversationEngine) -> List[Dict[str, Any]]:
    """列出所有会话。

    Returns:
        会话列表，每项包含 id, title, message_count, current
    """
    current_id = engine.current_id
    return [
        {
            "id": c.id,
            "title": c.title,
            "message_count": len(c.messages),
            "current": c.id == current_id,
        }
        for c in engine.conversations
    ]


def conversation_messages(engine: ConversationEngine, conversation_id: str) -> List[Dict[str, Any]]:
    """获取会话的所有消息，会话不存在时返回空列表。"""
    conv = engine.get_conversation(conversation_id)
    if conv is None:
        return []
    return [{"text": m.text, "author": m.author.value} for m in conv.messages]
