"""Provider 集成层。

该包下的模块负责：
- 维护 Provider 目录 (registry)。
- 内部消息与各后端 JSON 的相互转换 (normalizer)。
- 定义调度抽象接口 (base) 并提供 httpx 实现 (dispatch_client)。
"""

from chat_core.config.settings import settings
from chat_core.providers.base import ChatDispatcher
from chat_core.providers.dispatch_client import DispatchClient
from chat_core.providers.registry import ProviderDescriptor, ProviderRegistry, default_catalog


def create_registry(cfg=None) -> ProviderRegistry:
    """根据配置创建一份独立的 Provider 目录。"""

    return default_catalog(cfg or settings)


def create_dispatch_client(cfg=None) -> ChatDispatcher:
    return DispatchClient(cfg or settings)


__all__ = [
    "ChatDispatcher",
    "DispatchClient",
    "ProviderDescriptor",
    "ProviderRegistry",
    "create_dispatch_client",
    "create_registry",
]
