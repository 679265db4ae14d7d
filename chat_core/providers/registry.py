"""Provider 目录。

本模块集中描述所有可用的对话后端：

- 端点 URL 与可选的静态 API Key；
- 可选模型列表（本地后端可通过模型发现刷新）；
- requires_model_selection: 请求体是否需要携带 model 字段；
- is_local_backend: 使用本地模型服务协议（而非 OpenAI 兼容协议）。

目录是普通对象而不是进程级单例，每个 ConversationEngine 持有自己的一份，
测试中可以并存多个互不影响的实例。
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from chat_core.config.settings import settings


@dataclass
class ProviderDescriptor:
    """单个 Provider 的描述。"""

    name: str
    endpoint: str
    api_key: Optional[str] = None
    models: List[str] = field(default_factory=list)
    requires_model_selection: bool = False
    is_local_backend: bool = False

    @property
    def default_model(self) -> str:
        return self.models[0] if self.models else ""


class ProviderRegistry:
    """有序的 Provider 目录，第一项为默认选择。"""

    def __init__(self, providers: Iterable[ProviderDescriptor]):
        self._providers: List[ProviderDescriptor] = list(providers)

    def list_providers(self) -> List[ProviderDescriptor]:
        return list(self._providers)

    def default(self) -> Optional[ProviderDescriptor]:
        return self._providers[0] if self._providers else None

    def get(self, name: str) -> ProviderDescriptor:
        """根据名称获取 Provider，名称不区分大小写。"""

        key = name.lower()
        for p in self._providers:
            if p.name.lower() == key:
                return p
        raise KeyError(f"Unknown provider: {name!r}")

    def find_local_provider(self) -> Optional[ProviderDescriptor]:
        for p in self._providers:
            if p.is_local_backend:
                return p
        return None

    def update_local_models(self, names: Iterable[str]) -> None:
        """原地替换本地 Provider 的模型列表。

        空列表视为“刷新失败”，保留上一次可用的列表。
        """

        models = [n for n in names if n]
        local = self.find_local_provider()
        if local is None or not models:
            return
        local.models = models


def default_catalog(cfg=settings) -> ProviderRegistry:
    """按配置构造默认目录：两个远端 OpenAI 兼容后端 + 一个本地后端。"""

    return ProviderRegistry(
        [
            ProviderDescriptor(
                name="ChatAnywhere",
                endpoint=cfg.chatanywhere_url,
                api_key=cfg.chatanywhere_api_key or None,
                models=list(cfg.chatanywhere_models),
                requires_model_selection=True,
            ),
            ProviderDescriptor(
                name="ch.at",
                endpoint=cfg.chat_at_url,
                models=["default"],
            ),
            ProviderDescriptor(
                name="Ollama (Local)",
                endpoint=cfg.local_base_url,
                models=list(cfg.local_models),
                requires_model_selection=True,
                is_local_backend=True,
            ),
        ]
    )
