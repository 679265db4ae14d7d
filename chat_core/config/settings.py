"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class ChatSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="ChatAnywhere",
        description="启动时选中的 Provider 名称，未知名称时回退到目录第一项",
    )

    # ChatAnywhere（OpenAI 兼容，需要 API Key 与模型选择）
    chatanywhere_api_key: Optional[str] = Field(default=None, description="ChatAnywhere API 密钥")
    chatanywhere_url: str = Field(
        default="https://api.chatanywhere.tech/v1/chat/completions",
        description="ChatAnywhere chat/completions 端点",
    )
    chatanywhere_models: List[str] = Field(
        default_factory=lambda: [
            "gpt-5.1", "gpt-5-chat-latest", "gpt-5", "gpt-5-mini", "gpt-5-nano",
            "gpt-4o", "gpt-4o-mini", "o4-mini", "o3-mini", "o3",
        ],
        description="ChatAnywhere 可选模型列表",
    )
    # ch.at（OpenAI 兼容，免密钥，单模型）
    chat_at_url: str = Field(
        default="https://ch.at/v1/chat/completions",
        description="ch.at chat/completions 端点",
    )

    # 本地模型服务（Ollama 协议）
    local_base_url: str = Field(
        default="http://127.0.0.1:11434/api",
        description="本地模型服务基础URL",
    )
    local_chat_path: str = Field(default="/chat", description="本地对话子路径")
    local_models_path: str = Field(default="/tags", description="本地模型列表子路径")
    local_models: List[str] = Field(
        default_factory=lambda: ["llama3", "codellama", "mistral", "gemma"],
        description="本地模型初始列表，可通过模型发现刷新",
    )

    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")
    storage_root: str = Field(default=".storage", description="存储根目录")
    history_slot: str = Field(default="conversations_json", description="会话历史存储槽位名")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    incognito: bool = Field(default=False, description="启动时是否开启无痕模式（不持久化）")

    # ---- 首次启动的欢迎会话 ----
    welcome_title: str = Field(default="Echomind", description="无历史时种子会话的标题")
    welcome_message: str = Field(
        default="Hey, how can I help you?",
        description="种子会话中的助手问候语，为空则生成空白 New Chat",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("chatanywhere_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = ChatSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatSettings
