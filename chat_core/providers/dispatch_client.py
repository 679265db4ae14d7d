"""Dispatch 客户端：一次完整的网络往返。

本模块负责：

1. 接收目录条目 + 模型名 + 完整对话历史（后端无状态，每次都发送全部上下文）。
2. 按 is_local_backend 选择协议：OpenAI 兼容 或 本地模型服务。
3. 调用 HTTP 接口，内部用 BusinessError 区分网络/限流/服务端错误。
4. 在对外边界把一切失败转换为 Failure("Error: ...")，调用方永远拿到可展示的文本。

客户端本身不持有可变状态，多个会话的并发 send 互不影响。
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, BusinessError, NetworkError, RateLimitError
from chat_core.domain.models import Failure, Message, Outcome
from chat_core.infrastructure.logging.logger import log_event, logger
from chat_core.providers import normalizer
from chat_core.providers.registry import ProviderDescriptor


class DispatchClient:
    """异步对话调度客户端。"""

    def __init__(self, cfg=settings):
        # Settings 里包含超时、本地服务子路径等配置
        self._settings = cfg

    async def send(self, provider: ProviderDescriptor, model: str, history: Sequence[Message]) -> Outcome:
        """发送一次对话请求，返回归一化的 Outcome，不向外抛异常。"""

        wire = normalizer.to_wire_history(history)
        log_ctx: Dict[str, Any] = {"provider": provider.name, "model": model}
        start_time = time.time()
        log_event(logging.INFO, "Calling provider", log_ctx, message_count=len(wire))
        try:
            if provider.is_local_backend:
                outcome = await self._send_local(provider, model, wire)
            else:
                outcome = await self._send_remote(provider, model, wire)
        except BusinessError as e:
            log_event(logging.WARNING, "Dispatch failed", log_ctx, code=e.code, error=e.message)
            return Failure(f"Error: {e.message}")
        except Exception as e:  # noqa: BLE001
            logger.exception("Unexpected dispatch error", extra={"extra": log_ctx})
            return Failure(f"Error: {e}")
        log_event(
            logging.INFO,
            "Provider call finished",
            log_ctx,
            ok=outcome.ok,
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        return outcome

    async def discover_local_models(self, provider: Optional[ProviderDescriptor] = None) -> List[str]:
        """查询本地后端的模型列表，任何失败都返回空列表。"""

        base = provider.endpoint if provider is not None else self._settings.local_base_url
        url = f"{base}{self._settings.local_models_path}"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.get(url)
            if resp.status_code >= 400:
                raise ApiError(code="API_ERROR", message=resp.text[:500], http_status=resp.status_code)
            names = normalizer.parse_local_models(resp.json())
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, BusinessError) as e:
            logger.warning(f"Model discovery failed: {e}", extra={"extra": {"url": url}})
            return []
        logger.info("Model discovery finished", extra={"extra": {"url": url, "count": len(names)}})
        return names

    async def _send_remote(
        self, provider: ProviderDescriptor, model: str, wire: List[Dict[str, str]]
    ) -> Outcome:
        payload = normalizer.build_remote_payload(
            wire, model if provider.requires_model_selection else None
        )
        headers = {"Content-Type": "application/json"}
        if provider.api_key:
            headers["Authorization"] = f"Bearer {provider.api_key}"
        data = await self._post(provider, provider.endpoint, payload, headers)
        return normalizer.from_remote_response(data)

    async def _send_local(
        self, provider: ProviderDescriptor, model: str, wire: List[Dict[str, str]]
    ) -> Outcome:
        payload = normalizer.build_local_payload(wire, model)
        headers = {"Content-Type": "application/json"}
        if provider.api_key:
            headers["Authorization"] = f"Bearer {provider.api_key}"
        url = f"{provider.endpoint}{self._settings.local_chat_path}"
        data = await self._post(provider, url, payload, headers)
        return normalizer.from_local_response(data)

    async def _post(
        self,
        provider: ProviderDescriptor,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
    ) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # 网络错误：DNS 失败、连接被拒、超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if resp.status_code == 429:
            raise RateLimitError(
                code="RATE_LIMIT",
                message=f"{provider.name} rate limit (HTTP 429)",
                http_status=429,
            )
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=f"HTTP {resp.status_code}: {_extract_error_detail(resp)}",
                http_status=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(code="INVALID_RESPONSE", message=f"Malformed response: {e}")


def _extract_error_detail(resp: httpx.Response) -> str:
    """从错误响应中提取后端给出的错误描述，解析失败时退回原始文本前 500 字符。"""

    try:
        detail = normalizer.error_detail(resp.json())
    except ValueError:
        detail = None
    if detail:
        return detail
    return resp.text[:500] if resp.text else "(empty body)"
