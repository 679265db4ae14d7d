"""消息归一化：内部消息 ⇄ 各后端 JSON。

两种响应协议各有一个独立的解析函数，只在 Outcome 层面统一：

- from_remote_response: OpenAI 兼容协议 {choices: [{message}], error: {message}}
- from_local_response:  本地模型服务协议 {message: {...}, error: "..."}

新增后端时只需要补一个解析函数和一个目录条目，会话引擎无需改动。
本模块全部是纯函数，不做任何 I/O。
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from chat_core.domain.models import Author, Failure, Message, Outcome, Role, Success


REMOTE_EMPTY_RESPONSE = "Error: Received an empty or invalid response."
LOCAL_EMPTY_RESPONSE = "Error: Received an empty or invalid response from the local backend."

DEFAULT_ROLE_MAP: Mapping[Author, Role] = {
    Author.USER: "user",
    Author.ASSISTANT: "assistant",
}


def to_wire_history(
    messages: Iterable[Message],
    role_map: Mapping[Author, Role] = DEFAULT_ROLE_MAP,
) -> List[Dict[str, str]]:
    """把对话记录转成 [{role, content}]，顺序保持不变。"""

    wire: List[Dict[str, str]] = []
    for m in messages:
        role = role_map.get(m.author, "assistant")
        wire.append({"role": role, "content": m.text})
    return wire


def build_remote_payload(history: List[Dict[str, str]], model: Optional[str]) -> Dict[str, Any]:
    """OpenAI 兼容请求体；model 为空时不发送该字段。"""

    payload: Dict[str, Any] = {"messages": history}
    if model:
        payload["model"] = model
    return payload


def build_local_payload(history: List[Dict[str, str]], model: str) -> Dict[str, Any]:
    return {"model": model, "messages": history, "stream": False}


def _message_content(message: Any) -> Optional[str]:
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str):
            return content
    return None


def from_remote_response(payload: Any) -> Outcome:
    if not isinstance(payload, dict):
        return Failure(REMOTE_EMPTY_RESPONSE)
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        content = _message_content(choices[0].get("message"))
        if content is not None:
            return Success(content)
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return Failure(error["message"])
    return Failure(REMOTE_EMPTY_RESPONSE)


def from_local_response(payload: Any) -> Outcome:
    if not isinstance(payload, dict):
        return Failure(LOCAL_EMPTY_RESPONSE)
    content = _message_content(payload.get("message"))
    if content is not None:
        return Success(content)
    error = payload.get("error")
    if isinstance(error, str):
        return Failure(error)
    return Failure(LOCAL_EMPTY_RESPONSE)


def parse_local_models(payload: Any) -> List[str]:
    """解析本地模型列表响应 {models: [{name}]}，结构不符时返回空列表。"""

    if not isinstance(payload, dict):
        return []
    names: List[str] = []
    for item in payload.get("models") or []:
        if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"]:
            names.append(item["name"])
    return names


def error_detail(payload: Any) -> Optional[str]:
    """从错误响应体中提取后端给出的错误描述（两种协议都尝试）。"""

    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        return message if isinstance(message, str) else str(error)
    if isinstance(error, str):
        return error
    return None
