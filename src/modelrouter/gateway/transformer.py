"""Anthropic Messages → OpenAI chat-completions request translation.

:func:`transform` is pure and idempotent: bodies that are already in the
OpenAI shape (``system``/``tool`` roles, ``tool_calls``, ``image_url`` parts,
function tools) pass through unchanged, so running it twice gives the same
result as running it once.
"""

import copy
import json
from typing import Any

from modelrouter.providers.errors import TransformError

_ROLES = frozenset({"system", "user", "assistant", "tool"})
_SAMPLING_FIELDS = ("max_tokens", "temperature", "top_p")
_DROPPED_BLOCKS = frozenset({"thinking", "redacted_thinking"})


def transform(body: dict[str, Any], target_model: str) -> dict[str, Any]:
    """Return the OpenAI-schema equivalent of *body* addressed to *target_model*.

    Raises:
        TransformError: ``messages`` is missing, empty or converts to nothing
            but system messages, or a message or content block is malformed.
    """
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise TransformError("messages must be a non-empty list", model=target_model)

    out: dict[str, Any] = {
        "model": target_model,
        "messages": _convert_messages(body.get("system"), messages),
    }

    for key in _SAMPLING_FIELDS:
        if body.get(key) is not None:
            out[key] = body[key]

    stop = body.get("stop_sequences", body.get("stop"))
    if stop:
        out["stop"] = list(stop) if isinstance(stop, list | tuple) else stop

    if "stream" in body:
        out["stream"] = bool(body["stream"])

    if body.get("tools"):
        out["tools"] = [_convert_tool(tool, i) for i, tool in enumerate(body["tools"])]
        if body.get("tool_choice") is not None:
            out["tool_choice"] = _convert_tool_choice(body["tool_choice"])

    user = _user_id(body)
    if user:
        out["user"] = user

    return out


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def _convert_messages(system: Any, messages: list[Any]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []

    system_text = _join_text(system, "system")
    if system_text:
        out.append({"role": "system", "content": system_text})

    for i, message in enumerate(messages):
        if not isinstance(message, dict) or message.get("role") not in _ROLES:
            raise TransformError(
                f"messages[{i}] must be an object with role in {sorted(_ROLES)}"
            )
        out.extend(_convert_message(message, i))

    if not any(message["role"] != "system" for message in out):
        raise TransformError("messages has no user, assistant or tool content")
    return out


def _convert_message(message: dict[str, Any], index: int) -> list[dict[str, Any]]:
    role = message["role"]
    content = message.get("content")

    if role == "tool":
        if not message.get("tool_call_id"):
            raise TransformError(f"messages[{index}] with role 'tool' needs tool_call_id")
        return [
            {
                "role": "tool",
                "tool_call_id": message["tool_call_id"],
                "content": _tool_result_text(content),
            }
        ]

    if role == "system":
        return [{"role": "system", "content": _join_text(content, f"messages[{index}]")}]

    tool_calls = copy.deepcopy(message.get("tool_calls") or [])

    if isinstance(content, str):
        return [_message(role, content, tool_calls)]

    if content is None:
        if not tool_calls:
            raise TransformError(f"messages[{index}] has no content")
        return [_message(role, None, tool_calls)]

    if not isinstance(content, list):
        raise TransformError(f"messages[{index}].content must be a string or a list")
    if not content:
        raise TransformError(f"messages[{index}].content is empty")

    parts: list[dict[str, Any]] = []
    tool_results: list[dict[str, Any]] = []
    for j, block in enumerate(content):
        where = f"messages[{index}].content[{j}]"
        kind = block.get("type") if isinstance(block, dict) else None
        if kind == "text":
            parts.append({"type": "text", "text": _text(block, where)})
        elif kind == "image":
            parts.append({"type": "image_url", "image_url": {"url": _image_url(block, where)}})
        elif kind == "image_url" and isinstance(block.get("image_url"), dict):
            parts.append({"type": "image_url", "image_url": copy.deepcopy(block["image_url"])})
        elif kind == "tool_use":
            tool_calls.append(_tool_call(block, where))
        elif kind == "tool_result":
            if not (block.get("tool_use_id") or block.get("id")):
                raise TransformError(f"{where} tool_result needs tool_use_id")
            tool_results.append(
                {
                    "role": "tool",
                    "tool_call_id": block.get("tool_use_id") or block.get("id"),
                    "content": _tool_result_text(block.get("content")),
                }
            )
        elif kind in _DROPPED_BLOCKS:
            continue
        else:
            raise TransformError(f"{where} has unsupported type {kind!r}")

    out = tool_results
    if parts or tool_calls:
        out.append(_message(role, _collapse(parts), tool_calls))
    return out


def _message(role: str, content: Any, tool_calls: list[dict[str, Any]]) -> dict[str, Any]:
    message: dict[str, Any] = {"role": role, "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return message


def _collapse(parts: list[dict[str, Any]]) -> str | list[dict[str, Any]] | None:
    """Plain text becomes a string; anything with images stays a part list."""
    if not parts:
        return None
    if all(part["type"] == "text" for part in parts):
        return "".join(part["text"] for part in parts)
    return parts


def _join_text(value: Any, where: str) -> str:
    if value is None or isinstance(value, str):
        return value or ""
    if isinstance(value, list):
        texts = []
        for j, block in enumerate(value):
            if isinstance(block, str):
                texts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                texts.append(_text(block, f"{where}[{j}]"))
            else:
                raise TransformError(f"{where} may only contain text blocks")
        return "\n".join(texts)
    raise TransformError(f"{where} must be a string or a list of text blocks")


def _tool_result_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for item in content:
            is_text = isinstance(item, dict) and item.get("type") == "text"
            if is_text and isinstance(item.get("text"), str):
                texts.append(item["text"])
            else:
                texts.append(json.dumps(item, ensure_ascii=False))
        return "\n".join(texts)
    return json.dumps(content, ensure_ascii=False)


def _text(block: dict[str, Any], where: str) -> str:
    text = block.get("text")
    if text is None:
        return ""
    if not isinstance(text, str):
        raise TransformError(f"{where}.text must be a string")
    return text


def _image_url(block: dict[str, Any], where: str) -> str:
    source = block.get("source")
    if not isinstance(source, dict):
        raise TransformError(f"{where} image source must be an object")
    if source.get("type") == "base64" and source.get("data"):
        return f"data:{source.get('media_type', 'image/png')};base64,{source['data']}"
    if source.get("type") == "url" and source.get("url"):
        return source["url"]
    raise TransformError(f"{where} has an unsupported image source")


def _tool_call(block: dict[str, Any], where: str) -> dict[str, Any]:
    if not block.get("id") or not block.get("name"):
        raise TransformError(f"{where} tool_use needs id and name")
    arguments = block.get("input", {})
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments, ensure_ascii=False)
    return {
        "id": block["id"],
        "type": "function",
        "function": {"name": block["name"], "arguments": arguments},
    }


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def _convert_tool(tool: Any, index: int) -> dict[str, Any]:
    if not isinstance(tool, dict):
        raise TransformError(f"tools[{index}] must be an object")
    if tool.get("type") == "function" and isinstance(tool.get("function"), dict):
        return copy.deepcopy(tool)
    if not tool.get("name"):
        raise TransformError(f"tools[{index}] needs a name")
    schema = tool.get("input_schema") or {"type": "object", "properties": {}}
    function: dict[str, Any] = {"name": tool["name"], "parameters": copy.deepcopy(schema)}
    if tool.get("description"):
        function["description"] = tool["description"]
    return {"type": "function", "function": function}


def _convert_tool_choice(choice: Any) -> Any:
    if isinstance(choice, str):
        return choice
    if not isinstance(choice, dict):
        return "auto"
    kind = choice.get("type")
    if kind == "function":
        return copy.deepcopy(choice)
    if kind == "any":
        return "required"
    if kind == "tool" and choice.get("name"):
        return {"type": "function", "function": {"name": choice["name"]}}
    if kind == "none":
        return "none"
    return "auto"


def _user_id(body: dict[str, Any]) -> str | None:
    metadata = body.get("metadata")
    if isinstance(metadata, dict) and metadata.get("user_id"):
        return str(metadata["user_id"])
    user = body.get("user")
    return user if isinstance(user, str) else None
