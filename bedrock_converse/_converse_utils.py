# Copyright (c) Microsoft. All rights reserved.

"""Conversions between the chat abstraction and Bedrock Converse shapes.

Bedrock Converse expects:

- System messages as a separate `system` parameter
- User/assistant messages in the `messages` list, tool results as user messages
- Each message as `{"role": ..., "content": [block, ...]}`

Content blocks:

- text: `{"text": "..."}`
- image: `{"image": {"format": "png", "source": {"bytes": b"..."}}}`
- toolUse: `{"toolUse": {"toolUseId": "...", "name": "...", "input": {...}}}`
- toolResult: `{"toolResult": {"toolUseId": "...", "content": [...]}}`
"""

import json
from collections.abc import Mapping, Sequence
from enum import Enum
from types import MappingProxyType
from typing import Any, Final

from ._logging import get_logger
from ._tools import AIFunction
from ._types import (
    ChatMessage,
    ChatOptions,
    ChatToolMode,
    Contents,
    DataContent,
    FinishReason,
    FunctionCallContent,
    FunctionResultContent,
    Role,
    TextContent,
    UsageDetails,
)

__all__ = [
    "BEDROCK_DEFAULT_MAX_TOKENS",
    "EMPTY_MESSAGE",
    "FINISH_REASON_MAP",
    "ROLE_MAP",
    "StreamEventKind",
    "ToolUseAccumulator",
    "build_inference_config",
    "convert_contents",
    "convert_messages",
    "convert_tool_choice",
    "convert_tools",
    "create_message",
    "flatten_tool_blocks",
    "map_stop_reason",
    "parse_contents",
    "parse_usage",
]

logger = get_logger("bedrock_converse.converse")

BEDROCK_DEFAULT_MAX_TOKENS: Final[int] = 4096

ROLE_MAP: dict[Role, str] = {
    Role.USER: "user",
    Role.ASSISTANT: "assistant",
    Role.SYSTEM: "user",  # System messages handled separately in Bedrock
    Role.TOOL: "user",  # Tool results sent as user messages
}

FINISH_REASON_MAP: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "tool_use": FinishReason.TOOL_CALLS,
    "max_tokens": FinishReason.LENGTH,
    "stop_sequence": FinishReason.STOP,
    "guardrail_intervened": FinishReason.CONTENT_FILTER,
    "content_filtered": FinishReason.CONTENT_FILTER,
}

_IMAGE_FORMATS: dict[str, str] = {
    "jpeg": "jpeg",
    "jpg": "jpeg",
    "gif": "gif",
    "webp": "webp",
    "png": "png",
}


def create_message(contents: Sequence[Mapping[str, Any]], role: str) -> dict[str, Any]:
    """Build a Bedrock message from content blocks and a conversation role."""
    return {"role": role, "content": [dict(block) for block in contents]}


EMPTY_MESSAGE: Final[Mapping[str, Any]] = MappingProxyType({"role": "assistant", "content": ()})
"""Read-only placeholder message for stream events that carry no text."""


class StreamEventKind(str, Enum):
    """The kinds of events a ConverseStream response can deliver."""

    MESSAGE_START = "messageStart"
    CONTENT_BLOCK_START = "contentBlockStart"
    CONTENT_BLOCK_DELTA = "contentBlockDelta"
    CONTENT_BLOCK_STOP = "contentBlockStop"
    MESSAGE_STOP = "messageStop"
    METADATA = "metadata"
    INTERNAL_SERVER_EXCEPTION = "internalServerException"
    MODEL_STREAM_ERROR_EXCEPTION = "modelStreamErrorException"
    VALIDATION_EXCEPTION = "validationException"
    THROTTLING_EXCEPTION = "throttlingException"
    SERVICE_UNAVAILABLE_EXCEPTION = "serviceUnavailableException"
    UNKNOWN = "unknown"

    @classmethod
    def from_event(cls, event: Any) -> "StreamEventKind":
        """Classify a raw stream event, returning UNKNOWN for anything unrecognised."""
        if not isinstance(event, Mapping):
            return cls.UNKNOWN
        for key in event:
            try:
                kind = cls(key)
            except ValueError:
                continue
            if kind is not cls.UNKNOWN:
                return kind
        return cls.UNKNOWN

    @property
    def is_exception(self) -> bool:
        """Whether events of this kind report a failure of the stream."""
        return self.value.endswith("Exception")

    def payload(self, event: Mapping[str, Any]) -> dict[str, Any]:
        """Return the body of an event of this kind, or an empty dict."""
        body = event.get(self.value) if isinstance(event, Mapping) else None
        return body if isinstance(body, dict) else {}


# region Requests


def convert_messages(messages: Sequence[ChatMessage]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Convert ChatMessage list to Bedrock format.

    Args:
        messages: List of ChatMessage objects.

    Returns:
        Tuple of (conversation_messages, system_blocks).
    """
    system_blocks: list[dict[str, Any]] = []
    conversation_messages: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == Role.SYSTEM:
            system_blocks.append({"text": msg.text or ""})
        else:
            conversation_messages.append(create_message(convert_contents(msg.contents), ROLE_MAP.get(msg.role, "user")))

    return conversation_messages, system_blocks


def _image_format(media_type: str | None) -> str:
    subtype = (media_type or "").split("/", 1)[-1].lower()
    return _IMAGE_FORMATS.get(subtype, "png")


def convert_contents(contents: Sequence[Contents]) -> list[dict[str, Any]]:
    """Convert content objects to Bedrock content blocks, skipping unsupported ones."""
    blocks: list[dict[str, Any]] = []

    for content in contents:
        if isinstance(content, TextContent):
            blocks.append({"text": content.text})

        elif isinstance(content, DataContent):
            if content.has_top_level_media_type("image"):
                blocks.append({
                    "image": {
                        "format": _image_format(content.media_type),
                        "source": {"bytes": content.get_data_bytes()},
                    }
                })
            else:
                logger.debug(f"Ignoring unsupported data content media type: {content.media_type}")

        elif isinstance(content, FunctionCallContent):
            try:
                arguments = content.parse_arguments() or {}
            except json.JSONDecodeError:
                arguments = {}
            blocks.append({
                "toolUse": {
                    "toolUseId": content.call_id,
                    "name": content.name,
                    "input": arguments,
                }
            })

        elif isinstance(content, FunctionResultContent):
            if isinstance(content.result, dict):
                result_contents: list[dict[str, Any]] = [{"json": content.result}]
            elif isinstance(content.result, str):
                result_contents = [{"text": content.result}]
            else:
                result_contents = [{"text": json.dumps(content.result, default=str)}]
            tool_result: dict[str, Any] = {"toolUseId": content.call_id, "content": result_contents}
            if content.exception is not None:
                tool_result["status"] = "error"
            blocks.append({"toolResult": tool_result})

        else:
            logger.debug(f"Ignoring content of type '{content.type}' in Bedrock request.")

    return blocks


def _tool_block_as_text(block: Mapping[str, Any]) -> dict[str, Any]:
    if tool_use := block.get("toolUse"):
        arguments = json.dumps(tool_use.get("input", {}), default=str)
        return {"text": f"Called tool {tool_use.get('name')} with input {arguments}"}
    if tool_result := block.get("toolResult"):
        parts = [
            item["text"] if "text" in item else json.dumps(item.get("json"), default=str)
            for item in tool_result.get("content", [])
        ]
        return {"text": f"Tool result: {' '.join(parts)}"}
    return dict(block)


def flatten_tool_blocks(messages: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Rewrite toolUse and toolResult blocks as text blocks.

    Bedrock rejects tool blocks in a request that has no toolConfig.
    """
    return [
        create_message([_tool_block_as_text(block) for block in message["content"]], message["role"])
        for message in messages
    ]


def convert_tools(tools: Sequence[Any] | None) -> dict[str, Any] | None:
    """Convert tools to a Bedrock toolConfig.

    Args:
        tools: AIFunctions, or pre-formatted Bedrock tool specs as dicts.

    Returns:
        Dictionary with 'tools' list, or None if no tools.
    """
    if not tools:
        return None

    tool_specs: list[dict[str, Any]] = []
    for tool in tools:
        if isinstance(tool, AIFunction):
            tool_specs.append({
                "toolSpec": {
                    "name": tool.name,
                    "description": tool.description or tool.name,
                    "inputSchema": {"json": tool.parameters()},
                }
            })
        elif isinstance(tool, dict):
            tool_specs.append(tool)
        else:
            logger.debug(f"Ignoring unsupported tool type: {type(tool).__name__}")

    return {"tools": tool_specs} if tool_specs else None


def convert_tool_choice(tool_mode: ChatToolMode | str | None) -> dict[str, Any] | None:
    """Convert a tool mode to Bedrock toolChoice.

    auto -> {"auto": {}}, required -> {"any": {}}, required with a function name ->
    {"tool": {"name": ...}}, none -> None. An unset mode means auto.
    """
    if isinstance(tool_mode, str):
        tool_mode = ChatOptions(tool_choice=tool_mode).tool_choice
    if tool_mode is None or tool_mode.mode == "auto":
        return {"auto": {}}
    if tool_mode.mode == "required":
        if tool_mode.required_function_name:
            return {"tool": {"name": tool_mode.required_function_name}}
        return {"any": {}}
    return None


def build_inference_config(
    options: ChatOptions, default_max_tokens: int = BEDROCK_DEFAULT_MAX_TOKENS
) -> dict[str, Any]:
    """Build the Converse inferenceConfig from chat options."""
    inference_config: dict[str, Any] = {"maxTokens": options.max_tokens or default_max_tokens}
    if options.temperature is not None:
        inference_config["temperature"] = options.temperature
    if options.top_p is not None:
        inference_config["topP"] = options.top_p
    if stop_sequences := options.stop_sequences:
        inference_config["stopSequences"] = stop_sequences
    return inference_config


# region Responses


def parse_contents(blocks: Sequence[Mapping[str, Any]]) -> list[Contents]:
    """Parse Bedrock content blocks to Contents."""
    contents: list[Contents] = []
    last_tool_name: str | None = None

    for block in blocks:
        if "text" in block:
            contents.append(TextContent(text=block["text"], raw_representation=block))

        elif "toolUse" in block:
            tool_use = block["toolUse"]
            last_tool_name = tool_use.get("name")
            contents.append(
                FunctionCallContent(
                    call_id=tool_use["toolUseId"],
                    name=tool_use["name"],
                    arguments=tool_use.get("input", {}),
                    raw_representation=block,
                )
            )

        elif "toolResult" in block:
            tool_result = block["toolResult"]
            result_text = "".join(item["text"] for item in tool_result.get("content", []) if "text" in item)
            contents.append(
                FunctionResultContent(
                    call_id=tool_result["toolUseId"],
                    name=last_tool_name,
                    result=result_text or tool_result.get("content"),
                    raw_representation=block,
                )
            )

        else:
            logger.debug(f"Ignoring unsupported Bedrock content block: {list(block)}")

    return contents


def parse_usage(usage: Mapping[str, Any] | None) -> UsageDetails:
    """Parse usage information from a Bedrock response or metadata event."""
    if not usage:
        return UsageDetails(input_token_count=0, output_token_count=0, total_token_count=0)

    input_tokens = usage.get("inputTokens", 0)
    output_tokens = usage.get("outputTokens", 0)
    total_tokens = usage.get("totalTokens", input_tokens + output_tokens)

    return UsageDetails(
        input_token_count=input_tokens, output_token_count=output_tokens, total_token_count=total_tokens
    )


def map_stop_reason(stop_reason: str | None) -> FinishReason | None:
    """Map a Bedrock stop reason to a FinishReason, unknown reasons map to STOP."""
    if stop_reason is None:
        return None
    return FINISH_REASON_MAP.get(stop_reason, FinishReason.STOP)


class ToolUseAccumulator:
    """Collects the toolUse fragments of one streamed turn into complete function calls.

    A tool use arrives as a contentBlockStart carrying the id and name, any number of
    contentBlockDelta events carrying pieces of the JSON input, and a contentBlockStop.
    """

    def __init__(self) -> None:
        self._blocks: dict[int, dict[str, Any]] = {}

    @property
    def pending(self) -> bool:
        """Whether a tool use has started and not yet stopped."""
        return bool(self._blocks)

    def feed(self, event: Mapping[str, Any]) -> FunctionCallContent | None:
        """Consume one stream event, returning the function call once its block stops."""
        kind = StreamEventKind.from_event(event)
        body = kind.payload(event)
        index = body.get("contentBlockIndex", 0)

        if kind is StreamEventKind.CONTENT_BLOCK_START:
            tool_use = body.get("start", {}).get("toolUse")
            if tool_use:
                self._blocks[index] = {
                    "toolUseId": tool_use.get("toolUseId", ""),
                    "name": tool_use.get("name", ""),
                    "input": [],
                }
        elif kind is StreamEventKind.CONTENT_BLOCK_DELTA:
            tool_use = body.get("delta", {}).get("toolUse")
            if tool_use is not None and index in self._blocks:
                fragment = tool_use.get("input", "")
                self._blocks[index]["input"].append(fragment if isinstance(fragment, str) else json.dumps(fragment))
        elif kind is StreamEventKind.CONTENT_BLOCK_STOP and index in self._blocks:
            return self._complete(self._blocks.pop(index), event)
        return None

    @staticmethod
    def _complete(block: dict[str, Any], event: Mapping[str, Any]) -> FunctionCallContent:
        raw_input = "".join(block["input"])
        try:
            arguments: dict[str, Any] | str = json.loads(raw_input) if raw_input.strip() else {}
            exception = None
        except json.JSONDecodeError as ex:
            logger.warning(f"Could not parse streamed input for tool '{block['name']}': {ex}")
            arguments, exception = raw_input, ex
        return FunctionCallContent(
            call_id=block["toolUseId"],
            name=block["name"],
            arguments=arguments,
            exception=exception,
            raw_representation=event,
        )
