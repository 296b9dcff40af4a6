# Copyright (c) Microsoft. All rights reserved.

from collections.abc import AsyncIterable, Mapping, Sequence
from contextlib import aclosing
from typing import Any, ClassVar

from ._clients import BaseChatClient
from ._converse_api import BedrockConverseApi
from ._converse_utils import (
    StreamEventKind,
    ToolUseAccumulator,
    build_inference_config,
    convert_messages,
    convert_tool_choice,
    convert_tools,
    flatten_tool_blocks,
    map_stop_reason,
    parse_contents,
    parse_usage,
)
from ._generation_metadata import BedrockConverseChatGenerationMetadata
from ._logging import get_logger
from ._options import (
    Anthropic3ChatOptions,
    BedrockChatOptions,
    CohereChatOptions,
    Jurassic2ChatOptions,
    LlamaChatOptions,
    MistralChatOptions,
    ModelFamily,
    TitanChatOptions,
)
from ._tools import use_function_invocation
from ._types import (
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ChatResponseUpdate,
    Role,
    UsageContent,
)
from .exceptions import ServiceInvalidRequestError, ServiceResponseException

__all__ = [
    "BedrockAnthropic3ChatModel",
    "BedrockCohereChatModel",
    "BedrockConverseChatModel",
    "BedrockJurassic2ChatModel",
    "BedrockLlamaChatModel",
    "BedrockMistralChatModel",
    "BedrockTitanChatModel",
]

logger = get_logger("bedrock_converse.chat")


@use_function_invocation
class BedrockConverseChatModel(BaseChatClient):
    """Chat model on top of the Bedrock Converse and ConverseStream APIs.

    Every response and streaming update carries a
    `BedrockConverseChatGenerationMetadata` in `generation_metadata`.

    Examples:
        .. code-block:: python

            from bedrock_converse import BedrockConverseApi, BedrockConverseChatModel

            model = BedrockConverseChatModel(BedrockConverseApi(), model_id="anthropic.claude-3-haiku-20240307-v1:0")
            response = await model.get_response("Tell me a joke", temperature=0.2)
            print(response.text, response.generation_metadata.finish_reason)
    """

    OPTIONS_CLASS: ClassVar[type[ChatOptions]] = BedrockChatOptions
    DEFAULT_MODEL_ID: ClassVar[str | None] = None
    DEFAULT_OPTIONS: ClassVar[dict[str, Any]] = {}

    def __init__(
        self,
        api: BedrockConverseApi | None = None,
        *,
        model_id: str | None = None,
        default_options: ChatOptions | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize a Bedrock Converse chat model.

        Args:
            api: The Converse API wrapper. If not provided, one is created from `kwargs` and the environment.

        Keyword Args:
            model_id: The Bedrock model id, defaults to the family's default model.
            default_options: Options applied to every request, merged over the family defaults.
            kwargs: Arguments for `BedrockConverseApi` when no api is given.
        """
        super().__init__(default_options=default_options)
        self.api = api if api is not None else BedrockConverseApi(**kwargs)
        self.model_id = model_id or self.default_options.model_id or self.DEFAULT_MODEL_ID

    @classmethod
    def create_default_options(cls) -> ChatOptions:
        return cls.OPTIONS_CLASS(**cls.DEFAULT_OPTIONS)

    def _resolve_model_id(self, chat_options: ChatOptions) -> str:
        model_id = chat_options.model_id or self.model_id
        if not model_id:
            raise ServiceInvalidRequestError("Model ID is required. Set via 'model_id' parameter or chat options.")
        return model_id

    def _create_converse_request(
        self,
        messages: Sequence[ChatMessage],
        chat_options: ChatOptions,
        model_id: str,
    ) -> dict[str, Any]:
        """Create Converse API request parameters."""
        conversation_messages, system_blocks = convert_messages(messages)
        if not conversation_messages:
            raise ServiceInvalidRequestError("Bedrock Converse needs at least one non-system message.")

        request: dict[str, Any] = {
            "modelId": model_id,
            "messages": conversation_messages,
            "inferenceConfig": build_inference_config(chat_options, ModelFamily.detect(model_id).default_max_tokens),
        }
        if system_blocks:
            request["system"] = system_blocks

        if chat_options.tool_choice is not None and chat_options.tool_choice.mode == "none":
            # tools off: no toolConfig, so earlier tool blocks travel as text
            request["messages"] = flatten_tool_blocks(conversation_messages)
        elif tool_config := convert_tools(chat_options.tools):
            if tool_choice := convert_tool_choice(chat_options.tool_choice):
                tool_config["toolChoice"] = tool_choice
            request["toolConfig"] = tool_config

        if isinstance(chat_options, BedrockChatOptions) and (
            fields := chat_options.additional_model_request_fields()
        ):
            request["additionalModelRequestFields"] = fields

        return request

    async def _inner_get_response(
        self,
        *,
        messages: Sequence[ChatMessage],
        chat_options: ChatOptions,
    ) -> ChatResponse:
        model_id = self._resolve_model_id(chat_options)
        request = self._create_converse_request(messages, chat_options, model_id)
        response = await self.api.converse(request)
        return self._process_converse_response(response, model_id)

    def _process_converse_response(self, response: Mapping[str, Any], model_id: str) -> ChatResponse:
        """Process a Converse API response into a ChatResponse."""
        message_data = response.get("output", {}).get("message") or {"role": "assistant", "content": []}

        return ChatResponse(
            response_id=response.get("ResponseMetadata", {}).get("RequestId"),
            messages=[
                ChatMessage(
                    role=Role.ASSISTANT,
                    contents=parse_contents(message_data.get("content", [])),
                    raw_representation=message_data,
                )
            ],
            usage_details=parse_usage(response.get("usage")),
            model_id=model_id,
            finish_reason=map_stop_reason(response.get("stopReason")),
            generation_metadata=BedrockConverseChatGenerationMetadata.from_response(response, message_data),
            raw_representation=response,
        )

    async def _inner_get_streaming_response(
        self,
        *,
        messages: Sequence[ChatMessage],
        chat_options: ChatOptions,
    ) -> AsyncIterable[ChatResponseUpdate]:
        model_id = self._resolve_model_id(chat_options)
        request = self._create_converse_request(messages, chat_options, model_id)
        tool_uses = ToolUseAccumulator()

        async with aclosing(self.api.converse_stream(request)) as events:
            async for event in events:
                metadata = BedrockConverseChatGenerationMetadata.from_event(event)
                kind = metadata.event_kind or StreamEventKind.UNKNOWN

                if kind.is_exception:
                    detail = kind.payload(event).get("message", "")
                    logger.error(f"Bedrock ConverseStream error event [{kind.value}]: {detail}")
                    raise ServiceResponseException(f"Bedrock stream failed with {kind.value}: {detail}")

                # Tool input arrives in fragments, only the completed call is emitted
                if not metadata.is_tool_use_event():
                    tool_uses.feed(event)
                    continue
                if kind is StreamEventKind.CONTENT_BLOCK_STOP and (function_call := tool_uses.feed(event)) is not None:
                    yield ChatResponseUpdate(
                        role=Role.ASSISTANT,
                        contents=[function_call],
                        model_id=model_id,
                        generation_metadata=metadata,
                        raw_representation=event,
                    )
                    continue

                metadata.generate_event_message()
                yield self._process_stream_event(event, kind, metadata, model_id)

    def _process_stream_event(
        self,
        event: Mapping[str, Any],
        kind: StreamEventKind,
        metadata: BedrockConverseChatGenerationMetadata,
        model_id: str,
    ) -> ChatResponseUpdate:
        """Turn a non tool-use stream event into a ChatResponseUpdate."""
        update = ChatResponseUpdate(
            role=Role.ASSISTANT,
            model_id=model_id,
            generation_metadata=metadata,
            raw_representation=event,
        )
        if kind is StreamEventKind.CONTENT_BLOCK_DELTA and metadata.message:
            update.contents = parse_contents(metadata.message.get("content", []))
        elif kind is StreamEventKind.METADATA:
            usage = parse_usage(kind.payload(event).get("usage"))
            update.contents = [UsageContent(details=usage, raw_representation=event)]
        elif kind is StreamEventKind.MESSAGE_STOP:
            update.finish_reason = map_stop_reason(metadata.finish_reason)
        elif kind is StreamEventKind.UNKNOWN:
            logger.debug(f"Ignoring unknown ConverseStream event: {list(event)}")
        return update


class BedrockAnthropic3ChatModel(BedrockConverseChatModel):
    """Chat model for Anthropic Claude 3 models on Bedrock."""

    OPTIONS_CLASS: ClassVar[type[ChatOptions]] = Anthropic3ChatOptions
    DEFAULT_MODEL_ID: ClassVar[str | None] = "anthropic.claude-3-sonnet-20240229-v1:0"
    DEFAULT_OPTIONS: ClassVar[dict[str, Any]] = {"temperature": 0.8, "max_tokens": 500, "top_k": 10}


class BedrockCohereChatModel(BedrockConverseChatModel):
    """Chat model for Cohere Command models on Bedrock."""

    OPTIONS_CLASS: ClassVar[type[ChatOptions]] = CohereChatOptions
    DEFAULT_MODEL_ID: ClassVar[str | None] = "cohere.command-r-v1:0"
    DEFAULT_OPTIONS: ClassVar[dict[str, Any]] = {"temperature": 0.7, "max_tokens": 500}


class BedrockLlamaChatModel(BedrockConverseChatModel):
    """Chat model for Meta Llama models on Bedrock."""

    OPTIONS_CLASS: ClassVar[type[ChatOptions]] = LlamaChatOptions
    DEFAULT_MODEL_ID: ClassVar[str | None] = "meta.llama3-70b-instruct-v1:0"
    DEFAULT_OPTIONS: ClassVar[dict[str, Any]] = {"temperature": 0.7, "max_tokens": 500}


class BedrockTitanChatModel(BedrockConverseChatModel):
    """Chat model for Amazon Titan text models on Bedrock."""

    OPTIONS_CLASS: ClassVar[type[ChatOptions]] = TitanChatOptions
    DEFAULT_MODEL_ID: ClassVar[str | None] = "amazon.titan-text-express-v1"
    DEFAULT_OPTIONS: ClassVar[dict[str, Any]] = {"temperature": 0.7, "max_tokens": 512}


class BedrockJurassic2ChatModel(BedrockConverseChatModel):
    """Chat model for AI21 Jurassic-2 models on Bedrock."""

    OPTIONS_CLASS: ClassVar[type[ChatOptions]] = Jurassic2ChatOptions
    DEFAULT_MODEL_ID: ClassVar[str | None] = "ai21.j2-mid-v1"
    DEFAULT_OPTIONS: ClassVar[dict[str, Any]] = {"temperature": 0.7, "max_tokens": 500}


class BedrockMistralChatModel(BedrockConverseChatModel):
    """Chat model for Mistral models on Bedrock."""

    OPTIONS_CLASS: ClassVar[type[ChatOptions]] = MistralChatOptions
    DEFAULT_MODEL_ID: ClassVar[str | None] = "mistral.mistral-large-2402-v1:0"
    DEFAULT_OPTIONS: ClassVar[dict[str, Any]] = {"temperature": 0.7, "max_tokens": 500}
