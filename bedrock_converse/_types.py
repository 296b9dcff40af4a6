# Copyright (c) Microsoft. All rights reserved.

import base64
import json
import re
import sys
from collections.abc import Sequence
from typing import Annotated, Any, ClassVar, Literal, Protocol, overload, runtime_checkable

from pydantic import ConfigDict, Field, field_validator

from ._pydantic import ConverseBaseModel, Probability
from ._tools import AIFunction, ai_function

if sys.version_info >= (3, 11):
    from typing import Self  # pragma: no cover
else:
    from typing_extensions import Self  # pragma: no cover

__all__ = [
    "BaseContent",
    "ChatGenerationMetadata",
    "ChatMessage",
    "ChatOptions",
    "ChatResponse",
    "ChatResponseUpdate",
    "ChatToolMode",
    "Contents",
    "DataContent",
    "Embedding",
    "EmbeddingResponse",
    "FinishReason",
    "FunctionCallContent",
    "FunctionResultContent",
    "Role",
    "TextContent",
    "UsageContent",
    "UsageDetails",
    "prepare_messages",
]

_DATA_URI_PATTERN = re.compile(r"^data:(?P<media_type>[\w.+-]+/[\w.+-]+)?(?:;[\w=-]+)*;base64,(?P<data>.*)$", re.S)


# region Generation metadata


@runtime_checkable
class ChatGenerationMetadata(Protocol):
    """Metadata about a single generation produced by a chat model.

    Provider integrations attach an implementation of this protocol to every
    response and streaming update they produce.
    """

    @property
    def finish_reason(self) -> str | None:
        """The provider specific reason the generation finished, if known."""
        ...

    def get_content_filter_metadata(self) -> Any | None:
        """Content filtering details, or None when the provider does not surface them."""
        ...


# region Roles and finish reasons


class Role(ConverseBaseModel):
    """Describes the intended purpose of a message within a chat interaction."""

    model_config = ConfigDict(frozen=True)

    value: str

    SYSTEM: ClassVar[Self]  # type: ignore[assignment]
    """The role that instructs or sets the behaviour of the AI system."""
    USER: ClassVar[Self]  # type: ignore[assignment]
    """The role that provides user input for chat interactions."""
    ASSISTANT: ClassVar[Self]  # type: ignore[assignment]
    """The role that provides responses to system-instructed, user-prompted input."""
    TOOL: ClassVar[Self]  # type: ignore[assignment]
    """The role that provides additional information and references in response to tool use requests."""

    def __str__(self) -> str:
        """Returns the string representation of the role."""
        return self.value

    def __repr__(self) -> str:
        """Returns the string representation of the role."""
        return f"Role(value={self.value!r})"


Role.SYSTEM = Role(value="system")  # type: ignore[assignment]
Role.USER = Role(value="user")  # type: ignore[assignment]
Role.ASSISTANT = Role(value="assistant")  # type: ignore[assignment]
Role.TOOL = Role(value="tool")  # type: ignore[assignment]


class FinishReason(ConverseBaseModel):
    """Represents the reason a chat response completed."""

    model_config = ConfigDict(frozen=True)

    value: str

    CONTENT_FILTER: ClassVar[Self]  # type: ignore[assignment]
    """The model filtered content, whether for safety, prohibited content, or other such issues."""
    LENGTH: ClassVar[Self]  # type: ignore[assignment]
    """The model reached the maximum length allowed for the request and/or response."""
    STOP: ClassVar[Self]  # type: ignore[assignment]
    """The model encountered a natural stop point or provided stop sequence."""
    TOOL_CALLS: ClassVar[Self]  # type: ignore[assignment]
    """The model requested the use of a tool that was defined in the request."""

    def __str__(self) -> str:
        return self.value


FinishReason.CONTENT_FILTER = FinishReason(value="content_filter")  # type: ignore[assignment]
FinishReason.LENGTH = FinishReason(value="length")  # type: ignore[assignment]
FinishReason.STOP = FinishReason(value="stop")  # type: ignore[assignment]
FinishReason.TOOL_CALLS = FinishReason(value="tool_calls")  # type: ignore[assignment]


# region Contents


class BaseContent(ConverseBaseModel):
    """Represents content used by chat models."""

    type: str = "base"
    raw_representation: Any | None = Field(default=None, repr=False)
    """The raw representation of the content from an underlying implementation."""
    additional_properties: dict[str, Any] | None = None
    """Additional properties for the content."""


class TextContent(BaseContent):
    """Represents text content in a chat.

    Attributes:
        text: The text content represented by this instance.
        type: The type of content, which is always "text" for this class.
        raw_representation: Optional raw representation of the content.
        additional_properties: Optional additional properties associated with the content.
    """

    text: str
    type: Literal["text"] = "text"  # type: ignore[assignment]

    def __init__(
        self, text: str, *, raw_representation: Any | None = None, additional_properties: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            text=text,
            raw_representation=raw_representation,
            additional_properties=additional_properties,
        )


class DataContent(BaseContent):
    """Represents binary data content, stored as a base64 data URI.

    Examples:
        .. code-block:: python

            from bedrock_converse import DataContent

            image = DataContent(data=png_bytes, media_type="image/png")
            assert image.has_top_level_media_type("image")
    """

    type: Literal["data"] = "data"  # type: ignore[assignment]
    uri: str
    """The data URI holding the content."""
    media_type: str | None = None
    """The IANA media type of the data, e.g. "image/png"."""

    def __init__(
        self,
        *,
        uri: str | None = None,
        data: bytes | None = None,
        media_type: str | None = None,
        raw_representation: Any | None = None,
        additional_properties: dict[str, Any] | None = None,
    ) -> None:
        """Initializes a DataContent from either a data URI or raw bytes.

        Keyword Args:
            uri: A base64 data URI.
            data: Raw bytes, requires `media_type`.
            media_type: The media type of the data.
            raw_representation: Optional raw representation of the content.
            additional_properties: Optional additional properties associated with the content.
        """
        if uri is None:
            if data is None or media_type is None:
                raise ValueError("Either 'uri' or both 'data' and 'media_type' must be provided.")
            uri = f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"
        elif media_type is None and (match := _DATA_URI_PATTERN.match(uri)):
            media_type = match.group("media_type")
        super().__init__(
            uri=uri,
            media_type=media_type,
            raw_representation=raw_representation,
            additional_properties=additional_properties,
        )

    @field_validator("uri")
    @classmethod
    def _validate_uri(cls, uri: str) -> str:
        if not _DATA_URI_PATTERN.match(uri):
            raise ValueError("DataContent requires a base64 data URI.")
        return uri

    def has_top_level_media_type(self, top_level_media_type: str) -> bool:
        """Check whether the media type starts with the given top level type, e.g. "image"."""
        if not self.media_type:
            return False
        return self.media_type.split("/", 1)[0].lower() == top_level_media_type.lower()

    def get_data_bytes(self) -> bytes:
        """Decode the payload of the data URI."""
        match = _DATA_URI_PATTERN.match(self.uri)
        if match is None:  # pragma: no cover
            raise ValueError("Invalid data URI.")
        return base64.b64decode(match.group("data"))


class FunctionCallContent(BaseContent):
    """Represents a function call request."""

    type: Literal["function_call"] = "function_call"  # type: ignore[assignment]
    call_id: str
    """The function call identifier."""
    name: str
    """The name of the function requested."""
    arguments: dict[str, Any] | str | None = None
    """The arguments requested to be provided to the function, as a dict or a JSON string."""
    exception: Exception | None = None
    """Any exception that occurred while mapping the original function call data to this representation."""

    def parse_arguments(self) -> dict[str, Any] | None:
        """Return the arguments as a dictionary, decoding JSON strings."""
        if isinstance(self.arguments, str):
            if not self.arguments.strip():
                return {}
            loaded = json.loads(self.arguments)
            return loaded if isinstance(loaded, dict) else {"raw": loaded}
        return self.arguments


class FunctionResultContent(BaseContent):
    """Represents the result of a function call."""

    type: Literal["function_result"] = "function_result"  # type: ignore[assignment]
    call_id: str
    """The identifier of the function call for which this is the result."""
    name: str | None = None
    """The name of the function that produced the result."""
    result: Any | None = None
    """The result of the function call, or a generic error message if the function call failed."""
    exception: Exception | None = None
    """An exception that occurred if the function call failed."""


class UsageDetails(ConverseBaseModel):
    """Provides usage details about a request/response."""

    input_token_count: int | None = None
    """The number of tokens in the input."""
    output_token_count: int | None = None
    """The number of tokens in the output."""
    total_token_count: int | None = None
    """The total number of tokens used to produce the response."""

    def __add__(self, other: "UsageDetails") -> "UsageDetails":
        """Combines two `UsageDetails` instances."""
        if not isinstance(other, UsageDetails):
            return NotImplemented

        return UsageDetails(
            input_token_count=(self.input_token_count or 0) + (other.input_token_count or 0),
            output_token_count=(self.output_token_count or 0) + (other.output_token_count or 0),
            total_token_count=(self.total_token_count or 0) + (other.total_token_count or 0),
        )


class UsageContent(BaseContent):
    """Represents usage information associated with a chat request and response."""

    type: Literal["usage"] = "usage"  # type: ignore[assignment]
    details: UsageDetails
    """The usage information."""


Contents = Annotated[
    TextContent | DataContent | FunctionCallContent | FunctionResultContent | UsageContent,
    Field(discriminator="type"),
]


# region Messages


class ChatMessage(ConverseBaseModel):
    """Represents a chat message exchanged with a chat model."""

    role: Role
    """The role of the author of the message."""
    contents: list[Contents]
    """The chat message content items."""
    author_name: str | None = None
    """The name of the author of the message."""
    message_id: str | None = None
    """The ID of the chat message."""
    raw_representation: Any | None = Field(default=None, repr=False)
    """The raw representation of the chat message from an underlying implementation."""
    additional_properties: dict[str, Any] | None = None
    """Any additional properties associated with the chat message."""

    @overload
    def __init__(
        self,
        role: Role | Literal["system", "user", "assistant", "tool"],
        text: str,
        *,
        author_name: str | None = None,
        message_id: str | None = None,
        raw_representation: Any | None = None,
        additional_properties: dict[str, Any] | None = None,
    ) -> None: ...

    @overload
    def __init__(
        self,
        role: Role | Literal["system", "user", "assistant", "tool"],
        *,
        contents: Sequence[Contents],
        author_name: str | None = None,
        message_id: str | None = None,
        raw_representation: Any | None = None,
        additional_properties: dict[str, Any] | None = None,
    ) -> None: ...

    def __init__(
        self,
        role: Any,
        text: str | None = None,
        *,
        contents: Sequence[Any] | None = None,
        author_name: str | None = None,
        message_id: str | None = None,
        raw_representation: Any | None = None,
        additional_properties: dict[str, Any] | None = None,
    ) -> None:
        """Initializes a ChatMessage with a role and either text or contents."""
        items: list[Any] = list(contents) if contents is not None else []
        if text is not None:
            items.append(TextContent(text=text))
        if isinstance(role, str):
            role = Role(value=role)
        super().__init__(
            role=role,
            contents=items,
            author_name=author_name,
            message_id=message_id,
            raw_representation=raw_representation,
            additional_properties=additional_properties,
        )

    @property
    def text(self) -> str:
        """Returns the text content of the message.

        Remarks:
            This property concatenates the text of all TextContent objects in contents.
        """
        return "".join(content.text for content in self.contents if isinstance(content, TextContent))


def prepare_messages(messages: "str | ChatMessage | Sequence[str | ChatMessage]") -> list[ChatMessage]:
    """Normalize the supported message inputs into a list of ChatMessage."""
    if isinstance(messages, str):
        return [ChatMessage(role=Role.USER, text=messages)]
    if isinstance(messages, ChatMessage):
        return [messages]
    return [ChatMessage(role=Role.USER, text=msg) if isinstance(msg, str) else msg for msg in messages]


# region Options


class ChatToolMode(ConverseBaseModel):
    """Defines if and how tools are used in a chat request."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["auto", "required", "none"] = "none"
    required_function_name: str | None = None

    AUTO: ClassVar[Self]  # type: ignore[assignment]
    REQUIRED_ANY: ClassVar[Self]  # type: ignore[assignment]
    NONE: ClassVar[Self]  # type: ignore[assignment]

    @classmethod
    def REQUIRED(cls, function_name: str | None = None) -> "ChatToolMode":
        """Returns a ChatToolMode that requires the specified function to be called."""
        return cls(mode="required", required_function_name=function_name)


ChatToolMode.AUTO = ChatToolMode(mode="auto")  # type: ignore[assignment]
ChatToolMode.REQUIRED_ANY = ChatToolMode(mode="required")  # type: ignore[assignment]
ChatToolMode.NONE = ChatToolMode(mode="none")  # type: ignore[assignment]


class ChatOptions(ConverseBaseModel):
    """Common request settings for chat models."""

    model_id: str | None = None
    max_tokens: Annotated[int | None, Field(gt=0)] = None
    temperature: Probability | None = None
    top_p: Probability | None = None
    stop: str | list[str] | None = None
    tool_choice: ChatToolMode | None = None
    tools: list[Any] | None = None
    additional_properties: dict[str, Any] = Field(
        default_factory=dict, description="Provider-specific additional properties."
    )

    @field_validator("tool_choice", mode="before")
    @classmethod
    def _validate_tool_choice(cls, value: Any) -> Any:
        if isinstance(value, str):
            if value == "auto":
                return ChatToolMode.AUTO
            if value == "required":
                return ChatToolMode.REQUIRED_ANY
            if value == "none":
                return ChatToolMode.NONE
            raise ValueError(f"Invalid tool choice: {value}")
        return value

    @field_validator("tools", mode="before")
    @classmethod
    def _validate_tools(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, list):
            value = [value]
        tools: list[Any] = []
        for tool in value:
            if isinstance(tool, (AIFunction, dict)):
                tools.append(tool)
            elif callable(tool):
                tools.append(ai_function(tool))
            else:
                raise ValueError(f"Unsupported tool type: {type(tool).__name__}")
        return tools

    @property
    def stop_sequences(self) -> list[str] | None:
        """The stop setting as a list, or None when unset."""
        if not self.stop:
            return None
        return [self.stop] if isinstance(self.stop, str) else list(self.stop)

    def merge(self, other: "ChatOptions | None") -> "ChatOptions":
        """Return new options where the explicitly set values of `other` override these.

        The result has the more specific of the two option classes, so family specific
        fields survive merging with generic options.
        """
        if other is None:
            return self.model_copy(deep=False)

        result_cls: type[ChatOptions] = type(other) if isinstance(other, type(self)) else type(self)
        values: dict[str, Any] = {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name in result_cls.model_fields and name != "additional_properties"
        }
        for name in other.model_fields_set:
            value = getattr(other, name)
            if value is not None and name in result_cls.model_fields and name != "additional_properties":
                values[name] = value
        values["additional_properties"] = {**self.additional_properties, **other.additional_properties}
        return result_cls(**values)


# region Responses


class ChatResponse(ConverseBaseModel):
    """Represents the response to a chat request."""

    messages: list[ChatMessage]
    """The chat response messages."""
    response_id: str | None = None
    """The ID of the chat response."""
    model_id: str | None = None
    """The model ID used in the creation of the chat response."""
    finish_reason: FinishReason | None = None
    """The reason the chat response completed."""
    usage_details: UsageDetails | None = None
    """The usage details for the chat response."""
    generation_metadata: Any | None = Field(default=None, repr=False)
    """The provider's ChatGenerationMetadata for the final generation."""
    raw_representation: Any | None = Field(default=None, repr=False)
    """The raw representation of the chat response from an underlying implementation."""
    additional_properties: dict[str, Any] | None = None
    """Any additional properties associated with the chat response."""

    @property
    def text(self) -> str:
        """Returns the concatenated text of all messages in the response."""
        return "".join(message.text for message in self.messages)

    @classmethod
    def from_chat_response_updates(cls, updates: Sequence["ChatResponseUpdate"]) -> "ChatResponse":
        """Join streaming updates into a single ChatResponse.

        Contents of consecutive updates with the same role are collected into one
        message, adjacent text contents are coalesced and usage contents are summed
        into `usage_details`.
        """
        messages: list[ChatMessage] = []
        usage: UsageDetails | None = None
        finish_reason: FinishReason | None = None
        generation_metadata: Any | None = None
        response_id: str | None = None
        model_id: str | None = None
        raw_representation: list[Any] = []

        for update in updates:
            role = update.role or (messages[-1].role if messages else Role.ASSISTANT)
            if not messages or messages[-1].role != role:
                messages.append(ChatMessage(role=role, contents=[], message_id=update.message_id))
            current = messages[-1]
            for content in update.contents:
                if isinstance(content, UsageContent):
                    usage = content.details if usage is None else usage + content.details
                    continue
                previous = current.contents[-1] if current.contents else None
                if isinstance(content, TextContent) and isinstance(previous, TextContent):
                    current.contents[-1] = TextContent(text=previous.text + content.text)
                    continue
                current.contents.append(content)

            if update.finish_reason is not None:
                finish_reason = update.finish_reason
                generation_metadata = update.generation_metadata
            elif finish_reason is None and update.generation_metadata is not None:
                generation_metadata = update.generation_metadata
            response_id = update.response_id or response_id
            model_id = update.model_id or model_id
            raw_representation.append(update.raw_representation)

        return cls(
            messages=messages,
            response_id=response_id,
            model_id=model_id,
            finish_reason=finish_reason,
            usage_details=usage,
            generation_metadata=generation_metadata,
            raw_representation=raw_representation,
        )


class ChatResponseUpdate(ConverseBaseModel):
    """Represents a single streaming response chunk from a chat model."""

    contents: list[Contents] = Field(default_factory=list)
    """The chat response update content items."""
    role: Role | None = None
    """The role of the author of the response update."""
    finish_reason: FinishReason | None = None
    """The finish reason for the operation."""
    response_id: str | None = None
    """The ID of the response of which this update is a part."""
    message_id: str | None = None
    """The ID of the message of which this update is a part."""
    model_id: str | None = None
    """The model ID associated with this response update."""
    generation_metadata: Any | None = Field(default=None, repr=False)
    """The provider's ChatGenerationMetadata for the event behind this update."""
    raw_representation: Any | None = Field(default=None, repr=False)
    """The raw representation of the chat response update from an underlying implementation."""
    additional_properties: dict[str, Any] | None = None
    """Any additional properties associated with the chat response update."""

    @property
    def text(self) -> str:
        """Returns the concatenated text of all contents in the update."""
        return "".join(content.text for content in self.contents if isinstance(content, TextContent))


# region Embeddings


class Embedding(ConverseBaseModel):
    """A single embedding vector and the index of the input it belongs to."""

    vector: list[float]
    index: int


class EmbeddingResponse(ConverseBaseModel):
    """Represents the response to an embedding request."""

    embeddings: list[Embedding]
    model_id: str | None = None
    usage_details: UsageDetails | None = None
    raw_representation: Any | None = Field(default=None, repr=False)

    @property
    def vectors(self) -> list[list[float]]:
        """The embedding vectors ordered by input index."""
        return [embedding.vector for embedding in sorted(self.embeddings, key=lambda e: e.index)]
