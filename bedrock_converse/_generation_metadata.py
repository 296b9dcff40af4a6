# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Mapping
from typing import Any, ClassVar

from ._converse_utils import EMPTY_MESSAGE, StreamEventKind, create_message

__all__ = ["BedrockConverseChatGenerationMetadata"]


class BedrockConverseChatGenerationMetadata:
    """Generation metadata for a Bedrock Converse response or a single ConverseStream event.

    A complete response yields metadata holding the stop reason and the final Bedrock
    message. A stream event yields metadata holding the raw event; the stop reason is
    only known for the terminal `messageStop` event, and the message is materialised
    on demand by `generate_event_message`.

    Examples:
        .. code-block:: python

            metadata = BedrockConverseChatGenerationMetadata.from_event(
                {"contentBlockDelta": {"delta": {"text": "Hello"}, "contentBlockIndex": 0}}
            )
            metadata.generate_event_message()
            assert metadata.message == {"role": "assistant", "content": [{"text": "Hello"}]}
    """

    SUPPORTS_CONTENT_FILTER_METADATA: ClassVar[bool] = False
    """Converse does not surface content filter details, so the metadata never carries any."""

    def __init__(
        self,
        stop_reason: str | None = None,
        message: Mapping[str, Any] | None = None,
        event: Mapping[str, Any] | None = None,
    ) -> None:
        self._stop_reason = stop_reason
        self._message = message
        self._event = event

    @classmethod
    def from_response(
        cls, response: Mapping[str, Any], message: Mapping[str, Any] | None
    ) -> "BedrockConverseChatGenerationMetadata":
        """Create metadata for a complete Converse response.

        The stop reason is copied verbatim, including when it is missing or unknown.
        """
        return cls(stop_reason=response.get("stopReason"), message=message)

    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> "BedrockConverseChatGenerationMetadata":
        """Create metadata for one ConverseStream event."""
        stop_reason = None
        kind = StreamEventKind.from_event(event)
        if kind is StreamEventKind.MESSAGE_STOP:
            stop_reason = kind.payload(event).get("stopReason")
        return cls(stop_reason=stop_reason, event=event)

    @property
    def finish_reason(self) -> str | None:
        """The Bedrock stop reason, unmapped."""
        return self._stop_reason

    @finish_reason.setter
    def finish_reason(self, value: str | None) -> None:
        self._stop_reason = value

    def get_finish_reason(self) -> str | None:
        """Same as `finish_reason`: the raw Bedrock stop reason, None unless the response or event is terminal."""
        return self._stop_reason

    @property
    def message(self) -> Mapping[str, Any] | None:
        """The final Bedrock message, if one is known or has been generated from the event."""
        return self._message

    @message.setter
    def message(self, value: Mapping[str, Any] | None) -> None:
        self._message = value

    @property
    def event(self) -> Mapping[str, Any] | None:
        """The raw stream event, None for complete responses."""
        return self._event

    @property
    def event_kind(self) -> StreamEventKind | None:
        """The kind of the stored event, None when no event is stored."""
        if self._event is None:
            return None
        return StreamEventKind.from_event(self._event)

    def get_content_filter_metadata(self) -> None:
        """Always None, see SUPPORTS_CONTENT_FILTER_METADATA."""
        return None

    def has_tool_use_payload(self) -> bool:
        """Whether the stored event starts or continues a toolUse content block."""
        kind = self.event_kind
        if kind is StreamEventKind.CONTENT_BLOCK_START:
            start = kind.payload(self._event or {}).get("start")
            return isinstance(start, Mapping) and start.get("toolUse") is not None
        if kind is StreamEventKind.CONTENT_BLOCK_DELTA:
            delta = kind.payload(self._event or {}).get("delta")
            return isinstance(delta, Mapping) and delta.get("toolUse") is not None
        return False

    def is_tool_use_event(self) -> bool:
        """True unless the stored event is a toolUse start or delta.

        False for a contentBlockStart or contentBlockDelta carrying a toolUse payload,
        True for every other event and when no event is stored. Stream consumers emit
        events for which this is True and buffer the others as tool input.
        """
        return not self.has_tool_use_payload()

    def generate_event_message(self) -> None:
        """Materialise the stored event as a Bedrock message.

        A text delta becomes a single text block assistant message. Every other event
        becomes EMPTY_MESSAGE. Without an event this does nothing.
        """
        kind = self.event_kind
        if kind is None:
            return
        if kind is StreamEventKind.CONTENT_BLOCK_DELTA:
            delta = kind.payload(self._event or {}).get("delta")
            if isinstance(delta, Mapping) and isinstance(delta.get("text"), str):
                self._message = create_message([{"text": delta["text"]}], "assistant")
                return
        self._message = EMPTY_MESSAGE

    def __repr__(self) -> str:
        kind = self.event_kind.value if self.event_kind is not None else None
        return (
            f"{self.__class__.__name__}(finish_reason={self._stop_reason!r}, "
            f"event_kind={kind!r}, message={self._message!r})"
        )
