# Copyright (c) Microsoft. All rights reserved.
import pytest
from pydantic import ValidationError

from bedrock_converse import (
    Anthropic3ChatOptions,
    BedrockChatOptions,
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ChatResponseUpdate,
    ChatToolMode,
    CohereChatOptions,
    DataContent,
    FinishReason,
    FunctionCallContent,
    ModelFamily,
    Role,
    TextContent,
    TitanChatOptions,
    UsageContent,
    UsageDetails,
)
from bedrock_converse._types import prepare_messages


class TestMessages:
    """Tests for chat messages."""

    def test_text_and_string_role(self) -> None:
        """Test that a string role is accepted and text becomes a TextContent."""
        message = ChatMessage("user", "Hello")

        assert message.role == Role.USER
        assert message.text == "Hello"
        assert isinstance(message.contents[0], TextContent)

    def test_prepare_messages(self) -> None:
        """Test that strings and messages are normalised into a list."""
        assistant = ChatMessage(role=Role.ASSISTANT, text="Hi")

        prepared = prepare_messages(["Hello", assistant])

        assert [message.role for message in prepared] == [Role.USER, Role.ASSISTANT]
        assert prepared[1] is assistant
        assert prepare_messages("single")[0].text == "single"

    def test_roles_are_hashable(self) -> None:
        """Test that roles can be used as dictionary keys."""
        assert {Role.USER: 1}[Role(value="user")] == 1
        assert str(Role.TOOL) == "tool"


class TestDataContent:
    """Tests for binary content."""

    def test_from_bytes(self) -> None:
        """Test that bytes are stored as a data URI and decoded again."""
        content = DataContent(data=b"\x00\x01", media_type="image/png")

        assert content.uri.startswith("data:image/png;base64,")
        assert content.get_data_bytes() == b"\x00\x01"
        assert content.has_top_level_media_type("IMAGE")
        assert not content.has_top_level_media_type("audio")

    def test_media_type_from_uri(self) -> None:
        """Test that the media type is read from the URI."""
        assert DataContent(uri="data:image/gif;base64,R0lG").media_type == "image/gif"

    def test_requires_data_uri(self) -> None:
        """Test that other URIs are refused."""
        with pytest.raises(ValidationError):
            DataContent(uri="https://example.com/cat.png")

    def test_requires_media_type_with_bytes(self) -> None:
        """Test that raw bytes need a media type."""
        with pytest.raises(ValueError):
            DataContent(data=b"\x00")


class TestChatOptions:
    """Tests for chat options."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("auto", ChatToolMode.AUTO), ("required", ChatToolMode.REQUIRED_ANY), ("none", ChatToolMode.NONE)],
    )
    def test_tool_choice_strings(self, value: str, expected: ChatToolMode) -> None:
        """Test that tool choice strings become tool modes."""
        assert ChatOptions(tool_choice=value).tool_choice == expected

    def test_invalid_tool_choice(self) -> None:
        """Test that unknown tool choice strings are refused."""
        with pytest.raises(ValidationError):
            ChatOptions(tool_choice="sometimes")

    @pytest.mark.parametrize("field", [{"temperature": 1.5}, {"top_p": -0.1}, {"max_tokens": 0}])
    def test_out_of_range(self, field: dict[str, float]) -> None:
        """Test the option bounds."""
        with pytest.raises(ValidationError):
            ChatOptions(**field)

    def test_stop_sequences(self) -> None:
        """Test that a single stop string becomes a list."""
        assert ChatOptions(stop="END").stop_sequences == ["END"]
        assert ChatOptions().stop_sequences is None

    def test_merge_overrides_set_fields(self) -> None:
        """Test that explicitly set values win and additional properties are combined."""
        base = ChatOptions(temperature=0.7, max_tokens=500, additional_properties={"a": 1})
        override = ChatOptions(temperature=0.1, additional_properties={"b": 2})

        merged = base.merge(override)

        assert merged.temperature == 0.1
        assert merged.max_tokens == 500
        assert merged.additional_properties == {"a": 1, "b": 2}
        assert base.temperature == 0.7

    def test_merge_keeps_specific_class(self) -> None:
        """Test that merging with generic options keeps family fields."""
        base = Anthropic3ChatOptions(top_k=10)

        merged = base.merge(ChatOptions(temperature=0.2))

        assert isinstance(merged, Anthropic3ChatOptions)
        assert merged.top_k == 10
        assert merged.temperature == 0.2

    def test_merge_upgrades_to_specific_class(self) -> None:
        """Test that generic defaults merged with family options take the family class."""
        merged = BedrockChatOptions(temperature=0.5).merge(CohereChatOptions(top_k=4))

        assert isinstance(merged, CohereChatOptions)
        assert merged.additional_model_request_fields() == {"k": 4}

    def test_additional_model_request_fields(self) -> None:
        """Test the model specific request fields."""
        assert BedrockChatOptions().additional_model_request_fields() is None
        assert Anthropic3ChatOptions(top_k=3).additional_model_request_fields() == {"top_k": 3}
        assert TitanChatOptions(top_k=3).additional_model_request_fields() is None
        assert TitanChatOptions(additional_properties={"x": 1}).additional_model_request_fields() == {"x": 1}


class TestModelFamily:
    """Tests for model family detection."""

    @pytest.mark.parametrize(
        ("model_id", "family", "max_tokens"),
        [
            ("anthropic.claude-3-5-sonnet-20241022-v2:0", ModelFamily.ANTHROPIC3, 4096),
            ("us.anthropic.claude-3-haiku-20240307-v1:0", ModelFamily.ANTHROPIC3, 4096),
            ("cohere.command-r-v1:0", ModelFamily.COHERE, 2048),
            ("meta.llama3-70b-instruct-v1:0", ModelFamily.LLAMA, 2048),
            ("amazon.titan-text-express-v1", ModelFamily.TITAN, 3072),
            ("ai21.j2-ultra-v1", ModelFamily.JURASSIC2, 2048),
            ("mistral.mistral-large-2402-v1:0", ModelFamily.MISTRAL, 2048),
            ("amazon.nova-pro-v1:0", ModelFamily.UNKNOWN, 1024),
        ],
    )
    def test_detect(self, model_id: str, family: ModelFamily, max_tokens: int) -> None:
        """Test detection and the family default max tokens."""
        detected = ModelFamily.detect(model_id)

        assert detected is family
        assert detected.default_max_tokens == max_tokens


class TestResponseUpdates:
    """Tests for joining streaming updates."""

    def test_from_chat_response_updates(self) -> None:
        """Test that text is joined, usage summed and the terminal finish reason kept."""
        updates = [
            ChatResponseUpdate(role=Role.ASSISTANT, contents=[TextContent(text="Hel")], generation_metadata="first"),
            ChatResponseUpdate(role=Role.ASSISTANT, contents=[TextContent(text="lo")]),
            ChatResponseUpdate(
                role=Role.ASSISTANT,
                contents=[FunctionCallContent(call_id="c", name="f", arguments={})],
            ),
            ChatResponseUpdate(
                contents=[UsageContent(details=UsageDetails(input_token_count=2, output_token_count=3))],
            ),
            ChatResponseUpdate(
                role=Role.ASSISTANT,
                finish_reason=FinishReason.TOOL_CALLS,
                generation_metadata="terminal",
                model_id="m",
            ),
            ChatResponseUpdate(
                role=Role.ASSISTANT,
                contents=[UsageContent(details=UsageDetails(input_token_count=1, output_token_count=1))],
                generation_metadata="late",
            ),
        ]

        response = ChatResponse.from_chat_response_updates(updates)

        assert len(response.messages) == 1
        assert response.text == "Hello"
        assert isinstance(response.messages[0].contents[1], FunctionCallContent)
        assert response.usage_details == UsageDetails(input_token_count=3, output_token_count=4, total_token_count=0)
        assert response.finish_reason == FinishReason.TOOL_CALLS
        assert response.generation_metadata == "terminal"
        assert response.model_id == "m"

    def test_usage_addition(self) -> None:
        """Test that usage details add up field by field."""
        total = UsageDetails(input_token_count=1, total_token_count=2) + UsageDetails(output_token_count=5)

        assert total == UsageDetails(input_token_count=1, output_token_count=5, total_token_count=2)
