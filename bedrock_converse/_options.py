# Copyright (c) Microsoft. All rights reserved.

from enum import Enum
from typing import Annotated, Any, ClassVar, Final, Literal

from pydantic import Field

from ._logging import get_logger
from ._pydantic import ConverseBaseModel
from ._types import ChatOptions

__all__ = [
    "Anthropic3ChatOptions",
    "BedrockChatOptions",
    "CohereChatOptions",
    "CohereEmbeddingOptions",
    "EmbeddingOptions",
    "Jurassic2ChatOptions",
    "LlamaChatOptions",
    "MistralChatOptions",
    "ModelFamily",
    "TitanChatOptions",
    "TitanEmbeddingOptions",
]

logger = get_logger("bedrock_converse.options")


class ModelFamily(Enum):
    """Model families available on Bedrock, keyed by the provider part of the model id."""

    ANTHROPIC3 = "anthropic"
    COHERE = "cohere"
    LLAMA = "meta"
    TITAN = "amazon.titan"
    JURASSIC2 = "ai21"
    MISTRAL = "mistral"
    UNKNOWN = "unknown"

    @classmethod
    def detect(cls, model_id: str) -> "ModelFamily":
        """Detect the family from a model id.

        Examples:
            - anthropic.claude-3-5-sonnet-20241022-v2:0 -> ANTHROPIC3
            - amazon.titan-text-premier-v1:0 -> TITAN
            - us.anthropic.claude-3-haiku-20240307-v1:0 -> ANTHROPIC3 (inference profile)
        """
        model_id_lower = model_id.lower()
        for family in cls:
            if family is not cls.UNKNOWN and family.value in model_id_lower:
                return family
        return cls.UNKNOWN

    @property
    def default_max_tokens(self) -> int:
        return _DEFAULT_MAX_TOKENS.get(self, 1024)


_DEFAULT_MAX_TOKENS: Final[dict[ModelFamily, int]] = {
    ModelFamily.ANTHROPIC3: 4096,
    ModelFamily.COHERE: 2048,
    ModelFamily.LLAMA: 2048,
    ModelFamily.TITAN: 3072,
    ModelFamily.JURASSIC2: 2048,
    ModelFamily.MISTRAL: 2048,
}


# region Chat options


class BedrockChatOptions(ChatOptions):
    """Chat options for Bedrock Converse models.

    Options the Converse inferenceConfig does not know travel in
    `additionalModelRequestFields`: `top_k` under the family's own field name, plus
    everything in `additional_properties`.
    """

    TOP_K_FIELD: ClassVar[str | None] = "top_k"

    top_k: Annotated[int | None, Field(gt=0)] = None

    def additional_model_request_fields(self) -> dict[str, Any] | None:
        """The model specific request fields, or None when there are none."""
        fields: dict[str, Any] = {}
        if self.top_k is not None:
            if self.TOP_K_FIELD:
                fields[self.TOP_K_FIELD] = self.top_k
            else:
                logger.debug(f"{type(self).__name__} does not support top_k, ignoring it.")
        fields.update(self.additional_properties)
        return fields or None


class Anthropic3ChatOptions(BedrockChatOptions):
    """Chat options for Anthropic Claude 3 models."""


class CohereChatOptions(BedrockChatOptions):
    """Chat options for Cohere Command models."""

    TOP_K_FIELD: ClassVar[str | None] = "k"


class LlamaChatOptions(BedrockChatOptions):
    """Chat options for Meta Llama models."""

    TOP_K_FIELD: ClassVar[str | None] = None


class TitanChatOptions(BedrockChatOptions):
    """Chat options for Amazon Titan text models."""

    TOP_K_FIELD: ClassVar[str | None] = None


class Jurassic2ChatOptions(BedrockChatOptions):
    """Chat options for AI21 Jurassic-2 models."""

    TOP_K_FIELD: ClassVar[str | None] = None


class MistralChatOptions(BedrockChatOptions):
    """Chat options for Mistral models."""


# region Embedding options


class EmbeddingOptions(ConverseBaseModel):
    """Common request settings for embedding models."""

    model_id: str | None = None
    additional_properties: dict[str, Any] = Field(default_factory=dict)

    def merge(self, other: "EmbeddingOptions | None") -> "EmbeddingOptions":
        """Return new options where the explicitly set values of `other` override these."""
        if other is None:
            return self.model_copy()
        update = {
            name: getattr(other, name)
            for name in other.model_fields_set
            if getattr(other, name) is not None and name in type(self).model_fields
        }
        update["additional_properties"] = {**self.additional_properties, **other.additional_properties}
        return type(self)(**{**{name: getattr(self, name) for name in self.model_fields_set}, **update})


class CohereEmbeddingOptions(EmbeddingOptions):
    """Request settings for Cohere embedding models.

    `input_type` prepends special tokens to differentiate each type from one another.
    `truncate` specifies how the API handles inputs longer than the maximum token length.
    """

    input_type: Literal["search_document", "search_query", "classification", "clustering"] = "search_document"
    truncate: Literal["NONE", "START", "END"] = "NONE"


class TitanEmbeddingOptions(EmbeddingOptions):
    """Request settings for Amazon Titan embedding models."""

    input_type: Literal["text", "image"] = "text"
    dimensions: int | None = None
    normalize: bool | None = None
