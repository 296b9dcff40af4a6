# Copyright (c) Microsoft. All rights reserved.

import base64
from collections.abc import Sequence
from typing import Any, ClassVar

from ._clients import BaseEmbeddingClient
from ._converse_api import BedrockConverseApi
from ._logging import get_logger
from ._options import CohereEmbeddingOptions, EmbeddingOptions, TitanEmbeddingOptions
from ._types import DataContent, Embedding, EmbeddingResponse, UsageDetails
from .exceptions import ServiceInvalidRequestError, ServiceResponseException

__all__ = ["BedrockCohereEmbeddingModel", "BedrockTitanEmbeddingModel"]

logger = get_logger("bedrock_converse.embedding")


class _BedrockEmbeddingModel(BaseEmbeddingClient):
    DEFAULT_MODEL_ID: ClassVar[str]

    def __init__(
        self,
        api: BedrockConverseApi | None = None,
        *,
        model_id: str | None = None,
        default_options: EmbeddingOptions | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(default_options=default_options)
        self.api = api if api is not None else BedrockConverseApi(**kwargs)
        self.model_id = model_id or self.default_options.model_id or self.DEFAULT_MODEL_ID


class BedrockCohereEmbeddingModel(_BedrockEmbeddingModel):
    """Embedding model for Cohere Embed models on Bedrock.

    All inputs are sent in a single InvokeModel request.

    Examples:
        .. code-block:: python

            from bedrock_converse import BedrockCohereEmbeddingModel, CohereEmbeddingOptions

            model = BedrockCohereEmbeddingModel(default_options=CohereEmbeddingOptions(input_type="search_query"))
            vector = await model.embed_one("What is the capital of France?")
    """

    OPTIONS_CLASS: ClassVar[type[EmbeddingOptions]] = CohereEmbeddingOptions
    DEFAULT_MODEL_ID: ClassVar[str] = "cohere.embed-multilingual-v3"

    async def _inner_embed(self, values: Sequence[str | DataContent], options: EmbeddingOptions) -> EmbeddingResponse:
        if any(not isinstance(value, str) for value in values):
            raise ServiceInvalidRequestError("Cohere embedding models only accept text input.")
        model_id = options.model_id or self.model_id
        body: dict[str, Any] = {"texts": list(values)}
        if isinstance(options, CohereEmbeddingOptions):
            body["input_type"] = options.input_type
            body["truncate"] = options.truncate
        body.update(options.additional_properties)

        response = await self.api.invoke_model(model_id, body)
        embeddings = response.get("embeddings")
        if isinstance(embeddings, dict):
            # Responses requested with embedding_types are keyed by type
            embeddings = embeddings.get("float")
        if not isinstance(embeddings, list) or len(embeddings) != len(values):
            raise ServiceResponseException(f"Unexpected Cohere embedding response for model '{model_id}'.")

        return EmbeddingResponse(
            embeddings=[Embedding(vector=list(vector), index=index) for index, vector in enumerate(embeddings)],
            model_id=model_id,
            raw_representation=response,
        )


class BedrockTitanEmbeddingModel(_BedrockEmbeddingModel):
    """Embedding model for Amazon Titan embedding models on Bedrock.

    Titan embeds one input per request, so each value is a separate InvokeModel call.
    Images are passed as DataContent, or as base64 strings when `input_type` is "image".
    """

    OPTIONS_CLASS: ClassVar[type[EmbeddingOptions]] = TitanEmbeddingOptions
    DEFAULT_MODEL_ID: ClassVar[str] = "amazon.titan-embed-image-v1"

    @staticmethod
    def _create_body(value: str | DataContent, options: EmbeddingOptions) -> dict[str, Any]:
        body: dict[str, Any]
        if isinstance(value, DataContent):
            if not value.has_top_level_media_type("image"):
                raise ServiceInvalidRequestError(f"Unsupported media type for Titan embeddings: {value.media_type}")
            body = {"inputImage": base64.b64encode(value.get_data_bytes()).decode("ascii")}
        elif isinstance(options, TitanEmbeddingOptions) and options.input_type == "image":
            body = {"inputImage": value}
        else:
            body = {"inputText": value}

        if isinstance(options, TitanEmbeddingOptions):
            if options.dimensions is not None:
                body["dimensions"] = options.dimensions
            if options.normalize is not None:
                body["normalize"] = options.normalize
        body.update(options.additional_properties)
        return body

    async def _inner_embed(self, values: Sequence[str | DataContent], options: EmbeddingOptions) -> EmbeddingResponse:
        model_id = options.model_id or self.model_id
        embeddings: list[Embedding] = []
        input_tokens = 0
        raw: list[dict[str, Any]] = []

        for index, value in enumerate(values):
            response = await self.api.invoke_model(model_id, self._create_body(value, options))
            vector = response.get("embedding")
            if not isinstance(vector, list):
                raise ServiceResponseException(f"Unexpected Titan embedding response for model '{model_id}'.")
            embeddings.append(Embedding(vector=vector, index=index))
            input_tokens += response.get("inputTextTokenCount", 0)
            raw.append(response)

        logger.debug(f"Created {len(embeddings)} Titan embeddings using {input_tokens} input tokens.")
        return EmbeddingResponse(
            embeddings=embeddings,
            model_id=model_id,
            usage_details=UsageDetails(input_token_count=input_tokens, total_token_count=input_tokens),
            raw_representation=raw,
        )
