# Copyright (c) Microsoft. All rights reserved.

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, Sequence
from contextlib import aclosing
from typing import Any, ClassVar, Literal

from ._logging import get_logger
from ._options import EmbeddingOptions
from ._types import (
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ChatResponseUpdate,
    ChatToolMode,
    DataContent,
    EmbeddingResponse,
    prepare_messages,
)
from .exceptions import ServiceInitializationError, ServiceInvalidRequestError

__all__ = ["BaseChatClient", "BaseEmbeddingClient"]

logger = get_logger("bedrock_converse.clients")


class BaseChatClient(ABC):
    """Base class for chat clients.

    Normalises the message input and merges the client's default options, the request's
    `chat_options` and the individual keyword options, in that order of precedence
    from low to high.
    """

    OPTIONS_CLASS: ClassVar[type[ChatOptions]] = ChatOptions

    def __init__(self, *, default_options: ChatOptions | None = None) -> None:
        try:
            defaults = self.create_default_options()
            self.default_options: ChatOptions = defaults.merge(default_options) if default_options else defaults
        except ValueError as ex:
            raise ServiceInitializationError(f"Invalid default options for {type(self).__name__}.", ex) from ex

    @classmethod
    def create_default_options(cls) -> ChatOptions:
        """The options a new client starts with. Subclasses override this to set family defaults."""
        return cls.OPTIONS_CLASS()

    # region Internal methods to be implemented by the derived classes

    @abstractmethod
    async def _inner_get_response(
        self,
        *,
        messages: Sequence[ChatMessage],
        chat_options: ChatOptions,
    ) -> ChatResponse:
        """Send a chat request to the AI service.

        Args:
            messages: The chat messages to send.
            chat_options: The options for the request.

        Returns:
            The chat response contents representing the response(s).
        """

    @abstractmethod
    async def _inner_get_streaming_response(
        self,
        *,
        messages: Sequence[ChatMessage],
        chat_options: ChatOptions,
    ) -> AsyncIterable[ChatResponseUpdate]:
        """Send a streaming chat request to the AI service.

        Args:
            messages: The chat messages to send.
            chat_options: The chat_options for the request.

        Yields:
            ChatResponseUpdate: The streaming chat message contents.
        """
        # Below is needed for mypy: https://mypy.readthedocs.io/en/stable/more_types.html#asynchronous-iterators
        if False:
            yield
        await asyncio.sleep(0)  # pragma: no cover

    # endregion

    def _prepare_options(self, chat_options: ChatOptions | None, overrides: dict[str, Any]) -> ChatOptions:
        if chat_options is not None and not isinstance(chat_options, ChatOptions):
            raise TypeError("chat_options must be an instance of ChatOptions")
        overrides = {key: value for key, value in overrides.items() if value is not None}
        try:
            options = self.default_options.merge(chat_options)
            if overrides:
                options = options.merge(type(options)(**overrides))
        except ValueError as ex:
            raise ServiceInvalidRequestError(f"Invalid chat options: {ex}", ex) from ex
        return options

    @staticmethod
    def _prepare_messages(messages: "str | ChatMessage | Sequence[str | ChatMessage]") -> list[ChatMessage]:
        prepped = prepare_messages(messages)
        if not prepped:
            raise ServiceInvalidRequestError("At least one message is required.")
        return prepped

    # region Public methods

    async def get_response(
        self,
        messages: "str | ChatMessage | Sequence[str | ChatMessage]",
        *,
        chat_options: ChatOptions | None = None,
        model_id: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        stop: str | Sequence[str] | None = None,
        tool_choice: ChatToolMode | Literal["auto", "required", "none"] | None = None,
        tools: Any | None = None,
        additional_properties: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> ChatResponse:
        """Get a response from a chat client.

        Args:
            messages: the message or messages to send to the model
            chat_options: options for this request, merged over the client's default options.
            model_id: The model to use for the request.
            max_tokens: The maximum number of tokens to generate.
            temperature: the sampling temperature to use.
            top_p: the nucleus sampling probability to use.
            stop: the stop sequence(s) for the request.
            tool_choice: the tool choice for the request.
            tools: the tools to use for the request.
            additional_properties: additional properties to include in the request.
            kwargs: options specific to the client's options class, e.g. `top_k`.

        Returns:
            A chat response from the model.
        """
        options = self._prepare_options(
            chat_options,
            {
                "model_id": model_id,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "top_p": top_p,
                "stop": list(stop) if stop is not None and not isinstance(stop, str) else stop,
                "tool_choice": tool_choice,
                "tools": tools,
                "additional_properties": additional_properties,
                **kwargs,
            },
        )
        return await self._inner_get_response(messages=self._prepare_messages(messages), chat_options=options)

    async def get_streaming_response(
        self,
        messages: "str | ChatMessage | Sequence[str | ChatMessage]",
        *,
        chat_options: ChatOptions | None = None,
        model_id: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        stop: str | Sequence[str] | None = None,
        tool_choice: ChatToolMode | Literal["auto", "required", "none"] | None = None,
        tools: Any | None = None,
        additional_properties: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> AsyncIterable[ChatResponseUpdate]:
        """Get a streaming response from a chat client.

        Takes the same arguments as `get_response`.

        Yields:
            A stream representing the response(s) from the model.
        """
        options = self._prepare_options(
            chat_options,
            {
                "model_id": model_id,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "top_p": top_p,
                "stop": list(stop) if stop is not None and not isinstance(stop, str) else stop,
                "tool_choice": tool_choice,
                "tools": tools,
                "additional_properties": additional_properties,
                **kwargs,
            },
        )
        updates = self._inner_get_streaming_response(messages=self._prepare_messages(messages), chat_options=options)
        async with aclosing(updates):  # type: ignore[type-var]
            async for update in updates:
                yield update

    # endregion


class BaseEmbeddingClient(ABC):
    """Base class for embedding clients."""

    OPTIONS_CLASS: ClassVar[type[EmbeddingOptions]] = EmbeddingOptions

    def __init__(self, *, default_options: EmbeddingOptions | None = None) -> None:
        try:
            defaults = self.OPTIONS_CLASS()
            self.default_options: EmbeddingOptions = defaults.merge(default_options) if default_options else defaults
        except ValueError as ex:
            raise ServiceInitializationError(f"Invalid default options for {type(self).__name__}.", ex) from ex

    @abstractmethod
    async def _inner_embed(self, values: Sequence[str | DataContent], options: EmbeddingOptions) -> EmbeddingResponse:
        """Embed the given values.

        Args:
            values: The non empty inputs to embed.
            options: The merged options for the request.
        """

    async def embed(
        self,
        values: str | DataContent | Sequence[str | DataContent],
        *,
        options: EmbeddingOptions | None = None,
    ) -> EmbeddingResponse:
        """Generate one embedding per input value.

        Raises:
            ServiceInvalidRequestError: If there is nothing to embed.
        """
        inputs = [values] if isinstance(values, (str, DataContent)) else list(values)
        if not inputs:
            raise ServiceInvalidRequestError("At least one value is required to create embeddings.")
        try:
            merged = self.default_options.merge(options)
        except ValueError as ex:
            raise ServiceInvalidRequestError(f"Invalid embedding options: {ex}", ex) from ex
        return await self._inner_embed(inputs, merged)

    async def embed_one(self, value: str | DataContent, *, options: EmbeddingOptions | None = None) -> list[float]:
        """Embed a single value and return its vector."""
        response = await self.embed(value, options=options)
        return response.embeddings[0].vector
