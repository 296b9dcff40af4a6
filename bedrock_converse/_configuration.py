# Copyright (c) Microsoft. All rights reserved.

"""Provider registry that assembles Bedrock models from settings.

Each model family is described once by a ProviderDescriptor: its settings class, whose
`enabled` flag gates the family, and a factory that builds the model from a shared
BedrockConverseApi. `configure_bedrock` evaluates all descriptors.
"""

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Literal

from ._chat_model import (
    BedrockAnthropic3ChatModel,
    BedrockCohereChatModel,
    BedrockConverseChatModel,
    BedrockJurassic2ChatModel,
    BedrockLlamaChatModel,
    BedrockMistralChatModel,
    BedrockTitanChatModel,
)
from ._clients import BaseChatClient, BaseEmbeddingClient
from ._converse_api import BedrockConnectionSettings, BedrockConverseApi
from ._embedding import BedrockCohereEmbeddingModel, BedrockTitanEmbeddingModel
from ._logging import get_logger
from ._retry import RetryPolicy
from ._settings import ConverseSettings
from .exceptions import ServiceInitializationError

__all__ = [
    "PROVIDERS",
    "Anthropic3ChatSettings",
    "BedrockChatSettings",
    "BedrockModels",
    "BedrockProviderSettings",
    "CohereChatSettings",
    "CohereEmbeddingSettings",
    "Jurassic2ChatSettings",
    "LlamaChatSettings",
    "MistralChatSettings",
    "ProviderDescriptor",
    "TitanChatSettings",
    "TitanEmbeddingSettings",
    "configure_bedrock",
    "register_provider",
]

logger = get_logger("bedrock_converse.configuration")


# region Settings


class BedrockProviderSettings(ConverseSettings):
    """Settings shared by all model families: the enabled flag and the model id."""

    enabled: bool = False
    model: str | None = None

    def option_values(self) -> dict[str, Any]:
        """The option fields that are set, excluding `enabled` and `model`."""
        values = self.to_dict(exclude_none=True)
        values.pop("enabled", None)
        model = values.pop("model", None)
        if model:
            values["model_id"] = model
        return values


class BedrockChatSettings(BedrockProviderSettings):
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    stop_sequences: list[str] | None = None

    def option_values(self) -> dict[str, Any]:
        values = super().option_values()
        if stop := values.pop("stop_sequences", None):
            values["stop"] = stop
        return values


class Anthropic3ChatSettings(BedrockChatSettings):
    """Anthropic Claude 3 chat settings. (Env prefix BEDROCK_ANTHROPIC3_CHAT_)"""

    env_prefix: ClassVar[str] = "BEDROCK_ANTHROPIC3_CHAT_"


class CohereChatSettings(BedrockChatSettings):
    """Cohere Command chat settings. (Env prefix BEDROCK_COHERE_CHAT_)"""

    env_prefix: ClassVar[str] = "BEDROCK_COHERE_CHAT_"


class LlamaChatSettings(BedrockChatSettings):
    """Meta Llama chat settings. (Env prefix BEDROCK_LLAMA_CHAT_)"""

    env_prefix: ClassVar[str] = "BEDROCK_LLAMA_CHAT_"


class TitanChatSettings(BedrockChatSettings):
    """Amazon Titan chat settings. (Env prefix BEDROCK_TITAN_CHAT_)"""

    env_prefix: ClassVar[str] = "BEDROCK_TITAN_CHAT_"


class Jurassic2ChatSettings(BedrockChatSettings):
    """AI21 Jurassic-2 chat settings. (Env prefix BEDROCK_JURASSIC2_CHAT_)"""

    env_prefix: ClassVar[str] = "BEDROCK_JURASSIC2_CHAT_"


class MistralChatSettings(BedrockChatSettings):
    """Mistral chat settings. (Env prefix BEDROCK_MISTRAL_CHAT_)"""

    env_prefix: ClassVar[str] = "BEDROCK_MISTRAL_CHAT_"


class CohereEmbeddingSettings(BedrockProviderSettings):
    """Cohere embedding settings. (Env prefix BEDROCK_COHERE_EMBEDDING_)"""

    env_prefix: ClassVar[str] = "BEDROCK_COHERE_EMBEDDING_"

    input_type: str | None = None
    truncate: str | None = None


class TitanEmbeddingSettings(BedrockProviderSettings):
    """Amazon Titan embedding settings. (Env prefix BEDROCK_TITAN_EMBEDDING_)"""

    env_prefix: ClassVar[str] = "BEDROCK_TITAN_EMBEDDING_"

    input_type: str | None = None


# region Descriptors


@dataclass(frozen=True)
class ProviderDescriptor:
    """Describes how to build the model of one family.

    Attributes:
        name: Unique registry name, e.g. "anthropic3-chat".
        kind: Whether the family produces a chat or an embedding model.
        settings_class: The settings class holding `enabled`, `model` and options.
        factory: Builds the model from the shared api and the family settings.
    """

    name: str
    kind: Literal["chat", "embedding"]
    settings_class: type[BedrockProviderSettings]
    factory: Callable[[BedrockConverseApi, Any], Any]


def _chat_factory(model_class: type[BedrockConverseChatModel]) -> Callable[[BedrockConverseApi, Any], Any]:
    def factory(api: BedrockConverseApi, settings: BedrockProviderSettings) -> BedrockConverseChatModel:
        values = settings.option_values()
        try:
            options = model_class.OPTIONS_CLASS(**values)
        except ValueError as ex:
            raise ServiceInitializationError(f"Invalid options in {type(settings).__name__}.", ex) from ex
        return model_class(api, model_id=values.get("model_id"), default_options=options)

    return factory


def _embedding_factory(
    model_class: type[BedrockCohereEmbeddingModel] | type[BedrockTitanEmbeddingModel],
) -> Callable[[BedrockConverseApi, Any], Any]:
    def factory(api: BedrockConverseApi, settings: BedrockProviderSettings) -> BaseEmbeddingClient:
        values = settings.option_values()
        try:
            options = model_class.OPTIONS_CLASS(**values)
        except ValueError as ex:
            raise ServiceInitializationError(f"Invalid options in {type(settings).__name__}.", ex) from ex
        return model_class(api, model_id=values.get("model_id"), default_options=options)

    return factory


PROVIDERS: dict[str, ProviderDescriptor] = {}


def register_provider(descriptor: ProviderDescriptor) -> None:
    """Add a descriptor to the registry, replacing one with the same name."""
    PROVIDERS[descriptor.name] = descriptor


for _descriptor in (
    ProviderDescriptor("anthropic3-chat", "chat", Anthropic3ChatSettings, _chat_factory(BedrockAnthropic3ChatModel)),
    ProviderDescriptor("cohere-chat", "chat", CohereChatSettings, _chat_factory(BedrockCohereChatModel)),
    ProviderDescriptor("llama-chat", "chat", LlamaChatSettings, _chat_factory(BedrockLlamaChatModel)),
    ProviderDescriptor("titan-chat", "chat", TitanChatSettings, _chat_factory(BedrockTitanChatModel)),
    ProviderDescriptor("jurassic2-chat", "chat", Jurassic2ChatSettings, _chat_factory(BedrockJurassic2ChatModel)),
    ProviderDescriptor("mistral-chat", "chat", MistralChatSettings, _chat_factory(BedrockMistralChatModel)),
    ProviderDescriptor(
        "cohere-embedding", "embedding", CohereEmbeddingSettings, _embedding_factory(BedrockCohereEmbeddingModel)
    ),
    ProviderDescriptor(
        "titan-embedding", "embedding", TitanEmbeddingSettings, _embedding_factory(BedrockTitanEmbeddingModel)
    ),
):
    register_provider(_descriptor)


# region Assembly


class BedrockModels(Mapping[str, Any]):
    """The models built by `configure_bedrock`, keyed by provider name."""

    def __init__(self, models: Mapping[str, Any], api: BedrockConverseApi | None = None) -> None:
        self._models = dict(models)
        self.api = api

    def __getitem__(self, name: str) -> Any:
        return self._models[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    @property
    def chat_models(self) -> dict[str, BaseChatClient]:
        return {name: model for name, model in self._models.items() if isinstance(model, BaseChatClient)}

    @property
    def embedding_models(self) -> dict[str, BaseEmbeddingClient]:
        return {name: model for name, model in self._models.items() if isinstance(model, BaseEmbeddingClient)}

    def __repr__(self) -> str:
        return f"BedrockModels({', '.join(self._models)})"


def configure_bedrock(
    *,
    api: BedrockConverseApi | None = None,
    connection_settings: BedrockConnectionSettings | None = None,
    retry_policy: RetryPolicy | None = None,
    settings: Mapping[str, ConverseSettings] | None = None,
    existing: Mapping[str, Any] | None = None,
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
) -> BedrockModels:
    """Build a model for every enabled provider.

    A family is enabled by its `enabled` setting, e.g. `BEDROCK_ANTHROPIC3_CHAT_ENABLED=true`.
    One BedrockConverseApi is shared by all built models and is only created when at
    least one model has to be built.

    Keyword Args:
        api: An existing api to share instead of creating one.
        connection_settings: Connection settings for the created api.
        retry_policy: Retry policy for the created api.
        settings: Settings instances by provider name, used instead of reading the environment.
        existing: Models the caller already has, by provider name. These are kept and not rebuilt.
        env_file_path: Path to environment file for loading settings.
        env_file_encoding: Encoding of the environment file.

    Raises:
        ServiceInitializationError: If settings are invalid or a model cannot be built.
    """
    models: dict[str, Any] = dict(existing or {})
    to_build: list[tuple[ProviderDescriptor, Any]] = []

    for name, descriptor in PROVIDERS.items():
        provider_settings = (settings or {}).get(name)
        if provider_settings is None:
            try:
                provider_settings = descriptor.settings_class(
                    env_file_path=env_file_path, env_file_encoding=env_file_encoding
                )
            except ValueError as ex:
                raise ServiceInitializationError(f"Failed to load settings for provider '{name}'.", ex) from ex
        if not getattr(provider_settings, "enabled", False):
            continue
        if name in models:
            logger.debug(f"Provider '{name}' already supplied, not building it.")
            continue
        to_build.append((descriptor, provider_settings))

    if to_build and api is None:
        api = BedrockConverseApi(
            settings=connection_settings,
            retry_policy=retry_policy,
            env_file_path=env_file_path,
            env_file_encoding=env_file_encoding,
        )

    for descriptor, provider_settings in to_build:
        models[descriptor.name] = descriptor.factory(api, provider_settings)  # type: ignore[arg-type]
        logger.info(f"Configured Bedrock {descriptor.kind} model '{descriptor.name}'.")

    return BedrockModels(models, api)
