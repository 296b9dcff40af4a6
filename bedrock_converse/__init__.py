# Copyright (c) Microsoft. All rights reserved.

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
from ._configuration import (
    PROVIDERS,
    Anthropic3ChatSettings,
    BedrockChatSettings,
    BedrockModels,
    BedrockProviderSettings,
    CohereChatSettings,
    CohereEmbeddingSettings,
    Jurassic2ChatSettings,
    LlamaChatSettings,
    MistralChatSettings,
    ProviderDescriptor,
    TitanChatSettings,
    TitanEmbeddingSettings,
    configure_bedrock,
    register_provider,
)
from ._converse_api import BedrockConnectionSettings, BedrockConverseApi
from ._converse_utils import EMPTY_MESSAGE, StreamEventKind, ToolUseAccumulator, create_message
from ._embedding import BedrockCohereEmbeddingModel, BedrockTitanEmbeddingModel
from ._generation_metadata import BedrockConverseChatGenerationMetadata
from ._logging import get_logger, setup_logging
from ._options import (
    Anthropic3ChatOptions,
    BedrockChatOptions,
    CohereChatOptions,
    CohereEmbeddingOptions,
    EmbeddingOptions,
    Jurassic2ChatOptions,
    LlamaChatOptions,
    MistralChatOptions,
    ModelFamily,
    TitanChatOptions,
    TitanEmbeddingOptions,
)
from ._retry import RetryPolicy, RetrySettings
from ._settings import ConverseSettings, SecretString
from ._tools import AIFunction, ai_function, use_function_invocation
from ._types import (
    ChatGenerationMetadata,
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ChatResponseUpdate,
    ChatToolMode,
    Contents,
    DataContent,
    Embedding,
    EmbeddingResponse,
    FinishReason,
    FunctionCallContent,
    FunctionResultContent,
    Role,
    TextContent,
    UsageContent,
    UsageDetails,
)
from ._version import VERSION

__version__ = VERSION

__all__ = [
    "EMPTY_MESSAGE",
    "PROVIDERS",
    "AIFunction",
    "Anthropic3ChatOptions",
    "Anthropic3ChatSettings",
    "BaseChatClient",
    "BaseEmbeddingClient",
    "BedrockAnthropic3ChatModel",
    "BedrockChatOptions",
    "BedrockChatSettings",
    "BedrockCohereChatModel",
    "BedrockCohereEmbeddingModel",
    "BedrockConnectionSettings",
    "BedrockConverseApi",
    "BedrockConverseChatGenerationMetadata",
    "BedrockConverseChatModel",
    "BedrockJurassic2ChatModel",
    "BedrockLlamaChatModel",
    "BedrockMistralChatModel",
    "BedrockModels",
    "BedrockProviderSettings",
    "BedrockTitanChatModel",
    "BedrockTitanEmbeddingModel",
    "ChatGenerationMetadata",
    "ChatMessage",
    "ChatOptions",
    "ChatResponse",
    "ChatResponseUpdate",
    "ChatToolMode",
    "CohereChatOptions",
    "CohereChatSettings",
    "CohereEmbeddingOptions",
    "CohereEmbeddingSettings",
    "Contents",
    "ConverseSettings",
    "DataContent",
    "Embedding",
    "EmbeddingOptions",
    "EmbeddingResponse",
    "FinishReason",
    "FunctionCallContent",
    "FunctionResultContent",
    "Jurassic2ChatOptions",
    "Jurassic2ChatSettings",
    "LlamaChatOptions",
    "LlamaChatSettings",
    "MistralChatOptions",
    "MistralChatSettings",
    "ModelFamily",
    "ProviderDescriptor",
    "RetryPolicy",
    "RetrySettings",
    "Role",
    "SecretString",
    "StreamEventKind",
    "TextContent",
    "TitanChatOptions",
    "TitanChatSettings",
    "TitanEmbeddingOptions",
    "TitanEmbeddingSettings",
    "ToolUseAccumulator",
    "UsageContent",
    "UsageDetails",
    "__version__",
    "ai_function",
    "configure_bedrock",
    "create_message",
    "get_logger",
    "setup_logging",
    "use_function_invocation",
]
