# Copyright (c) Microsoft. All rights reserved.
import io
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

from pytest import fixture

from bedrock_converse import BedrockConverseApi, RetryPolicy

_BEDROCK_ENV_PREFIXES = ("AWS_", "BEDROCK_")


@fixture(autouse=True)
def clean_bedrock_env(monkeypatch):  # type: ignore
    """Fixture that removes Bedrock related variables inherited from the host environment."""
    import os

    for key in list(os.environ):
        if key.startswith(_BEDROCK_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)  # type: ignore


@fixture
def exclude_list(request: Any) -> list[str]:
    """Names of variables bedrock_unit_test_env should leave unset (indirect parametrization)."""
    return request.param if hasattr(request, "param") else []


@fixture
def override_env_param_dict(request: Any) -> dict[str, str]:
    """Values bedrock_unit_test_env should use instead of its defaults (indirect parametrization)."""
    return request.param if hasattr(request, "param") else {}


@fixture
def bedrock_unit_test_env(monkeypatch, exclude_list, override_env_param_dict):  # type: ignore
    """Connection variables for a bearer token setup in us-east-1."""
    if exclude_list is None:
        exclude_list = []

    if override_env_param_dict is None:
        override_env_param_dict = {}

    env_vars = {
        "AWS_BEARER_TOKEN_BEDROCK": "test-bearer-token-12345",
        "AWS_REGION_NAME": "us-east-1",
        "AWS_BEDROCK_TIMEOUT": "120",
    }

    env_vars.update(override_env_param_dict)  # type: ignore

    for key, value in env_vars.items():
        if key in exclude_list:
            monkeypatch.delenv(key, raising=False)  # type: ignore
            continue
        monkeypatch.setenv(key, value)  # type: ignore

    return env_vars


@fixture
def mock_bedrock_client() -> MagicMock:
    """Stand-in for the boto3 bedrock-runtime client; configure the operation mocks per test."""
    return MagicMock(spec=["converse", "converse_stream", "invoke_model"])


@fixture
def converse_api(mock_bedrock_client: MagicMock) -> BedrockConverseApi:
    """Fixture that provides a BedrockConverseApi around the mock client, without retry delays."""
    return BedrockConverseApi(
        client=mock_bedrock_client,
        retry_policy=RetryPolicy(max_attempts=3, initial_interval=0.0),
    )


@fixture
def invoke_model_response() -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Fixture that builds InvokeModel responses whose body streams the JSON encoded payload."""

    def build(body: dict[str, Any]) -> dict[str, Any]:
        return {"body": io.BytesIO(json.dumps(body).encode("utf-8")), "contentType": "application/json"}

    return build


@fixture
def mock_converse_response() -> dict[str, Any]:
    """A plain text Converse reply."""
    return {
        "ResponseMetadata": {"RequestId": "test-request-id-123", "HTTPStatusCode": 200},
        "output": {
            "message": {
                "role": "assistant",
                "content": [{"text": "Hello! I'm here to help. How can I assist you today?"}],
            }
        },
        "stopReason": "end_turn",
        "usage": {"inputTokens": 10, "outputTokens": 15, "totalTokens": 25},
    }


@fixture
def mock_converse_response_with_tools() -> dict[str, Any]:
    """A Converse reply with text followed by a get_weather toolUse block."""
    return {
        "ResponseMetadata": {"RequestId": "test-request-id-456", "HTTPStatusCode": 200},
        "output": {
            "message": {
                "role": "assistant",
                "content": [
                    {"text": "Let me check the weather for you."},
                    {
                        "toolUse": {
                            "toolUseId": "tool-123",
                            "name": "get_weather",
                            "input": {"location": "San Francisco"},
                        }
                    },
                ],
            }
        },
        "stopReason": "tool_use",
        "usage": {"inputTokens": 50, "outputTokens": 20, "totalTokens": 70},
    }


@fixture
def mock_stream_events() -> list[dict[str, Any]]:
    """ConverseStream events of a streamed "Hello world!" answer."""
    return [
        {"messageStart": {"role": "assistant"}},
        {"contentBlockStart": {"start": {"text": ""}, "contentBlockIndex": 0}},
        {"contentBlockDelta": {"delta": {"text": "Hello"}, "contentBlockIndex": 0}},
        {"contentBlockDelta": {"delta": {"text": " world"}, "contentBlockIndex": 0}},
        {"contentBlockDelta": {"delta": {"text": "!"}, "contentBlockIndex": 0}},
        {"contentBlockStop": {"contentBlockIndex": 0}},
        {"metadata": {"usage": {"inputTokens": 10, "outputTokens": 5, "totalTokens": 15}}},
        {"messageStop": {"stopReason": "end_turn"}},
    ]


@fixture
def mock_tool_use_stream_events() -> list[dict[str, Any]]:
    """Fixture that provides ConverseStream events for a streamed tool call."""
    return [
        {"messageStart": {"role": "assistant"}},
        {"contentBlockDelta": {"delta": {"text": "Checking."}, "contentBlockIndex": 0}},
        {"contentBlockStop": {"contentBlockIndex": 0}},
        {
            "contentBlockStart": {
                "start": {"toolUse": {"toolUseId": "tool-789", "name": "get_weather"}},
                "contentBlockIndex": 1,
            }
        },
        {"contentBlockDelta": {"delta": {"toolUse": {"input": '{"location": '}}, "contentBlockIndex": 1}},
        {"contentBlockDelta": {"delta": {"toolUse": {"input": '"Paris"}'}}, "contentBlockIndex": 1}},
        {"contentBlockStop": {"contentBlockIndex": 1}},
        {"messageStop": {"stopReason": "tool_use"}},
        {"metadata": {"usage": {"inputTokens": 30, "outputTokens": 12, "totalTokens": 42}}},
    ]
