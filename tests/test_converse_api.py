# Copyright (c) Microsoft. All rights reserved.
import json
import threading
from collections.abc import Iterator
from contextlib import aclosing
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from bedrock_converse import (
    BedrockConnectionSettings,
    BedrockConverseApi,
    RetryPolicy,
    SecretString,
)
from bedrock_converse.exceptions import ServiceInitializationError, ServiceResponseException


def test_settings_from_env(bedrock_unit_test_env: dict[str, str]) -> None:
    """Test that connection settings are read from the environment."""
    settings = BedrockConnectionSettings()

    assert settings.region_name == "us-east-1"
    assert settings.timeout == 120.0
    assert isinstance(settings.bearer_token_bedrock, SecretString)
    assert settings.bearer_token_bedrock.get_secret_value() == "test-bearer-token-12345"
    assert "test-bearer-token-12345" not in repr(settings)


@pytest.mark.parametrize("override_env_param_dict", [{"AWS_BEDROCK_TIMEOUT": "soon"}], indirect=True)
def test_invalid_timeout_is_initialization_error(bedrock_unit_test_env: dict[str, str]) -> None:
    """Test that an unparseable timeout fails api creation."""
    with pytest.raises(ServiceInitializationError):
        BedrockConverseApi(client=MagicMock())


class TestClientCreation:
    """Tests for boto3 client creation."""

    def test_bearer_token_from_env(self, bedrock_unit_test_env: dict[str, str]) -> None:
        """Test that the bearer token takes priority and sets the timeout config."""
        with patch("bedrock_converse._converse_api.boto3.client") as mock_boto_client:
            api = BedrockConverseApi()

        assert api.client is mock_boto_client.return_value
        assert api.region_name == "us-east-1"
        kwargs = mock_boto_client.call_args.kwargs
        assert kwargs["service_name"] == "bedrock-runtime"
        assert kwargs["region_name"] == "us-east-1"
        assert "aws_access_key_id" not in kwargs
        assert kwargs["config"].read_timeout == 120.0
        assert kwargs["config"].connect_timeout == 120.0
        assert kwargs["config"].retries == {"max_attempts": 0}

    def test_access_keys(self) -> None:
        """Test creation with explicit access keys."""
        with patch("bedrock_converse._converse_api.boto3.client") as mock_boto_client:
            BedrockConverseApi(
                region_name="eu-west-1",
                access_key_id="AKIA-test",
                secret_access_key="secret-test",
                session_token="session-test",
            )

        kwargs = mock_boto_client.call_args.kwargs
        assert kwargs["region_name"] == "eu-west-1"
        assert kwargs["aws_access_key_id"] == "AKIA-test"
        assert kwargs["aws_secret_access_key"] == "secret-test"
        assert kwargs["aws_session_token"] == "session-test"
        assert kwargs["config"].read_timeout == 300.0

    def test_profile(self) -> None:
        """Test that a named profile creates the client through a session."""
        with patch("bedrock_converse._converse_api.boto3.Session") as mock_session:
            api = BedrockConverseApi(profile="dev", region_name="us-west-2")

        mock_session.assert_called_once_with(profile_name="dev", region_name="us-west-2")
        assert api.client is mock_session.return_value.client.return_value

    def test_default_credential_chain(self) -> None:
        """Test that without credentials the default chain is used."""
        with patch("bedrock_converse._converse_api.boto3.client") as mock_boto_client:
            BedrockConverseApi()

        kwargs = mock_boto_client.call_args.kwargs
        assert kwargs["region_name"] == "us-east-1"
        assert "aws_access_key_id" not in kwargs

    def test_missing_credentials(self) -> None:
        """Test that missing credentials raise an initialization error."""
        with (
            patch("bedrock_converse._converse_api.boto3.client", side_effect=NoCredentialsError()),
            pytest.raises(ServiceInitializationError, match="AWS credentials not found"),
        ):
            BedrockConverseApi()

    def test_existing_client_is_used(self, mock_bedrock_client: MagicMock) -> None:
        """Test that a provided client is used as is."""
        with patch("bedrock_converse._converse_api.boto3.client") as mock_boto_client:
            api = BedrockConverseApi(client=mock_bedrock_client)

        mock_boto_client.assert_not_called()
        assert api.client is mock_bedrock_client


class TestConverse:
    """Tests for the Converse call."""

    @pytest.mark.asyncio
    async def test_converse(
        self,
        converse_api: BedrockConverseApi,
        mock_bedrock_client: MagicMock,
        mock_converse_response: dict[str, Any],
    ) -> None:
        """Test that the request is passed as keyword arguments."""
        mock_bedrock_client.converse.return_value = mock_converse_response
        request = {"modelId": "anthropic.claude-3-haiku-20240307-v1:0", "messages": []}

        response = await converse_api.converse(request)

        assert response is mock_converse_response
        mock_bedrock_client.converse.assert_called_once_with(**request)

    @pytest.mark.asyncio
    async def test_client_error_is_logged_and_raised(
        self,
        converse_api: BedrockConverseApi,
        mock_bedrock_client: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a non transient error is logged with its code and re-raised."""
        mock_bedrock_client.converse.side_effect = ClientError(
            {"Error": {"Code": "ValidationException", "Message": "Bad model"}}, "Converse"
        )

        with pytest.raises(ClientError):
            await converse_api.converse({"modelId": "bad"})

        assert mock_bedrock_client.converse.call_count == 1
        assert "Bedrock Converse API error [ValidationException]: Bad model" in caplog.text


class TestConverseStream:
    """Tests for the ConverseStream call."""

    @pytest.mark.asyncio
    async def test_events_are_yielded(
        self,
        converse_api: BedrockConverseApi,
        mock_bedrock_client: MagicMock,
        mock_stream_events: list[dict[str, Any]],
    ) -> None:
        """Test that every raw event is yielded in order."""
        mock_bedrock_client.converse_stream.return_value = {"stream": iter(mock_stream_events)}

        events = [event async for event in converse_api.converse_stream({"modelId": "m"})]

        assert events == mock_stream_events

    @pytest.mark.asyncio
    async def test_initial_call_is_retried(
        self,
        converse_api: BedrockConverseApi,
        mock_bedrock_client: MagicMock,
        mock_stream_events: list[dict[str, Any]],
    ) -> None:
        """Test that throttling of the initial call is retried."""
        mock_bedrock_client.converse_stream.side_effect = [
            ClientError({"Error": {"Code": "ThrottlingException", "Message": "Slow down"}}, "ConverseStream"),
            {"stream": iter(mock_stream_events)},
        ]

        events = [event async for event in converse_api.converse_stream({"modelId": "m"})]

        assert len(events) == len(mock_stream_events)
        assert mock_bedrock_client.converse_stream.call_count == 2

    @pytest.mark.asyncio
    async def test_stream_is_closed_when_exhausted(
        self,
        converse_api: BedrockConverseApi,
        mock_bedrock_client: MagicMock,
        mock_stream_events: list[dict[str, Any]],
    ) -> None:
        """Test that the event stream is closed after the last event."""
        stream = MagicMock()
        stream.__iter__.return_value = iter(mock_stream_events)
        mock_bedrock_client.converse_stream.return_value = {"stream": stream}

        events = [event async for event in converse_api.converse_stream({"modelId": "m"})]

        assert len(events) == len(mock_stream_events)
        stream.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_is_closed_on_early_break(
        self,
        converse_api: BedrockConverseApi,
        mock_bedrock_client: MagicMock,
        mock_stream_events: list[dict[str, Any]],
    ) -> None:
        """Test that leaving the iteration early closes the event stream."""
        stream = MagicMock()
        stream.__iter__.return_value = iter(mock_stream_events)
        mock_bedrock_client.converse_stream.return_value = {"stream": stream}

        received = []
        events = converse_api.converse_stream({"modelId": "m"})
        async with aclosing(events):
            async for event in events:
                received.append(event)
                break
            stream.close.assert_not_called()

        assert received == mock_stream_events[:1]
        stream.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_is_closed_on_read_error(
        self,
        converse_api: BedrockConverseApi,
        mock_bedrock_client: MagicMock,
    ) -> None:
        """Test that an error while reading events still closes the stream."""

        def failing_events() -> Iterator[dict[str, Any]]:
            yield {"messageStart": {"role": "assistant"}}
            raise ClientError({"Error": {"Code": "ValidationException", "Message": "Bad input"}}, "ConverseStream")

        stream = MagicMock()
        stream.__iter__.return_value = failing_events()
        mock_bedrock_client.converse_stream.return_value = {"stream": stream}

        with pytest.raises(ClientError):
            async for _ in converse_api.converse_stream({"modelId": "m"}):
                pass

        stream.close.assert_called_once()


class TestInvokeModel:
    """Tests for the InvokeModel call."""

    @pytest.mark.asyncio
    async def test_json_round_trip(
        self,
        converse_api: BedrockConverseApi,
        mock_bedrock_client: MagicMock,
        invoke_model_response: Any,
    ) -> None:
        """Test that the body is sent as JSON and the response body is decoded."""
        mock_bedrock_client.invoke_model.return_value = invoke_model_response({"embedding": [0.1, 0.2]})

        result = await converse_api.invoke_model("amazon.titan-embed-text-v1", {"inputText": "hi"})

        assert result == {"embedding": [0.1, 0.2]}
        kwargs = mock_bedrock_client.invoke_model.call_args.kwargs
        assert kwargs["modelId"] == "amazon.titan-embed-text-v1"
        assert json.loads(kwargs["body"]) == {"inputText": "hi"}
        assert kwargs["contentType"] == "application/json"
        assert kwargs["accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, converse_api: BedrockConverseApi, mock_bedrock_client: MagicMock) -> None:
        """Test that a body that is not JSON raises a response exception."""
        body = MagicMock()
        body.read.return_value = b"<html>oops</html>"
        mock_bedrock_client.invoke_model.return_value = {"body": body}

        with pytest.raises(ServiceResponseException):
            await converse_api.invoke_model("amazon.titan-embed-text-v1", {"inputText": "hi"})

    @pytest.mark.asyncio
    async def test_body_is_read_off_the_event_loop(
        self, converse_api: BedrockConverseApi, mock_bedrock_client: MagicMock
    ) -> None:
        """Test that the blocking body read runs in a worker thread."""
        loop_thread = threading.get_ident()
        read_threads: list[int] = []

        def read() -> bytes:
            read_threads.append(threading.get_ident())
            return b'{"embedding": [0.5]}'

        body = MagicMock()
        body.read.side_effect = read
        mock_bedrock_client.invoke_model.return_value = {"body": body}

        result = await converse_api.invoke_model("amazon.titan-embed-text-v1", {"inputText": "hi"})

        assert result == {"embedding": [0.5]}
        assert len(read_threads) == 1
        assert read_threads[0] != loop_thread


def test_default_retry_policy_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that the default retry policy follows the retry settings."""
    monkeypatch.setenv("BEDROCK_RETRY_MAX_ATTEMPTS", "4")

    api = BedrockConverseApi(client=MagicMock())

    assert isinstance(api.retry_policy, RetryPolicy)
    assert api.retry_policy.max_attempts == 4
    assert api.retry_policy.initial_interval == 2.0
