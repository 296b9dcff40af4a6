# Copyright (c) Microsoft. All rights reserved.

import asyncio
import json
import os
from collections.abc import AsyncGenerator, Mapping
from typing import Any, ClassVar, Final

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ._logging import get_logger
from ._retry import RetryPolicy, RetrySettings
from ._settings import ConverseSettings, SecretString
from .exceptions import ServiceInitializationError, ServiceResponseException

__all__ = ["BEDROCK_DEFAULT_REGION", "BEDROCK_DEFAULT_TIMEOUT", "BedrockConnectionSettings", "BedrockConverseApi"]

logger = get_logger("bedrock_converse.api")

BEDROCK_DEFAULT_REGION: Final[str] = "us-east-1"
BEDROCK_DEFAULT_TIMEOUT: Final[float] = 300.0

_END_OF_STREAM = object()


class BedrockConnectionSettings(ConverseSettings):
    """AWS connection settings for Bedrock.

    Each field falls back from the keyword argument to its AWS_ environment variable, then
    to a .env file, then to the default below. Credentials are kept as SecretString.

    Keyword Args:
        region_name: AWS region name (default: us-east-1). (Env var AWS_REGION_NAME)
        bearer_token_bedrock: The AWS bearer token for Bedrock authentication. (Env var AWS_BEARER_TOKEN_BEDROCK)
        access_key_id: AWS access key ID. (Env var AWS_ACCESS_KEY_ID)
        secret_access_key: AWS secret access key. (Env var AWS_SECRET_ACCESS_KEY)
        session_token: AWS session token for temporary credentials. (Env var AWS_SESSION_TOKEN)
        profile: Named profile from the shared AWS config files. (Env var AWS_PROFILE)
        timeout: Connect and read timeout in seconds (default: 300). (Env var AWS_BEDROCK_TIMEOUT)
        env_file_path: A .env file to read in addition to the environment.
        env_file_encoding: Encoding of that file (default: utf-8).

    Examples:
        .. code-block:: python

            from bedrock_converse import BedrockConnectionSettings

            # AWS_REGION_NAME=us-west-2 and AWS_BEARER_TOKEN_BEDROCK=... in the environment
            settings = BedrockConnectionSettings()

            # explicit values win over the environment
            settings = BedrockConnectionSettings(region_name="eu-central-1", timeout=60)
    """

    env_prefix: ClassVar[str] = "AWS_"
    field_env_vars: ClassVar[dict[str, str]] = {"timeout": "BEDROCK_TIMEOUT"}

    region_name: str | None = BEDROCK_DEFAULT_REGION
    bearer_token_bedrock: SecretString | None = None
    access_key_id: SecretString | None = None
    secret_access_key: SecretString | None = None
    session_token: SecretString | None = None
    profile: str | None = None
    timeout: float = BEDROCK_DEFAULT_TIMEOUT


class BedrockConverseApi:
    """Async wrapper around a boto3 `bedrock-runtime` client.

    Blocking boto3 calls run in a worker thread. The initial call of every operation goes
    through the retry policy; botocore's own retries are switched off.
    """

    def __init__(
        self,
        *,
        client: Any | None = None,
        settings: BedrockConnectionSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        region_name: str | None = None,
        bearer_token: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        session_token: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        env_file_path: str | None = None,
        env_file_encoding: str | None = None,
    ) -> None:
        """Initialize the Converse API wrapper.

        Keyword Args:
            client: An existing boto3 bedrock-runtime client to use. If not provided, one will be created.
            settings: Connection settings. If not provided, they are read from arguments and the environment.
            retry_policy: The retry policy. Defaults to one built from `BEDROCK_RETRY_*` settings.
            region_name: AWS region name.
            bearer_token: Bedrock API key, exported as AWS_BEARER_TOKEN_BEDROCK for botocore.
            access_key_id: AWS access key ID for standard authentication.
            secret_access_key: AWS secret access key for standard authentication.
            session_token: AWS session token for temporary credentials.
            profile: Named AWS profile.
            timeout: Connect and read timeout in seconds.
            env_file_path: A .env file with connection and retry settings.
            env_file_encoding: Encoding of the .env file.

        Examples:
            .. code-block:: python

                from bedrock_converse import BedrockConverseApi

                # credentials and region from the environment
                api = BedrockConverseApi()

                # or wrap a client you already have
                import boto3

                api = BedrockConverseApi(client=boto3.client("bedrock-runtime", region_name="us-west-2"))
        """
        if settings is None:
            try:
                settings = BedrockConnectionSettings(
                    region_name=region_name,
                    bearer_token_bedrock=bearer_token,
                    access_key_id=access_key_id,
                    secret_access_key=secret_access_key,
                    session_token=session_token,
                    profile=profile,
                    timeout=timeout,
                    env_file_path=env_file_path,
                    env_file_encoding=env_file_encoding,
                )
            except ValueError as ex:
                raise ServiceInitializationError("Failed to create Bedrock connection settings.", ex) from ex

        if retry_policy is None:
            try:
                retry_policy = RetryPolicy.from_settings(
                    RetrySettings(env_file_path=env_file_path, env_file_encoding=env_file_encoding)
                )
            except ValueError as ex:
                raise ServiceInitializationError("Failed to create Bedrock retry settings.", ex) from ex

        self.settings = settings
        self.retry_policy = retry_policy
        self.client = client if client is not None else self._create_bedrock_client(settings)

    @property
    def region_name(self) -> str | None:
        return self.settings.region_name

    @staticmethod
    def _create_bedrock_client(settings: BedrockConnectionSettings) -> Any:
        """Create and configure a boto3 bedrock-runtime client.

        Credentials are picked in this order:
        1. the Bedrock bearer token
        2. an explicit access key and secret, with optional session token
        3. a named profile from the shared config files
        4. the default boto3 credential chain

        Raises:
            ServiceInitializationError: If client creation fails.
        """
        config = Config(
            read_timeout=settings.timeout,
            connect_timeout=settings.timeout,
            retries={"max_attempts": 0},
        )
        region_name = settings.region_name or BEDROCK_DEFAULT_REGION
        try:
            if settings.bearer_token_bedrock:
                logger.info("Using bearer token for Bedrock authentication")
                # boto3 picks the bearer token up from the environment
                os.environ["AWS_BEARER_TOKEN_BEDROCK"] = settings.bearer_token_bedrock.get_secret_value()
                return boto3.client(service_name="bedrock-runtime", region_name=region_name, config=config)

            if settings.access_key_id and settings.secret_access_key:
                logger.info("Using AWS access key/secret for Bedrock authentication")
                return boto3.client(
                    service_name="bedrock-runtime",
                    region_name=region_name,
                    aws_access_key_id=settings.access_key_id.get_secret_value(),
                    aws_secret_access_key=settings.secret_access_key.get_secret_value(),
                    aws_session_token=settings.session_token.get_secret_value() if settings.session_token else None,
                    config=config,
                )

            if settings.profile:
                logger.info(f"Using AWS profile '{settings.profile}' for Bedrock authentication")
                session = boto3.Session(profile_name=settings.profile, region_name=region_name)
                return session.client(service_name="bedrock-runtime", config=config)

            logger.info("Using default AWS credential chain for Bedrock authentication")
            return boto3.client(service_name="bedrock-runtime", region_name=region_name, config=config)

        except NoCredentialsError as ex:
            raise ServiceInitializationError(
                "AWS credentials not found. Set via 'bearer_token', 'access_key_id/secret_access_key', "
                "a profile, or configure AWS credentials via environment variables or ~/.aws/credentials file."
            ) from ex
        except (BotoCoreError, ValueError) as ex:
            raise ServiceInitializationError(f"Failed to create Bedrock client: {ex}") from ex

    @staticmethod
    def _log_client_error(operation: str, error: ClientError) -> None:
        error_code = error.response.get("Error", {}).get("Code", "Unknown")
        error_message = error.response.get("Error", {}).get("Message", str(error))
        logger.error(f"Bedrock {operation} API error [{error_code}]: {error_message}")

    async def converse(self, request: Mapping[str, Any]) -> dict[str, Any]:
        """Call the Converse API.

        Args:
            request: The Converse request parameters, e.g. `modelId`, `messages`, `inferenceConfig`.

        Returns:
            The raw Converse response.
        """
        logger.debug(f"Converse request for model '{request.get('modelId')}'")
        try:
            return await self.retry_policy.call(asyncio.to_thread, self.client.converse, **request)
        except ClientError as e:
            self._log_client_error("Converse", e)
            raise

    async def converse_stream(self, request: Mapping[str, Any]) -> AsyncGenerator[dict[str, Any], None]:
        """Call the ConverseStream API and iterate its raw events.

        Only the initial call is retried; errors raised while reading the stream propagate.
        The event stream is closed when iteration ends, fails or is abandoned through `aclose()`.
        """
        logger.debug(f"ConverseStream request for model '{request.get('modelId')}'")
        try:
            response = await self.retry_policy.call(asyncio.to_thread, self.client.converse_stream, **request)
        except ClientError as e:
            self._log_client_error("ConverseStream", e)
            raise

        stream = response.get("stream", [])
        events = iter(stream)
        try:
            while True:
                event = await asyncio.to_thread(next, events, _END_OF_STREAM)
                if event is _END_OF_STREAM:
                    break
                yield event
        except ClientError as e:
            self._log_client_error("ConverseStream", e)
            raise
        finally:
            # the botocore EventStream holds the HTTP connection until closed
            if (close := getattr(stream, "close", None)) is not None:
                close()

    async def invoke_model(
        self,
        model_id: str,
        body: Mapping[str, Any],
        *,
        content_type: str = "application/json",
        accept: str = "application/json",
    ) -> dict[str, Any]:
        """Call the InvokeModel API with a JSON body and return the decoded JSON response body.

        Raises:
            ServiceResponseException: If the response body is not valid JSON.
        """
        logger.debug(f"InvokeModel request for model '{model_id}'")
        try:
            response = await self.retry_policy.call(
                asyncio.to_thread,
                self.client.invoke_model,
                modelId=model_id,
                body=json.dumps(body),
                contentType=content_type,
                accept=accept,
            )
        except ClientError as e:
            self._log_client_error("InvokeModel", e)
            raise

        # StreamingBody.read blocks on the socket
        raw_body = await asyncio.to_thread(response["body"].read)
        try:
            return json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as ex:
            raise ServiceResponseException(f"InvokeModel returned a body that is not valid JSON: {ex}") from ex
