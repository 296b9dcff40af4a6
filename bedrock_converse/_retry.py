# Copyright (c) Microsoft. All rights reserved.

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, TypeVar

from botocore.exceptions import ClientError, ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError
from pydantic import Field
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ._logging import get_logger
from ._pydantic import ConverseBaseModel
from ._settings import ConverseSettings

__all__ = ["TRANSIENT_ERROR_CODES", "RetryPolicy", "RetrySettings"]

logger = get_logger("bedrock_converse.retry")

T = TypeVar("T")

TRANSIENT_ERROR_CODES = frozenset({
    "ThrottlingException",
    "ServiceUnavailableException",
    "InternalServerException",
    "ModelNotReadyException",
    "ModelTimeoutException",
})


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


class RetrySettings(ConverseSettings):
    """Retry settings, read from `BEDROCK_RETRY_*` environment variables.

    - max_attempts: Total number of attempts, including the first call.
        (Env var BEDROCK_RETRY_MAX_ATTEMPTS)
    - initial_interval: Seconds to wait before the first retry.
        (Env var BEDROCK_RETRY_INITIAL_INTERVAL)
    - multiplier: Growth factor of the wait between attempts.
        (Env var BEDROCK_RETRY_MULTIPLIER)
    - max_interval: Upper bound for a single wait in seconds.
        (Env var BEDROCK_RETRY_MAX_INTERVAL)
    """

    env_prefix: ClassVar[str] = "BEDROCK_RETRY_"

    max_attempts: int = 10
    initial_interval: float = 2.0
    multiplier: float = 5.0
    max_interval: float = 180.0


class RetryPolicy(ConverseBaseModel):
    """Exponential backoff for transient Bedrock errors.

    Examples:
        .. code-block:: python

            policy = RetryPolicy(max_attempts=3, initial_interval=0.5)
            response = await policy.call(asyncio.to_thread, client.converse, **request)
    """

    max_attempts: int = Field(default=10, ge=1)
    initial_interval: float = Field(default=2.0, ge=0.0)
    multiplier: float = Field(default=5.0, ge=1.0)
    max_interval: float = Field(default=180.0, ge=0.0)

    @classmethod
    def from_settings(cls, settings: RetrySettings | None = None) -> "RetryPolicy":
        """Create a policy from RetrySettings, reading the environment when none are given."""
        settings = settings or RetrySettings()
        return cls(
            max_attempts=settings.max_attempts,
            initial_interval=settings.initial_interval,
            multiplier=settings.multiplier,
            max_interval=settings.max_interval,
        )

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        """A policy that makes exactly one attempt."""
        return cls(max_attempts=1)

    def delay_for(self, attempt: int) -> float:
        """Return sleep duration (seconds) before retry number `attempt` (0-indexed)."""
        return min(self.initial_interval * (self.multiplier**attempt), self.max_interval)

    @staticmethod
    def is_transient(error: BaseException) -> bool:
        """Whether the error is worth retrying."""
        if isinstance(error, ClientError):
            return error.response.get("Error", {}).get("Code") in TRANSIENT_ERROR_CODES
        return isinstance(error, (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError))

    def retrying(self) -> AsyncRetrying:
        """A tenacity controller for this policy; the original error is re-raised when attempts run out."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.initial_interval, exp_base=self.multiplier, max=self.max_interval),
            retry=retry_if_exception(self.is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=_sleep,
            reraise=True,
        )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await `func(*args, **kwargs)`, retrying transient errors with backoff.

        Raises:
            The last error once attempts are exhausted, or any non transient error immediately.
        """
        return await self.retrying()(func, *args, **kwargs)
