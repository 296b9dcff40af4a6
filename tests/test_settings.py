# Copyright (c) Microsoft. All rights reserved.
import logging
import os
from pathlib import Path
from typing import ClassVar

import pytest

from bedrock_converse import ConverseSettings, SecretString, get_logger, setup_logging
from bedrock_converse.exceptions import BedrockConverseException


class SampleSettings(ConverseSettings):
    env_prefix: ClassVar[str] = "BEDROCK_SAMPLE_"
    field_env_vars: ClassVar[dict[str, str]] = {"api_key": "KEY"}

    region: str | None = "us-east-1"
    api_key: SecretString | None = None
    timeout: float = 30.0
    retries: int | None = None
    verbose: bool = False
    tags: list[str] | None = None


class TestConverseSettings:
    """Tests for environment backed settings."""

    def test_defaults(self) -> None:
        """Test that class defaults apply without environment."""
        settings = SampleSettings()

        assert settings.region == "us-east-1"
        assert settings.api_key is None
        assert settings.timeout == 30.0
        assert settings.verbose is False

    def test_env_values_are_coerced(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment values are converted to the field types."""
        monkeypatch.setenv("BEDROCK_SAMPLE_TIMEOUT", "12.5")
        monkeypatch.setenv("BEDROCK_SAMPLE_RETRIES", "4")
        monkeypatch.setenv("BEDROCK_SAMPLE_VERBOSE", "yes")
        monkeypatch.setenv("BEDROCK_SAMPLE_TAGS", "a, b,,c")
        monkeypatch.setenv("BEDROCK_SAMPLE_KEY", "super-secret")

        settings = SampleSettings()

        assert settings.timeout == 12.5
        assert settings.retries == 4
        assert settings.verbose is True
        assert settings.tags == ["a", "b", "c"]
        assert isinstance(settings.api_key, SecretString)
        assert settings.api_key.get_secret_value() == "super-secret"

    def test_kwargs_override_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that constructor arguments win over the environment, and None is ignored."""
        monkeypatch.setenv("BEDROCK_SAMPLE_REGION", "eu-west-1")
        monkeypatch.setenv("BEDROCK_SAMPLE_TIMEOUT", "10")

        settings = SampleSettings(region="ap-south-1", timeout=None)

        assert settings.region == "ap-south-1"
        assert settings.timeout == 10.0

    def test_env_file(self, tmp_path: Path) -> None:
        """Test that values are read from a .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("BEDROCK_SAMPLE_REGION=sa-east-1\n", encoding="utf-8")

        try:
            settings = SampleSettings(env_file_path=str(env_file))

            assert settings.region == "sa-east-1"
            assert settings.env_file_path == str(env_file)
            assert settings.env_file_encoding == "utf-8"
        finally:
            # load_dotenv writes straight to os.environ
            os.environ.pop("BEDROCK_SAMPLE_REGION", None)

    @pytest.mark.parametrize(
        ("name", "value"), [("BEDROCK_SAMPLE_TIMEOUT", "slow"), ("BEDROCK_SAMPLE_RETRIES", "many")]
    )
    def test_invalid_env_value(self, monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
        """Test that an env value of the wrong type raises ValueError, optional fields included."""
        monkeypatch.setenv(name, value)

        with pytest.raises(ValueError):
            SampleSettings()

    def test_unknown_kwarg(self) -> None:
        """Test that unknown settings are rejected."""
        with pytest.raises(ValueError, match="colour"):
            SampleSettings(colour="blue")

    def test_secrets_are_masked(self) -> None:
        """Test that secrets never show up in repr."""
        settings = SampleSettings(api_key=SecretString("hunter2"))

        assert "hunter2" not in repr(settings)
        assert repr(settings.api_key) == "SecretString('**********')"
        assert settings.to_dict()["api_key"] == "hunter2"
        assert "retries" not in settings.to_dict()
        assert settings.to_dict(exclude_none=False)["retries"] is None


class TestLogging:
    """Tests for the package loggers."""

    def test_get_logger(self) -> None:
        """Test that loggers live in the package namespace."""
        assert get_logger().name == "bedrock_converse"
        assert get_logger("bedrock_converse.custom").name == "bedrock_converse.custom"

    def test_get_logger_outside_namespace(self) -> None:
        """Test that foreign logger names are refused."""
        with pytest.raises(BedrockConverseException):
            get_logger("somebody_else")

    def test_setup_logging(self) -> None:
        """Test that setup attaches a single handler and updates the level."""
        logger = logging.getLogger("bedrock_converse")
        handlers, level = list(logger.handlers), logger.level
        try:
            setup_logging("debug")
            setup_logging(logging.WARNING)

            assert logger.level == logging.WARNING
            assert len(logger.handlers) == max(len(handlers), 1)
            assert all(handler.level == logging.WARNING for handler in logger.handlers)
        finally:
            logger.handlers = handlers
            logger.setLevel(level)
