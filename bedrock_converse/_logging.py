# Copyright (c) Microsoft. All rights reserved.

import logging

from .exceptions import BedrockConverseException

__all__ = ["LOGGER_NAME", "get_logger", "setup_logging"]

LOGGER_NAME = "bedrock_converse"

_LOG_FORMAT = "[%(asctime)s - %(pathname)s:%(lineno)d - %(levelname)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Get a logger with the specified name, defaulting to 'bedrock_converse'.

    Args:
        name: The name of the logger. Must live in the 'bedrock_converse' namespace.

    Returns:
        The configured logger instance.

    Raises:
        BedrockConverseException: If the name is outside the package namespace.
    """
    if not name.startswith(LOGGER_NAME):
        raise BedrockConverseException(f"Logger name must start with '{LOGGER_NAME}', got '{name}'.")
    return logging.getLogger(name)


def setup_logging(level: str | int = logging.INFO) -> logging.Logger:
    """Attach a stream handler to the package logger.

    Calling this more than once only updates the level of the existing handler.

    Args:
        level: A logging level or its name, e.g. "DEBUG".

    Returns:
        The package root logger.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setLevel(level)

    return logger
