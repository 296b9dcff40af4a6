# Copyright (c) Microsoft. All rights reserved.


class BedrockConverseException(Exception):
    """Base class for exceptions raised by bedrock_converse."""

    pass


class ServiceException(BedrockConverseException):
    """Base class for all service exceptions."""

    pass


class ServiceInitializationError(ServiceException):
    """An error occurred while initializing the service."""

    pass


class ServiceResponseException(ServiceException):
    """An error occurred while processing a response from the service."""

    pass


class ServiceInvalidRequestError(ServiceException):
    """The request to the service was invalid."""

    pass


class ContentException(BedrockConverseException):
    """Base class for all content exceptions."""

    pass


class FunctionCallInvalidArgumentsException(ContentException):
    """An error occurred while validating the function arguments."""

    pass


class FunctionCallInvalidNameException(ContentException):
    """The requested function is not among the available tools."""

    pass
