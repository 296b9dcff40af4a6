# Copyright (c) Microsoft. All rights reserved.

import asyncio
import inspect
from collections.abc import AsyncIterable, Awaitable, Callable, Sequence
from contextlib import aclosing
from functools import wraps
from time import perf_counter
from typing import TYPE_CHECKING, Annotated, Any, Generic, TypeVar, get_args, get_origin

from pydantic import BaseModel, Field, ValidationError, create_model

from ._logging import get_logger
from ._pydantic import ConverseBaseModel
from .exceptions import FunctionCallInvalidArgumentsException, FunctionCallInvalidNameException

if TYPE_CHECKING:
    from ._types import ChatMessage, ChatResponse, ChatResponseUpdate, FunctionCallContent, FunctionResultContent

__all__ = [
    "DEFAULT_MAX_ITERATIONS",
    "AIFunction",
    "ai_function",
    "execute_function_calls",
    "use_function_invocation",
]

logger = get_logger("bedrock_converse.tools")

DEFAULT_MAX_ITERATIONS = 10

ArgsT = TypeVar("ArgsT", bound=BaseModel)
ReturnT = TypeVar("ReturnT")
TChatClient = TypeVar("TChatClient")


# region AIFunction


class AIFunction(ConverseBaseModel, Generic[ArgsT, ReturnT]):
    """A Python callable exposed to the model as a Bedrock tool.

    Attributes:
        name: Tool name sent in the toolSpec.
        description: Tool description sent in the toolSpec.
        additional_properties: Free-form extra data, not sent to Bedrock.
        func: The wrapped callable, sync or async.
        input_model: Pydantic model validating the toolUse input and producing the input schema.
    """

    name: str
    description: str = ""
    additional_properties: dict[str, Any] | None = None
    func: Callable[..., Any]
    input_model: type[BaseModel]

    def __str__(self) -> str:
        label = f"name={self.name}, description={self.description}" if self.description else f"name={self.name}"
        return f"{type(self).__name__}({label})"

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.func(*args, **kwargs)

    async def invoke(self, *, arguments: BaseModel | None = None, **kwargs: Any) -> Any:
        """Call the function and await the result when it is awaitable.

        Args:
            arguments: Validated input, an instance of `input_model`. Replaces `kwargs` when given.
            kwargs: Plain keyword arguments for the function.

        Raises:
            TypeError: If `arguments` is not an instance of `input_model`.
        """
        if arguments is not None:
            if not isinstance(arguments, self.input_model):
                raise TypeError(f"Expected {self.input_model.__name__}, got {type(arguments).__name__}")
            kwargs = arguments.model_dump(exclude_none=True)

        logger.info(f"Invoking tool '{self.name}'")
        logger.debug(f"Tool '{self.name}' arguments: {kwargs}")
        started = perf_counter()
        try:
            outcome = self.func(**kwargs)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as ex:
            logger.error(f"Tool '{self.name}' raised: {ex}")
            raise
        finally:
            logger.debug("Tool '%s' took %.3fs", self.name, perf_counter() - started)
        logger.debug(f"Tool '{self.name}' returned: {outcome!r}")
        return outcome

    def parameters(self) -> dict[str, Any]:
        """JSON schema of the input, used as the toolSpec inputSchema."""
        return self.input_model.model_json_schema()


# region AI Function Decorator


def _parse_annotation(annotation: Any) -> Any:
    # Annotated[T, "text", ...] -> Annotated[T, Field(description="text"), ...]
    args = get_args(annotation) if get_origin(annotation) is not None else ()
    if len(args) < 2 or not isinstance(args[1], str):
        return annotation
    base, description, *extra = args
    if extra:
        return Annotated[base, Field(description=description), tuple(extra)]
    return Annotated[base, Field(description=description)]


def ai_function(
    func: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    additional_properties: dict[str, Any] | None = None,
) -> Any:
    """Turn a function into an AIFunction; usable bare or with arguments.

    The parameters of the function become the fields of a generated pydantic model,
    so the model's toolUse input is validated before the call. Parameter descriptions
    can be given with `Annotated[int, "The first number"]` or with a pydantic `Field`.

    Examples:
        .. code-block:: python

            @ai_function
            def get_weather(city: Annotated[str, "City name"]) -> str:
                '''Get the weather for a city.'''
                return f"Sunny in {city}"


            @ai_function(name="add_numbers", description="Add two numbers.")
            def add(a: int, b: int = 1) -> int:
                return a + b

    Keyword Args:
        name: Tool name, the function name by default.
        description: Tool description, the docstring by default.
        additional_properties: Extra data kept on the AIFunction.
    """

    def decorator(f: Callable[..., Any]) -> AIFunction[Any, Any]:
        tool_name = name or getattr(f, "__name__", "unknown_function")
        fields: dict[str, Any] = {}
        for param_name, param in inspect.signature(f).parameters.items():
            if param_name in ("self", "cls"):
                continue
            annotation = str if param.annotation is inspect.Parameter.empty else _parse_annotation(param.annotation)
            default = ... if param.default is inspect.Parameter.empty else param.default
            fields[param_name] = (annotation, default)

        return AIFunction(
            name=tool_name,
            description=description or inspect.getdoc(f) or "",
            additional_properties=additional_properties or {},
            func=f,
            input_model=create_model(f"{tool_name}_input", **fields),  # type: ignore[call-overload]
        )

    return decorator(func) if func else decorator


# region Function invocation


def _get_tool_map(tools: Sequence[Any]) -> dict[str, AIFunction[Any, Any]]:
    tool_map: dict[str, AIFunction[Any, Any]] = {}
    for tool in tools:
        if isinstance(tool, AIFunction):
            tool_map[tool.name] = tool
        elif callable(tool):
            converted = ai_function(tool)
            tool_map[converted.name] = converted
    return tool_map


async def _auto_invoke_function(
    function_call_content: "FunctionCallContent",
    *,
    tool_map: dict[str, AIFunction[Any, Any]],
) -> "FunctionResultContent":
    """Invoke a single requested function call and wrap the outcome in a FunctionResultContent."""
    from ._types import FunctionResultContent

    tool = tool_map.get(function_call_content.name)
    if tool is None:
        exception: Exception = FunctionCallInvalidNameException(
            f"No tool or function named '{function_call_content.name}'"
        )
        logger.warning(str(exception))
        return FunctionResultContent(
            call_id=function_call_content.call_id,
            name=function_call_content.name,
            result=f"Error: {exception}",
            exception=exception,
        )

    try:
        args = tool.input_model.model_validate(function_call_content.parse_arguments() or {})
    except (ValidationError, ValueError) as ex:
        exception = FunctionCallInvalidArgumentsException(f"Invalid arguments for '{tool.name}': {ex}")
        logger.warning(str(exception))
        return FunctionResultContent(
            call_id=function_call_content.call_id,
            name=tool.name,
            result=f"Error: {exception}",
            exception=exception,
        )

    try:
        function_result = await tool.invoke(arguments=args)
    except Exception as ex:
        return FunctionResultContent(
            call_id=function_call_content.call_id,
            name=tool.name,
            result=f"Error: {ex}",
            exception=ex,
        )
    return FunctionResultContent(call_id=function_call_content.call_id, name=tool.name, result=function_result)


async def execute_function_calls(
    function_calls: Sequence["FunctionCallContent"],
    tools: Sequence[Any],
) -> list["FunctionResultContent"]:
    """Run all requested function calls concurrently, preserving their order."""
    tool_map = _get_tool_map(tools)
    return list(
        await asyncio.gather(*[
            _auto_invoke_function(function_call, tool_map=tool_map) for function_call in function_calls
        ])
    )


def _resolve_tools(client: Any, kwargs: dict[str, Any]) -> list[Any] | None:
    from ._types import ChatOptions

    tools = kwargs.get("tools")
    if not tools and isinstance(chat_options := kwargs.get("chat_options"), ChatOptions):
        tools = chat_options.tools
    if not tools and isinstance(default_options := getattr(client, "default_options", None), ChatOptions):
        tools = default_options.tools
    if tools is None:
        return None
    return tools if isinstance(tools, list) else [tools]


def _handle_function_calls_response(
    get_response_func: Callable[..., Awaitable["ChatResponse"]],
    max_iterations: int,
) -> Callable[..., Awaitable["ChatResponse"]]:
    """Decorate the get_response method to enable function calls."""

    @wraps(get_response_func)
    async def wrap_get_response(self: Any, messages: Any, **kwargs: Any) -> "ChatResponse":
        from ._types import ChatMessage, FunctionCallContent, Role, prepare_messages

        prepped_messages = prepare_messages(messages)
        fcc_messages: "list[ChatMessage]" = []
        for _ in range(max_iterations):
            response = await get_response_func(self, prepped_messages, **kwargs)
            function_calls = [
                item
                for message in response.messages
                for item in message.contents
                if isinstance(item, FunctionCallContent)
            ]
            tools = _resolve_tools(self, kwargs)
            if function_calls and tools:
                function_results = await execute_function_calls(function_calls, tools)
                response.messages.append(ChatMessage(role=Role.TOOL, contents=function_results))
                fcc_messages.extend(response.messages)
                prepped_messages.extend(response.messages)
                continue
            if fcc_messages:
                response.messages[0:0] = fcc_messages
            return response

        logger.warning("Maximum function call iterations (%d) reached, asking for a plain answer.", max_iterations)
        kwargs["tool_choice"] = "none"
        response = await get_response_func(self, prepped_messages, **kwargs)
        if fcc_messages:
            response.messages[0:0] = fcc_messages
        return response

    return wrap_get_response


def _handle_function_calls_streaming_response(
    get_streaming_response_func: Callable[..., AsyncIterable["ChatResponseUpdate"]],
    max_iterations: int,
) -> Callable[..., AsyncIterable["ChatResponseUpdate"]]:
    """Decorate the get_streaming_response method to handle function calls."""

    @wraps(get_streaming_response_func)
    async def wrap_get_streaming_response(
        self: Any, messages: Any, **kwargs: Any
    ) -> AsyncIterable["ChatResponseUpdate"]:
        from ._types import (
            ChatMessage,
            ChatResponse,
            ChatResponseUpdate,
            FunctionCallContent,
            Role,
            prepare_messages,
        )

        prepped_messages = prepare_messages(messages)
        for _ in range(max_iterations):
            all_updates: list["ChatResponseUpdate"] = []
            updates = get_streaming_response_func(self, prepped_messages, **kwargs)
            async with aclosing(updates):  # type: ignore[type-var]
                async for update in updates:
                    all_updates.append(update)
                    yield update

            if not any(isinstance(item, FunctionCallContent) for upd in all_updates for item in upd.contents):
                return

            response = ChatResponse.from_chat_response_updates(all_updates)
            prepped_messages.extend(response.messages)
            function_calls = [
                item
                for message in response.messages
                for item in message.contents
                if isinstance(item, FunctionCallContent)
            ]
            tools = _resolve_tools(self, kwargs)
            if not tools:
                return

            function_results = await execute_function_calls(function_calls, tools)
            yield ChatResponseUpdate(contents=function_results, role=Role.TOOL)
            prepped_messages.append(ChatMessage(role=Role.TOOL, contents=function_results))

        logger.warning("Maximum function call iterations (%d) reached, asking for a plain answer.", max_iterations)
        kwargs["tool_choice"] = "none"
        updates = get_streaming_response_func(self, prepped_messages, **kwargs)
        async with aclosing(updates):  # type: ignore[type-var]
            async for update in updates:
                yield update

    return wrap_get_streaming_response


def use_function_invocation(
    chat_client: type[TChatClient] | None = None,
    *,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> Any:
    """Class decorator that enables automatic tool calling for a chat client class.

    The decorated class must define `get_response` and `get_streaming_response`.
    """

    def decorator(cls: type[TChatClient]) -> type[TChatClient]:
        get_response = getattr(cls, "get_response", None)
        get_streaming_response = getattr(cls, "get_streaming_response", None)
        if get_response is None or get_streaming_response is None:
            raise TypeError(f"{cls.__name__} must define 'get_response' and 'get_streaming_response'.")
        setattr(cls, "get_response", _handle_function_calls_response(get_response, max_iterations))
        setattr(
            cls,
            "get_streaming_response",
            _handle_function_calls_streaming_response(get_streaming_response, max_iterations),
        )
        return cls

    return decorator(chat_client) if chat_client is not None else decorator
