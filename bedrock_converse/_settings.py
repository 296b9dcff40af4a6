# Copyright (c) Microsoft. All rights reserved.

"""Environment backed settings.

Settings classes declare typed class attributes; an instance resolves each of them
from constructor arguments, the process environment, a .env file or the class default.
"""

import os
import types
from contextlib import suppress
from typing import Any, ClassVar, Union, get_args, get_origin, get_type_hints

from dotenv import load_dotenv

__all__ = ["ConverseSettings", "SecretString"]

_MASK = "SecretString('**********')"
_TRUTHY = frozenset({"true", "1", "yes", "on"})


class SecretString(str):
    """A str whose repr never shows the value.

    Use it for credentials so they stay out of logs and tracebacks:

        ```python
        secret_key = SecretString("wJalrXUtnFEMI")
        print(secret_key)  # wJalrXUtnFEMI
        print(repr(secret_key))  # SecretString('**********')
        ```
    """

    def __repr__(self) -> str:
        return _MASK

    def get_secret_value(self) -> str:
        """Return the plain string value."""
        return str.__str__(self)


def _strip_optional(hint: Any) -> Any:
    if get_origin(hint) in (Union, types.UnionType):
        members = [arg for arg in get_args(hint) if arg is not type(None)]
        if len(members) == 1:
            return members[0]
    return hint


def _coerce_value(value: str, target_type: Any) -> Any:
    """Convert the raw string of an environment variable to `target_type`.

    Raises:
        ValueError: If the string is not a valid value of the type.
    """
    target_type = _strip_optional(target_type)

    if get_origin(target_type) is list:
        # comma separated, empty items dropped
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(target_type, type):
        if issubclass(target_type, SecretString):
            return SecretString(value)
        if target_type is bool:
            return value.strip().lower() in _TRUTHY
        if target_type in (int, float):
            return target_type(value)
    return value


class ConverseSettings:
    """Base class for settings read from the environment.

    Resolution order per field, first hit wins:

    1. keyword arguments given to the constructor (None counts as not given)
    2. the environment variable `env_prefix + FIELD_NAME`, or `env_prefix + field_env_vars[field]`
    3. the same variable loaded from a .env file
    4. the class attribute default

    Example:
        ```python
        class RegionSettings(ConverseSettings):
            env_prefix: ClassVar[str] = "MY_APP_"

            region_name: str | None = None
            timeout: float = 30.0


        RegionSettings(timeout=5).region_name  # value of MY_APP_REGION_NAME, if set
        ```
    """

    env_prefix: ClassVar[str] = ""
    field_env_vars: ClassVar[dict[str, str]] = {}

    def __init__(
        self,
        *,
        env_file_path: str | None = None,
        env_file_encoding: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Resolve all fields.

        Keyword Args:
            env_file_path: The .env file to load, a .env file found from the working directory if None.
            env_file_encoding: Encoding of the .env file, "utf-8" if None.
            kwargs: Explicit field values.

        Raises:
            ValueError: On unknown field names or environment values of the wrong type.
        """
        self._env_file_path = env_file_path
        self._env_file_encoding = env_file_encoding or "utf-8"
        # does not override variables that are already set
        load_dotenv(dotenv_path=env_file_path, encoding=self._env_file_encoding)

        given = {name: value for name, value in kwargs.items() if value is not None}
        hints = self._get_field_hints()
        if unknown := sorted(set(given) - set(hints)):
            raise ValueError(f"Unknown settings for {type(self).__name__}: {', '.join(unknown)}")

        for name, hint in hints.items():
            setattr(self, name, self._resolve(name, hint, given))

    def _resolve(self, name: str, hint: Any, given: dict[str, Any]) -> Any:
        if name in given:
            value = given[name]
            if isinstance(value, str) and hint is not str:
                with suppress(ValueError, TypeError):
                    value = _coerce_value(value, hint)
            return value
        raw = os.getenv(self._get_env_var_name(name))
        if raw is not None:
            return _coerce_value(raw, hint)
        default = getattr(type(self), name, None)
        return list(default) if isinstance(default, list) else default

    @property
    def env_file_path(self) -> str | None:
        return self._env_file_path

    @property
    def env_file_encoding(self) -> str:
        return self._env_file_encoding

    @classmethod
    def _get_field_hints(cls) -> dict[str, Any]:
        """Annotated public fields of the class and its bases, ClassVars excluded."""
        hints: dict[str, Any] = {}
        for klass in cls.__mro__:
            if klass in (ConverseSettings, object):
                continue
            with suppress(TypeError):
                for name, hint in get_type_hints(klass).items():
                    if name.startswith("_") or name in hints or get_origin(hint) is ClassVar:
                        continue
                    hints[name] = hint
        return hints

    @classmethod
    def _get_env_var_name(cls, field_name: str) -> str:
        suffix = cls.field_env_vars.get(field_name, field_name.upper())
        return f"{cls.env_prefix}{suffix}"

    def to_dict(self, *, exclude_none: bool = True) -> dict[str, Any]:
        """The resolved field values, secrets unmasked."""
        values = {name: getattr(self, name, None) for name in self._get_field_hints()}
        if exclude_none:
            return {name: value for name, value in values.items() if value is not None}
        return values

    def __repr__(self) -> str:
        shown = ", ".join(f"{name}={value!r}" for name, value in self.to_dict().items())
        return f"{type(self).__name__}({shown})"
