# SPDX-License-Identifier: MIT
"""Custom exceptions for unibuild.

All unibuild exceptions inherit from UnibuildError. Configuration errors
are raised before any process is spawned; BuildError is raised when an
external tool exits above the acceptable error level.
"""

from __future__ import annotations


class UnibuildError(Exception):
    """Base class for all unibuild exceptions.

    Attributes:
        message: The error message.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(UnibuildError):
    """Invalid compiler model or project parameters.

    Raised while loading the model or rendering the stable command
    fragments. Never retried.
    """


class OptionTypeError(ConfigurationError):
    """A parameter value does not match its option descriptor's kind.

    Attributes:
        key: The option key holding the bad value (may be empty while
            the error travels up from the renderer).
        expected: Name of the expected value type.
        given: Name of the type that was supplied.
    """

    def __init__(self, key: str, expected: str, given: str) -> None:
        self.key = key
        self.expected = expected
        self.given = given
        if key:
            msg = f"The type of key '{key}' is '{expected}' but you gave '{given}'"
        else:
            msg = f"expected '{expected}' but got '{given}'"
        super().__init__(msg)

    def with_key(self, key: str) -> OptionTypeError:
        """Return a copy of this error naming the offending option key."""
        return OptionTypeError(key, self.expected, self.given)


class MissingFallbackError(ConfigurationError):
    """A selectable/keyValue descriptor lacks its fallback entry.

    Attributes:
        key: The option key of the broken descriptor.
        fallback: The entry that should exist ('false' or 'default').
    """

    def __init__(self, key: str, fallback: str) -> None:
        self.key = key
        self.fallback = fallback
        super().__init__(f"option '{key}' must define a '{fallback}' entry")


class ToolGroupError(ConfigurationError):
    """No tool group in the model matches a configured tool selector."""


class EntryObjectError(ConfigurationError):
    """The linker needs an entry object first, but it is not in the list.

    Attributes:
        name: Base name of the expected entry object (e.g. 'main').
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"entry object not found: '{name}' must be the first object file "
            f"but is not in the output list"
        )


class ToolNotFoundError(ConfigurationError):
    """Required tool executable was not found.

    Attributes:
        tool: Display name of the tool.
        path: The path that was checked.
    """

    def __init__(self, tool: str, path: str) -> None:
        self.tool = tool
        self.path = path
        super().__init__(f"not found {tool}: \"{path}\"")


class BuildError(UnibuildError):
    """An external tool failed during the build.

    Attributes:
        path: The file being processed when the tool failed.
        exit_code: The tool's exit code.
    """

    def __init__(self, message: str, path: str | None = None, exit_code: int = 0):
        self.path = path
        self.exit_code = exit_code
        super().__init__(message)


class DependencyCacheError(UnibuildError):
    """The persisted dependency cache could not be used."""
