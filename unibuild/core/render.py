# SPDX-License-Identifier: MIT
"""Rendering of single option values into command fragments.

Each option descriptor kind renders differently:

- Selectable: the value picks a fragment, unknown/absent values pick "false"
- KeyValue: command + enum fragment, unknown/absent values pick "default"
- ValueOption: command + value, absent values render nothing
- ListOption: command + item for each item, space-joined

A non-empty result is wrapped with the descriptor's prefix/suffix; an
empty result stays empty.
"""

from __future__ import annotations

from collections.abc import Sequence

from unibuild.core.errors import OptionTypeError
from unibuild.core.model import (
    KeyValue,
    ListOption,
    OptionDescriptor,
    Selectable,
    ValueOption,
)
from unibuild.core.subst import to_unix_path

# A resolved parameter value: string, list of strings, or absent
OptionValue = str | Sequence[str] | None


def _type_name(value: object) -> str:
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def expected_type(descriptor: OptionDescriptor, value: object) -> str | None:
    """Return the expected type name if ``value`` doesn't fit the descriptor.

    List options accept a plain string too, which renders like a value
    option. Every other kind takes a string. Absent values always fit.
    """
    if value is None:
        return None
    if isinstance(descriptor, ListOption):
        if isinstance(value, str):
            return None
        if isinstance(value, (list, tuple)) and all(
            isinstance(item, str) for item in value
        ):
            return None
        return "array"
    if not isinstance(value, str):
        return "string"
    return None


def check_value(descriptor: OptionDescriptor, value: object) -> None:
    """Check that a value's shape matches the descriptor's kind.

    Raises:
        OptionTypeError: With an empty key; callers add the key they
            were processing via OptionTypeError.with_key().
    """
    expected = expected_type(descriptor, value)
    if expected is not None:
        raise OptionTypeError("", expected, _type_name(value))


def render_value(
    descriptor: OptionDescriptor,
    value: OptionValue,
    *,
    unix_paths: bool = False,
) -> str:
    """Render one option value into a command fragment.

    Args:
        descriptor: The option descriptor.
        value: The resolved parameter value (None when not set).
        unix_paths: Convert backslashes to ``/`` in value/list items.

    Returns:
        The fragment, or an empty string if nothing should be emitted.

    Raises:
        OptionTypeError: If the value's shape doesn't match the kind.

    Examples:
        >>> opt = ListOption("defs", "-D")
        >>> render_value(opt, ["A", "B"])
        '-DA -DB'
        >>> render_value(opt, [])
        ''
    """
    check_value(descriptor, value)

    command = ""
    if isinstance(descriptor, Selectable):
        if value is not None and value in descriptor.commands:
            command = descriptor.commands[value]
        else:
            command = descriptor.commands["false"]

    elif isinstance(descriptor, KeyValue):
        if value is not None and value in descriptor.enum:
            command = descriptor.command + descriptor.enum[value]
        else:
            command = descriptor.command + descriptor.enum["default"]

    elif isinstance(descriptor, ValueOption) or (
        isinstance(descriptor, ListOption) and isinstance(value, str)
    ):
        if value is not None:
            assert isinstance(value, str)
            command = descriptor.command + (to_unix_path(value) if unix_paths else value)

    elif isinstance(descriptor, ListOption):
        if value:
            items = [to_unix_path(v) if unix_paths else v for v in value]
            command = " ".join(descriptor.command + item for item in items)

    else:
        raise TypeError(f"unknown option descriptor: {descriptor!r}")

    if not command:
        return ""
    return descriptor.prefix + command + descriptor.suffix


def try_render_value(
    descriptor: OptionDescriptor,
    value: OptionValue,
    *,
    unix_paths: bool = False,
) -> str | None:
    """Render a value, returning None instead of raising on a type mismatch.

    Used for ``${option}`` placeholders inside other fragments, where an
    unusable value simply leaves the placeholder in place.
    """
    if expected_type(descriptor, value) is not None:
        return None
    return render_value(descriptor, value, unix_paths=unix_paths)
