# SPDX-License-Identifier: MIT
"""Placeholder substitution and path formatting for unibuild.

Compiler models describe command templates with ``${name}`` placeholders:

- ``${out}``, ``${in}``, ``${refPath}`` in a tool's ``$output`` template
- ``${value}``, ``${key}`` in include/define/lib block bodies
- ``${option}`` inside another option's rendered fragment, which the
  generator fills in by rendering ``option`` itself

Substitution here is purely textual: a placeholder whose name is not in
the mapping is left untouched. Paths are formatted with
:func:`format_path`, which relativizes against the project root, applies
unix separators when the model asks for them, and quotes paths containing
whitespace.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping

# Match: ${name}
_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")

_WHITESPACE = re.compile(r"\s")


def placeholders(text: str) -> list[str]:
    """Return the placeholder names in ``text`` in order of appearance.

    Duplicates are kept once.

    Example:
        >>> placeholders("-o ${out} ${in} ${out}")
        ['out', 'in']
    """
    seen: list[str] = []
    for name in _PLACEHOLDER.findall(text):
        if name not in seen:
            seen.append(name)
    return seen


def subst(template: str, values: Mapping[str, str]) -> str:
    """Replace ``${name}`` placeholders with values from a mapping.

    Placeholders with no entry in ``values`` are left as they are.

    Args:
        template: Text containing placeholders.
        values: Replacement text per placeholder name.

    Returns:
        The substituted text.
    """

    def replace_match(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        return match.group(0)

    return _PLACEHOLDER.sub(replace_match, template)


def subst_ignore_case(template: str, values: Mapping[str, str]) -> str:
    """Like :func:`subst`, but placeholder names match case-insensitively.

    Used for task-hook commands, where users write ``${targetName}`` and
    ``${TargetName}`` interchangeably.
    """
    lowered = {k.lower(): v for k, v in values.items()}

    def replace_match(match: re.Match[str]) -> str:
        return lowered.get(match.group(1).lower(), match.group(0))

    return _PLACEHOLDER.sub(replace_match, template)


# =============================================================================
# Path formatting
# =============================================================================


def to_unix_path(path: str) -> str:
    """Convert backslash separators to forward slashes."""
    return path.replace("\\", "/")


def to_local_path(path: str) -> str:
    """Convert forward slashes to the platform separator."""
    return path.replace("/", os.sep)


def relative_to_root(root: str, path: str) -> str | None:
    """Express ``path`` relative to ``root`` as ``./sub/path``.

    Only paths strictly inside ``root`` are relativized; comparison is done
    per path segment so ``/a/bc`` is not considered inside ``/a/b``.

    Returns:
        The relative path using platform separators, or None if ``path``
        does not live under ``root``.
    """
    if len(root) >= len(path):
        return None

    root_parts = to_unix_path(root).split("/")
    path_parts = to_unix_path(path).split("/")

    for index, part in enumerate(root_parts):
        if index >= len(path_parts) or path_parts[index] != part:
            return None

    return to_local_path("." + path[len(root) :])


def needs_quotes(text: str) -> bool:
    """Check whether a path must be wrapped in double quotes."""
    return bool(_WHITESPACE.search(text))


def format_path(
    path: str,
    *,
    root: str | None = None,
    unix: bool = False,
    quote: bool = True,
) -> str:
    """Format a path for use on a tool command line.

    Args:
        path: The path to format.
        root: Optional project root; paths under it become ``./relative``.
        unix: Normalize separators to ``/``.
        quote: Wrap in double quotes if the path contains whitespace.

    Returns:
        The formatted path.

    Example:
        >>> format_path("/prj/src/my file.c", root="/prj", unix=True)
        '"./src/my file.c"'
    """
    if root:
        relative = relative_to_root(root, path)
        if relative is not None:
            path = relative

    if unix:
        path = to_unix_path(path)

    if quote and needs_quotes(path):
        return f'"{path}"'
    return path
