# SPDX-License-Identifier: MIT
"""Textual ``#include`` scanning and header resolution.

This is not a preprocessor: it looks at lines starting with ``#include``
and takes whatever sits between the first quote or ``<`` and the next
quote or ``>``. Macros and conditional compilation are ignored, so the
result is a best-effort dependency set. Includes that can't be resolved
(system headers, generated files) are dropped.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable

logger = logging.getLogger(__name__)

INCLUDE_DIRECTIVE = "#include"

HEADER_FILE = re.compile(r"\.(?:h|hpp|hxx)$", re.IGNORECASE)


def match_include(line: str) -> str | None:
    """Extract the include target from a directive line.

    Returns:
        The text between the delimiters, or None if there is none.

    Example:
        >>> match_include('#include "util/log.h"')
        'util/log.h'
        >>> match_include("#include <>") is None
        True
    """
    start = -1
    end = -1
    for index, char in enumerate(line):
        if start == -1 and char in "\"<":
            start = index + 1
        elif char in "\">":
            end = index
            break

    if start == -1 or end <= start:
        return None
    return line[start:end]


class HeaderIndex:
    """Flat filename to path index over the top level of include dirs.

    Lookups are case-insensitive. When two directories hold a header with
    the same name, the directory listed first wins.
    """

    def __init__(self, dirs: Iterable[str] = ()) -> None:
        self._paths: dict[str, str] = {}
        for directory in dirs:
            self.add_dir(directory)

    def add_dir(self, directory: str) -> None:
        if not os.path.isdir(directory):
            return
        for name in sorted(os.listdir(directory)):
            if HEADER_FILE.search(name):
                self.add(os.path.join(directory, name))

    def add(self, path: str) -> None:
        key = os.path.basename(path).lower()
        if key not in self._paths:
            self._paths[key] = path

    def get(self, name: str) -> str | None:
        return self._paths.get(name.lower())


class IncludeScanner:
    """Resolves the direct includes of source and header files.

    Args:
        include_dirs: Header search directories, searched in order.
    """

    def __init__(self, include_dirs: Iterable[str]) -> None:
        self.include_dirs = [d for d in dict.fromkeys(include_dirs) if os.path.isdir(d)]
        self.index = HeaderIndex(self.include_dirs)

    def resolve(self, including_file: str, token: str) -> str | None:
        """Resolve one include token to a file path.

        Order:
        1. ``./x.h``, ``../x.h``: relative to the including file's directory
        2. ``dir/x.h``: each include dir in order, first hit wins
        3. ``x.h``: the header index
        """
        name = token.replace("/", os.sep)

        if name.startswith("."):
            path = os.path.normpath(os.path.join(os.path.dirname(including_file), name))
            return path if os.path.isfile(path) else None

        if os.sep in name:
            for directory in self.include_dirs:
                path = os.path.join(directory, name)
                if os.path.isfile(path):
                    return path
            return None

        return self.index.get(name)

    def scan(self, path: str) -> list[str] | None:
        """Return the resolved direct includes of a file.

        Returns:
            Resolved paths in order of first appearance, or None if the
            file can't be read.
        """
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
        except OSError as e:
            logger.debug("Cannot read %s: %s", path, e)
            return None

        found: dict[str, None] = {}
        for line in lines:
            line = line.lstrip()
            if not line.startswith(INCLUDE_DIRECTIVE):
                continue
            token = match_include(line)
            if token is None:
                continue
            resolved = self.resolve(path, token)
            if resolved is not None:
                found[resolved] = None

        return list(found)
