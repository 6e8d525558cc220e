# SPDX-License-Identifier: MIT
"""Compiler-emitted dependency files and object freshness.

Many compilers write a ``.d`` file next to each object listing the
headers the object was built from. Two formats are understood:

GNU make style (GCC, ARM Compiler 6, SDCC)::

    build/main.o: src/main.c inc/config.h \\
      inc/my\\ header.h

ARMCC style (ARM Compiler 5, IAR STM8), one dependency per line::

    build/main.o: src/main.c
    build/main.o: inc/config.h

Relative paths are resolved against the project root.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable
from pathlib import Path

from unibuild.core.params import is_absolute_path
from unibuild.core.subst import to_local_path

logger = logging.getLogger(__name__)

# Split on spaces not escaped by '\'
_SEPARATOR = re.compile(r"(?<!\\) ")

# End of the rule target: a colon followed by whitespace or the line end,
# so a drive letter such as 'C:\' is not taken for it
_TARGET_END = re.compile(r":(?=\s|$)")


def _absolute(root: str, path: str) -> str:
    path = to_local_path(path)
    if is_absolute_path(path):
        return path
    return root + os.sep + path


def parse_gnu_depfile(lines: list[str], root: str) -> list[str]:
    """Parse GNU make style dependency lines.

    The first line's target (``main.o:``) is skipped; every other
    space-separated item is a dependency.
    """
    found: dict[str, None] = {}
    for index, line in enumerate(lines):
        line = line.rstrip("\r\n")
        if line.endswith("\\"):
            line = line[:-1]
        if index == 0:
            target = _TARGET_END.search(line)
            if target is None:
                continue
            line = line[target.end() :]
        items = [item for item in _SEPARATOR.split(line.strip()) if item.strip()]
        for item in items:
            found[_absolute(root, item.strip().replace("\\ ", " "))] = None
    return list(found)


def parse_armcc_depfile(lines: list[str], root: str, start: int = 1) -> list[str]:
    """Parse ARMCC style ``target: dependency`` lines from ``start`` on.

    The leading lines name the source itself and are skipped.
    """
    found: dict[str, None] = {}
    for line in lines[start:]:
        sep = line.find(": ")
        if sep > 0:
            found[_absolute(root, line[sep + 1 :].strip())] = None
    return list(found)


DepfileParser = Callable[[list[str], str], list[str]]

DEPFILE_PARSERS: dict[str, DepfileParser] = {
    "AC5": parse_armcc_depfile,
    "IAR_STM8": lambda lines, root: parse_armcc_depfile(lines, root, start=2),
    "SDCC": parse_gnu_depfile,
    "AC6": parse_gnu_depfile,
    "GCC": parse_gnu_depfile,
}


def parse_depfile(path: Path | str, model_id: str, root: str) -> list[str] | None:
    """Read and parse a dependency file.

    Returns:
        Absolute dependency paths, or None if the model has no known
        dependency file format.

    Raises:
        OSError: If the file can't be read.
    """
    parser = DEPFILE_PARSERS.get(model_id)
    if parser is None:
        return None
    with open(path, encoding="utf-8", errors="replace") as f:
        lines = f.read().splitlines()
    return parser(lines, root)


class FreshnessChecker:
    """Decides whether an object file is older than its inputs.

    Header results are memoized for the lifetime of the checker: a header
    found newer than one object is not stat'ed again.

    Args:
        model_id: Compiler model id selecting the dependency file parser.
        root: Project root for relative paths in dependency files.
    """

    def __init__(self, model_id: str, root: str) -> None:
        self.model_id = model_id
        self.root = root
        self._outdated: dict[str, bool] = {}

    @property
    def supported(self) -> bool:
        return self.model_id in DEPFILE_PARSERS

    def needs_rebuild(self, source: str, obj: str) -> bool:
        """Check whether ``obj`` must be rebuilt from ``source``.

        True when the object is missing, the source is newer, the
        dependency file is missing, or a listed dependency is missing or
        newer than the object. With no known dependency file format only
        the source and object times are compared.
        """
        if not os.path.isfile(obj):
            return True

        obj_mtime = os.path.getmtime(obj)
        if os.path.getmtime(source) > obj_mtime:
            return True

        if not self.supported:
            return False

        depfile = os.path.splitext(obj)[0] + ".d"
        if not os.path.isfile(depfile):
            return True

        try:
            depends = parse_depfile(depfile, self.model_id, self.root) or []
        except OSError as e:
            logger.debug("Cannot read %s: %s", depfile, e)
            return True

        for dep in depends:
            outdated = self._outdated.get(dep)
            if outdated is None:
                if not os.path.isfile(dep):
                    return True
                outdated = os.path.getmtime(dep) > obj_mtime
                self._outdated[dep] = outdated
            if outdated:
                return True

        return False
