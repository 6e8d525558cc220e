# SPDX-License-Identifier: MIT
"""Project parameter set for unibuild.

The parameter document tells unibuild what to build:

    {
        "name": "firmware",
        "rootDir": "/work/firmware",
        "outDir": "build/Debug",
        "sourceList": ["src/main.c", "src/startup.s", "lib/libm.a"],
        "incDirs": ["inc"],
        "libDirs": [],
        "defines": ["DEBUG", "HSE_VALUE=8000000"],
        "options": {
            "global": {"cpu": "cortex-m4"},
            "c/cpp-compiler": {"optimization": "level-1"},
            "asm-compiler": {},
            "linker": {"$use": "linker-lib"}
        }
    }

Relative paths are resolved against ``rootDir``. Option values are kept
as plain strings or lists of strings, which is what the option renderer
expects.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from unibuild.core.errors import ConfigurationError

# Option sections in the parameter document
GLOBAL_SECTION = "global"
COMPILER_SECTION = "c/cpp-compiler"
ASSEMBLER_SECTION = "asm-compiler"
LINKER_SECTION = "linker"

# Parameter section holding each tool role's options
ROLE_SECTIONS = {
    "c": COMPILER_SECTION,
    "cpp": COMPILER_SECTION,
    "asm": ASSEMBLER_SECTION,
    "linker": LINKER_SECTION,
}

# Source file filters
C_FILE = re.compile(r"\.c$", re.IGNORECASE)
CPP_FILE = re.compile(r"\.(?:cpp|cxx|cc|c\+\+)$", re.IGNORECASE)
ASM_FILE = re.compile(r"\.(?:s|asm|a51)$", re.IGNORECASE)
LIB_FILE = re.compile(r"\.(?:lib|a)$", re.IGNORECASE)

_ABSOLUTE = re.compile(r"^(?:[a-z]:|/)", re.IGNORECASE)


def is_absolute_path(path: str) -> bool:
    """Check for a drive-letter or root-anchored path on any platform."""
    return bool(_ABSOLUTE.match(path))


def resolve_path(root: str, path: str) -> str:
    """Resolve ``path`` against ``root`` unless it is already absolute."""
    if is_absolute_path(path):
        return path
    return root + os.sep + path


def option_value(raw: Any) -> str | list[str] | None:
    """Convert a JSON parameter value to a renderable option value.

    Strings stay strings, booleans become "true"/"false", numbers are
    formatted as text and arrays become lists of strings. Objects and
    null have no value.
    """
    if isinstance(raw, str):
        return raw
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (int, float)):
        return str(raw)
    if isinstance(raw, list):
        return [item if isinstance(item, str) else str(item) for item in raw]
    return None


@dataclass
class SourceSet:
    """Project inputs classified by kind, in declaration order."""

    c: list[str] = field(default_factory=list)
    cpp: list[str] = field(default_factory=list)
    asm: list[str] = field(default_factory=list)
    libs: list[str] = field(default_factory=list)

    def add(self, path: str) -> bool:
        """Classify and add a file. Returns False for unknown suffixes."""
        name = os.path.basename(path)
        if C_FILE.search(name):
            target = self.c
        elif CPP_FILE.search(name):
            target = self.cpp
        elif ASM_FILE.search(name):
            target = self.asm
        elif LIB_FILE.search(name):
            target = self.libs
        else:
            return False
        if path not in target:
            target.append(path)
        return True

    def compilable(self) -> list[str]:
        """All sources that get compiled or assembled."""
        return self.c + self.asm + self.cpp


@dataclass
class ParameterSet:
    """Project parameters.

    Attributes:
        name: Output base name for the linked image.
        root_dir: Project root; relative paths are resolved against it.
        out_dir: Directory for objects, response files and the image.
        dump_path: Directory for the persisted build log.
        sources: Existing input files, classified.
        include_dirs: Header search directories (order matters).
        lib_dirs: Library search directories.
        defines: ``NAME`` or ``NAME=value`` macro definitions.
        thread_num: Worker count hint (0 lets unibuild decide).
        ram: RAM budget in bytes, if known.
        rom: ROM budget in bytes, if known.
        options: Option sections keyed 'global', 'c/cpp-compiler', ...
        before_build_tasks: Raw task hook entries run before building.
        after_build_tasks: Raw task hook entries run after building.
    """

    root_dir: str
    name: str = "main"
    out_dir: str = ""
    dump_path: str = ""
    sources: SourceSet = field(default_factory=SourceSet)
    include_dirs: list[str] = field(default_factory=list)
    lib_dirs: list[str] = field(default_factory=list)
    defines: list[str] = field(default_factory=list)
    thread_num: int = 0
    ram: int | None = None
    rom: int | None = None
    options: dict[str, dict[str, Any]] = field(default_factory=dict)
    before_build_tasks: list[Any] = field(default_factory=list)
    after_build_tasks: list[Any] = field(default_factory=list)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], *, model_defines: list[str] | None = None
    ) -> ParameterSet:
        """Build a parameter set from a parsed JSON document.

        Args:
            data: The parameter document.
            model_defines: Defines from the compiler model, appended after
                the project's own.

        Raises:
            ConfigurationError: If required keys are missing or malformed.
        """
        root = data.get("rootDir")
        if not isinstance(root, str) or not root:
            raise ConfigurationError("project parameters are missing 'rootDir'")

        out_dir = resolve_path(root, data.get("outDir", "build"))
        dump_path = resolve_path(root, data.get("dumpPath", out_dir))

        options = data.get("options", {})
        if not isinstance(options, dict):
            raise ConfigurationError("'options' must be an object")

        sources = SourceSet()
        for entry in _str_list(data, "sourceList"):
            path = resolve_path(root, entry)
            if os.path.isfile(path):
                sources.add(os.path.abspath(path))

        defines = _str_list(data, "defines") + list(model_defines or [])

        return cls(
            root_dir=root,
            name=data.get("name", "main"),
            out_dir=out_dir,
            dump_path=dump_path,
            sources=sources,
            include_dirs=[resolve_path(root, p) for p in _str_list(data, "incDirs")],
            lib_dirs=[resolve_path(root, p) for p in _str_list(data, "libDirs")],
            defines=defines,
            thread_num=_int_field(data, "threadNum", 0) or 0,
            ram=_optional_int(data, "ram"),
            rom=_optional_int(data, "rom"),
            options={k: v for k, v in options.items() if isinstance(v, dict)},
            before_build_tasks=list(options.get("beforeBuildTasks", [])),
            after_build_tasks=list(options.get("afterBuildTasks", [])),
        )

    def section(self, name: str) -> dict[str, Any]:
        """Get an option section, empty if the project doesn't set one."""
        return self.options.get(name, {})

    def role_section(self, role: str) -> dict[str, Any]:
        """Get the option section for a tool role ('c', 'asm', ...)."""
        return self.section(ROLE_SECTIONS[role])


def _str_list(data: dict[str, Any], key: str) -> list[str]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"'{key}' must be a list of strings")
    return list(value)


def _int_field(data: dict[str, Any], key: str, default: int | None = None) -> int | None:
    value = data.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}") from None


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    value = _int_field(data, key)
    if value is None or value < 0:
        return None
    return value


def load_params(
    path: Path | str, *, model_defines: list[str] | None = None
) -> ParameterSet:
    """Load project parameters from a JSON file.

    Raises:
        ConfigurationError: If the file can't be read or parsed.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"failed to load project parameters {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"project parameters {path} must be a JSON object")
    return ParameterSet.from_dict(data, model_defines=model_defines)
