# SPDX-License-Identifier: MIT
"""Option schema model for unibuild.

A compiler model is a JSON document describing how a toolchain's tools
accept their options. It has a ``groups`` object with one entry per tool
group (``c/cpp``, ``asm``, ``linker``, ...), each mapping option keys to
option descriptors. Keys starting with ``$`` are reserved and hold
tool-wide settings rather than options.

Example group:

    "linker": {
        "$path": "bin/${toolPrefix}ld",
        "$invoke": {"useFile": true, "body": "--via ${value}"},
        "$output": "-o ${out} ${in}",
        "$libs": {"body": "-L${value}"},
        "optimize": {
            "type": "keyValue",
            "command": "-O",
            "enum": {"speed": "3", "default": "0"}
        }
    }

Descriptors are parsed into one of four dataclasses (Selectable,
KeyValue, ValueOption, ListOption) and validated up front, so a
descriptor missing its fallback entry is reported before any command is
rendered.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from unibuild.core.errors import ConfigurationError, MissingFallbackError

RESERVED_PREFIX = "$"


# =============================================================================
# Option descriptors
# =============================================================================


@dataclass(frozen=True)
class Selectable:
    """Boolean-like option: the value selects one of several fragments.

    ``commands`` must contain a ``"false"`` entry used for absent or
    unknown values.
    """

    key: str
    commands: dict[str, str]
    prefix: str = ""
    suffix: str = ""


@dataclass(frozen=True)
class KeyValue:
    """Enumerated option: ``command`` followed by the value's enum entry.

    ``enum`` must contain a ``"default"`` entry used for absent or
    unknown values.
    """

    key: str
    command: str
    enum: dict[str, str]
    prefix: str = ""
    suffix: str = ""


@dataclass(frozen=True)
class ValueOption:
    """Free-form option: ``command`` followed by the user's string."""

    key: str
    command: str
    prefix: str = ""
    suffix: str = ""


@dataclass(frozen=True)
class ListOption:
    """Repeated option: ``command`` followed by each element of a list."""

    key: str
    command: str
    prefix: str = ""
    suffix: str = ""


OptionDescriptor = Selectable | KeyValue | ValueOption | ListOption


def parse_option(key: str, raw: Any) -> OptionDescriptor:
    """Parse one option descriptor from its JSON object.

    Args:
        key: The option key (used in error messages).
        raw: The descriptor object.

    Returns:
        The typed descriptor.

    Raises:
        ConfigurationError: If the descriptor is malformed.
        MissingFallbackError: If a selectable/keyValue lacks its fallback.
    """
    if not isinstance(raw, dict):
        raise ConfigurationError(f"option '{key}' must be an object")

    kind = raw.get("type")
    prefix = _str_field(raw, "prefix", key)
    suffix = _str_field(raw, "suffix", key)

    if kind == "selectable":
        commands = raw.get("command")
        if not isinstance(commands, dict):
            raise ConfigurationError(
                f"option '{key}': type 'selectable' must have a 'command' object"
            )
        if "false" not in commands:
            raise MissingFallbackError(key, "false")
        return Selectable(key, _str_map(commands, key), prefix, suffix)

    if kind == "keyValue":
        enum = raw.get("enum")
        if not isinstance(enum, dict):
            raise ConfigurationError(
                f"option '{key}': type 'keyValue' must have an 'enum' object"
            )
        if "default" not in enum:
            raise MissingFallbackError(key, "default")
        command = _str_field(raw, "command", key)
        return KeyValue(key, command, _str_map(enum, key), prefix, suffix)

    if kind == "value":
        return ValueOption(key, _str_field(raw, "command", key), prefix, suffix)

    if kind == "list":
        return ListOption(key, _str_field(raw, "command", key), prefix, suffix)

    raise ConfigurationError(f"option '{key}': invalid type {kind!r}")


def _str_field(raw: dict[str, Any], name: str, key: str) -> str:
    value = raw.get(name, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigurationError(f"option '{key}': '{name}' must be a string")
    return value


def _str_map(raw: dict[str, Any], key: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for k, v in raw.items():
        if not isinstance(v, str):
            raise ConfigurationError(f"option '{key}': entry '{k}' must be a string")
        result[k] = v
    return result


# =============================================================================
# Tool-wide settings
# =============================================================================


@dataclass(frozen=True)
class BlockFormat:
    """Rendering template for an include/define/library-dir block.

    Each item is rendered through ``body`` (``${value}``, and for defines
    ``${key}``), items are joined with ``sep`` and the result is wrapped
    with ``prefix``/``suffix``.
    """

    body: str
    prefix: str = ""
    suffix: str = ""
    sep: str = " "
    no_quotes: bool = False

    @classmethod
    def from_dict(cls, key: str, raw: Any) -> BlockFormat:
        if not isinstance(raw, dict) or not isinstance(raw.get("body"), str):
            raise ConfigurationError(f"'{key}' must be an object with a 'body' string")
        return cls(
            body=raw["body"],
            prefix=raw.get("prefix", "") or "",
            suffix=raw.get("suffix", "") or "",
            sep=raw.get("sep", " ") if raw.get("sep") is not None else " ",
            no_quotes=bool(raw.get("noQuotes", False)),
        )


@dataclass(frozen=True)
class Inline:
    """The rendered command text is passed to the tool directly."""


@dataclass(frozen=True)
class ResponseFile:
    """The command text is written to a file the tool reads.

    Attributes:
        body: Invocation template; ``${value}`` becomes the quoted file path.
        extension: Suffix of the generated file.
        encoding: Text encoding for the file, None for the locale default.
    """

    body: str
    extension: str
    encoding: str | None = None


InvokeMode = Inline | ResponseFile

# Response-file suffix per tool role
RESPONSE_FILE_EXTENSIONS = {
    "asm": "._ia",
    "linker": ".lnp",
}
DEFAULT_RESPONSE_FILE_EXTENSION = ".__i"


def parse_encoding(name: str | None) -> str | None:
    """Map a model ``$encoding`` name to a Python codec name.

    ``UTF8`` means UTF-8 without a byte-order mark; other spellings of
    utf8 write a BOM. ``utf16`` is UTF-16 with BOM. Anything else uses
    the locale's preferred encoding (None).
    """
    if name is None:
        return None
    if name == "UTF8":
        return "utf-8"
    lowered = name.lower()
    if lowered == "utf8":
        return "utf-8-sig"
    if lowered == "utf16":
        return "utf-16"
    return None


@dataclass(frozen=True)
class LanguageOption:
    """Per-dialect flag (``$language-c``/``$language-cpp``).

    Attributes:
        descriptor: How to render the dialect value.
        exclude: Flags to strip from the assembled compile command.
    """

    descriptor: OptionDescriptor
    exclude: tuple[str, ...] = ()


@dataclass(frozen=True)
class PostLinkStep:
    """A tool run on the linked image (``$outputBin``/``$extraCommand``).

    Attributes:
        name: Display title.
        tool_path: Executable path relative to the tool bin dir.
        command: Command template with ``${linkerOutput}``/``${output}``.
        output_suffix: Suffix appended to the output base path.
    """

    name: str | None
    tool_path: str
    command: str
    output_suffix: str = ""

    @classmethod
    def from_dict(cls, key: str, raw: Any, *, require_name: bool) -> PostLinkStep:
        if not isinstance(raw, dict):
            raise ConfigurationError(f"'{key}' entries must be objects")
        for required in ("toolPath", "command"):
            if not isinstance(raw.get(required), str):
                raise ConfigurationError(f"'{key}' entry is missing '{required}'")
        name = raw.get("name")
        if require_name and not isinstance(name, str):
            raise ConfigurationError(f"'{key}' entry is missing 'name'")
        return cls(
            name=name,
            tool_path=raw["toolPath"],
            command=raw["command"],
            output_suffix=raw.get("outputSuffix", "") or "",
        )


@dataclass
class ToolModel:
    """One tool group of a compiler model, with reserved keys parsed."""

    name: str
    role: str
    path: str
    output: str
    options: dict[str, OptionDescriptor] = field(default_factory=dict)
    invoke: InvokeMode = field(default_factory=Inline)
    encoding: str | None = None
    output_suffix: str | None = None
    default: list[str] = field(default_factory=list)
    default_tail: list[str] = field(default_factory=list)
    includes: BlockFormat | None = None
    defines: BlockFormat | None = None
    libs: BlockFormat | None = None
    languages: dict[str, LanguageOption] = field(default_factory=dict)
    list_path: OptionDescriptor | None = None
    quote_path: bool = True

    # Linker settings
    map_suffix: str = ".map"
    command_location: str = "start"
    obj_path_sep: str | None = None
    main_first: bool = False
    lib_flags: OptionDescriptor | None = None
    link_map: OptionDescriptor | None = None
    matcher: list[str] = field(default_factory=list)
    ram_matcher: str | None = None
    rom_matcher: str | None = None
    output_bin: list[PostLinkStep] = field(default_factory=list)
    extra_commands: list[PostLinkStep] = field(default_factory=list)

    @classmethod
    def from_dict(cls, name: str, role: str, raw: dict[str, Any]) -> ToolModel:
        """Parse a tool group.

        Args:
            name: Group name in the model.
            role: What the group is used for: 'c', 'cpp', 'asm' or 'linker'.
            raw: The group object (global options already merged in).

        Raises:
            ConfigurationError: On any structural problem.
        """
        if not isinstance(raw.get("$path"), str):
            raise ConfigurationError(f"tool group '{name}' is missing '$path'")
        if not isinstance(raw.get("$output"), str):
            raise ConfigurationError(f"tool group '{name}' is missing '$output'")

        encoding = parse_encoding(raw.get("$encoding"))
        tool = cls(
            name=name,
            role=role,
            path=raw["$path"],
            output=raw["$output"],
            encoding=encoding,
            invoke=_parse_invoke(name, role, raw.get("$invoke"), encoding),
            output_suffix=raw.get("$outputSuffix"),
            default=_str_list(raw, "$default", name),
            default_tail=_str_list(raw, "$default-tail", name),
            quote_path=bool(raw.get("$quotePath", True)),
            map_suffix=raw.get("$mapSuffix", ".map"),
            command_location=raw.get("$commandLocation", "start"),
            obj_path_sep=raw.get("$objPathSep"),
            main_first=bool(raw.get("$mainFirst", False)),
            matcher=_str_list(raw, "$matcher", name),
            ram_matcher=raw.get("$ramMatcher"),
            rom_matcher=raw.get("$romMatcher"),
        )

        if tool.command_location not in ("start", "end"):
            raise ConfigurationError(
                f"tool group '{name}': '$commandLocation' must be 'start' or 'end'"
            )

        for key, attr in (("$includes", "includes"), ("$defines", "defines"), ("$libs", "libs")):
            if key in raw:
                setattr(tool, attr, BlockFormat.from_dict(key, raw[key]))

        for lang in ("language-c", "language-cpp"):
            lang_raw = raw.get("$" + lang)
            if lang_raw is not None:
                exclude = lang_raw.get("exclude", []) if isinstance(lang_raw, dict) else []
                tool.languages[lang] = LanguageOption(
                    parse_option("$" + lang, lang_raw), tuple(exclude)
                )

        for key, attr in (
            ("$listPath", "list_path"),
            ("$LIB_FLAGS", "lib_flags"),
            ("$linkMap", "link_map"),
        ):
            if key in raw:
                setattr(tool, attr, parse_option(key, raw[key]))

        tool.output_bin = [
            PostLinkStep.from_dict("$outputBin", step, require_name=True)
            for step in raw.get("$outputBin", [])
        ]
        tool.extra_commands = [
            PostLinkStep.from_dict("$extraCommand", step, require_name=False)
            for step in raw.get("$extraCommand", [])
        ]

        for key, value in raw.items():
            if not key.startswith(RESERVED_PREFIX):
                tool.options[key] = parse_option(key, value)

        return tool


def _parse_invoke(
    name: str, role: str, raw: Any, encoding: str | None
) -> InvokeMode:
    if raw is None:
        return Inline()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"tool group '{name}': '$invoke' must be an object")
    if not raw.get("useFile", False):
        return Inline()
    body = raw.get("body")
    if not isinstance(body, str):
        raise ConfigurationError(
            f"tool group '{name}': '$invoke.body' is required when 'useFile' is set"
        )
    extension = RESPONSE_FILE_EXTENSIONS.get(role, DEFAULT_RESPONSE_FILE_EXTENSION)
    return ResponseFile(body=body, extension=extension, encoding=encoding)


def _str_list(raw: dict[str, Any], key: str, name: str) -> list[str]:
    value = raw.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"tool group '{name}': '{key}' must be a list of strings")
    return list(value)


# =============================================================================
# Compiler model
# =============================================================================


@dataclass
class CompilerModel:
    """A whole compiler model document.

    Attributes:
        name: Display name (e.g. 'ARM Compiler 6').
        id: Model identifier used for toolchain quirks (e.g. 'AC6', 'GCC').
        tool_prefix: Value for ``${toolPrefix}`` in tool paths.
        use_unix_path: Normalize path separators to ``/``.
        err_level: Highest exit code still treated as success.
        defines: Defines added to every project.
        groups: Raw tool groups, global options already merged in.
    """

    name: str = "null"
    id: str = "null"
    tool_prefix: str = ""
    use_unix_path: bool = False
    err_level: int = 0
    defines: list[str] = field(default_factory=list)
    groups: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompilerModel:
        """Build a model from a parsed JSON document.

        Options under ``global`` are copied into every group listed in
        their ``group`` array, ahead of the group's own options. The input
        document is not modified.
        """
        if not isinstance(data.get("groups"), dict):
            raise ConfigurationError("compiler model has no 'groups' object")

        groups = {name: dict(group) for name, group in data["groups"].items()}

        for key, option in data.get("global", {}).items():
            if not isinstance(option, dict) or "group" not in option:
                raise ConfigurationError(f"not found 'group' in global option '{key}'")
            for group_name in option["group"]:
                group = groups.get(group_name)
                if group is None:
                    continue
                if key in group:
                    raise ConfigurationError(
                        f"global option '{key}' already exists in group '{group_name}'"
                    )
                # Each global is inserted at the front of the group
                groups[group_name] = {key: option, **group}

        try:
            err_level = int(data.get("ERR_LEVEL", 0))
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"'ERR_LEVEL' must be an integer, got {data['ERR_LEVEL']!r}"
            ) from None

        name = data.get("name", "null")
        return cls(
            name=name,
            id=data.get("id", name),
            tool_prefix=data.get("toolPrefix", ""),
            use_unix_path=bool(data.get("useUnixPath", False)),
            err_level=err_level,
            defines=list(data.get("defines", [])),
            groups=groups,
        )

    def tool(self, group: str, role: str) -> ToolModel:
        """Parse one group as a tool with the given role."""
        if group not in self.groups:
            raise ConfigurationError(f"no tool group '{group}' in model '{self.name}'")
        return ToolModel.from_dict(group, role, self.groups[group])


def load_model(path: Path | str) -> CompilerModel:
    """Load a compiler model from a JSON file.

    Raises:
        ConfigurationError: If the file can't be read or parsed.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"failed to load compiler model {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"compiler model {path} must be a JSON object")
    return CompilerModel.from_dict(data)
