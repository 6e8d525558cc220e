# SPDX-License-Identifier: MIT
"""Model-driven command generation.

CommandGenerator combines a CompilerModel with a ParameterSet and renders
ready-to-run command lines:

- compile/assemble commands, one per source file
- the link command for all objects and libraries
- post-link steps (hex/bin extraction) and extra linker commands

The part of each tool's command line that doesn't depend on the source
file (the stable fragment) is rendered once when the generator is
created. That is also when configuration errors surface: an invalid
option value or a missing tool group aborts before anything runs.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from unibuild.core.errors import (
    BuildError,
    ConfigurationError,
    EntryObjectError,
    OptionTypeError,
    ToolGroupError,
)
from unibuild.core.model import (
    BlockFormat,
    CompilerModel,
    Inline,
    InvokeMode,
    ResponseFile,
    ToolModel,
)
from unibuild.core.params import GLOBAL_SECTION, ParameterSet, option_value
from unibuild.core.render import render_value, try_render_value
from unibuild.core.subst import format_path, placeholders, subst

logger = logging.getLogger(__name__)

ROLES = ("c", "cpp", "asm", "linker")

DEFAULT_OBJECT_SUFFIX = ".o"
DEFAULT_IMAGE_SUFFIX = ".axf"

# Leading part of a define body up to and including ${key}
_MACRO_KEY = re.compile(r"^[^$]*\$\{key\}")


@dataclass(frozen=True)
class GeneratorOptions:
    """Settings for a CommandGenerator.

    Attributes:
        out_dir: Directory for objects, response files and the image.
        bin_dir: Toolchain directory prepended to tool paths. May be a
            reference like ``%TOOL_DIR%`` expanded at run time.
        cwd: Project root; paths under it are rendered as ``./relative``.
        test_mode: Always render inline command lines, never response files.
    """

    out_dir: str
    bin_dir: str | None = None
    cwd: str | None = None
    test_mode: bool = False


@dataclass(frozen=True)
class RenderedCommand:
    """A command ready for the process runner.

    Attributes:
        tool: Tool role ('c', 'cpp', 'asm', 'linker') or 'output'/'extra'
            for post-link steps.
        exe_path: Executable to run.
        command_line: Arguments as a single string (or the response-file
            invocation).
        source_path: Input file, if any.
        out_path: Produced file, if any.
        title: Display title for post-link steps.
        map_path: Linker map report path (link commands only).
    """

    tool: str
    exe_path: str
    command_line: str
    source_path: str | None = None
    out_path: str | None = None
    title: str | None = None
    map_path: str | None = None


class CommandGenerator:
    """Renders tool command lines from a compiler model and parameters.

    Example:
        gen = CommandGenerator(model, params, GeneratorOptions(out_dir="build"))
        obj = gen.from_c_file("/prj/src/main.c")
        link = gen.link_command([obj.out_path])
    """

    def __init__(
        self,
        model: CompilerModel,
        params: ParameterSet,
        options: GeneratorOptions,
    ) -> None:
        """Create a generator and render every tool's stable fragment.

        Raises:
            ToolGroupError: If a tool group needed for a role is missing.
            OptionTypeError: If a parameter value has the wrong shape.
            ConfigurationError: For other model problems.
        """
        self.model = model
        self.params = params
        self.options = options
        self.unix_paths = model.use_unix_path

        self._tools = self._select_tools()
        if options.test_mode:
            for tool in self._tools.values():
                tool.invoke = Inline()

        global_section = params.section(GLOBAL_SECTION)
        if "toolPrefix" in global_section:
            self.tool_prefix = str(global_section["toolPrefix"])
        else:
            self.tool_prefix = model.tool_prefix

        self._name_lock = threading.Lock()
        self._used_names: dict[str, int] = {}
        # The image name is taken first so no object collides with it
        self._unique_name(self.out_name)

        self._stable: dict[str, list[str]] = {}
        for role in ROLES:
            self._stable[role] = self._build_stable_fragment(role)

    # -------------------------------------------------------------------------
    # Tool selection
    # -------------------------------------------------------------------------

    def _select_tools(self) -> dict[str, ToolModel]:
        groups = self.model.groups
        shared = "c/cpp" in groups
        c_group = "c/cpp" if shared else "c"
        cpp_group = "c/cpp" if shared else "cpp"
        asm_group = self.params.role_section("asm").get("$use", "asm")
        linker_group = self.params.role_section("linker").get("$use", "linker")

        if c_group not in groups:
            raise ToolGroupError("no C compiler group ('c/cpp' or 'c') in the model")
        if cpp_group not in groups:
            raise ToolGroupError("no C++ compiler group ('c/cpp' or 'cpp') in the model")
        if asm_group not in groups:
            raise ToolGroupError(
                f"invalid '$use' option '{asm_group}', "
                "please check compile option 'asm-compiler.$use'"
            )
        if linker_group not in groups:
            raise ToolGroupError(
                f"invalid '$use' option '{linker_group}', "
                "please check compile option 'linker.$use'"
            )

        return {
            "c": self.model.tool(c_group, "c"),
            "cpp": self.model.tool(cpp_group, "cpp"),
            "asm": self.model.tool(asm_group, "asm"),
            "linker": self.model.tool(linker_group, "linker"),
        }

    def tool(self, role: str) -> ToolModel:
        """Get the tool model used for a role."""
        return self._tools[role]

    # -------------------------------------------------------------------------
    # Stable fragments
    # -------------------------------------------------------------------------

    def _resolve_value(self, role: str, key: str) -> Any:
        """Look up an option value; tool-specific parameters win over global."""
        value = None
        for section in (self.params.section(GLOBAL_SECTION), self.params.role_section(role)):
            if key in section:
                value = option_value(section[key])
        return value

    def _build_stable_fragment(self, role: str) -> list[str]:
        tool = self._tools[role]
        fragments: list[str] = list(tool.default)

        for key, descriptor in tool.options.items():
            value = self._resolve_value(role, key)
            try:
                fragment = render_value(
                    descriptor, value, unix_paths=self.unix_paths
                ).strip()
            except OptionTypeError as e:
                raise e.with_key(key) from None
            if fragment:
                fragments.append(fragment)

        if role == "linker":
            blocks = [self.lib_block(role, self.params.lib_dirs)]
        else:
            blocks = [
                self.include_block(role, self.params.include_dirs),
                self.define_block(role, self.params.defines),
            ]
        fragments.extend(block for block in blocks if block)

        fragments.extend(tool.default_tail)

        return [self._fill_option_refs(role, fragment) for fragment in fragments]

    def _fill_option_refs(self, role: str, fragment: str) -> str:
        """Replace ``${option}`` placeholders with that option's rendering.

        Placeholders that don't name an option of the tool, or whose
        value can't be rendered, are left as they are.
        """
        tool = self._tools[role]
        for name in placeholders(fragment):
            rendered = self._try_render_option(tool, role, name)
            if rendered is not None:
                fragment = fragment.replace("${" + name + "}", rendered)
        return fragment

    def _try_render_option(self, tool: ToolModel, role: str, name: str) -> str | None:
        descriptor = tool.options.get(name)
        if descriptor is None:
            return None
        return try_render_value(
            descriptor, self._resolve_value(role, name), unix_paths=self.unix_paths
        )

    def stable_fragment(self, role: str) -> list[str]:
        """The rendered source-independent command fragments for a role."""
        return list(self._stable[role])

    # -------------------------------------------------------------------------
    # Include / define / library blocks
    # -------------------------------------------------------------------------

    def _path(self, path: str, *, quote: bool = True) -> str:
        return format_path(path, root=self.options.cwd, unix=self.unix_paths, quote=quote)

    def _path_block(self, fmt: BlockFormat | None, dirs: list[str]) -> str:
        if fmt is None or not dirs:
            return ""
        items = [
            subst(fmt.body, {"value": self._path(d, quote=not fmt.no_quotes)})
            for d in dirs
        ]
        return fmt.prefix + fmt.sep.join(items) + fmt.suffix

    def include_block(self, role: str, dirs: list[str]) -> str:
        """Render the include-path block, empty if the tool declares none."""
        return self._path_block(self._tools[role].includes, dirs)

    def lib_block(self, role: str, dirs: list[str]) -> str:
        """Render the library-search-path block."""
        return self._path_block(self._tools[role].libs, dirs)

    def define_block(self, role: str, defines: list[str]) -> str:
        """Render the macro-definition block.

        ``NAME=value`` fills both ``${key}`` and ``${value}``; surrounding
        double quotes are stripped from the value. A bare ``NAME`` gets the
        value ``1`` for assemblers; for compilers the body is cut right
        after ``${key}``.
        """
        fmt = self._tools[role].defines
        if fmt is None or not defines:
            return ""

        items: list[str] = []
        for define in defines:
            macro, sep, value = define.partition("=")
            if sep:
                macro = macro.strip()
                value = value.strip()
                if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
                    value = value[1:-1]
                items.append(subst(fmt.body, {"key": macro, "value": value}))
            elif role == "asm":
                # Some assemblers reject a macro without a value
                items.append(subst(fmt.body, {"key": define.strip(), "value": "1"}))
            else:
                match = _MACRO_KEY.match(fmt.body)
                body = match.group(0) if match else fmt.body
                items.append(subst(body, {"key": define.strip()}))

        return fmt.prefix + fmt.sep.join(items) + fmt.suffix

    # -------------------------------------------------------------------------
    # Names and paths
    # -------------------------------------------------------------------------

    @property
    def out_name(self) -> str:
        """Base name of the linked image."""
        return self.params.name

    @property
    def model_name(self) -> str:
        return self.model.name

    @property
    def model_id(self) -> str:
        return self.model.id

    def _unique_name(self, expected: str) -> str:
        """Return ``expected``, or ``expected_N`` if the name was used before.

        Names are compared case-insensitively.
        """
        lowered = expected.lower()
        with self._name_lock:
            if lowered in self._used_names:
                self._used_names[lowered] += 1
                return f"{expected}_{self._used_names[lowered]}"
            self._used_names[lowered] = 0
            return expected

    def _out_file(self, name: str) -> str:
        return self.options.out_dir + os.sep + name

    def original_tool_path(self, role: str) -> str:
        """Tool path from the model with ``${toolPrefix}`` filled in."""
        return self._tools[role].path.replace("${toolPrefix}", self.tool_prefix)

    def tool_path(self, role: str) -> str:
        """Executable path for a role, under the bin dir."""
        return self._with_bin_dir(self.original_tool_path(role))

    def _with_bin_dir(self, path: str) -> str:
        if self.options.bin_dir is None:
            return path
        return self.options.bin_dir + os.sep + path

    def _invoke(self, invoke: InvokeMode, name: str, text: str) -> str:
        """Return the process command line, writing a response file if needed."""
        if not isinstance(invoke, ResponseFile):
            return text
        path = Path(self._out_file(name + invoke.extension)).absolute()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding=invoke.encoding)
        except (OSError, UnicodeError) as e:
            raise BuildError(
                f"cannot write response file \"{path}\": {e}", path=str(path)
            ) from e
        logger.debug("Wrote response file %s", path)
        return subst(invoke.body, {"value": f'"{path}"'})

    # -------------------------------------------------------------------------
    # Compile commands
    # -------------------------------------------------------------------------

    def from_c_file(self, path: str) -> RenderedCommand:
        return self.compile_command("c", path, "language-c")

    def from_cpp_file(self, path: str) -> RenderedCommand:
        return self.compile_command("cpp", path, "language-cpp")

    def from_asm_file(self, path: str) -> RenderedCommand:
        return self.compile_command("asm", path)

    def compile_command(
        self, role: str, source: str, language: str | None = None
    ) -> RenderedCommand:
        """Render the command compiling one source into one object.

        Args:
            role: 'c', 'cpp' or 'asm'.
            source: Source file path.
            language: Dialect option key ('language-c'/'language-cpp').

        Returns:
            The rendered command; out_path is the object file.
        """
        tool = self._tools[role]
        quote = tool.quote_path
        stem = os.path.splitext(os.path.basename(source))[0]
        name = self._unique_name(stem)

        out_path = self._out_file(name + (tool.output_suffix or DEFAULT_OBJECT_SUFFIX))
        ref_path = self._out_file(name + ".d")
        list_path = self._out_file(name + ".lst")

        commands: list[str] = []
        exclude: tuple[str, ...] = ()

        if language is not None and language in tool.languages:
            lang = tool.languages[language]
            lang_value = self.params.role_section(role).get(language, "default")
            try:
                commands.append(
                    render_value(
                        lang.descriptor, option_value(lang_value), unix_paths=self.unix_paths
                    )
                )
            except OptionTypeError as e:
                raise e.with_key(language) from None
            exclude = lang.exclude

        if tool.list_path is not None:
            commands.append(
                subst(
                    render_value(tool.list_path, ""),
                    {"listPath": self._path(list_path, quote=quote)},
                )
            )

        values = {
            "out": self._path(out_path, quote=quote),
            "in": self._path(source, quote=quote),
            "refPath": self._path(ref_path, quote=quote),
        }
        if "${in}" in tool.output:
            commands.extend(self._stable[role])
            commands.append(subst(tool.output, values))
        else:
            # The tool takes the source as its leading argument
            commands.insert(0, self._path(source))
            commands.extend(self._stable[role])
            del values["in"]
            commands.append(subst(tool.output, values))

        for flag in exclude:
            pattern = re.compile(r"(?<![\w-])" + re.escape(flag) + r"(?![\w-])")
            commands = [pattern.sub("", command) for command in commands]

        text = " ".join(c.strip() for c in commands if c.strip())
        command_line = self._invoke(tool.invoke, name, text)

        return RenderedCommand(
            tool=role,
            exe_path=self.tool_path(role),
            command_line=command_line,
            source_path=source,
            out_path=out_path,
        )

    # -------------------------------------------------------------------------
    # Link and post-link commands
    # -------------------------------------------------------------------------

    def link_command(self, objects: list[str]) -> RenderedCommand:
        """Render the command linking objects and libraries into the image.

        Raises:
            EntryObjectError: If the model wants the entry object first and
                none of the objects has the entry name.
        """
        tool = self._tools["linker"]
        section = self.params.role_section("linker")
        response_file = isinstance(tool.invoke, ResponseFile)
        sep = "\n" if response_file else " "
        obj_sep = tool.obj_path_sep if tool.obj_path_sep is not None else sep

        lib_flags = ""
        if tool.lib_flags is not None and "LIB_FLAGS" in section:
            try:
                lib_flags = render_value(tool.lib_flags, option_value(section["LIB_FLAGS"]))
            except OptionTypeError as e:
                raise e.with_key("LIB_FLAGS") from None

        out_path = self._out_file(
            self.out_name + (tool.output_suffix or DEFAULT_IMAGE_SUFFIX)
        )
        map_path = self._out_file(self.out_name + tool.map_suffix)
        stable = " ".join(self._stable["linker"])

        objects = list(objects)
        if tool.main_first:
            main_name = section.get("$mainFileName", "main")
            index = next(
                (
                    i
                    for i, obj in enumerate(objects)
                    if os.path.splitext(os.path.basename(obj))[0] == main_name
                ),
                -1,
            )
            if index == -1:
                raise EntryObjectError(main_name)
            objects.insert(0, objects.pop(index))

        link_map = ""
        if tool.link_map is not None:
            link_map = subst(
                render_value(tool.link_map, ""), {"mapPath": self._path(map_path)}
            )

        output = subst(
            tool.output,
            {
                "out": self._path(out_path),
                "in": obj_sep.join(self._path(obj) for obj in objects),
                "lib_flags": lib_flags,
            },
        )

        if tool.command_location == "start":
            parts = [stable, link_map, output]
        else:
            parts = [output, link_map, stable]
        text = sep.join(part for part in parts if part)

        command_line = self._invoke(tool.invoke, self.out_name, text)

        return RenderedCommand(
            tool="linker",
            exe_path=self.tool_path("linker"),
            command_line=command_line,
            out_path=out_path,
            map_path=map_path,
        )

    def output_commands(self, linker_output: str) -> list[RenderedCommand]:
        """Render the post-link output steps (hex/bin extraction).

        Returns an empty list when the model declares none.
        """
        tool = self._tools["linker"]
        base = self._out_file(self.out_name)
        commands: list[RenderedCommand] = []

        for step in tool.output_bin:
            out_path = base + step.output_suffix
            command = subst(
                step.command,
                {
                    "linkerOutput": self._path(linker_output),
                    "output": self._path(out_path),
                },
            )
            commands.append(
                RenderedCommand(
                    tool="output",
                    exe_path=self.tool_path_for(step.tool_path),
                    command_line=command,
                    source_path=linker_output,
                    out_path=out_path,
                    title=step.name,
                )
            )

        return commands

    def extra_link_commands(self, linker_output: str) -> list[RenderedCommand]:
        """Render extra commands run on the image right after linking."""
        commands: list[RenderedCommand] = []
        for step in self._tools["linker"].extra_commands:
            exe_path = self.tool_path_for(step.tool_path)
            commands.append(
                RenderedCommand(
                    tool="extra",
                    exe_path=exe_path,
                    command_line=subst(
                        step.command, {"linkerOutput": self._path(linker_output)}
                    ),
                    source_path=linker_output,
                    title=step.name or exe_path,
                )
            )
        return commands

    def tool_path_for(self, relative: str) -> str:
        """Executable path for a bin-dir relative tool path."""
        return self._with_bin_dir(relative.replace("${toolPrefix}", self.tool_prefix))

    # -------------------------------------------------------------------------
    # Link map report
    # -------------------------------------------------------------------------

    def map_matchers(self) -> list[re.Pattern[str]]:
        """Patterns selecting report lines from the link map."""
        try:
            return [re.compile(p, re.IGNORECASE) for p in self._tools["linker"].matcher]
        except re.error as e:
            raise ConfigurationError(f"invalid '$matcher' pattern: {e}") from e

    def ram_matcher(self) -> re.Pattern[str] | None:
        return self._compile_matcher("$ramMatcher", self._tools["linker"].ram_matcher)

    def rom_matcher(self) -> re.Pattern[str] | None:
        return self._compile_matcher("$romMatcher", self._tools["linker"].rom_matcher)

    @staticmethod
    def _compile_matcher(key: str, pattern: str | None) -> re.Pattern[str] | None:
        if pattern is None:
            return None
        try:
            return re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise ConfigurationError(f"invalid '{key}' pattern: {e}") from e
