# SPDX-License-Identifier: MIT
"""Build driver: sequences a whole build.

load model + params -> render stable fragments -> check tools -> run
before-build tasks -> render compile commands -> (fast mode) drop fresh
objects -> compile -> link -> extra commands -> map report -> post-link
outputs -> after-build tasks.

Configuration errors and compile/link failures end the build with a
non-zero status. Post-link failures, map report problems and dependency
cache problems are warnings only.
"""

from __future__ import annotations

import logging
import os
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from unibuild.build.pool import COMPILE_THRESHOLD, CompilePool, compute_threads
from unibuild.build.process import ProcessRunner
from unibuild.build.report import log_tool_output, parse_map_report, usage_bar
from unibuild.build.tasks import run_tasks, task_env
from unibuild.core.errors import (
    BuildError,
    ConfigurationError,
    ToolNotFoundError,
    UnibuildError,
)
from unibuild.core.generator import CommandGenerator, GeneratorOptions, RenderedCommand
from unibuild.core.model import CompilerModel, load_model
from unibuild.core.params import ParameterSet, load_params
from unibuild.deps.depfile import FreshnessChecker
from unibuild.deps.scanner import IncludeScanner
from unibuild.deps.store import DependencyStore, Table
from unibuild.deps.tracker import DependencyTracker, FileState

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "unibuild.log"

# Tool path prefix expanded by the process runner
TOOL_DIR_REF = "%TOOL_DIR%"

# Models whose compilers print progress noise on success
QUIET_MODELS = {"Keil_C51"}

SAMPLE_C_FILE = "c_file.c"
SAMPLE_CPP_FILE = "cpp_file.cpp"
SAMPLE_ASM_FILE = "asm_file.s"
SAMPLE_OBJECTS = ["main.o", "obj1.o", "obj2.o"]


class BuildMode(Enum):
    NORMAL = "normal"
    FAST = "fast"
    DEBUG = "debug"
    MULTHREAD = "multhread"


def parse_modes(text: str | None) -> set[BuildMode]:
    """Parse a dash-joined mode list such as ``fast-multhread``.

    NORMAL is always included. Unknown names are warned about and ignored.
    """
    modes = {BuildMode.NORMAL}
    if not text:
        return modes
    for name in text.split("-"):
        name = name.strip().lower()
        if not name:
            continue
        try:
            modes.add(BuildMode(name))
        except ValueError:
            logger.warning("Invalid mode option '%s', ignored", name)
    return modes


@dataclass
class BuildOptions:
    """Everything a build needs besides the two JSON documents' content.

    Attributes:
        tool_dir: Toolchain directory holding the tool executables.
        model_path: Compiler model JSON file.
        params_path: Project parameters JSON file.
        modes: Build modes.
    """

    tool_dir: str
    model_path: Path
    params_path: Path
    modes: set[BuildMode] = field(default_factory=lambda: {BuildMode.NORMAL})

    def has_mode(self, mode: BuildMode) -> bool:
        return mode in self.modes


def _elapsed(start: float) -> str:
    seconds = int(time.monotonic() - start)
    return f"{seconds // 3600}:{seconds // 60 % 60}:{seconds % 60}"


class Builder:
    """Runs a build for one project.

    Example:
        builder = Builder(BuildOptions("/opt/gcc", Path("gcc.model.json"),
                                       Path("params.json")))
        exit_code = builder.build()
    """

    def __init__(self, options: BuildOptions) -> None:
        """Load the compiler model and project parameters.

        Raises:
            ConfigurationError: If either document is invalid.
        """
        self.options = options
        self.model: CompilerModel = load_model(options.model_path)
        self.params: ParameterSet = load_params(
            options.params_path, model_defines=self.model.defines
        )
        self.err_level = self.model.err_level
        self.runner = ProcessRunner({"TOOL_DIR": options.tool_dir}, cwd=self.params.root_dir)
        self.show_normal_output = self.model.id not in QUIET_MODELS

    def create_generator(self, *, test_mode: bool = False) -> CommandGenerator:
        return CommandGenerator(
            self.model,
            self.params,
            GeneratorOptions(
                out_dir=self.params.out_dir,
                bin_dir=TOOL_DIR_REF,
                cwd=self.params.root_dir,
                test_mode=test_mode,
            ),
        )

    # -------------------------------------------------------------------------
    # Print-commands mode
    # -------------------------------------------------------------------------

    def print_commands(self) -> list[str]:
        """Render sample command lines without running anything.

        Response files are never written in this mode.
        """
        gen = self.create_generator(test_mode=True)
        lines: list[str] = []

        def add(title: str, command: RenderedCommand) -> None:
            lines.append(f"{title} command line:")
            lines.append(f"{command.exe_path} {command.command_line}")
            lines.append("")

        add("C", gen.from_c_file(SAMPLE_C_FILE))
        add("CPP", gen.from_cpp_file(SAMPLE_CPP_FILE))
        add("ASM", gen.from_asm_file(SAMPLE_ASM_FILE))
        link = gen.link_command(SAMPLE_OBJECTS)
        add("Linker", link)

        outputs = gen.output_commands(link.out_path or "")
        if outputs:
            lines.append("Output file command line:")
            for command in outputs:
                lines.append(f"\t{command.title}:")
                lines.append(f"\t\t{command.exe_path} {command.command_line}")
            lines.append("")

        return lines

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build(self) -> int:
        """Run the build.

        Returns:
            0 on success, 1 on failure.
        """
        start = time.monotonic()
        store: DependencyStore | None = None

        try:
            try:
                os.makedirs(self.params.out_dir, exist_ok=True)
            except OSError as e:
                raise BuildError(f"cannot create output directory: {e}") from e
            gen = self.create_generator()
            self._check_tools(gen)

            env = task_env(gen, self.options.tool_dir, self.params.out_dir)
            if not run_tasks(
                "Run Tasks Before Build", self.params.before_build_tasks, env, self.runner
            ):
                raise BuildError("run tasks failed, build stopped")

            logger.info("TOOL: %s", gen.model_name)
            logger.info(
                "-------------------- start building at %s --------------------",
                datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            )

            commands, linker_files = self._compile_commands(gen)

            store = self._open_store()
            tracker = self._scan_dependencies(store)

            if self.options.has_mode(BuildMode.FAST):
                logger.info(">> comparing differences ...")
                commands = self._select_stale(gen, commands, tracker)
                if tracker is not None:
                    tracker.save(Table.STAGING)

            self._log_statistics(commands)

            logger.info("-------------------- start compilation ... --------------------")
            self._compile(commands)

            logger.info("-------------------- start linking ... --------------------")
            link = self._link(gen, linker_files)
            self._run_extra_commands(gen, link)
            self._report_memory(gen, link)
            self._run_outputs(gen, link)

            if tracker is not None:
                if self.options.has_mode(BuildMode.FAST):
                    tracker.promote()
                else:
                    tracker.save(Table.CONFIRMED)

        except UnibuildError as e:
            logger.error("%s", e.message)
            logger.error("build failed, elapsed time %s", _elapsed(start))
            self._append_log(e.message, traceback.format_exc())
            return 1
        finally:
            if store is not None:
                store.close()

        logger.info("build successfully, elapsed time %s", _elapsed(start))
        self._append_log("[done]", "\tbuild successfully")

        run_tasks("Run Tasks After Build", self.params.after_build_tasks, env, self.runner)
        return 0

    def _check_tools(self, gen: CommandGenerator) -> None:
        tool_dir = self.options.tool_dir
        if not os.path.isdir(tool_dir):
            raise ToolNotFoundError("toolchain directory", tool_dir)

        for title, role in (
            ("C/C++ Compiler", "c"),
            ("ASM Compiler", "asm"),
            ("Linker", "linker"),
        ):
            path = self.runner.resolve(gen.tool_path(role))
            if not os.path.isfile(path):
                raise ToolNotFoundError(title, path)

    def _compile_commands(
        self, gen: CommandGenerator
    ) -> tuple[list[RenderedCommand], list[str]]:
        sources = self.params.sources
        commands: list[RenderedCommand] = []
        commands.extend(gen.from_c_file(path) for path in sources.c)
        commands.extend(gen.from_asm_file(path) for path in sources.asm)
        commands.extend(gen.from_cpp_file(path) for path in sources.cpp)

        linker_files = [c.out_path for c in commands if c.out_path] + sources.libs
        if not linker_files:
            raise ConfigurationError("no source files found, please add some source files")
        return commands, linker_files

    # -------------------------------------------------------------------------
    # Dependency tracking
    # -------------------------------------------------------------------------

    def _open_store(self) -> DependencyStore | None:
        try:
            return DependencyStore.open(self.params.dump_path)
        except (UnibuildError, OSError) as e:
            logger.warning("Dependency cache unavailable: %s", e)
            return None

    def _scan_dependencies(self, store: DependencyStore | None) -> DependencyTracker | None:
        """Classify every source so its records are current after the build."""
        if store is None:
            return None
        tracker = DependencyTracker(IncludeScanner(self.params.include_dirs), store)
        try:
            tracker.load()
            for source in self.params.sources.compilable():
                tracker.classify(source)
        except OSError as e:
            logger.warning("Dependency scan failed: %s", e)
            return None
        return tracker

    def _select_stale(
        self,
        gen: CommandGenerator,
        commands: list[RenderedCommand],
        tracker: DependencyTracker | None,
    ) -> list[RenderedCommand]:
        checker = FreshnessChecker(gen.model_id, self.params.root_dir)
        try:
            stale = []
            for command in commands:
                source = command.source_path or ""
                if tracker is not None and tracker.classify(source) is not FileState.STABLE:
                    stale.append(command)
                elif checker.needs_rebuild(source, command.out_path or ""):
                    stale.append(command)
            return stale
        except OSError as e:
            logger.warning("%s", e)
            logger.warning("Check difference failed, use normal build")
            return commands

    # -------------------------------------------------------------------------
    # Compile and link
    # -------------------------------------------------------------------------

    def _log_statistics(self, commands: list[RenderedCommand]) -> None:
        counts = {"c": 0, "cpp": 0, "asm": 0}
        for command in commands:
            counts[command.tool] += 1
        libs = len(self.params.sources.libs)
        logger.info(">> file statistics:")
        logger.info(
            "   C Files: %d, Cpp Files: %d, Asm Files: %d, Lib Files: %d, Totals: %d",
            counts["c"],
            counts["cpp"],
            counts["asm"],
            libs,
            sum(counts.values()),
        )

    def _compile_one(self, command: RenderedCommand) -> None:
        tag = "assembling" if command.tool == "asm" else "compiling"
        logger.info(">> %s '%s'", tag, os.path.basename(command.source_path or ""))

        result = self.runner.run(command.exe_path, command.command_line)
        if self.show_normal_output or result.exit_code != 0:
            log_tool_output(result.output)

        if result.exit_code > self.err_level:
            raise BuildError(
                f"compilation failed at : \"{command.source_path}\", "
                f"exit code: {result.exit_code}",
                path=command.source_path,
                exit_code=result.exit_code,
            )

    def _compile(self, commands: list[RenderedCommand]) -> list[str]:
        threads = 1
        if self.options.has_mode(BuildMode.MULTHREAD) and len(commands) >= COMPILE_THRESHOLD:
            threads = compute_threads(self.params.thread_num, len(commands))
            logger.info("Use Multi-Thread Mode: %d threads", threads)
        return CompilePool(self._compile_one, threads).run(commands)

    def _link(self, gen: CommandGenerator, linker_files: list[str]) -> RenderedCommand:
        link = gen.link_command(linker_files)
        for lib in self.params.sources.libs:
            logger.info(">> linking '%s'", os.path.basename(lib))

        result = self.runner.run(link.exe_path, link.command_line)
        if result.output.strip():
            logger.info("%s", result.output.rstrip())
        if result.exit_code > self.err_level:
            raise BuildError(
                f"link failed, exit code: {result.exit_code}",
                path=link.out_path,
                exit_code=result.exit_code,
            )
        return link

    # -------------------------------------------------------------------------
    # After linking
    # -------------------------------------------------------------------------

    def _run_extra_commands(self, gen: CommandGenerator, link: RenderedCommand) -> None:
        for command in gen.extra_link_commands(link.out_path or ""):
            result = self.runner.run(command.exe_path, command.command_line)
            if result.ok:
                logger.info(">> %s:", command.title)
                logger.info("%s", result.output.rstrip())

    def _report_memory(self, gen: CommandGenerator, link: RenderedCommand) -> None:
        if link.map_path is None or not os.path.isfile(link.map_path):
            return
        try:
            with open(link.map_path, encoding="utf-8", errors="replace") as f:
                report = parse_map_report(
                    f, gen.map_matchers(), gen.ram_matcher(), gen.rom_matcher()
                )
        except (OSError, ValueError, ConfigurationError) as e:
            logger.warning("can't read information from '.map' file: %s", e)
            return

        for line in report.lines:
            logger.info("%s", line)

        for label, used, total in (
            ("RAM  : ", report.ram, self.params.ram),
            ("FLASH: ", report.rom, self.params.rom),
        ):
            if used is not None and total:
                level, text = usage_bar(label, used, total)
                logger.log(level, "%s", text)

    def _run_outputs(self, gen: CommandGenerator, link: RenderedCommand) -> None:
        commands = gen.output_commands(link.out_path or "")
        if not commands:
            return

        logger.info("-------------------- start outputting file ... --------------------")
        for command in commands:
            exe = self.runner.resolve(command.exe_path)
            if not os.path.isfile(exe):
                logger.warning(">> %s\t\t[failed]", command.title)
                logger.warning("not found %s: \"%s\"", os.path.basename(exe), exe)
                continue

            # Through the shell: some steps redirect output with '>'
            result = self.runner.run_shell(f'"{exe}" {command.command_line}')
            if result.exit_code > self.err_level:
                logger.warning(">> %s\t\t[failed]", command.title)
                if result.output.strip():
                    logger.warning("%s", result.output.rstrip())
                logger.warning("execute command failed, exit code: %d", result.exit_code)
                continue

            logger.info(">> %s\t\t[done]", command.title)
            if result.output.strip():
                logger.info("%s", result.output.rstrip())
            logger.info("file path: \"%s\"", command.out_path)

    def _append_log(self, label: str, message: str) -> None:
        path = Path(self.params.dump_path) / LOG_FILE_NAME
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(f"[{stamp}]\t{label}\n{message}\n\n")
        except OSError as e:
            logger.error("log dump failed: %s", e)
