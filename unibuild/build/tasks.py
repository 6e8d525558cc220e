# SPDX-License-Identifier: MIT
"""Pre- and post-build task hooks.

Tasks are declared in the project parameters under
``options.beforeBuildTasks`` / ``options.afterBuildTasks``:

    {
        "name": "generate version header",
        "command": "python gen_version.py ${OutDir}",
        "disable": false,
        "stopBuildAfterFailed": true,
        "abortAfterFailed": false
    }

Commands run through the shell in the project root. ``${TargetName}``,
``${ExeDir}``, ``${ToolDir}``, ``${OutDir}``, ``${toolPrefix}`` and
``${CompileToolDir}`` are substituted first (names match
case-insensitively).

On failure a task can stop the whole build (``stopBuildAfterFailed``) or
just skip the remaining tasks (``abortAfterFailed``); by default the
failure is reported and the next task runs.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from unibuild.build.process import ProcessRunner
from unibuild.core.errors import ConfigurationError
from unibuild.core.generator import CommandGenerator
from unibuild.core.subst import subst_ignore_case

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    name: str
    command: str
    stop_build_after_failed: bool = False
    abort_after_failed: bool = False

    @classmethod
    def from_dict(cls, raw: Any) -> Task:
        if not isinstance(raw, dict):
            raise ConfigurationError("task entries must be objects")
        if not isinstance(raw.get("name"), str):
            raise ConfigurationError("task name can't be null")
        if not isinstance(raw.get("command"), str):
            raise ConfigurationError(f"task '{raw['name']}': command line can't be null")
        return cls(
            name=raw["name"],
            command=raw["command"],
            stop_build_after_failed=raw.get("stopBuildAfterFailed") is True,
            abort_after_failed=raw.get("abortAfterFailed") is True,
        )


def is_disabled(raw: Any) -> bool:
    return isinstance(raw, dict) and raw.get("disable") is True


def task_env(generator: CommandGenerator, tool_dir: str, out_dir: str) -> dict[str, str]:
    """Substitution values available to task commands."""
    cc_path = tool_dir + os.sep + generator.original_tool_path("c")
    return {
        "TargetName": generator.out_name,
        "ExeDir": os.path.dirname(os.path.abspath(sys.argv[0])),
        "ToolDir": tool_dir,
        "OutDir": out_dir,
        "toolPrefix": generator.tool_prefix,
        "CompileToolDir": os.path.dirname(cc_path),
    }


def run_tasks(
    label: str,
    entries: list[Any],
    env: Mapping[str, str],
    runner: ProcessRunner,
) -> bool:
    """Run a list of task hooks.

    Args:
        label: Banner logged before the first task.
        entries: Raw task objects from the parameters.
        env: Values for ``${Name}`` placeholders in commands.
        runner: Runs the commands.

    Returns:
        False if a failed task asked to stop the build, True otherwise.
        A malformed entry stops the remaining tasks with a warning but
        doesn't stop the build.
    """
    if not entries:
        return True

    logger.info("%s", label)

    for raw in entries:
        if is_disabled(raw):
            continue

        try:
            task = Task.from_dict(raw)
        except ConfigurationError as e:
            logger.warning("Can't parse task information (%s), remaining tasks skipped", e)
            break

        command = subst_ignore_case(task.command, env)
        result = runner.run_shell(command)

        if result.ok:
            logger.info(">> %s\t\t[done]", task.name)
            if result.output.strip():
                logger.info("%s", result.output.rstrip())
            continue

        logger.error(">> %s\t\t[failed]", task.name)
        logger.error("%s", command)
        if result.output.strip():
            logger.error("%s", result.output.rstrip())

        if task.stop_build_after_failed:
            return False
        if task.abort_after_failed:
            break

    return True
