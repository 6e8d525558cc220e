# SPDX-License-Identifier: MIT
"""Running external tools.

Tool paths may contain ``%NAME%`` references (the command generator
renders ``%TOOL_DIR%/bin/gcc``); ProcessRunner expands them from its
variable table before spawning. Output of stdout and stderr is merged,
and the exit code is returned rather than raised: what counts as failure
depends on the model's acceptable error level.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Exit code reported when a tool can't be started at all
LAUNCH_FAILED = 255

_ENV_REF = re.compile(r"%(\w+)%")


def expand_env_refs(text: str, variables: Mapping[str, str]) -> str:
    """Replace ``%NAME%`` references with values from ``variables``.

    Unknown names are left as they are.

    Example:
        >>> expand_env_refs("%TOOL_DIR%/bin/cc", {"TOOL_DIR": "/opt/gcc"})
        '/opt/gcc/bin/cc'
    """

    def replace_match(match: re.Match[str]) -> str:
        return variables.get(match.group(1), match.group(0))

    return _ENV_REF.sub(replace_match, text)


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessRunner:
    """Runs tools synchronously and captures their output.

    Args:
        variables: Values for ``%NAME%`` references in executable paths.
            They are also exported to the child environment.
        cwd: Working directory for every spawned process.
    """

    def __init__(
        self, variables: Mapping[str, str] | None = None, cwd: str | None = None
    ) -> None:
        self.variables = dict(variables or {})
        self.cwd = cwd

    def resolve(self, exe_path: str) -> str:
        """Expand ``%NAME%`` references in an executable path."""
        return expand_env_refs(exe_path, self.variables)

    def _env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.variables)
        return env

    def run(self, exe_path: str, command_line: str) -> ProcessResult:
        """Run an executable with a pre-rendered command line."""
        exe = self.resolve(exe_path)
        if sys.platform == "win32":
            args: str | list[str] = f'"{exe}" {command_line}'
        else:
            args = [exe, *shlex.split(command_line)]

        logger.debug("Running: %s %s", exe, command_line)
        try:
            result = subprocess.run(
                args,
                cwd=self.cwd,
                env=self._env(),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except (OSError, ValueError) as e:
            logger.debug("Failed to start %s: %s", exe, e)
            return ProcessResult(LAUNCH_FAILED, f"failed to start '{exe}': {e}")

        return ProcessResult(result.returncode, result.stdout or "")

    def run_shell(self, command: str) -> ProcessResult:
        """Run a command line through the system shell.

        Used for task hooks and post-link steps, which may rely on shell
        features such as output redirection.
        """
        command = self.resolve(command)
        logger.debug("Running (shell): %s", command)
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=self.cwd,
                env=self._env(),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            return ProcessResult(LAUNCH_FAILED, f"failed to run '{command}': {e}")

        return ProcessResult(result.returncode, result.stdout or "")
