# SPDX-License-Identifier: MIT
"""Tests for unibuild.build.process."""

import subprocess
import sys
from unittest.mock import patch

import pytest

from unibuild.build.process import (
    LAUNCH_FAILED,
    ProcessResult,
    ProcessRunner,
    expand_env_refs,
)


class TestExpandEnvRefs:
    def test_known(self):
        assert expand_env_refs("%TOOL_DIR%/bin/cc", {"TOOL_DIR": "/opt/gcc"}) == "/opt/gcc/bin/cc"

    def test_unknown_left_alone(self):
        assert expand_env_refs("%NOPE%/cc", {}) == "%NOPE%/cc"

    def test_no_refs(self):
        assert expand_env_refs("100% done", {"done": "x"}) == "100% done"


class TestProcessResult:
    def test_ok(self):
        assert ProcessResult(0, "").ok
        assert not ProcessResult(1, "").ok


class TestProcessRunner:
    def test_resolve(self):
        runner = ProcessRunner({"TOOL_DIR": "/opt/keil"})
        assert runner.resolve("%TOOL_DIR%/ARM/BIN/armcc") == "/opt/keil/ARM/BIN/armcc"

    @pytest.mark.skipif(sys.platform == "win32", reason="argument list form is POSIX only")
    def test_run_passes_arguments(self):
        completed = subprocess.CompletedProcess([], 3, stdout="main.c: warning: unused\n")
        runner = ProcessRunner({"TOOL_DIR": "/opt/gcc"}, cwd="/prj")

        with patch("unibuild.build.process.subprocess.run", return_value=completed) as run:
            result = runner.run("%TOOL_DIR%/bin/gcc", '-c "my file.c" -o main.o')

        assert result == ProcessResult(3, "main.c: warning: unused\n")
        args, kwargs = run.call_args
        assert args[0] == ["/opt/gcc/bin/gcc", "-c", "my file.c", "-o", "main.o"]
        assert kwargs["cwd"] == "/prj"
        assert kwargs["stderr"] == subprocess.STDOUT
        assert kwargs["env"]["TOOL_DIR"] == "/opt/gcc"

    def test_launch_failure(self, tmp_path):
        runner = ProcessRunner()
        result = runner.run(str(tmp_path / "no-such-compiler"), "-c main.c")
        assert result.exit_code == LAUNCH_FAILED
        assert "no-such-compiler" in result.output

    def test_launch_failure_from_oserror(self):
        with patch("unibuild.build.process.subprocess.run", side_effect=OSError("denied")):
            result = ProcessRunner().run("cc", "-c main.c")
        assert result.exit_code == LAUNCH_FAILED
        assert "denied" in result.output

    @pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell")
    def test_run_shell(self, tmp_path):
        runner = ProcessRunner({"GREETING": "hello"}, cwd=str(tmp_path))
        result = runner.run_shell("echo %GREETING% && echo oops 1>&2 && exit 2")
        assert result.exit_code == 2
        assert "hello" in result.output
        assert "oops" in result.output
