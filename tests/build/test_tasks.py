# SPDX-License-Identifier: MIT
"""Tests for unibuild.build.tasks."""

import logging
import os
from unittest.mock import MagicMock

import pytest

from unibuild.build.process import ProcessResult
from unibuild.build.tasks import Task, is_disabled, run_tasks, task_env
from unibuild.core.errors import ConfigurationError


def make_runner(*exit_codes: int) -> MagicMock:
    runner = MagicMock()
    runner.run_shell.side_effect = [ProcessResult(code, f"exit {code}") for code in exit_codes]
    return runner


def commands_run(runner: MagicMock) -> list[str]:
    return [call.args[0] for call in runner.run_shell.call_args_list]


class TestTask:
    def test_from_dict(self):
        task = Task.from_dict(
            {"name": "gen", "command": "make gen", "stopBuildAfterFailed": True}
        )
        assert task == Task("gen", "make gen", stop_build_after_failed=True)

    def test_missing_name(self):
        with pytest.raises(ConfigurationError, match="name"):
            Task.from_dict({"command": "x"})

    def test_missing_command(self):
        with pytest.raises(ConfigurationError, match="command"):
            Task.from_dict({"name": "x"})

    def test_not_an_object(self):
        with pytest.raises(ConfigurationError):
            Task.from_dict("echo hi")

    def test_is_disabled(self):
        assert is_disabled({"disable": True})
        assert not is_disabled({"disable": "yes"})
        assert not is_disabled({})


class TestTaskEnv:
    def test_values(self):
        generator = MagicMock()
        generator.out_name = "firmware"
        generator.tool_prefix = "arm-none-eabi-"
        generator.original_tool_path.return_value = "bin/arm-none-eabi-gcc"

        env = task_env(generator, "/opt/gcc", "/prj/build")

        assert env["TargetName"] == "firmware"
        assert env["ToolDir"] == "/opt/gcc"
        assert env["OutDir"] == "/prj/build"
        assert env["toolPrefix"] == "arm-none-eabi-"
        assert env["CompileToolDir"] == os.path.dirname("/opt/gcc" + os.sep + "bin/arm-none-eabi-gcc")
        generator.original_tool_path.assert_called_once_with("c")


class TestRunTasks:
    def test_empty(self):
        runner = make_runner()
        assert run_tasks("before", [], {}, runner)
        runner.run_shell.assert_not_called()

    def test_substitutes_and_skips_disabled(self):
        runner = make_runner(0, 0)
        entries = [
            {"name": "a", "command": "copy ${targetname}.hex ${OutDir}"},
            {"name": "b", "command": "never", "disable": True},
            {"name": "c", "command": "echo done"},
        ]
        assert run_tasks("before", entries, {"TargetName": "fw", "OutDir": "out"}, runner)
        assert commands_run(runner) == ["copy fw.hex out", "echo done"]

    def test_failure_continues_by_default(self, caplog):
        runner = make_runner(1, 0)
        entries = [{"name": "a", "command": "x"}, {"name": "b", "command": "y"}]
        with caplog.at_level(logging.INFO):
            assert run_tasks("after", entries, {}, runner)
        assert commands_run(runner) == ["x", "y"]
        assert "[failed]" in caplog.text
        assert "[done]" in caplog.text

    def test_stop_build(self):
        runner = make_runner(1)
        entries = [
            {"name": "a", "command": "x", "stopBuildAfterFailed": True},
            {"name": "b", "command": "y"},
        ]
        assert not run_tasks("before", entries, {}, runner)
        assert commands_run(runner) == ["x"]

    def test_abort_skips_rest(self):
        runner = make_runner(1)
        entries = [
            {"name": "a", "command": "x", "abortAfterFailed": True},
            {"name": "b", "command": "y"},
        ]
        assert run_tasks("before", entries, {}, runner)
        assert commands_run(runner) == ["x"]

    def test_malformed_entry_skips_rest(self, caplog):
        runner = make_runner(0)
        entries = [{"name": "a", "command": "x"}, {"name": "b"}, {"name": "c", "command": "z"}]
        assert run_tasks("before", entries, {}, runner)
        assert commands_run(runner) == ["x"]
        assert "remaining tasks skipped" in caplog.text
