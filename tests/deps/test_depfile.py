# SPDX-License-Identifier: MIT
"""Tests for unibuild.deps.depfile."""

import os
import time
from pathlib import Path

import pytest

from unibuild.deps.depfile import (
    FreshnessChecker,
    parse_armcc_depfile,
    parse_depfile,
    parse_gnu_depfile,
)


def touch(path: Path, age: float = 0.0) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.write_text("")
    stamp = time.time() - age
    os.utime(path, (stamp, stamp))
    return path


class TestGnuDepfile:
    def test_continuation_lines(self):
        lines = [
            "build/main.o: src/main.c inc/config.h \\",
            "  inc/board.h",
        ]
        assert parse_gnu_depfile(lines, "/prj") == [
            "/prj/src/main.c",
            "/prj/inc/config.h",
            "/prj/inc/board.h",
        ]

    def test_escaped_spaces(self):
        lines = ["main.o: src/main.c \\", "  inc/my\\ header.h"]
        assert parse_gnu_depfile(lines, "/prj") == [
            "/prj/src/main.c",
            "/prj/inc/my header.h",
        ]

    def test_absolute_paths_kept(self):
        lines = ["main.o: /usr/include/stdint.h src/main.c"]
        assert parse_gnu_depfile(lines, "/prj") == [
            "/usr/include/stdint.h",
            "/prj/src/main.c",
        ]

    def test_duplicates_once(self):
        lines = ["main.o: a.h \\", " a.h b.h"]
        assert parse_gnu_depfile(lines, "/prj") == ["/prj/a.h", "/prj/b.h"]

    def test_first_dependency_kept(self):
        lines = ["main.o: /prj/inc/a.h src/main.c"]
        assert parse_gnu_depfile(lines, "/prj") == ["/prj/inc/a.h", "/prj/src/main.c"]

    def test_drive_letter_target(self):
        lines = ["C:\\out\\main.o: C:\\prj\\a.h \\", "  C:\\prj\\b.h"]
        assert parse_gnu_depfile(lines, "/prj") == ["C:\\prj\\a.h", "C:\\prj\\b.h"]

    def test_target_only_first_line(self):
        lines = ["main.o: \\", "  src/main.c"]
        assert parse_gnu_depfile(lines, "/prj") == ["/prj/src/main.c"]


class TestArmccDepfile:
    def test_skips_leading_line(self):
        lines = [
            "main.o: src/main.c",
            "main.o: inc/config.h",
            "main.o: C:\\Keil\\ARM\\INC\\stdint.h",
        ]
        assert parse_armcc_depfile(lines, "/prj") == [
            "/prj/inc/config.h",
            "C:\\Keil\\ARM\\INC\\stdint.h",
        ]

    def test_custom_start(self):
        lines = ["main.o: a.h", "main.o: main.c", "main.o: b.h"]
        assert parse_armcc_depfile(lines, "/prj", start=2) == ["/prj/b.h"]

    def test_ignores_lines_without_separator(self):
        assert parse_armcc_depfile(["x", "garbage", "main.o: a.h"], "/prj") == ["/prj/a.h"]


class TestParseDepfile:
    def test_unknown_model(self, tmp_path: Path):
        path = tmp_path / "main.d"
        path.write_text("main.o: main.c\n")
        assert parse_depfile(path, "Keil_C51", "/prj") is None

    def test_iar_skips_two_lines(self, tmp_path: Path):
        path = tmp_path / "main.d"
        path.write_text("main.o: main.c\nmain.o: main.c\nmain.o: a.h\n")
        assert parse_depfile(path, "IAR_STM8", "/prj") == ["/prj/a.h"]

    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(OSError):
            parse_depfile(tmp_path / "none.d", "GCC", "/prj")


class TestFreshnessChecker:
    @pytest.fixture
    def layout(self, tmp_path: Path) -> dict[str, Path]:
        return {
            "source": touch(tmp_path / "src" / "main.c", age=300),
            "header": touch(tmp_path / "inc" / "config.h", age=300),
            "obj": touch(tmp_path / "build" / "main.o", age=100),
            "root": tmp_path,
        }

    def write_depfile(self, layout: dict[str, Path], *deps: str) -> None:
        depfile = layout["obj"].with_suffix(".d")
        depfile.write_text("build/main.o: " + " ".join(deps) + "\n")

    def test_supported(self):
        assert FreshnessChecker("GCC", "/prj").supported
        assert not FreshnessChecker("Keil_C51", "/prj").supported

    def test_missing_object(self, layout):
        layout["obj"].unlink()
        checker = FreshnessChecker("GCC", str(layout["root"]))
        assert checker.needs_rebuild(str(layout["source"]), str(layout["obj"]))

    def test_newer_source(self, layout):
        touch(layout["source"])
        checker = FreshnessChecker("Keil_C51", str(layout["root"]))
        assert checker.needs_rebuild(str(layout["source"]), str(layout["obj"]))

    def test_unsupported_model_compares_source_only(self, layout):
        checker = FreshnessChecker("Keil_C51", str(layout["root"]))
        assert not checker.needs_rebuild(str(layout["source"]), str(layout["obj"]))

    def test_missing_depfile(self, layout):
        checker = FreshnessChecker("GCC", str(layout["root"]))
        assert checker.needs_rebuild(str(layout["source"]), str(layout["obj"]))

    def test_up_to_date(self, layout):
        self.write_depfile(layout, "src/main.c", "inc/config.h")
        checker = FreshnessChecker("GCC", str(layout["root"]))
        assert not checker.needs_rebuild(str(layout["source"]), str(layout["obj"]))

    def test_newer_header(self, layout):
        self.write_depfile(layout, "src/main.c", "inc/config.h")
        touch(layout["header"])
        checker = FreshnessChecker("GCC", str(layout["root"]))
        assert checker.needs_rebuild(str(layout["source"]), str(layout["obj"]))

    def test_missing_header(self, layout):
        self.write_depfile(layout, "src/main.c", "inc/removed.h")
        checker = FreshnessChecker("GCC", str(layout["root"]))
        assert checker.needs_rebuild(str(layout["source"]), str(layout["obj"]))

    def test_newer_header_listed_first(self, layout):
        self.write_depfile(layout, "inc/config.h", "src/main.c")
        touch(layout["header"])
        checker = FreshnessChecker("GCC", str(layout["root"]))
        assert checker.needs_rebuild(str(layout["source"]), str(layout["obj"]))
