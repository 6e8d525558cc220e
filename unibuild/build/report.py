# SPDX-License-Identifier: MIT
"""Tool output and link report handling."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_WARNING = re.compile(r"\s(warning:?)\s", re.IGNORECASE)
_ERROR = re.compile(r"\s(error:?)\s", re.IGNORECASE)

BAR_WIDTH = 10


def classify_line(line: str) -> int:
    """Logging level for one line of compiler output.

    Notes and untagged lines are informational.
    """
    if _WARNING.search(line):
        return logging.WARNING
    if _ERROR.search(line):
        return logging.ERROR
    return logging.INFO


def log_tool_output(output: str, log: logging.Logger = logger) -> None:
    """Log compiler output line by line at the level each line implies."""
    for line in output.strip().splitlines():
        log.log(classify_line(line), "%s", line)


@dataclass
class MapReport:
    """What was picked out of a linker map file.

    Attributes:
        lines: Lines matched by the report patterns, stripped.
        ram: Used RAM bytes, if the RAM pattern matched.
        rom: Used ROM bytes, if the ROM pattern matched.
    """

    lines: list[str] = field(default_factory=list)
    ram: int | None = None
    rom: int | None = None


def parse_map_report(
    lines: Iterable[str],
    matchers: list[re.Pattern[str]],
    ram_matcher: re.Pattern[str] | None = None,
    rom_matcher: re.Pattern[str] | None = None,
) -> MapReport:
    """Select report lines and extract memory usage from a map file.

    Only lines matched by one of ``matchers`` are considered. The first
    capture group of the first line matching ``ram_matcher`` (resp.
    ``rom_matcher``) is the used size in bytes.

    Raises:
        ValueError: If a size capture isn't a number.
    """
    report = MapReport()
    for line in lines:
        if not any(m.search(line) for m in matchers):
            continue
        report.lines.append(line.strip())

        if report.ram is None and ram_matcher is not None:
            match = ram_matcher.search(line)
            if match and match.groups():
                report.ram = int(match.group(1))

        if report.rom is None and rom_matcher is not None:
            match = rom_matcher.search(line)
            if match and match.groups():
                report.rom = int(match.group(1))

    return report


def usage_bar(label: str, used: int, total: int) -> tuple[int, str]:
    """Render a memory usage bar.

    Returns:
        The logging level (ERROR when full, WARNING from 95%) and the text.

    Example:
        >>> usage_bar("RAM  : ", 512, 1024)[1]
        'RAM  : [=====     ] 50.0% \\t0.5KB/1.0KB'
    """
    progress = used / total
    filled = min(int(progress * BAR_WIDTH + 0.45), BAR_WIDTH)
    bar = "=" * filled + " " * (BAR_WIDTH - filled)
    text = (
        f"{label}[{bar}] {progress * 100:.1f}% "
        f"\t{used / 1024:.1f}KB/{total / 1024:.1f}KB"
    )

    if progress >= 1.0:
        level = logging.ERROR
    elif progress >= 0.95:
        level = logging.WARNING
    else:
        level = logging.INFO
    return level, text
