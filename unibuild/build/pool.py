# SPDX-License-Identifier: MIT
"""Bounded worker pool for compile jobs.

Only per-file compile/assemble steps run in parallel. The first job that
fails stops the pool from starting new jobs; jobs already running are
allowed to finish, then the first error is raised.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor

from unibuild.core.errors import BuildError
from unibuild.core.generator import RenderedCommand

logger = logging.getLogger(__name__)

# Fewer pending commands than this are compiled sequentially
COMPILE_THRESHOLD = 12


def compute_threads(hint: int, count: int) -> int:
    """Pick a worker count from a user hint and the number of jobs.

    Tries the hint, then half of it, then a quarter, taking the first that
    still gives each worker at least two jobs.

    Args:
        hint: Requested thread count (below 2 means "no preference").
        count: Number of pending jobs.
    """
    if hint < 2:
        return 4

    max_threads = hint
    expected = hint // 2 if hint >= 4 else 4
    min_threads = hint // 4 if hint >= 8 else 2

    for threads in (max_threads, expected, min_threads):
        if count // threads >= 2:
            return threads
    return 8


CompileFunc = Callable[[RenderedCommand], None]


class CompilePool:
    """Runs compile commands and records which sources completed.

    Args:
        compile_one: Runs one command; raises BuildError on failure.
        threads: Worker count; 1 or less compiles sequentially.
    """

    def __init__(self, compile_one: CompileFunc, threads: int = 1) -> None:
        self.compile_one = compile_one
        self.threads = threads
        self.completed: list[str] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._error: BuildError | None = None

    def _run_job(self, command: RenderedCommand) -> None:
        if self._stop.is_set():
            return
        try:
            self.compile_one(command)
        except BuildError as e:
            with self._lock:
                if self._error is None:
                    self._error = e
            self._stop.set()
            return
        with self._lock:
            self.completed.append(command.source_path or "")

    def run(self, commands: Sequence[RenderedCommand]) -> list[str]:
        """Compile every command.

        Returns:
            Source paths of the commands that completed, in completion order.

        Raises:
            BuildError: The first failure reported by any job.
        """
        if self.threads <= 1:
            for command in commands:
                self._run_job(command)
                if self._stop.is_set():
                    break
        else:
            with ThreadPoolExecutor(max_workers=self.threads) as executor:
                futures = [executor.submit(self._run_job, c) for c in commands]
            for future in futures:
                # Re-raise anything that isn't a BuildError
                future.result()

        if self._error is not None:
            raise self._error
        return list(self.completed)
