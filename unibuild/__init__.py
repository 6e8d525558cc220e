# SPDX-License-Identifier: MIT
"""
Unibuild: a model-driven builder for embedded toolchains.

A JSON compiler model describes how a toolchain's compiler, assembler and
linker take their options; a JSON parameter set describes the project.
Unibuild renders the command lines, decides which sources are stale from
their include graph, and runs the tools.
"""

from __future__ import annotations

__version__ = "0.3.0"

# Re-export commonly used classes for convenient imports
from unibuild.build.driver import Builder, BuildOptions  # noqa: E402
from unibuild.core.generator import CommandGenerator, GeneratorOptions  # noqa: E402
from unibuild.core.model import CompilerModel, load_model  # noqa: E402
from unibuild.core.params import ParameterSet, load_params  # noqa: E402

__all__ = [
    "__version__",
    "Builder",
    "BuildOptions",
    "CommandGenerator",
    "CompilerModel",
    "GeneratorOptions",
    "ParameterSet",
    "load_model",
    "load_params",
]
