"""Device program assembly and build.

A device program is a single compilation unit made of a macro-definition
header followed by source fragments contributed by the solver, the
numerical scheme, the equation and the auxiliary solvers.  Fragments are
Python source operating on torch tensors.  Top-level functions marked
with the ``@kernel`` decorator are launchable kernels; every other
function is a helper visible to the fragments only.

Assembly is pure: the same configuration produces byte-identical source,
so build failures are reproducible offline from :attr:`Program.source`.
"""

from __future__ import annotations

import ast
import hashlib
import inspect
import logging
import math
import traceback
from collections.abc import Sequence
from typing import Any

import torch

from hydrogpu.constants import NUM_GHOST
from hydrogpu.device.queue import Kernel
from hydrogpu.errors import BuildError
from hydrogpu.grid import GridDescriptor

logger = logging.getLogger(__name__)

KERNEL_MARK = "__hydrogpu_kernel__"


def _mark_kernel(function):
    setattr(function, KERNEL_MARK, True)
    return function


def _is_kernel(obj: Any) -> bool:
    return inspect.isfunction(obj) and getattr(obj, KERNEL_MARK, False)


def _declares_kernel(node: ast.FunctionDef) -> bool:
    return any(
        isinstance(decorator, ast.Name) and decorator.id == "kernel"
        for decorator in node.decorator_list
    )


def program_header(
    grid: GridDescriptor,
    num_states: int,
    slope_limiter: str,
    gravitational_constant: float,
) -> str:
    """Macro definitions shared by every fragment of the program."""
    lines = [
        "# --- program header ---",
        f"DIM = {grid.dim}",
    ]
    for axis, name in enumerate("XYZ"):
        lines.append(f"SIZE_{name} = {grid.size[axis]}")
    for axis, name in enumerate("XYZ"):
        lines.append(f"D{name} = {grid.dx[axis]!r}")
    for axis, name in enumerate("XYZ"):
        lines.append(f"{name}MIN = {grid.xmin[axis]!r}")
        lines.append(f"{name}MAX = {grid.xmax[axis]!r}")
    lines += [
        f"NUM_STATES = {num_states}",
        f"NUM_GHOST = {NUM_GHOST}",
        f"SLOPE_LIMITER = {slope_limiter!r}",
        f"GRAVITATIONAL_CONSTANT = {float(gravitational_constant)!r}",
    ]
    return "\n".join(lines) + "\n"


def assemble_source(sources: Sequence[str]) -> str:
    """Concatenate fragments into one unit, one blank line between them."""
    return "\n\n".join(fragment.strip("\n") for fragment in sources) + "\n"


def _diagnostic(source: str, filename: str, lineno: int | None, severity: str, message: str) -> str:
    """Format one compiler-style diagnostic with the offending line."""
    if lineno is None:
        return f"{filename}: {severity}: {message}"
    text = source.splitlines()[lineno - 1] if 0 < lineno <= source.count("\n") + 1 else ""
    return f"{filename}:{lineno}: {severity}: {message}\n    {text.strip()}"


class Program:
    """A built device program.

    Attributes:
        source: Full generated source text.
        log: Build log (warnings and summary).
        filename: Pseudo file name used in diagnostics, derived from the
            source digest.
    """

    def __init__(self, source: str, filename: str, namespace: dict[str, Any], log: str) -> None:
        self.source = source
        self.filename = filename
        self.log = log
        self._namespace = namespace

    @property
    def kernel_names(self) -> list[str]:
        return sorted(
            name for name, obj in self._namespace.items()
            if _is_kernel(obj)
            and getattr(obj, "__code__", None) is not None
            and obj.__code__.co_filename == self.filename
        )

    def constant(self, name: str) -> Any:
        """Value of a header or fragment constant."""
        return self._namespace[name]

    def kernel(self, name: str) -> Kernel:
        """Create a fresh kernel handle for function ``name``.

        Raises:
            BuildError: If the program defines no such kernel.
        """
        function = self._namespace.get(name)
        if not _is_kernel(function):
            raise BuildError(f"kernel '{name}' not found in device program", self.log)
        num_args = len(inspect.signature(function).parameters)
        return Kernel(name, function, num_args)

    def __repr__(self) -> str:
        return f"Program({self.filename}, kernels={len(self.kernel_names)})"


def build_program(
    sources: Sequence[str],
    device: torch.device,
    dtype: torch.dtype,
    name: str = "program",
) -> Program:
    """Assemble and compile a device program.

    Args:
        sources: Header and fragments in link order.
        device: Device the kernels allocate scratch tensors on.
        dtype: Real type of the program's buffers.
        name: Prefix of the pseudo file name in diagnostics.

    Returns:
        The built :class:`Program`.

    Raises:
        BuildError: On syntax errors or failures while defining kernels,
            with the compiler log attached.
    """
    source = assemble_source(sources)
    digest = hashlib.sha1(source.encode("utf-8")).hexdigest()[:12]
    filename = f"<{name}:{digest}>"

    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as exc:
        log = _diagnostic(source, filename, exc.lineno, "error", exc.msg)
        raise BuildError("device program failed to compile", log) from exc

    warnings = []
    defined: dict[str, int] = {}
    kernels: set[str] = set()
    for node in tree.body:
        if isinstance(node, ast.FunctionDef):
            if node.name in defined:
                warnings.append(_diagnostic(
                    source, filename, node.lineno, "warning",
                    f"'{node.name}' redefines the function from line {defined[node.name]}",
                ))
            defined[node.name] = node.lineno
            if _declares_kernel(node):
                kernels.add(node.name)

    namespace: dict[str, Any] = {
        "__name__": name,
        "torch": torch,
        "math": math,
        "DEVICE": device,
        "REAL": dtype,
        "kernel": _mark_kernel,
    }
    try:
        exec(compile(tree, filename, "exec"), namespace)
    except Exception as exc:
        frames = [f for f in traceback.extract_tb(exc.__traceback__) if f.filename == filename]
        lineno = frames[-1].lineno if frames else None
        log = _diagnostic(source, filename, lineno, "error", f"{type(exc).__name__}: {exc}")
        raise BuildError("device program failed to build", log) from exc

    num_kernels = len(kernels)
    summary = f"{filename}: {num_kernels} kernels, {source.count(chr(10))} lines"
    log = "\n".join(warnings + [summary])
    logger.info("Built device program %s (%d kernels)", filename, num_kernels)
    logger.debug("Build log:\n%s", log)
    return Program(source, filename, namespace, log)
