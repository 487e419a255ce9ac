from __future__ import annotations

import logging
import sys
from typing import Sequence, TextIO

import numpy as np

from .errors import MatrixSizeError

LOGGER = logging.getLogger("conv_client.matrices")

MATRIX_DTYPE = np.float32
DEFAULT_FILL_VALUE = 1.0


def _freeze(matrix: np.ndarray) -> np.ndarray:
    matrix.flags.writeable = False
    return matrix


def generate_matrix(
    rows: int,
    cols: int,
    random: bool = False,
    fill_value: float = DEFAULT_FILL_VALUE,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Return a read-only ``rows x cols`` float32 matrix.

    With ``random`` every cell is an independent uniform draw in ``[0, 1)``,
    otherwise every cell equals ``fill_value``.
    """
    if rows < 0 or cols < 0:
        raise ValueError(f"matrix shape must be non-negative, got {rows}x{cols}")
    if random:
        generator = rng if rng is not None else np.random.default_rng()
        matrix = generator.random((rows, cols), dtype=MATRIX_DTYPE)
    else:
        matrix = np.full((rows, cols), fill_value, dtype=MATRIX_DTYPE)
    return _freeze(matrix)


def manual_matrix(name: str, size: int, values: Sequence[float]) -> np.ndarray:
    """Build a ``size x size`` matrix from row-major ``values``."""
    expected = size * size
    if len(values) != expected:
        raise MatrixSizeError(
            f"matrix {name!r} needs {expected} values, got {len(values)}"
        )
    matrix = np.asarray(values, dtype=MATRIX_DTYPE).reshape(size, size).copy()
    LOGGER.debug("manual matrix %s (%dx%d) accepted", name, size, size)
    return _freeze(matrix)


def prompt_matrix_values(name: str, size: int, stream: TextIO) -> list[float]:
    """Read ``size * size`` whitespace separated floats for ``name`` from ``stream``.

    Lines are consumed until enough values have been collected, so a matrix
    can be typed one row per line or all at once.
    """
    expected = size * size
    values: list[float] = []
    LOGGER.info("Enter %d values for %s (%dx%d, row-major)", expected, name, size, size)
    while len(values) < expected:
        line = stream.readline()
        if not line:
            break
        for token in line.split():
            try:
                values.append(float(token))
            except ValueError as exc:
                raise MatrixSizeError(
                    f"matrix {name!r}: {token!r} is not a number"
                ) from exc
    return values


def format_matrix(label: str, matrix: np.ndarray) -> str:
    rows, cols = matrix.shape
    body = np.array2string(
        np.asarray(matrix),
        precision=4,
        floatmode="fixed",
        suppress_small=True,
        threshold=sys.maxsize,
        max_line_width=sys.maxsize,
    )
    return f"{label} ({rows}x{cols}):\n{body}"


__all__ = [
    "MATRIX_DTYPE",
    "DEFAULT_FILL_VALUE",
    "generate_matrix",
    "manual_matrix",
    "prompt_matrix_values",
    "format_matrix",
]
