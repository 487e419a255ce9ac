from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Callable, Sequence, TextIO

import numpy as np

from .config import ClientConfig
from .errors import RequestTooLarge
from .matrices import generate_matrix, manual_matrix, prompt_matrix_values

MSG_MAX_SIZE = 4 * 1024 * 1024
FLOAT_BYTES = 4

ValueSource = Callable[[str, int], Sequence[float]]


@dataclass(frozen=True)
class ConvolutionRequest:
    target: np.ndarray
    kernels: tuple[np.ndarray, ...]
    avg_pool_size: int
    use_kernels: bool
    use_sigmoid: bool
    expected_size: int
    expected_results: int


@dataclass(frozen=True)
class ConvolutionResponse:
    id: int
    results: tuple[np.ndarray, ...]
    sent_at: float | None = None
    received_at: float | None = None


def expected_response_size(
    target_size: int,
    kernel_size: int,
    kernel_count: int,
    pool_size: int,
) -> int:
    """Worst-case size in bytes of the exchange for the given request shape.

    ``pool_size`` must be strictly positive.
    """
    request_bytes = target_size * target_size * FLOAT_BYTES + (
        kernel_size * kernel_size * kernel_count * FLOAT_BYTES
    )
    pooled_bytes = target_size * target_size * kernel_count * FLOAT_BYTES // (
        pool_size * pool_size
    )
    return max(request_bytes, pooled_bytes)


class StreamValueSource:
    """Reads manual matrix values from a text stream, one matrix at a time.

    Not synchronised: concurrent builders must take turns for a whole request.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def __call__(self, name: str, size: int) -> Sequence[float]:
        stream = self._stream if self._stream is not None else sys.stdin
        return prompt_matrix_values(name, size, stream)


class RequestBuilder:
    """Assembles a fresh ``ConvolutionRequest`` from the client settings."""

    def __init__(
        self,
        config: ClientConfig,
        rng: np.random.Generator | None = None,
        value_source: ValueSource | None = None,
        max_size: int = MSG_MAX_SIZE,
    ) -> None:
        self._config = config
        self._rng = rng
        self._value_source = value_source or StreamValueSource()
        self._max_size = max_size

    @property
    def expected_size(self) -> int:
        config = self._config
        return expected_response_size(
            config.target_size,
            config.kernel_size,
            config.kernel_count,
            config.avg_pool_size,
        )

    def check_size(self) -> int:
        expected = self.expected_size
        if expected > self._max_size:
            raise RequestTooLarge(expected, self._max_size)
        return expected

    def build(self, label: str = "") -> ConvolutionRequest:
        """Check the predicted size, then generate the target and kernels.

        ``label`` prefixes the matrix names handed to the manual value source.
        """
        expected = self.check_size()
        config = self._config
        prefix = f"{label} " if label else ""
        target = self._matrix(f"{prefix}target", config.target_size)
        kernels = tuple(
            self._matrix(f"{prefix}kernel {index}", config.kernel_size)
            for index in range(config.kernel_count)
        )
        return ConvolutionRequest(
            target=target,
            kernels=kernels,
            avg_pool_size=config.avg_pool_size,
            use_kernels=config.use_kernels,
            use_sigmoid=config.use_sigmoid,
            expected_size=expected,
            expected_results=config.kernel_count,
        )

    def _matrix(self, name: str, size: int) -> np.ndarray:
        if self._config.manual_values:
            return manual_matrix(name, size, self._value_source(name, size))
        # Fresh generator per matrix unless one was injected.
        rng = self._rng
        if self._config.random_values and rng is None:
            rng = np.random.default_rng()
        return generate_matrix(size, size, random=self._config.random_values, rng=rng)


__all__ = [
    "MSG_MAX_SIZE",
    "ConvolutionRequest",
    "ConvolutionResponse",
    "expected_response_size",
    "StreamValueSource",
    "RequestBuilder",
]
