from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Mapping

from .errors import ConfigurationMissing

LOGGER = logging.getLogger("conv_client.config")

DEFAULT_PORT = "55555"
DEFAULT_REQUEST_COUNT = 1
DEFAULT_TARGET_SIZE = 500
DEFAULT_KERNEL_COUNT = 180
DEFAULT_KERNEL_SIZE = 3
DEFAULT_AVG_POOL_SIZE = 500
DEFAULT_LAUNCH_DELAY_S = 0.1
DEFAULT_TIMEOUT_S = 60.0

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ClientConfig:
    """Settings for one client run, read once at startup."""

    address: str
    port: str = DEFAULT_PORT
    request_count: int = DEFAULT_REQUEST_COUNT
    verbose: bool = False
    target_size: int = DEFAULT_TARGET_SIZE
    kernel_count: int = DEFAULT_KERNEL_COUNT
    kernel_size: int = DEFAULT_KERNEL_SIZE
    avg_pool_size: int = DEFAULT_AVG_POOL_SIZE
    use_sigmoid: bool = False
    random_values: bool = False
    manual_values: bool = False
    log_level: str = "INFO"
    launch_delay_s: float = DEFAULT_LAUNCH_DELAY_S
    timeout_s: float = DEFAULT_TIMEOUT_S

    @property
    def use_kernels(self) -> bool:
        return self.kernel_size > 0

    @property
    def target(self) -> str:
        return f"{self.address}:{self.port}"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Send parallel convolutional layer requests to the front service"
    )
    parser.add_argument("--front-addr", help="Address of the front service (mandatory)")
    parser.add_argument("--front-port", help="Port of the front service")
    parser.add_argument("--request-count", help="Number of requests to send in parallel")
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Dump target, kernel and result matrices",
    )
    parser.add_argument("--target-size", help="Side of the square target matrix")
    parser.add_argument("--kernel-num", help="Number of kernels per request")
    parser.add_argument("--kernel-size", help="Side of each square kernel (0 disables kernels)")
    parser.add_argument("--avg-pool-size", help="Average pooling window size")
    parser.add_argument(
        "--use-sigmoid",
        action="store_true",
        default=None,
        help="Ask the service to apply the sigmoid activation",
    )
    parser.add_argument(
        "--random-values",
        action="store_true",
        default=None,
        help="Fill matrices with random values instead of ones",
    )
    parser.add_argument(
        "--manual-values",
        action="store_true",
        default=None,
        help="Read matrix values from standard input",
    )
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument(
        "--launch-delay",
        type=float,
        help="Seconds to wait before launching each request",
    )
    parser.add_argument("--log-level", help="Logging level")
    return parser.parse_args(argv)


def _text(value: str | None, env: Mapping[str, str], key: str) -> str | None:
    if value:
        return value
    env_value = env.get(key)
    return env_value if env_value else None


def _flag(value: bool | None, env: Mapping[str, str], key: str) -> bool:
    if value is not None:
        return value
    return env.get(key, "").strip().lower() in _TRUE_VALUES


def _integer(value: str | None, env: Mapping[str, str], key: str, default: int) -> int:
    raw = _text(value, env, key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning(
            "%s given is not a valid integer (%r), reverting to default value: %d.",
            key,
            raw,
            default,
        )
        return default


def load_config(
    argv: list[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> ClientConfig:
    """Merge command line flags with the environment into a ``ClientConfig``.

    Flags win over environment variables. A missing address raises
    ``ConfigurationMissing``; malformed numbers fall back to their defaults
    with a warning.
    """
    args = parse_args(argv)
    env = os.environ if env is None else env

    address = _text(args.front_addr, env, "FrontAddr")
    if address is None:
        raise ConfigurationMissing("FrontAddr")

    request_count = _integer(args.request_count, env, "RequestCount", DEFAULT_REQUEST_COUNT)
    if request_count < 0:
        LOGGER.warning(
            "RequestCount must not be negative (%d), reverting to default value: %d.",
            request_count,
            DEFAULT_REQUEST_COUNT,
        )
        request_count = DEFAULT_REQUEST_COUNT

    timeout_s = args.timeout
    if timeout_s is None:
        timeout_s = DEFAULT_TIMEOUT_S
    launch_delay_s = args.launch_delay
    if launch_delay_s is None:
        launch_delay_s = DEFAULT_LAUNCH_DELAY_S

    return ClientConfig(
        address=address,
        port=_text(args.front_port, env, "FrontPort") or DEFAULT_PORT,
        request_count=request_count,
        verbose=_flag(args.verbose, env, "Verbose"),
        target_size=_integer(args.target_size, env, "TargetSize", DEFAULT_TARGET_SIZE),
        kernel_count=_integer(args.kernel_num, env, "KernelNum", DEFAULT_KERNEL_COUNT),
        kernel_size=_integer(args.kernel_size, env, "KernelSize", DEFAULT_KERNEL_SIZE),
        avg_pool_size=_integer(args.avg_pool_size, env, "AvgPoolSize", DEFAULT_AVG_POOL_SIZE),
        use_sigmoid=_flag(args.use_sigmoid, env, "UseSigmoid"),
        random_values=_flag(args.random_values, env, "RandomValues"),
        manual_values=_flag(args.manual_values, env, "ManualValues"),
        log_level=_text(args.log_level, env, "LOG_LEVEL") or "INFO",
        launch_delay_s=max(launch_delay_s, 0.0),
        timeout_s=timeout_s,
    )


__all__ = ["ClientConfig", "parse_args", "load_config"]
