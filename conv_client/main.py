from __future__ import annotations

import logging
import sys

from .collector import LifecycleCollector
from .config import ClientConfig, load_config
from .errors import ConfigurationMissing, ConnectionFailed
from .load import ConvolutionClient, ConvolutionLoadGenerator
from .transport import FrontClient

LOGGER = logging.getLogger("conv_client.main")


def resolve_log_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=resolve_log_level(level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )


def run_load(config: ClientConfig, client: ConvolutionClient) -> LifecycleCollector:
    collector = LifecycleCollector(verbose=config.verbose)
    generator = ConvolutionLoadGenerator(config, client, collector)
    stats = generator.run()
    LOGGER.info(
        "All %d request(s) completed in %.2f s.", stats.launched, stats.duration_s
    )
    collector.log_summary()
    return collector


def main(argv: list[str] | None = None) -> int:
    setup_logging("INFO")
    try:
        config = load_config(argv)
    except ConfigurationMissing as exc:
        LOGGER.error("%s.", exc)
        return 1
    level = resolve_log_level(config.log_level)
    if not isinstance(logging.getLevelName(config.log_level.strip().upper()), int):
        LOGGER.warning("Unknown log level %r, using INFO.", config.log_level)
    logging.getLogger().setLevel(level)

    LOGGER.info(
        "Welcome. Client will send %d requests in parallel.", config.request_count
    )
    try:
        client = FrontClient.connect(config.address, config.port)
    except ConnectionFailed as exc:
        LOGGER.error("Could not connect. More: %s", exc)
        return 1

    with client:
        run_load(config, client)

    LOGGER.info("All requests completed. Terminating. Goodbye.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
