"""Entry point for the log shipping client."""

import asyncio
import logging
import sys

from logread.config import ConfigError, load_config
from logread.shipper import LogShipper, install_signal_handlers
from logread.sink import SinkOpenError
from logread.source import SourceUnavailableError

try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass

logger = logging.getLogger("logread")


async def _serve(config) -> None:
    shipper = LogShipper(config)
    install_signal_handlers(shipper)
    await shipper.run()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(argv)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    logging.getLogger().setLevel(config.log_level)

    logger.info(
        "Starting log shipper - sink=%s, follow=%s, source=%s",
        config.sink_type, config.follow, config.socket_path,
    )
    try:
        asyncio.run(_serve(config))
    except (SinkOpenError, SourceUnavailableError) as e:
        logger.error("%s", e)
        return 1
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
