import asyncio
import json
import signal

import structlog
from prometheus_client import start_http_server

from ratecast.cli import parse_args
from ratecast.collector import Collector
from ratecast.errors import ConfigError
from ratecast.forecaster import RateLimitForecaster
from ratecast.logging import setup_logging
from ratecast.metrics import MetricsUpdater
from ratecast.sample_window import SampleWindow
from ratecast.source.base import SampleSource
from ratecast.source.http import HttpSampleSource

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def main() -> "None":
    try:
        config, once = parse_args()
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    setup_logging(config.log_level, config.log_format)

    sources: "list[SampleSource]" = []
    if config.source_enabled:
        sources.append(HttpSampleSource(config.source_url, token=config.source_token))
        logger.info("source_enabled", source="http", url=config.source_url)

    if not sources:
        raise SystemExit(
            "No sample source configured. Set RATECAST_SOURCE_URL or --source.url."
        )

    collector = Collector(
        sources,
        RateLimitForecaster(config.forecast),
        MetricsUpdater(),
        SampleWindow(),
        scrape_interval_seconds=config.scrape_interval,
        history_seconds=config.history_window,
    )

    if once:

        async def _run_once() -> "None":
            try:
                forecasts = await collector.run_once()
            finally:
                await collector.close()
            print(json.dumps([f.to_dict() for f in forecasts], indent=2))

        asyncio.run(_run_once())
        return

    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    async def _run() -> "None":
        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, signal the collector
        # to stop gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, collector.stop)

        try:
            await collector.run()
        finally:
            logger.info("shutting_down")
            await collector.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
