import argparse

from ratecast.config import Config


def parse_args(argv: "list[str] | None" = None) -> "tuple[Config, bool]":
    """
    builds the runtime Config from environment variables and
    command-line flags (flags win). Also returns whether a single
    forecast cycle was requested with --once.
    """
    parser = argparse.ArgumentParser(
        prog="ratecast",
        description="Rate-limit forecasting exporter for multi-account AI usage",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9186",
        help="Address to listen on (default: :9186)",
    )
    parser.add_argument(
        "--scrape.interval",
        dest="scrape_interval",
        type=int,
        default=60,
        help="Forecast interval in seconds (default: 60)",
    )
    parser.add_argument(
        "--history.window",
        dest="history_window",
        type=int,
        default=3600,
        help="Seconds of sample history used for forecasting (default: 3600)",
    )
    parser.add_argument(
        "--source.url",
        dest="source_url",
        default=None,
        help="Base URL of the telemetry store (default: $RATECAST_SOURCE_URL)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log format (default: console)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single forecast cycle, print it as JSON and exit",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.scrape_interval = args.scrape_interval
    config.history_window = args.history_window
    config.log_level = args.log_level
    config.log_format = args.log_format
    if args.source_url is not None:
        config.source_url = args.source_url
    return config, args.once
