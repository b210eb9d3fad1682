from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from ratecast.models import ACTION_KINDS, RateLimitForecast

_ACCOUNT_LABELS = ["provider", "account"]


class MetricsUpdater:
    """
    applies RateLimitForecast data to Prometheus gauges and
    tracks the exporter's own scrape health.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._usage: "Gauge" = Gauge(
            "ratecast_usage_percent",
            "Current quota usage per account",
            _ACCOUNT_LABELS,
            registry=registry,
        )
        self._velocity: "Gauge" = Gauge(
            "ratecast_velocity_percent_per_minute",
            "Quota usage velocity per account",
            _ACCOUNT_LABELS,
            registry=registry,
        )
        self._time_to_limit: "Gauge" = Gauge(
            "ratecast_time_to_limit_seconds",
            "Projected seconds until the account hits its limit (-1 if never)",
            _ACCOUNT_LABELS,
            registry=registry,
        )
        self._confidence: "Gauge" = Gauge(
            "ratecast_confidence",
            "Confidence of the forecast (0.1-0.99)",
            _ACCOUNT_LABELS,
            registry=registry,
        )
        self._action: "Gauge" = Gauge(
            "ratecast_recommended_action",
            "Recommended action per account (1 for the active action)",
            _ACCOUNT_LABELS + ["action"],
            registry=registry,
        )
        self._alternatives: "Gauge" = Gauge(
            "ratecast_alternative_accounts",
            "Number of same-provider accounts with usable headroom",
            _ACCOUNT_LABELS,
            registry=registry,
        )
        self._scrape_duration: "Histogram" = Histogram(
            "ratecast_scrape_duration_seconds",
            "Duration of sample source fetches",
            ["source"],
            registry=registry,
        )
        self._scrape_errors: "Counter" = Counter(
            "ratecast_scrape_errors_total",
            "Total number of scrape errors by source and stage",
            ["source", "stage"],
            registry=registry,
        )
        self._last_scrape_success: "Gauge" = Gauge(
            "ratecast_last_scrape_success_timestamp_seconds",
            "Unix timestamp of last successful fetch per source",
            ["source"],
            registry=registry,
        )

    def update_forecast(self, forecast: "RateLimitForecast") -> "None":
        """
        sets every per-account gauge from the forecast.
        """
        labels = {"provider": forecast.provider, "account": forecast.account}
        self._usage.labels(**labels).set(forecast.current_usage_pct)
        self._velocity.labels(**labels).set(forecast.current_velocity)
        self._time_to_limit.labels(**labels).set(
            -1
            if forecast.time_to_limit is None
            else forecast.time_to_limit.total_seconds()
        )
        self._confidence.labels(**labels).set(forecast.confidence)
        self._alternatives.labels(**labels).set(len(forecast.alternative_accounts))

        active = forecast.recommended_action.kind
        # one series per action so alerts can match on action="swap_now"
        for kind in ACTION_KINDS:
            self._action.labels(**labels, action=kind).set(
                1 if kind == active else 0
            )

    def remove_account(self, provider: "str", account: "str") -> "None":
        """
        drops every per-account series, for accounts that are no
        longer forecast.
        """
        for gauge in (
            self._usage,
            self._velocity,
            self._time_to_limit,
            self._confidence,
            self._alternatives,
        ):
            try:
                gauge.remove(provider, account)
            except KeyError:
                pass

        for kind in ACTION_KINDS:
            try:
                self._action.remove(provider, account, kind)
            except KeyError:
                pass

    def observe_scrape_duration(
        self, source: "str", duration_seconds: "float"
    ) -> "None":
        self._scrape_duration.labels(source=source).observe(duration_seconds)

    def inc_scrape_error(self, source: "str", stage: "str") -> "None":
        self._scrape_errors.labels(source=source, stage=stage).inc()

    def set_last_scrape_success(self, source: "str", timestamp: "float") -> "None":
        self._last_scrape_success.labels(source=source).set(timestamp)
