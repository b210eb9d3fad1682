import asyncio
import time
from datetime import datetime, timedelta, timezone

import structlog

from ratecast.autopilot import attach_alternatives
from ratecast.forecaster import RateLimitForecaster
from ratecast.metrics import MetricsUpdater
from ratecast.models import Continue, RateLimitForecast
from ratecast.sample_window import SampleWindow
from ratecast.source.base import SampleSource

logger = structlog.get_logger()

# keep samples for 1 hour by default
_DEFAULT_HISTORY_SECONDS = 3600


class Collector:
    """
    Collector is responsible for orchestrating the periodic
    fetch-and-forecast cycle. It pulls samples from every source
    into a rolling window, forecasts every account seen in the
    window, ranks alternatives and publishes the result as metrics.
    The main loop runs until stop() is called, sleeping for a
    configured interval between cycles.
    """

    def __init__(
        self,
        sources: "list[SampleSource]",
        forecaster: "RateLimitForecaster",
        metrics_updater: "MetricsUpdater",
        window: "SampleWindow",
        scrape_interval_seconds: "int" = 60,
        history_seconds: "int" = _DEFAULT_HISTORY_SECONDS,
    ) -> "None":
        self._sources = sources
        self._forecaster = forecaster
        self._metrics = metrics_updater
        self._window = window
        self._interval = scrape_interval_seconds
        self._history = timedelta(seconds=history_seconds)
        # per source, only advanced when that source's fetch succeeds
        self._last_success: "dict[str, datetime]" = {}
        self._published: "set[tuple[str, str]]" = set()
        self._stop_event: "asyncio.Event" = asyncio.Event()

    def stop(self) -> "None":
        """
        signals the collector loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def close(self) -> "None":
        """
        closes all source sessions.
        """
        for s in self._sources:
            await s.close()

    async def run(self) -> "None":
        """
        runs the main collection loop. Runs until stop() is called.
        """
        while not self._stop_event.is_set():
            await self.run_once()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    async def run_once(
        self,
        now: "datetime | None" = None,
    ) -> "list[RateLimitForecast]":
        """
        performs a single fetch-and-forecast cycle and returns the
        forecasts, most urgent first.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._history
        logger.info("collection_cycle_start", cutoff=cutoff.isoformat())

        evicted = self._window.evict_before(cutoff)
        if evicted:
            logger.debug("samples_evicted", count=evicted, cutoff=cutoff.isoformat())

        await asyncio.gather(
            *(
                self._collect_source(source, self._since(source.name, cutoff), now)
                for source in self._sources
            )
        )

        forecasts = self._forecast(now)
        logger.info("collection_cycle_end", forecast_count=len(forecasts))
        return forecasts

    def _since(self, source_name: "str", cutoff: "datetime") -> "datetime":
        last = self._last_success.get(source_name)
        if last is None:
            return cutoff
        # overlap one interval so late-ingested samples are picked up;
        # the window drops the duplicates
        return max(cutoff, last - timedelta(seconds=self._interval))

    async def _collect_source(
        self,
        source: "SampleSource",
        since: "datetime",
        now: "datetime",
    ) -> "None":
        cycle_start = time.monotonic()

        try:
            samples = await source.fetch_samples(since)
        except Exception:
            logger.exception("sample_fetch_error", source=source.name)
            self._metrics.inc_scrape_error(source.name, "fetch")
            return
        finally:
            self._metrics.observe_scrape_duration(
                source.name, time.monotonic() - cycle_start
            )

        added = self._window.add(samples)
        logger.debug(
            "samples_collected",
            source=source.name,
            received=len(samples),
            added=added,
        )
        self._last_success[source.name] = now
        self._metrics.set_last_scrape_success(source.name, time.time())

    def _forecast(self, now: "datetime") -> "list[RateLimitForecast]":
        samples = self._window.snapshot()
        forecasts = attach_alternatives(
            self._forecaster.forecast(samples, now=now), samples
        )

        published: "set[tuple[str, str]]" = set()
        for forecast in forecasts:
            self._metrics.update_forecast(forecast)
            published.add((forecast.provider, forecast.account))

            if isinstance(forecast.recommended_action, Continue):
                continue
            logger.warning(
                "rate_limit_action",
                provider=forecast.provider,
                account=forecast.account,
                usage_pct=round(forecast.current_usage_pct, 1),
                velocity=round(forecast.current_velocity, 3),
                confidence=round(forecast.confidence, 2),
                action=forecast.recommended_action.to_dict(),
            )

        # accounts whose samples all aged out of the window
        for provider, account in sorted(self._published - published):
            self._metrics.remove_account(provider, account)
            logger.info("account_series_removed", provider=provider, account=account)
        self._published = published

        return forecasts
