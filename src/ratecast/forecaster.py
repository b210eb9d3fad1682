import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence

import structlog

from ratecast.config import ForecastConfig
from ratecast.errors import InsufficientDataError
from ratecast.models import (
    AccountKey,
    Continue,
    EmergencyPause,
    PrepareSwap,
    RateLimitAction,
    RateLimitForecast,
    SlowDown,
    SwapNow,
    UsageSample,
)
from ratecast.stats import clamp, variance

logger = structlog.get_logger()

# accounts need more than this much headroom to be offered as alternatives
MIN_ALTERNATIVE_HEADROOM_PCT = 10.0

# projections further out than this are treated as indefinite
MAX_PROJECTION = timedelta(days=36500)


def _utcnow() -> "datetime":
    return datetime.now(timezone.utc)


class RateLimitForecaster:
    """
    RateLimitForecaster projects when each account will run out
    of quota and recommends what to do about it.

    It holds no state besides its thresholds, so a single instance
    can be shared freely between callers. Every method that depends
    on the current time accepts an explicit ``now``.
    """

    def __init__(self, config: "ForecastConfig | None" = None) -> "None":
        self._config: "ForecastConfig" = config or ForecastConfig()

    @property
    def config(self) -> "ForecastConfig":
        return self._config

    def forecast(
        self,
        samples: "Iterable[UsageSample]",
        now: "datetime | None" = None,
    ) -> "list[RateLimitForecast]":
        """
        generates one forecast per account, most urgent first.
        Accounts that cannot be forecast are left out rather than
        failing the whole batch.
        """
        now = now or _utcnow()
        forecasts: "list[RateLimitForecast]" = []

        for key, account_samples in self.group_by_account(samples).items():
            try:
                forecasts.append(self.forecast_single(key, account_samples, now))
            except InsufficientDataError:
                logger.debug(
                    "forecast_skipped",
                    provider=key.provider,
                    account=key.account,
                )

        # indefinite forecasts sort last
        forecasts.sort(
            key=lambda f: (f.time_to_limit is None, f.time_to_limit or timedelta(0))
        )
        return forecasts

    @staticmethod
    def group_by_account(
        samples: "Iterable[UsageSample]",
    ) -> "dict[AccountKey, list[UsageSample]]":
        """
        partitions samples by (provider, account) and orders each
        group by collection time. Equal timestamps keep their input
        order. Samples with a non-finite usage value are dropped.
        """
        grouped: "dict[AccountKey, list[UsageSample]]" = {}

        for sample in samples:
            if not math.isfinite(sample.used_percent):
                logger.warning(
                    "sample_dropped_non_finite",
                    provider=sample.provider,
                    account=sample.account,
                )
                continue
            key = AccountKey(provider=sample.provider, account=sample.account)
            grouped.setdefault(key, []).append(sample)

        for account_samples in grouped.values():
            account_samples.sort(key=lambda s: s.collected_at)

        return grouped

    def forecast_single(
        self,
        key: "AccountKey",
        samples: "Sequence[UsageSample]",
        now: "datetime | None" = None,
    ) -> "RateLimitForecast":
        """
        forecasts a single account from its time-ordered samples.
        """
        if not samples:
            raise InsufficientDataError(key.provider, key.account)

        now = now or _utcnow()
        current = samples[-1]

        velocity = self.calculate_velocity(samples)
        time_to_limit = self.calculate_time_to_limit(current.used_percent, velocity)

        return RateLimitForecast(
            provider=key.provider,
            account=key.account,
            current_usage_pct=current.used_percent,
            current_velocity=velocity,
            time_to_limit=time_to_limit,
            confidence=self.calculate_confidence(samples, now),
            recommended_action=self.determine_action(time_to_limit, velocity),
            optimal_swap_time=self.calculate_optimal_swap_time(
                time_to_limit, current.resets_at, now
            ),
        )

    @staticmethod
    def calculate_velocity(samples: "Sequence[UsageSample]") -> "float":
        """
        returns usage velocity in percent per minute.

        This is a two-point slope between the first and last
        sample, not a regression over every point. Windows shorter
        than a minute return the raw difference so that tiny
        intervals do not blow up the rate.
        """
        if len(samples) < 2:
            return 0.0

        first, last = samples[0], samples[-1]
        elapsed = (last.collected_at - first.collected_at).total_seconds()
        usage_diff = last.used_percent - first.used_percent

        if elapsed < 60.0:
            return usage_diff

        return usage_diff / (elapsed / 60.0)

    @staticmethod
    def calculate_time_to_limit(
        current_usage: "float",
        velocity: "float",
    ) -> "timedelta | None":
        """
        projects the time until usage reaches 100%. Returns None
        when usage is flat or decreasing.
        """
        if velocity <= 0.0:
            return None

        remaining = 100.0 - current_usage
        if remaining <= 0.0:
            return timedelta(0)

        minutes = remaining / velocity
        if minutes > MAX_PROJECTION.total_seconds() / 60.0:
            return None

        return timedelta(minutes=minutes)

    @staticmethod
    def calculate_confidence(
        samples: "Sequence[UsageSample]",
        now: "datetime | None" = None,
    ) -> "float":
        """
        scores how far the forecast can be trusted, in [0.1, 0.99].

        Three factors are multiplied: how many samples there are
        (saturating at 10), how stable the pairwise velocities are
        and how fresh the newest sample is.
        """
        if not samples:
            return 0.1

        now = now or _utcnow()
        sample_factor = min(len(samples) / 10.0, 1.0)

        velocities: "list[float]" = []
        for prev, curr in zip(samples, samples[1:]):
            minutes = (curr.collected_at - prev.collected_at).total_seconds() / 60.0
            if minutes > 0.0:
                velocities.append((curr.used_percent - prev.used_percent) / minutes)

        velocity_variance = variance(velocities) if velocities else 1.0
        consistency_factor = 1.0 / (1.0 + velocity_variance)

        # whole minutes, samples from the future count as fresh
        age_minutes = max(
            int((now - samples[-1].collected_at).total_seconds() // 60), 0
        )
        recency_factor = 1.0 / (1.0 + age_minutes / 10.0)

        confidence = sample_factor * consistency_factor * recency_factor
        if math.isnan(confidence):
            return 0.1

        return clamp(confidence, 0.1, 0.99)

    def determine_action(
        self,
        time_to_limit: "timedelta | None",
        velocity: "float",
    ) -> "RateLimitAction":
        """
        maps a projection onto an action. The first matching rule wins.
        """
        if time_to_limit is None:
            return Continue()

        secs = int(time_to_limit.total_seconds())
        config = self._config

        if secs == 0:
            return EmergencyPause()
        if secs <= config.swap_now_threshold_secs:
            return SwapNow(to_account="")
        if secs <= config.prepare_swap_threshold_secs:
            return PrepareSwap(in_minutes=secs // 60)
        if (
            secs <= config.slow_down_threshold_secs
            and velocity > config.high_velocity_threshold
        ):
            return SlowDown(target_velocity=velocity * config.slow_down_factor)

        return Continue()

    @staticmethod
    def calculate_optimal_swap_time(
        time_to_limit: "timedelta | None",
        resets_at: "datetime | None",
        now: "datetime | None" = None,
    ) -> "datetime | None":
        """
        returns when to swap accounts, at 80% of the way to the
        limit. Returns None if the quota resets before the limit is
        reached, or if there is nothing to swap ahead of.
        """
        now = now or _utcnow()

        if resets_at is not None and resets_at > now:
            secs_to_reset = int((resets_at - now).total_seconds())
            if time_to_limit is None or secs_to_reset < int(
                time_to_limit.total_seconds()
            ):
                return None

        if time_to_limit is None:
            return None

        secs_to_limit = int(time_to_limit.total_seconds())
        if secs_to_limit <= 0:
            return None

        swap_buffer = secs_to_limit // 5
        return now + timedelta(seconds=secs_to_limit - swap_buffer)


def rank_alternative_accounts(
    samples: "Iterable[UsageSample]",
    current_provider: "str",
    current_account: "str",
) -> "list[tuple[str, float]]":
    """
    ranks other accounts of the same provider by headroom, best
    first. Each account is judged by the highest usage seen in
    its samples, and only accounts with more than 10% headroom
    are returned.
    """
    peak_usage: "dict[str, float]" = {}

    for sample in samples:
        if sample.provider != current_provider or sample.account == current_account:
            continue
        # peak usage stands in for the latest reading
        seen = peak_usage.get(sample.account)
        if seen is None or sample.used_percent > seen:
            peak_usage[sample.account] = sample.used_percent

    alternatives = [
        (account, 100.0 - usage)
        for account, usage in peak_usage.items()
        if 100.0 - usage > MIN_ALTERNATIVE_HEADROOM_PCT
    ]
    alternatives.sort(key=lambda a: a[1], reverse=True)
    return alternatives
