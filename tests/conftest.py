from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest
from prometheus_client import CollectorRegistry

from ratecast.models import UsageSample

# fixed reference time so recency-dependent results are deterministic
NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def now() -> "datetime":
    return NOW


@pytest.fixture()
def make_samples() -> "Callable[..., list[UsageSample]]":
    """
    builds samples for one account from (minutes_offset, used_percent)
    pairs, offset from a base time one hour before NOW.
    """

    def _make(
        points: "list[tuple[float, float]]",
        provider: "str" = "claude",
        account: "str" = "test@example.com",
        base: "datetime | None" = None,
        resets_at: "datetime | None" = None,
    ) -> "list[UsageSample]":
        start = base or NOW - timedelta(hours=1)
        return [
            UsageSample(
                provider=provider,
                account=account,
                used_percent=usage,
                collected_at=start + timedelta(minutes=offset),
                resets_at=resets_at,
            )
            for offset, usage in points
        ]

    return _make
