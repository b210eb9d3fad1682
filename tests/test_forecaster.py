import math
from datetime import datetime, timedelta

import pytest

from ratecast.config import ForecastConfig
from ratecast.errors import InsufficientDataError
from ratecast.forecaster import RateLimitForecaster, rank_alternative_accounts
from ratecast.models import (
    AccountKey,
    Continue,
    EmergencyPause,
    PrepareSwap,
    SlowDown,
    SwapNow,
    UsageSample,
)


class TestForecasterConstruction:
    def test_default_config(self) -> "None":
        forecaster = RateLimitForecaster()
        assert forecaster.config.swap_now_threshold_secs == 300
        assert forecaster.config.prepare_swap_threshold_secs == 600

    def test_custom_config(self) -> "None":
        config = ForecastConfig(swap_now_threshold_secs=120)
        forecaster = RateLimitForecaster(config)
        assert forecaster.config.swap_now_threshold_secs == 120


class TestGroupByAccount:
    def test_empty_input(self) -> "None":
        assert RateLimitForecaster.group_by_account([]) == {}

    def test_groups_and_sorts_by_time(self, make_samples: "object") -> "None":
        a = make_samples([(10, 60.0), (0, 50.0)], account="a")
        b = make_samples([(5, 20.0)], account="b")
        grouped = RateLimitForecaster.group_by_account([a[0], b[0], a[1]])

        assert set(grouped) == {
            AccountKey("claude", "a"),
            AccountKey("claude", "b"),
        }
        usages = [s.used_percent for s in grouped[AccountKey("claude", "a")]]
        assert usages == [50.0, 60.0]

    def test_equal_timestamps_keep_input_order(
        self, make_samples: "object"
    ) -> "None":
        samples = make_samples([(0, 10.0), (0, 20.0), (0, 30.0)])
        grouped = RateLimitForecaster.group_by_account(samples)
        usages = [s.used_percent for s in grouped[AccountKey("claude", "test@example.com")]]
        assert usages == [10.0, 20.0, 30.0]

    def test_same_account_different_provider_is_separate(
        self, make_samples: "object"
    ) -> "None":
        samples = make_samples([(0, 10.0)], provider="claude") + make_samples(
            [(0, 10.0)], provider="openai"
        )
        assert len(RateLimitForecaster.group_by_account(samples)) == 2

    def test_drops_non_finite_usage(self, make_samples: "object") -> "None":
        samples = make_samples([(0, math.nan), (5, 50.0), (10, math.inf)])
        grouped = RateLimitForecaster.group_by_account(samples)
        group = grouped[AccountKey("claude", "test@example.com")]
        assert [s.used_percent for s in group] == [50.0]


class TestCalculateVelocity:
    def test_increasing(self, make_samples: "object") -> "None":
        # 10% increase over 10 minutes = 1% per minute
        samples = make_samples([(0, 50.0), (5, 55.0), (10, 60.0)])
        velocity = RateLimitForecaster.calculate_velocity(samples)
        assert velocity == pytest.approx(1.0)

    def test_decreasing(self, make_samples: "object") -> "None":
        samples = make_samples([(0, 80.0), (5, 70.0), (10, 60.0)])
        assert RateLimitForecaster.calculate_velocity(samples) < 0.0

    def test_constant(self, make_samples: "object") -> "None":
        samples = make_samples([(0, 50.0), (5, 50.0), (10, 50.0)])
        assert RateLimitForecaster.calculate_velocity(samples) == 0.0

    def test_empty(self) -> "None":
        assert RateLimitForecaster.calculate_velocity([]) == 0.0

    def test_single_sample(self, make_samples: "object") -> "None":
        samples = make_samples([(0, 50.0)])
        assert RateLimitForecaster.calculate_velocity(samples) == 0.0

    def test_uses_first_and_last_only(self, make_samples: "object") -> "None":
        # the spike in the middle does not affect the two-point slope
        samples = make_samples([(0, 50.0), (5, 95.0), (10, 60.0)])
        assert RateLimitForecaster.calculate_velocity(samples) == pytest.approx(1.0)

    def test_sub_minute_window_returns_raw_difference(
        self, make_samples: "object"
    ) -> "None":
        # 10 seconds apart, 5% apart -> 5.0, not 30.0
        samples = make_samples([(0, 50.0), (10 / 60, 55.0)])
        assert RateLimitForecaster.calculate_velocity(samples) == pytest.approx(5.0)


class TestCalculateTimeToLimit:
    def test_positive_velocity(self) -> "None":
        # at 80%, 2% per minute -> 10 minutes to 100%
        ttl = RateLimitForecaster.calculate_time_to_limit(80.0, 2.0)
        assert ttl is not None
        assert ttl.total_seconds() == pytest.approx(600.0)

    def test_zero_velocity_is_indefinite(self) -> "None":
        assert RateLimitForecaster.calculate_time_to_limit(50.0, 0.0) is None

    def test_negative_velocity_is_indefinite(self) -> "None":
        assert RateLimitForecaster.calculate_time_to_limit(50.0, -1.0) is None

    def test_already_at_limit(self) -> "None":
        ttl = RateLimitForecaster.calculate_time_to_limit(100.0, 1.0)
        assert ttl == timedelta(0)

    def test_over_limit(self) -> "None":
        ttl = RateLimitForecaster.calculate_time_to_limit(104.0, 1.0)
        assert ttl == timedelta(0)

    def test_negligible_velocity_is_indefinite(self) -> "None":
        assert RateLimitForecaster.calculate_time_to_limit(10.0, 1e-15) is None


class TestCalculateConfidence:
    def test_no_samples_floors(self, now: "datetime") -> "None":
        assert RateLimitForecaster.calculate_confidence([], now) == 0.1

    def test_increases_with_samples(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        few = make_samples([(-5, 50.0), (0, 55.0)], base=now)
        many = make_samples(
            [(-10, 50.0), (-8, 52.0), (-6, 54.0), (-4, 56.0), (-2, 58.0), (0, 60.0)],
            base=now,
        )
        conf_few = RateLimitForecaster.calculate_confidence(few, now)
        conf_many = RateLimitForecaster.calculate_confidence(many, now)

        assert conf_few == pytest.approx(0.2)
        assert conf_many == pytest.approx(0.6)
        assert conf_many > conf_few

    def test_saturates_below_one(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        samples = make_samples([(-m, 50.0) for m in range(20, -1, -1)], base=now)
        assert RateLimitForecaster.calculate_confidence(samples, now) == 0.99

    def test_stale_samples_lower_confidence(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        points = [(-m, 50.0 + m) for m in range(4, -1, -1)]
        fresh = make_samples(points, base=now)
        stale = make_samples(points, base=now - timedelta(minutes=10))

        conf_fresh = RateLimitForecaster.calculate_confidence(fresh, now)
        conf_stale = RateLimitForecaster.calculate_confidence(stale, now)
        # 10 minutes old halves the recency factor
        assert conf_stale == pytest.approx(conf_fresh / 2)

    def test_unstable_velocity_lowers_confidence(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        steady = make_samples([(-m, 60.0 - m) for m in range(10, -1, -1)], base=now)
        jumpy = make_samples(
            [(-10, 50.0), (-9, 55.0), (-8, 51.0), (-7, 58.0), (-6, 52.0),
             (-5, 56.0), (-4, 53.0), (-3, 59.0), (-2, 54.0), (-1, 58.0), (0, 60.0)],
            base=now,
        )
        assert RateLimitForecaster.calculate_confidence(
            jumpy, now
        ) < RateLimitForecaster.calculate_confidence(steady, now)

    def test_single_sample_uses_pessimistic_variance(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        samples = make_samples([(0, 50.0)], base=now)
        # 0.1 sample factor * 0.5 consistency, floored at 0.1
        assert RateLimitForecaster.calculate_confidence(samples, now) == 0.1

    def test_future_samples_count_as_fresh(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        samples = make_samples([(m, 50.0) for m in range(10)], base=now)
        assert RateLimitForecaster.calculate_confidence(samples, now) == 0.99


class TestDetermineAction:
    def test_continue(self) -> "None":
        action = RateLimitForecaster().determine_action(timedelta(hours=2), 0.5)
        assert action == Continue()

    def test_indefinite_continues(self) -> "None":
        action = RateLimitForecaster().determine_action(None, 5.0)
        assert isinstance(action, Continue)

    def test_slow_down(self) -> "None":
        action = RateLimitForecaster().determine_action(timedelta(minutes=20), 2.0)
        assert isinstance(action, SlowDown)
        assert action.target_velocity == pytest.approx(1.4)

    def test_slow_down_window_with_low_velocity_continues(self) -> "None":
        action = RateLimitForecaster().determine_action(timedelta(minutes=20), 0.5)
        assert isinstance(action, Continue)

    def test_prepare_swap(self) -> "None":
        action = RateLimitForecaster().determine_action(timedelta(minutes=8), 0.5)
        assert action == PrepareSwap(in_minutes=8)

    def test_swap_now(self) -> "None":
        action = RateLimitForecaster().determine_action(timedelta(minutes=3), 0.5)
        assert action == SwapNow(to_account="")

    def test_swap_now_boundary_is_inclusive(self) -> "None":
        action = RateLimitForecaster().determine_action(timedelta(seconds=300), 0.5)
        assert isinstance(action, SwapNow)

    def test_emergency(self) -> "None":
        action = RateLimitForecaster().determine_action(timedelta(0), 5.0)
        assert isinstance(action, EmergencyPause)

    def test_sub_second_rounds_to_emergency(self) -> "None":
        action = RateLimitForecaster().determine_action(
            timedelta(milliseconds=500), 5.0
        )
        assert isinstance(action, EmergencyPause)

    def test_custom_thresholds(self) -> "None":
        forecaster = RateLimitForecaster(
            ForecastConfig(
                swap_now_threshold_secs=60,
                prepare_swap_threshold_secs=120,
                slow_down_threshold_secs=240,
                high_velocity_threshold=3.0,
                slow_down_factor=0.5,
            )
        )
        assert isinstance(
            forecaster.determine_action(timedelta(minutes=3), 0.5), Continue
        )
        action = forecaster.determine_action(timedelta(minutes=3), 4.0)
        assert action == SlowDown(target_velocity=2.0)


class TestCalculateOptimalSwapTime:
    def test_reset_before_limit(self, now: "datetime") -> "None":
        # reset in 30 minutes, limit in 60 -> the window refreshes first
        optimal = RateLimitForecaster.calculate_optimal_swap_time(
            timedelta(minutes=60), now + timedelta(minutes=30), now
        )
        assert optimal is None

    def test_without_reset(self, now: "datetime") -> "None":
        optimal = RateLimitForecaster.calculate_optimal_swap_time(
            timedelta(minutes=10), None, now
        )
        assert optimal == now + timedelta(seconds=480)

    def test_reset_after_limit(self, now: "datetime") -> "None":
        optimal = RateLimitForecaster.calculate_optimal_swap_time(
            timedelta(minutes=60), now + timedelta(hours=2), now
        )
        assert optimal == now + timedelta(minutes=48)

    def test_reset_in_the_past_is_ignored(self, now: "datetime") -> "None":
        optimal = RateLimitForecaster.calculate_optimal_swap_time(
            timedelta(minutes=10), now - timedelta(minutes=5), now
        )
        assert optimal == now + timedelta(seconds=480)

    def test_zero_time_to_limit(self, now: "datetime") -> "None":
        assert (
            RateLimitForecaster.calculate_optimal_swap_time(timedelta(0), None, now)
            is None
        )

    def test_indefinite_time_to_limit(self, now: "datetime") -> "None":
        assert RateLimitForecaster.calculate_optimal_swap_time(None, None, now) is None
        assert (
            RateLimitForecaster.calculate_optimal_swap_time(
                None, now + timedelta(minutes=5), now
            )
            is None
        )

    def test_defaults_to_current_time(self) -> "None":
        optimal = RateLimitForecaster.calculate_optimal_swap_time(
            timedelta(minutes=10), None
        )
        assert optimal is not None


class TestForecast:
    def test_single_account(self, make_samples: "object", now: "datetime") -> "None":
        samples = make_samples([(0, 50.0), (5, 55.0), (10, 60.0)])
        forecasts = RateLimitForecaster().forecast(samples, now=now)

        assert len(forecasts) == 1
        f = forecasts[0]
        assert f.provider == "claude"
        assert f.account == "test@example.com"
        assert f.current_usage_pct == 60.0
        assert f.current_velocity == pytest.approx(1.0)
        assert f.time_to_limit == timedelta(minutes=40)
        assert 0.1 <= f.confidence <= 0.99
        assert isinstance(f.recommended_action, Continue)
        assert f.optimal_swap_time == now + timedelta(minutes=32)
        assert f.alternative_accounts == ()

    def test_multiple_accounts(self, make_samples: "object") -> "None":
        samples = make_samples([(0, 90.0)], account="acc1") + make_samples(
            [(0, 20.0)], account="acc2"
        )
        forecasts = RateLimitForecaster().forecast(samples)
        assert len(forecasts) == 2

    def test_sorted_by_urgency(self, make_samples: "object", now: "datetime") -> "None":
        relaxed = make_samples([(0, 50.0), (10, 60.0)], account="relaxed")
        urgent = make_samples([(0, 80.0), (10, 90.0)], account="urgent")
        flat = make_samples([(0, 30.0), (10, 30.0)], account="flat")

        forecasts = RateLimitForecaster().forecast(flat + relaxed + urgent, now=now)
        assert [f.account for f in forecasts] == ["urgent", "relaxed", "flat"]
        assert forecasts[-1].is_indefinite

    def test_empty(self) -> "None":
        assert RateLimitForecaster().forecast([]) == []

    def test_uses_latest_reset_time(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        samples = make_samples(
            [(0, 50.0), (10, 60.0)], resets_at=now + timedelta(minutes=10)
        )
        forecasts = RateLimitForecaster().forecast(samples, now=now)
        # limit is 40 minutes out but the window resets in 10
        assert forecasts[0].optimal_swap_time is None

    def test_swap_now_has_empty_target(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        samples = make_samples([(0, 90.0), (5, 95.0)])
        forecasts = RateLimitForecaster().forecast(samples, now=now)
        assert forecasts[0].recommended_action == SwapNow(to_account="")

    def test_over_limit_pauses(self, make_samples: "object", now: "datetime") -> "None":
        samples = make_samples([(0, 95.0), (5, 101.0)])
        forecasts = RateLimitForecaster().forecast(samples, now=now)
        assert isinstance(forecasts[0].recommended_action, EmergencyPause)

    def test_account_with_only_malformed_samples_is_dropped(
        self, make_samples: "object", now: "datetime"
    ) -> "None":
        samples = make_samples([(0, math.nan)], account="broken") + make_samples(
            [(0, 20.0)], account="ok"
        )
        forecasts = RateLimitForecaster().forecast(samples, now=now)
        assert [f.account for f in forecasts] == ["ok"]

    def test_forecast_single_without_samples_raises(self) -> "None":
        with pytest.raises(InsufficientDataError):
            RateLimitForecaster().forecast_single(AccountKey("claude", "a"), [])


class TestRankAlternativeAccounts:
    def _sample(
        self, now: "datetime", account: "str", usage: "float", provider: "str" = "claude"
    ) -> "UsageSample":
        return UsageSample(
            provider=provider,
            account=account,
            used_percent=usage,
            collected_at=now,
        )

    def test_ranks_same_provider_by_headroom(self, now: "datetime") -> "None":
        samples = [
            self._sample(now, "current@example.com", 90.0),
            self._sample(now, "alt1@example.com", 20.0),
            self._sample(now, "alt2@example.com", 50.0),
            self._sample(now, "other@example.com", 10.0, provider="openai"),
        ]
        alternatives = rank_alternative_accounts(
            samples, "claude", "current@example.com"
        )

        assert len(alternatives) == 2
        assert alternatives[0][0] == "alt1@example.com"
        assert alternatives[0][1] == pytest.approx(80.0)
        assert alternatives[1][0] == "alt2@example.com"
        assert alternatives[1][1] == pytest.approx(50.0)

    def test_excludes_low_headroom(self, now: "datetime") -> "None":
        samples = [
            self._sample(now, "alt@example.com", 95.0),
            self._sample(now, "edge@example.com", 90.0),
        ]
        assert rank_alternative_accounts(samples, "claude", "current@example.com") == []

    def test_uses_peak_usage_not_latest(self, now: "datetime") -> "None":
        samples = [
            self._sample(now - timedelta(minutes=10), "alt", 70.0),
            self._sample(now, "alt", 30.0),
        ]
        assert rank_alternative_accounts(samples, "claude", "current") == [
            ("alt", 30.0)
        ]

    def test_empty(self) -> "None":
        assert rank_alternative_accounts([], "claude", "current") == []
