from dataclasses import dataclass, replace
from typing import Iterable, Sequence

from ratecast.forecaster import rank_alternative_accounts
from ratecast.models import RateLimitForecast, SwapNow, UsageSample


@dataclass(frozen=True, slots=True)
class SwitchRecommendation:
    from_account: "str"
    to_account: "str"
    provider: "str"
    reason: "str"
    confidence: "float"


def evaluate_account_switch(
    current_usage_pct: "float",
    velocity_pct_per_min: "float",
    switch_threshold: "float",
    preemptive_mins: "int",
    min_confidence: "float",
    alternative_accounts: "Sequence[tuple[str, float]]",
) -> "SwitchRecommendation | None":
    """
    decides whether to move traffic off an account.

    switch_threshold is a fraction (0.75 means 75% usage) and
    alternative_accounts holds (account, usage_pct) pairs. The
    least used alternative under the threshold is picked. The
    caller fills in from_account and provider.
    """
    threshold_pct = switch_threshold * 100.0

    if velocity_pct_per_min > 0.0:
        remaining = threshold_pct - current_usage_pct
        minutes_to_threshold = (
            0.0 if remaining <= 0.0 else remaining / velocity_pct_per_min
        )
    else:
        minutes_to_threshold = float("inf")

    over_threshold = current_usage_pct >= threshold_pct
    should_switch = over_threshold or (
        velocity_pct_per_min > 0.0 and minutes_to_threshold <= preemptive_mins
    )
    if not should_switch:
        return None

    candidates = [a for a in alternative_accounts if a[1] < threshold_pct]
    if not candidates:
        return None
    best = min(candidates, key=lambda a: a[1])

    if over_threshold:
        confidence = 0.95
    else:
        # closer to the threshold means more certain
        urgency = 1.0 - min(minutes_to_threshold / (preemptive_mins * 2.0), 1.0)
        confidence = min(0.6 + urgency * 0.35, 0.99)

    if confidence < min_confidence:
        return None

    if over_threshold:
        reason = (
            f"Usage at {current_usage_pct:.1f}% exceeds "
            f"{threshold_pct:.0f}% threshold"
        )
    else:
        reason = (
            f"Predicted to reach {threshold_pct:.0f}% threshold "
            f"in {minutes_to_threshold:.0f} minutes"
        )

    return SwitchRecommendation(
        from_account="",
        to_account=best[0],
        provider="",
        reason=reason,
        confidence=confidence,
    )


def attach_alternatives(
    forecasts: "Iterable[RateLimitForecast]",
    samples: "Sequence[UsageSample]",
) -> "list[RateLimitForecast]":
    """
    returns copies of the forecasts with their alternative accounts
    ranked and, for SwapNow, the target set to the best alternative.
    Order is preserved.
    """
    enriched: "list[RateLimitForecast]" = []

    for forecast in forecasts:
        alternatives = rank_alternative_accounts(
            samples, forecast.provider, forecast.account
        )
        action = forecast.recommended_action
        if isinstance(action, SwapNow) and alternatives:
            action = SwapNow(to_account=alternatives[0][0])

        enriched.append(
            replace(
                forecast,
                alternative_accounts=tuple(alternatives),
                recommended_action=action,
            )
        )

    return enriched
