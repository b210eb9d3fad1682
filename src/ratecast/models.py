from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar, Union


@dataclass(frozen=True, slots=True)
class UsageSample:
    """
    UsageSample represents a single quota usage observation
    for one account of a provider.
    """

    provider: "str"
    # account identifier (e.g. an email or key alias), never a secret
    account: "str"
    # 0-100, may transiently exceed 100
    used_percent: "float"
    # timezone-aware UTC time the sample was collected
    collected_at: "datetime"
    # when the quota window resets, if the provider reports it
    resets_at: "datetime | None" = None


@dataclass(frozen=True, slots=True)
class AccountKey:
    provider: "str"
    account: "str"


@dataclass(frozen=True, slots=True)
class Continue:
    kind: "ClassVar[str]" = "continue"

    def to_dict(self) -> "dict[str, Any]":
        return {"type": self.kind}


@dataclass(frozen=True, slots=True)
class SlowDown:
    target_velocity: "float"
    kind: "ClassVar[str]" = "slow_down"

    def to_dict(self) -> "dict[str, Any]":
        return {"type": self.kind, "target_velocity": self.target_velocity}


@dataclass(frozen=True, slots=True)
class PrepareSwap:
    in_minutes: "int"
    kind: "ClassVar[str]" = "prepare_swap"

    def to_dict(self) -> "dict[str, Any]":
        return {"type": self.kind, "in_minutes": self.in_minutes}


@dataclass(frozen=True, slots=True)
class SwapNow:
    # empty until a caller with ranking knowledge picks a target
    to_account: "str" = ""
    kind: "ClassVar[str]" = "swap_now"

    def to_dict(self) -> "dict[str, Any]":
        return {"type": self.kind, "to_account": self.to_account}


@dataclass(frozen=True, slots=True)
class EmergencyPause:
    kind: "ClassVar[str]" = "emergency_pause"

    def to_dict(self) -> "dict[str, Any]":
        return {"type": self.kind}


RateLimitAction = Union[Continue, SlowDown, PrepareSwap, SwapNow, EmergencyPause]

ACTION_KINDS: "tuple[str, ...]" = (
    Continue.kind,
    SlowDown.kind,
    PrepareSwap.kind,
    SwapNow.kind,
    EmergencyPause.kind,
)


@dataclass(frozen=True, slots=True)
class RateLimitForecast:
    """
    RateLimitForecast is a point-in-time projection for a
    single account. It is never mutated; callers that enrich
    it (e.g. with alternative accounts) build a new one.
    """

    provider: "str"
    account: "str"
    current_usage_pct: "float"
    # percent per minute, signed
    current_velocity: "float"
    # None when usage is not increasing (no foreseeable exhaustion)
    time_to_limit: "timedelta | None"
    confidence: "float"
    recommended_action: "RateLimitAction"
    optimal_swap_time: "datetime | None" = None
    # (account, headroom_pct), best first
    alternative_accounts: "tuple[tuple[str, float], ...]" = field(default=())

    @property
    def is_indefinite(self) -> "bool":
        return self.time_to_limit is None

    def to_dict(self) -> "dict[str, Any]":
        """
        converts the forecast into JSON-friendly primitives.
        """
        return {
            "provider": self.provider,
            "account": self.account,
            "current_usage_pct": self.current_usage_pct,
            "current_velocity": self.current_velocity,
            "time_to_limit_secs": (
                None
                if self.time_to_limit is None
                else self.time_to_limit.total_seconds()
            ),
            "confidence": self.confidence,
            "recommended_action": self.recommended_action.to_dict(),
            "optimal_swap_time": (
                self.optimal_swap_time.isoformat()
                if self.optimal_swap_time is not None
                else None
            ),
            "alternative_accounts": [
                {"account": account, "headroom_pct": headroom}
                for account, headroom in self.alternative_accounts
            ],
        }
