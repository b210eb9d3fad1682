import os
from dataclasses import dataclass, field

from ratecast.errors import ConfigError


def _env_number(name: "str", default: "float", cast: "type") -> "float":
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class ForecastConfig:
    """
    ForecastConfig holds the thresholds used to turn a projected
    time-to-limit into a recommended action.
    """

    # at or below this many seconds to limit, swap accounts immediately
    swap_now_threshold_secs: "int" = 300
    # at or below this many seconds to limit, get ready to swap
    prepare_swap_threshold_secs: "int" = 600
    # at or below this many seconds to limit, throttle if velocity is high
    slow_down_threshold_secs: "int" = 1800
    # percent per minute
    high_velocity_threshold: "float" = 1.0
    # slow down target as a fraction of the current velocity
    slow_down_factor: "float" = 0.7

    def __post_init__(self) -> "None":
        if not (
            0
            <= self.swap_now_threshold_secs
            < self.prepare_swap_threshold_secs
            < self.slow_down_threshold_secs
        ):
            raise ConfigError(
                "thresholds must satisfy swap_now < prepare_swap < slow_down, got "
                f"{self.swap_now_threshold_secs} / "
                f"{self.prepare_swap_threshold_secs} / "
                f"{self.slow_down_threshold_secs}"
            )
        if self.slow_down_factor <= 0:
            raise ConfigError(
                f"slow_down_factor must be positive, got {self.slow_down_factor}"
            )

    @classmethod
    def from_env(cls) -> "ForecastConfig":
        defaults = cls()
        return cls(
            swap_now_threshold_secs=_env_number(
                "RATECAST_SWAP_NOW_SECS", defaults.swap_now_threshold_secs, int
            ),
            prepare_swap_threshold_secs=_env_number(
                "RATECAST_PREPARE_SWAP_SECS",
                defaults.prepare_swap_threshold_secs,
                int,
            ),
            slow_down_threshold_secs=_env_number(
                "RATECAST_SLOW_DOWN_SECS", defaults.slow_down_threshold_secs, int
            ),
            high_velocity_threshold=_env_number(
                "RATECAST_HIGH_VELOCITY", defaults.high_velocity_threshold, float
            ),
            slow_down_factor=_env_number(
                "RATECAST_SLOW_DOWN_FACTOR", defaults.slow_down_factor, float
            ),
        )


@dataclass
class Config:
    # listen_address: format ":9186" or
    # "0.0.0.0:9186"
    listen_address: "str" = ":9186"
    # forecast interval in seconds
    scrape_interval: "int" = 60
    # how far back samples are kept for velocity estimation
    history_window: "int" = 3600
    log_level: "str" = "info"
    log_format: "str" = "console"

    source_url: "str" = ""
    source_token: "str" = ""

    forecast: "ForecastConfig" = field(default_factory=ForecastConfig)

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            source_url=os.environ.get("RATECAST_SOURCE_URL", ""),
            source_token=os.environ.get("RATECAST_SOURCE_TOKEN", ""),
            forecast=ForecastConfig.from_env(),
        )

    @property
    def source_enabled(self) -> "bool":
        return bool(self.source_url)
