class RatecastError(Exception):
    """
    base class for all ratecast errors.
    """


class InsufficientDataError(RatecastError):
    """
    raised when an account has no usable samples to forecast from.
    """

    def __init__(self, provider: "str" = "", account: "str" = "") -> "None":
        self.provider = provider
        self.account = account
        message = "insufficient data for prediction"
        if provider or account:
            message += f" ({provider}/{account})"
        super().__init__(message)


class ConfigError(RatecastError, ValueError):
    """
    raised for invalid forecast thresholds or malformed
    configuration values.
    """
