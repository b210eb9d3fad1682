from typing import Sequence


def variance(values: "Sequence[float]") -> "float":
    """
    population variance of the given values. Empty input
    has zero variance.
    """
    if not values:
        return 0.0

    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def regression_slope(values: "Sequence[float]") -> "float":
    """
    least-squares slope of values against their position
    (0, 1, 2, ...), i.e. change per sample rather than per minute.
    This is a coarser estimator than the forecaster's two-point
    velocity and is not used on the forecast path.
    """
    n = len(values)
    if n < 2:
        return 0.0

    sum_x = sum(range(n))
    sum_y = sum(values)
    sum_xy = sum(i * y for i, y in enumerate(values))
    sum_xx = sum(i * i for i in range(n))

    denominator = n * sum_xx - sum_x * sum_x
    if abs(denominator) < 1e-12:
        return 0.0

    return (n * sum_xy - sum_x * sum_y) / denominator


def sample_confidence(sample_count: "int", velocity_variance: "float") -> "float":
    """
    confidence from sample count and velocity stability only,
    without the recency term the forecaster applies.
    """
    sample_factor = min(sample_count / 10.0, 1.0)
    consistency_factor = 1.0 / (1.0 + velocity_variance)
    return clamp(sample_factor * consistency_factor, 0.1, 0.99)


def clamp(value: "float", low: "float", high: "float") -> "float":
    return max(low, min(value, high))
