"""Error types shared by the derived-metrics modules.

Data problems (too few points for a trend, a zero benchmark) are reported as
instances of these classes inside result objects rather than raised at the
report layer. Only programming errors propagate.
"""

from __future__ import annotations


class MetricsError(ValueError):
    """Base class for derived-metric failures."""


class FitError(MetricsError):
    """A regression line could not be fitted to the supplied points."""


class InsufficientData(FitError):
    """Fewer than two usable points were supplied."""

    def __init__(self, count: int) -> None:
        super().__init__(f"At least 2 points are required for a trend line; received {count}.")
        self.count = count


class DegenerateInput(FitError):
    """Every x value is identical, so the slope is undefined."""

    def __init__(self, x_value: float, count: int) -> None:
        super().__init__(f"All {count} points share x={x_value!r}; slope is undefined.")
        self.x_value = x_value
        self.count = count


class DivisionByZeroBenchmark(MetricsError):
    """A percentage difference was requested against a zero-valued benchmark."""

    def __init__(self, benchmark: str) -> None:
        super().__init__(f"Benchmark {benchmark!r} is zero; percentage difference is undefined.")
        self.benchmark = benchmark


class ConfigError(MetricsError):
    """The configuration file exists but cannot be used."""


__all__ = [
    "MetricsError",
    "FitError",
    "InsufficientData",
    "DegenerateInput",
    "DivisionByZeroBenchmark",
    "ConfigError",
]
