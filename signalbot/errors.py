"""Error taxonomy for the signal engine."""

from __future__ import annotations


class SignalBotError(Exception):
    """Base class for every error raised by the engine."""


class InsufficientDataError(SignalBotError):
    """Too few candles for the requested indicator/period."""

    def __init__(self, indicator: str, required: int, got: int) -> None:
        self.indicator = indicator
        self.required = required
        self.got = got
        super().__init__(
            f"Insufficient data for {indicator} calculation. "
            f"Need at least {required} periods, got {got}"
        )


class InvalidConfigurationError(SignalBotError):
    """Configuration rejected at startup."""


class ComputationSkipped(SignalBotError):
    """A detector precondition was not met; the check yields no signal."""
