"""
Usage and cost accounting for provider calls.

A UsageTracker is created per provider adapter and passed in explicitly, so
tests (and multiple app instances in one process) never share counters. The
numbers are diagnostic only; nothing in the classification flow reads them.
"""

import logging
import threading
from dataclasses import dataclass

from models import UsageSnapshot

logger = logging.getLogger(__name__)


@dataclass
class Usage:
    """Token usage reported by a single provider call."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageTracker:
    """
    Accumulates call count, tokens and cost for one provider.

    Prices are USD per one million tokens. Embedding providers only bill
    input tokens, so they are constructed with output_price_per_1m=0.
    """

    def __init__(
        self,
        name: str,
        input_price_per_1m: float,
        output_price_per_1m: float = 0.0
    ):
        self.name = name
        self.input_price_per_1m = input_price_per_1m
        self.output_price_per_1m = output_price_per_1m
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        """Zero all counters."""
        self._calls = 0
        self._input_tokens = 0
        self._output_tokens = 0
        self._cost_usd = 0.0

    def cost_of(self, usage: Usage) -> float:
        return (
            usage.input_tokens * self.input_price_per_1m
            + usage.output_tokens * self.output_price_per_1m
        ) / 1_000_000

    def record(self, usage: Usage) -> float:
        """Add one call's usage and return its cost."""
        if usage is None or usage.total_tokens <= 0:
            return 0.0

        cost = self.cost_of(usage)
        with self._lock:
            self._calls += 1
            self._input_tokens += usage.input_tokens
            self._output_tokens += usage.output_tokens
            self._cost_usd += cost
            calls, total = self._calls, self._cost_usd

        logger.info(
            "[%s] call #%d: %d in + %d out tokens ≈ $%.6f (total ≈ $%.4f)",
            self.name, calls, usage.input_tokens, usage.output_tokens, cost, total
        )
        return cost

    def snapshot(self) -> UsageSnapshot:
        with self._lock:
            return UsageSnapshot(
                calls=self._calls,
                input_tokens=self._input_tokens,
                output_tokens=self._output_tokens,
                total_tokens=self._input_tokens + self._output_tokens,
                cost_usd=self._cost_usd,
            )
