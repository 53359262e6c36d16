"""Per-(user, model) token counters and cost calculation.

Accounting is best-effort: a failed write raises UsageWriteError, which the
orchestrator logs without affecting the user-visible response.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from atrium.db.models import UsageRecord
from atrium.db.repository import Repository
from atrium.errors import UsageWriteError
from atrium.providers.base import Usage

logger = logging.getLogger(__name__)

_PER_MILLION = 1_000_000


@dataclass
class UsageLine:
    """One counter row plus its cost under the user's effective rate."""

    model: str
    input_tokens: int
    output_tokens: int
    cost: float


class UsageLedger:
    """Records token usage and prices it.

    Args:
        repo: Store holding ``usage_counters`` and ``usage_rates``.
        default_input_rate: USD per million input tokens when the user has no override.
        default_output_rate: USD per million output tokens when the user has no override.
    """

    def __init__(
        self,
        repo: Repository,
        default_input_rate: float = 3.0,
        default_output_rate: float = 15.0,
    ) -> None:
        self._repo = repo
        self.default_input_rate = default_input_rate
        self.default_output_rate = default_output_rate

    def record_usage(self, user_id: str, model: str, usage: Usage) -> None:
        """Add *usage* to the (user, model) counters; no-op when both counts are zero.

        Raises:
            UsageWriteError: The counter row could not be written.
        """
        if usage.is_empty:
            return
        try:
            self._repo.increment_usage(user_id, model, usage.input_tokens, usage.output_tokens)
        except sqlite3.Error as exc:
            raise UsageWriteError(f"Could not record usage for {user_id}/{model}: {exc}") from exc

    def rates_for(self, user_id: str) -> tuple[float, float]:
        """(input, output) USD-per-million rates in effect for *user_id*.

        An unreadable rate row prices at the defaults.
        """
        try:
            override = self._repo.get_rate(user_id)
        except sqlite3.Error as exc:
            logger.warning("Rate lookup for %s failed, using default rates: %s", user_id, exc)
            return self.default_input_rate, self.default_output_rate
        if override is not None:
            return override
        return self.default_input_rate, self.default_output_rate

    def calculate_cost(self, input_tokens: int, output_tokens: int, user_id: str) -> float:
        if not input_tokens and not output_tokens:
            return 0.0
        input_rate, output_rate = self.rates_for(user_id)
        return (input_tokens / _PER_MILLION) * input_rate + (
            output_tokens / _PER_MILLION
        ) * output_rate

    def set_rate(self, user_id: str, input_per_million: float, output_per_million: float) -> None:
        if input_per_million < 0 or output_per_million < 0:
            raise ValueError("Rates must be non-negative")
        self._repo.set_rate(user_id, input_per_million, output_per_million)

    def usage_for_user(self, user_id: str) -> list[UsageLine]:
        records: list[UsageRecord] = self._repo.get_usage(user_id)
        input_rate, output_rate = self.rates_for(user_id)
        return [
            UsageLine(
                model=r.model,
                input_tokens=r.input_tokens,
                output_tokens=r.output_tokens,
                cost=(r.input_tokens / _PER_MILLION) * input_rate
                + (r.output_tokens / _PER_MILLION) * output_rate,
            )
            for r in records
        ]
