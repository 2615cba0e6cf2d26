"""
Cost Controller module.

Provides a running cost ledger, per-call cost computation and budget
threshold evaluation for LLM API calls.
"""
import csv
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Callable
from dataclasses import dataclass, asdict

from .config import AssistantConfig

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "timestamp", "request_id", "model", "input_tokens",
    "output_tokens", "total_tokens", "cost"
]


@dataclass(frozen=True)
class CallRecord:
    """Record of a single API call. The cost is fixed at record time."""
    timestamp: float
    request_id: str
    input_tokens: int
    output_tokens: int
    model: str
    cost: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_tokens"] = self.total_tokens
        return data


@dataclass(frozen=True)
class BudgetStatus:
    """Snapshot of the ledger against its limit."""
    current_cost: float
    budget_limit: float
    remaining: float
    usage_percentage: float
    is_over_budget: bool
    is_near_limit: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CostEstimate:
    """Projected effect of a call that has not been made."""
    estimated_cost: float
    estimated_input_tokens: int
    estimated_output_tokens: int
    current_total_cost: float
    new_total_cost: float
    would_exceed_budget: bool
    remaining_after_call: float
    context_limit: Optional[int] = None

    @property
    def estimated_total_tokens(self) -> int:
        return self.estimated_input_tokens + self.estimated_output_tokens

    @property
    def exceeds_context_window(self) -> bool:
        if self.context_limit is None:
            return False
        return self.estimated_total_tokens > self.context_limit

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["estimated_total_tokens"] = self.estimated_total_tokens
        data["exceeds_context_window"] = self.exceeds_context_window
        return data


class CostController:
    """
    Controls and monitors LLM API costs.

    Tracks calls, evaluates the budget and provides cost analytics.
    Reports are always derived from the call records.
    """

    def __init__(
        self,
        config: AssistantConfig,
        budget_limit: Optional[float] = None,
        alert_threshold: Optional[float] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize cost controller.

        Args:
            config: Assistant configuration (price table, defaults).
            budget_limit: Budget in USD, defaults to config.budget_limit.
            alert_threshold: Warn when usage reaches this fraction of budget.
            clock: Time source in seconds.
        """
        self.config = config
        self.budget_limit = config.budget_limit if budget_limit is None else budget_limit
        self.alert_threshold = config.warn_threshold if alert_threshold is None else alert_threshold
        self._clock = clock
        self._calls: List[CallRecord] = []

        logger.info(f"CostController initialized: budget_limit=${self.budget_limit:.2f}")

    @property
    def calls(self) -> List[CallRecord]:
        return list(self._calls)

    def calculate_single_call_cost(
        self,
        input_tokens: int,
        output_tokens: int,
        model: Optional[str] = None
    ) -> float:
        """
        Calculate the cost of one call from the price table in effect now.

        Args:
            input_tokens: Number of input tokens.
            output_tokens: Number of output tokens.
            model: Model name; unknown models use the default model's price.

        Returns:
            Cost in USD.
        """
        price = self.config.get_model_price(model)
        input_cost = (input_tokens / 1_000_000) * price.input_per_million
        output_cost = (output_tokens / 1_000_000) * price.output_per_million
        return input_cost + output_cost

    def record_call(
        self,
        input_tokens: int,
        output_tokens: int,
        model: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> CallRecord:
        """
        Record an API call.

        Args:
            input_tokens: Number of input tokens.
            output_tokens: Number of output tokens.
            model: Model name used.
            request_id: Upstream or caller request id.

        Returns:
            The appended CallRecord.
        """
        model = model or self.config.default_model
        record = CallRecord(
            timestamp=self._clock(),
            request_id=request_id or f"req-{uuid.uuid4().hex[:12]}",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
            cost=self.calculate_single_call_cost(input_tokens, output_tokens, model)
        )
        self._calls.append(record)

        logger.info(f"Recorded call: {input_tokens} in, {output_tokens} out, "
                   f"cost ${record.cost:.6f}")

        # Logged only; the call has already been made
        self.check_budget()
        return record

    def get_total_cost(self) -> float:
        """Sum of all recorded costs."""
        return sum(record.cost for record in self._calls)

    def check_budget(self) -> BudgetStatus:
        """
        Evaluate the ledger against the budget. Never mutates the ledger.

        Returns:
            Current BudgetStatus.
        """
        current = self.get_total_cost()
        status = BudgetStatus(
            current_cost=current,
            budget_limit=self.budget_limit,
            remaining=self.budget_limit - current,
            usage_percentage=round(current / self.budget_limit * 100, 2) if self.budget_limit > 0 else 0.0,
            is_over_budget=current >= self.budget_limit,
            is_near_limit=current >= self.budget_limit * self.alert_threshold
        )

        if status.is_over_budget:
            logger.error(f"Over budget: ${current:.4f} used of ${self.budget_limit:.2f}")
        elif status.is_near_limit:
            logger.warning(f"Approaching budget limit: {status.usage_percentage}% used")

        return status

    def estimate(
        self,
        input_tokens: int,
        output_tokens: int,
        model: Optional[str] = None,
        context_limit: Optional[int] = None
    ) -> CostEstimate:
        """
        Project the budget after a hypothetical call (pure).

        ``context_limit`` is the model's context window, when known.
        """
        estimated_cost = self.calculate_single_call_cost(input_tokens, output_tokens, model)
        current = self.get_total_cost()
        new_total = current + estimated_cost

        return CostEstimate(
            estimated_cost=estimated_cost,
            estimated_input_tokens=input_tokens,
            estimated_output_tokens=output_tokens,
            current_total_cost=current,
            new_total_cost=new_total,
            would_exceed_budget=new_total > self.budget_limit,
            remaining_after_call=self.budget_limit - new_total,
            context_limit=context_limit
        )

    def get_usage_by_model(self) -> Dict[str, Dict[str, Any]]:
        """Get call count, token and cost breakdown by model."""
        by_model: Dict[str, Dict[str, Any]] = {}
        for record in self._calls:
            if record.model not in by_model:
                by_model[record.model] = {
                    "calls": 0,
                    "input_tokens": 0,
                    "output_tokens": 0,
                    "total_tokens": 0,
                    "cost": 0.0
                }
            stats = by_model[record.model]
            stats["calls"] += 1
            stats["input_tokens"] += record.input_tokens
            stats["output_tokens"] += record.output_tokens
            stats["total_tokens"] += record.total_tokens
            stats["cost"] += record.cost
        return by_model

    def get_summary(self) -> Dict[str, Any]:
        """Aggregate totals over all recorded calls."""
        total_input = sum(r.input_tokens for r in self._calls)
        total_output = sum(r.output_tokens for r in self._calls)
        total_requests = len(self._calls)

        return {
            "total_requests": total_requests,
            "total_input_tokens": total_input,
            "total_output_tokens": total_output,
            "total_tokens": total_input + total_output,
            "total_cost": self.get_total_cost(),
            "average_tokens_per_request": (
                round((total_input + total_output) / total_requests)
                if total_requests > 0 else 0
            )
        }

    def get_report(self, recent: int = 10) -> Dict[str, Any]:
        """
        Get a detailed report.

        Args:
            recent: How many of the most recent calls to include.

        Returns:
            Dictionary with summary, budget, by_model and recent_calls.
        """
        return {
            "summary": self.get_summary(),
            "budget": self.check_budget().to_dict(),
            "by_model": self.get_usage_by_model(),
            "recent_calls": [r.to_dict() for r in self._calls[-recent:]] if recent > 0 else []
        }

    def reset(self) -> None:
        """Discard all records; the limit and threshold are kept."""
        self._calls = []
        logger.info("Cost controller reset")

    def export_to_csv(self, filepath: Optional[str] = None) -> Optional[str]:
        """
        Export the call records as CSV.

        Args:
            filepath: Target path (defaults to a timestamped file in the data dir).

        Returns:
            The written path, or None if writing failed.
        """
        if not filepath:
            filepath = os.path.join(
                self.config.data_dir, f"token-usage-{int(self._clock() * 1000)}.csv"
            )

        try:
            directory = os.path.dirname(filepath)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(filepath, "w", encoding="utf-8", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(CSV_HEADER)
                for record in self._calls:
                    writer.writerow([
                        datetime.fromtimestamp(record.timestamp, tz=timezone.utc).isoformat(),
                        record.request_id,
                        record.model,
                        record.input_tokens,
                        record.output_tokens,
                        record.total_tokens,
                        f"{record.cost:.6f}"
                    ])
        except OSError as e:
            logger.error(f"Failed to export call records to {filepath}: {e}")
            return None

        logger.info(f"Call records exported to {filepath}")
        return filepath
