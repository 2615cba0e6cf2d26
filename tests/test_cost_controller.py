"""
Unit tests for CostController module.

Tests cost calculation, the call ledger, budget evaluation and reporting.
"""
import pytest
import csv
import os

os.environ["GOOGLE_API_KEY"] = "test_api_key"


class TestCostCalculation:
    """Tests for per-call cost computation."""

    def test_known_model_price(self, config):
        """Cost uses the per-million prices of the model."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        cost = controller.calculate_single_call_cost(1_000_000, 1_000_000, "gemini-1.5-flash")
        assert cost == pytest.approx(0.075 + 0.30)

    def test_unknown_model_falls_back_to_default(self, config):
        """Unknown models are priced like the default model."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        unknown = controller.calculate_single_call_cost(1000, 500, "mystery-model")
        default = controller.calculate_single_call_cost(1000, 500, config.default_model)
        assert unknown == default

    def test_zero_tokens_cost_nothing(self, config):
        """No tokens, no cost."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        assert controller.calculate_single_call_cost(0, 0) == 0


class TestRecordCall:
    """Tests for recording calls."""

    def test_record_call(self, config, fake_clock):
        """Recording appends a record with a computed cost."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config, clock=fake_clock)
        record = controller.record_call(1000, 500, "gemini-1.5-pro", request_id="req-1")

        assert record.request_id == "req-1"
        assert record.total_tokens == 1500
        assert record.timestamp == fake_clock.now
        assert record.cost == pytest.approx(1000 / 1e6 * 1.25 + 500 / 1e6 * 5.00)
        assert controller.calls == [record]

    def test_generated_request_id(self, config):
        """Request ids are generated when not supplied."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        first = controller.record_call(10, 10)
        second = controller.record_call(10, 10)
        assert first.request_id.startswith("req-")
        assert first.request_id != second.request_id

    def test_default_model_used(self, config):
        """Calls without a model are recorded against the default model."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        assert controller.record_call(10, 10).model == config.default_model

    def test_cost_additivity_across_price_change(self, make_config):
        """Past costs are never recomputed when prices change."""
        from clever_assistant.utils.config import MODEL_PRICES, ModelPrice
        from clever_assistant.utils.cost_controller import CostController

        config = make_config(model_prices=dict(MODEL_PRICES))
        controller = CostController(config)

        first = controller.record_call(1_000_000, 0, "gemini-1.5-flash")
        first_cost = controller.calculate_single_call_cost(1_000_000, 0, "gemini-1.5-flash")
        config.model_prices["gemini-1.5-flash"] = ModelPrice(1.0, 2.0, "Repriced")
        second = controller.record_call(1_000_000, 0, "gemini-1.5-flash")

        assert first.cost == pytest.approx(first_cost)
        assert second.cost == pytest.approx(1.0)
        assert controller.get_total_cost() == pytest.approx(first_cost + 1.0)


class TestCheckBudget:
    """Tests for budget evaluation."""

    def test_fresh_ledger(self, config):
        """A fresh ledger is within budget."""
        from clever_assistant.utils.cost_controller import CostController

        status = CostController(config).check_budget()
        assert status.current_cost == 0
        assert status.remaining == config.budget_limit
        assert status.is_over_budget is False
        assert status.is_near_limit is False

    def test_over_budget(self, make_config):
        """A call costing more than the limit puts the ledger over budget."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(make_config(budget_limit=0.50))
        # 0.10 input + 0.50 output on gemini-1.5-pro
        record = controller.record_call(80_000, 100_000, "gemini-1.5-pro")
        assert record.cost == pytest.approx(0.60)

        status = controller.check_budget()
        assert status.is_over_budget is True
        assert status.remaining == pytest.approx(-0.10)

    def test_exactly_at_limit_is_over(self, make_config):
        """Reaching the limit counts as over budget."""
        from clever_assistant.utils.config import ModelPrice
        from clever_assistant.utils.cost_controller import CostController

        config = make_config(
            budget_limit=1.0,
            model_prices={"gemini-1.5-flash": ModelPrice(1.0, 0.0, "Flat")}
        )
        controller = CostController(config)
        controller.record_call(1_000_000, 0)
        assert controller.check_budget().is_over_budget is True

    def test_near_limit(self, make_config):
        """Usage at the warn fraction is near the limit."""
        from clever_assistant.utils.config import ModelPrice
        from clever_assistant.utils.cost_controller import CostController

        config = make_config(
            budget_limit=1.0,
            warn_threshold=0.8,
            model_prices={"gemini-1.5-flash": ModelPrice(0.8, 0.0, "Flat")}
        )
        controller = CostController(config)
        controller.record_call(1_000_000, 0)

        status = controller.check_budget()
        assert status.is_near_limit is True
        assert status.is_over_budget is False
        assert status.usage_percentage == pytest.approx(80.0)

    def test_check_budget_is_idempotent(self, config):
        """Repeated checks never change the current cost."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        controller.record_call(5000, 2000)
        costs = {controller.check_budget().current_cost for _ in range(10)}
        assert len(costs) == 1
        assert len(controller.calls) == 1


class TestEstimate:
    """Tests for pre-flight estimates."""

    def test_estimate_is_pure(self, config):
        """Estimating does not record anything."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        estimate = controller.estimate(1000, 500)

        assert estimate.estimated_cost > 0
        assert estimate.estimated_total_tokens == 1500
        assert controller.calls == []

    def test_estimate_would_exceed(self, make_config):
        """Projected totals above the limit are flagged."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(make_config(budget_limit=0.50))
        estimate = controller.estimate(80_000, 100_000, "gemini-1.5-pro")

        assert estimate.would_exceed_budget is True
        assert estimate.new_total_cost == pytest.approx(0.60)

    def test_estimate_context_window(self, config):
        """Estimates compare prompt plus output with the context limit."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)

        assert controller.estimate(1000, 500).exceeds_context_window is False
        assert controller.estimate(1000, 500, context_limit=1500).exceeds_context_window is False
        assert controller.estimate(1000, 501, context_limit=1500).exceeds_context_window is True


class TestReporting:
    """Tests for reset, reports and CSV export."""

    def test_reset_keeps_limits(self, make_config):
        """Reset clears records but keeps limit and threshold."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(make_config(budget_limit=2.0, warn_threshold=0.5))
        controller.record_call(1000, 1000)
        controller.reset()

        assert controller.calls == []
        assert controller.get_total_cost() == 0
        assert controller.budget_limit == 2.0
        assert controller.alert_threshold == 0.5

    def test_report_by_model(self, config):
        """Report aggregates per model."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        controller.record_call(100, 50, "gemini-1.5-flash")
        controller.record_call(200, 100, "gemini-1.5-flash")
        controller.record_call(10, 5, "gemini-1.5-pro")

        report = controller.get_report()
        flash = report["by_model"]["gemini-1.5-flash"]
        assert flash["calls"] == 2
        assert flash["input_tokens"] == 300
        assert flash["total_tokens"] == 450
        assert report["summary"]["total_requests"] == 3
        assert report["summary"]["total_tokens"] == 465
        assert report["summary"]["total_cost"] == pytest.approx(controller.get_total_cost())

    def test_report_recent_window(self, config):
        """Only the most recent calls are listed."""
        from clever_assistant.utils.cost_controller import CostController

        controller = CostController(config)
        for i in range(15):
            controller.record_call(i, i, request_id=f"req-{i}")

        recent = controller.get_report()["recent_calls"]
        assert len(recent) == 10
        assert recent[0]["request_id"] == "req-5"
        assert recent[-1]["request_id"] == "req-14"

    def test_export_to_csv(self, config, tmp_path):
        """CSV export writes a header and one row per call."""
        from clever_assistant.utils.cost_controller import CostController, CSV_HEADER

        controller = CostController(config)
        controller.record_call(100, 50, request_id="req-a")
        controller.record_call(200, 25, request_id="req-b")

        path = controller.export_to_csv(str(tmp_path / "usage.csv"))
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))

        assert rows[0] == CSV_HEADER
        assert len(rows) == 3
        assert rows[1][1] == "req-a"
        assert rows[1][5] == "150"

    def test_export_default_path(self, config):
        """Without a path the file lands in the data directory."""
        from clever_assistant.utils.cost_controller import CostController

        path = CostController(config).export_to_csv()
        assert path.startswith(config.data_dir)
        assert os.path.exists(path)

    def test_export_failure_returns_none(self, config, tmp_path):
        """Write failures are logged and reported as None."""
        from clever_assistant.utils.cost_controller import CostController

        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        assert CostController(config).export_to_csv(str(blocker / "usage.csv")) is None
