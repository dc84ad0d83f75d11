"""
Tests for engine invocation tracing.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from coldstore_engines.costing.fifo import select_layers
from coldstore_engines.tracer import TRACE_MESSAGE, input_fingerprint, traced_engine
from coldstore_kernel.domain.dtos import CostLayerInfo
from coldstore_kernel.domain.stock_key import StockKey

KEY = StockKey(item_id="ITEM-1", warehouse_id="WH-1")


class TestFingerprint:

    def test_decimal_scale_ignored(self):
        names = ("quantity",)

        assert input_fingerprint(names, {"quantity": Decimal("10")}) == input_fingerprint(
            names, {"quantity": Decimal("10.000")}
        )

    def test_stock_key_uses_canonical_form(self):
        names = ("stock_key",)

        assert input_fingerprint(names, {"stock_key": KEY}) == input_fingerprint(
            names, {"stock_key": "ITEM-1|-|WH-1|-|-"}
        )

    def test_missing_field_is_null(self):
        assert input_fingerprint(("a",), {}) == input_fingerprint(("a",), {"a": None})

    def test_length(self):
        assert len(input_fingerprint(("a",), {"a": 1})) == 16


class TestTracedEngine:

    def test_trace_logged_with_summary(self, captured_logs):
        @traced_engine("doubler", "2.1", fingerprint_fields=("x",), summarize=lambda r: {"result": r})
        def double(*, x):
            return x * 2

        assert double(x=4) == 8

        trace = [r for r in captured_logs() if r["message"] == TRACE_MESSAGE][-1]
        assert trace["engine_name"] == "doubler"
        assert trace["engine_version"] == "2.1"
        assert trace["result"] == 8
        assert trace["input_fingerprint"] == input_fingerprint(("x",), {"x": 4})
        assert double.engine_name == "doubler"

    def test_fifo_selection_traced(self, captured_logs):
        layer = CostLayerInfo(
            id=uuid4(),
            stock_key=KEY,
            sequence=1,
            receipt_date=date(2025, 1, 1),
            original_quantity=Decimal("10"),
            remaining_quantity=Decimal("10"),
            unit_cost=Decimal("5"),
            is_fully_consumed=False,
        )

        select_layers(stock_key=KEY, quantity_needed=Decimal("4"), layers=[layer])

        traces = [
            r for r in captured_logs()
            if r["message"] == TRACE_MESSAGE and r["engine_name"] == "fifo"
        ]
        assert traces[-1]["layers_used"] == 1
        assert traces[-1]["total_cost"] == "20"
