"""
coldstore_services.integrity_service -- detect corruption in layers and balances.

Responsibility:
    Load cost layers and balance rows and run the pure integrity checks in
    coldstore_engines.integrity over them.  Findings are reported, never
    repaired; ``assert_consistent`` turns a dirty report into
    LedgerCorruptionError for callers that must stop.

Architecture position:
    Services -- read-only.  Runs outside the movement path (scheduled or
    on demand); it takes no stock key locks, so a report taken while
    movements are in flight reflects whatever each read saw.
"""

from __future__ import annotations

import time

from sqlalchemy import select
from sqlalchemy.orm import Session

from coldstore_engines.integrity import IntegrityReport, build_report
from coldstore_kernel.exceptions import LedgerCorruptionError
from coldstore_kernel.logging_config import get_logger
from coldstore_kernel.models.balance import InventoryBalanceModel
from coldstore_kernel.models.cost_layer import CostLayerModel

logger = get_logger("services.integrity")


class IntegrityService:
    """Runs the cost layer sweep and balance reconciliation."""

    def __init__(self, session: Session):
        self._session = session

    def _layers(self, item_id: str | None):
        stmt = select(CostLayerModel).order_by(
            CostLayerModel.stock_key, CostLayerModel.receipt_date, CostLayerModel.sequence
        )
        if item_id is not None:
            stmt = stmt.where(CostLayerModel.item_id == item_id)
        return [row.to_info() for row in self._session.execute(stmt).scalars()]

    def _balances(self, item_id: str | None):
        stmt = select(InventoryBalanceModel).order_by(InventoryBalanceModel.stock_key)
        if item_id is not None:
            stmt = stmt.where(InventoryBalanceModel.item_id == item_id)
        return [row.to_info() for row in self._session.execute(stmt).scalars()]

    def validate_cost_layers(self, item_id: str | None = None) -> IntegrityReport:
        """Per-layer checks only: quantities, consumed flag, unit cost."""
        report = build_report([], self._layers(item_id), reconcile_balances=False)
        self._log(report, "cost_layer_validation_completed", item_id)
        return report

    def run(self, item_id: str | None = None) -> IntegrityReport:
        """Per-layer checks plus balance-versus-layer reconciliation."""
        t0 = time.monotonic()
        report = build_report(self._balances(item_id), self._layers(item_id))
        self._log(report, "integrity_sweep_completed", item_id, t0)
        return report

    def assert_consistent(self, item_id: str | None = None) -> IntegrityReport:
        """
        Run the full sweep and raise if anything is wrong.

        Raises:
            LedgerCorruptionError: at least one issue was found.
        """
        report = self.run(item_id)
        if not report.is_valid:
            logger.error(
                "ledger_corruption_detected",
                extra={"issue_count": len(report.issues), "item_id": item_id},
            )
            raise LedgerCorruptionError(
                len(report.issues), [str(issue) for issue in report.issues]
            )
        return report

    @staticmethod
    def _log(report: IntegrityReport, event: str, item_id: str | None, t0: float | None = None):
        extra = {
            "item_id": item_id,
            "layers_checked": report.layers_checked,
            "balances_checked": report.balances_checked,
            "issue_count": len(report.issues),
            "valuation_drift_keys": len(report.valuation_drift),
        }
        if t0 is not None:
            extra["duration_ms"] = round((time.monotonic() - t0) * 1000, 2)
        if report.is_valid:
            logger.info(event, extra=extra)
        else:
            logger.warning(event, extra=extra)
            for issue in report.issues:
                logger.warning(
                    "integrity_issue",
                    extra={
                        "kind": issue.kind.value,
                        "issue_stock_key": issue.stock_key,
                        "layer_id": issue.layer_id,
                        "detail": issue.message,
                    },
                )
