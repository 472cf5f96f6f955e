"""
历史退货回填服务

遍历所有已完成的退货，按销售分组，在每个销售自己的事务内
按时间顺序扣减明细数量并重建 total_returned / adjusted_total。
已经对账过的销售会被跳过，单个销售失败不影响其他销售。
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pos_core.config import Settings
from pos_core.repositories import ReturnRecord, SaleRecord, SalesRepository, UnitOfWorkFactory
from pos_core.utils.errors import InvalidPrecondition, ReconcileError
from pos_core.utils.logger import LogContext, get_logger
from pos_core.utils.money import ZERO, money_sum
from .base import BaseService
from .reconciler import SaleReconciler

logger = get_logger(__name__)


@dataclass
class SaleBackfillResult:
    sale_id: str
    updated: bool
    returns_applied: int = 0
    skip_reason: Optional[str] = None


@dataclass
class BackfillSummary:
    """回填汇总"""
    sales_seen: int = 0
    returns_processed: int = 0
    sales_updated: List[str] = field(default_factory=list)
    sales_skipped: Dict[str, str] = field(default_factory=dict)
    sales_failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.sales_failed


class HistoricalBackfiller(BaseService):
    """历史回填器"""

    def __init__(
        self,
        uow: UnitOfWorkFactory,
        settings: Optional[Settings] = None,
        reconciler: Optional[SaleReconciler] = None
    ):
        super().__init__(uow, settings)
        self.reconciler = reconciler or SaleReconciler(uow, self.settings)

    async def run(self) -> BackfillSummary:
        summary = BackfillSummary()

        sale_ids = await self.execute_with_session(
            lambda repo: repo.list_sale_ids_with_completed_returns()
        )
        summary.sales_seen = len(sale_ids)
        logger.info("backfill_started", sales=len(sale_ids))

        for sale_id in sale_ids:
            with LogContext(operation="backfill", sale_id=sale_id):
                try:
                    result = await self.execute_with_transaction(self._backfill_sale_tx, sale_id)
                except ReconcileError as e:
                    logger.error("backfill_sale_failed", code=e.code, detail=e.detail)
                    summary.sales_failed[sale_id] = e.one_line()
                    continue
                except Exception as e:
                    logger.error("backfill_sale_failed", exc_info=True)
                    summary.sales_failed[sale_id] = f"{type(e).__name__}: {e}"
                    continue

            if result.updated:
                summary.sales_updated.append(sale_id)
                summary.returns_processed += result.returns_applied
            else:
                summary.sales_skipped[sale_id] = result.skip_reason

        logger.info(
            "backfill_finished",
            updated=len(summary.sales_updated),
            skipped=len(summary.sales_skipped),
            failed=len(summary.sales_failed),
        )
        return summary

    async def _backfill_sale_tx(self, repo: SalesRepository, sale_id: str) -> SaleBackfillResult:
        sale = await repo.load_sale(sale_id, lock=True)
        if sale is None:
            raise InvalidPrecondition("SALE_NOT_FOUND", f"Sale {sale_id} not found")

        returns = await repo.load_completed_returns(sale_id)
        skip_reason = self._skip_reason(sale, returns)
        if skip_reason:
            logger.warning("backfill_sale_skipped", reason=skip_reason)
            return SaleBackfillResult(sale_id=sale_id, updated=False, skip_reason=skip_reason)

        for ret in returns:
            await self.reconciler.apply_return_items(repo, sale, ret)
            await repo.mark_return_reconciled(ret.id)

        total_returned = money_sum(ret.total_refund for ret in returns)
        await self.reconciler.write_monetary(repo, sale, total_returned)

        logger.info(
            "backfill_sale_updated",
            returns=len(returns),
            total=str(sale.total),
            total_returned=str(sale.total_returned),
            adjusted_total=str(sale.adjusted_total),
        )
        return SaleBackfillResult(sale_id=sale_id, updated=True, returns_applied=len(returns))

    def _skip_reason(self, sale: SaleRecord, returns: List[ReturnRecord]) -> Optional[str]:
        """
        只有“从未对账”的销售才能回填：
        total_returned 为 0、退货都没有 reconciled 标记、明细剩余数量之和仍等于销售件数 sales.items
        """
        if sale.status_name != self.settings.completed_status_name:
            return f"sale status is {sale.status_name}"
        if sale.total_returned != ZERO:
            return f"total_returned already {sale.total_returned}"
        if any(ret.reconciled for ret in returns):
            return "returns already reconciled"

        # sales.items 记录下单时的件数，明细数量被扣减过则不再相等
        current_units = sum(item.qty for item in sale.items)
        if current_units != sale.items_count:
            return f"item quantities already changed ({current_units} of {sale.items_count} units left)"

        return None
