"""
销售对账服务
退货进入 Completada 时，在单个事务内把退货应用到其所属销售：
扣减明细数量、重算 total_returned / adjusted_total、标记退货已对账
"""
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from pos_core.models import ReturnStatusName
from pos_core.repositories import ReturnRecord, SaleRecord, SalesRepository
from pos_core.utils.errors import InvalidPrecondition, InvariantViolation
from pos_core.utils.logger import LogContext, get_logger
from pos_core.utils.money import ZERO, money_sub
from .base import BaseService

logger = get_logger(__name__)


@dataclass
class ReconcileOutcome:
    """一次对账的结果"""
    sale_id: str
    return_id: str
    applied: bool
    total: Decimal
    total_returned: Decimal
    adjusted_total: Decimal
    item_quantities: Dict[int, int] = field(default_factory=dict)
    clamped_items: List[int] = field(default_factory=list)


class SaleReconciler(BaseService):
    """销售对账器"""

    @property
    def completed_status(self) -> str:
        return self.settings.completed_status_name

    @property
    def terminal_statuses(self) -> frozenset:
        return frozenset({ReturnStatusName.REJECTED, self.completed_status})

    async def reconcile_return_completion(self, return_id: str) -> ReconcileOutcome:
        """
        把一张已完成的退货应用到其销售

        幂等：退货已带 reconciled 标记时直接返回，不做任何写入。

        Raises:
            InvalidPrecondition: 退货不存在 / 未完成 / 无明细，销售或销售明细缺失
            InvariantViolation: 退款总额超过销售总额
        """
        with LogContext(operation="reconcile", return_id=return_id):
            return await self.execute_with_transaction(self._reconcile_tx, return_id)

    async def transition_return(self, return_id: str, status_name: str) -> Optional[ReconcileOutcome]:
        """
        修改退货状态；进入 Completada 时在同一事务内完成对账

        终态（Completada、Rechazada）不可再转换。
        """
        with LogContext(operation="transition_return", return_id=return_id):
            return await self.execute_with_transaction(self._transition_tx, return_id, status_name)

    async def _reconcile_tx(self, repo: SalesRepository, return_id: str) -> ReconcileOutcome:
        ret = await self._load_return(repo, return_id)
        self._require_completed(ret)

        sale = await self.lock_sale(repo, ret.sale_id)
        # 加锁后重新读取，保证 reconciled 标记与锁内状态一致
        ret = await self._load_return(repo, return_id)

        if ret.reconciled:
            logger.info("return_already_reconciled", sale_id=sale.id)
            return ReconcileOutcome(
                sale_id=sale.id,
                return_id=ret.id,
                applied=False,
                total=sale.total,
                total_returned=sale.total_returned,
                adjusted_total=sale.adjusted_total,
                item_quantities={item.id: item.qty for item in sale.items},
            )

        return await self._apply(repo, sale, ret)

    async def _transition_tx(
        self,
        repo: SalesRepository,
        return_id: str,
        status_name: str
    ) -> Optional[ReconcileOutcome]:
        ret = await self._load_return(repo, return_id)
        sale = await self.lock_sale(repo, ret.sale_id)
        ret = await self._load_return(repo, return_id)

        if ret.status_name in self.terminal_statuses:
            raise InvalidPrecondition(
                "RETURN_STATUS_TERMINAL",
                f"Return {return_id} is {ret.status_name} and cannot change status"
            )
        if ret.status_name == status_name:
            raise InvalidPrecondition(
                "RETURN_STATUS_UNCHANGED",
                f"Return {return_id} is already {status_name}"
            )

        await repo.set_return_status(return_id, status_name)
        logger.info("return_status_changed", previous=ret.status_name, current=status_name)

        if status_name != self.completed_status:
            return None

        ret = await self._load_return(repo, return_id)
        self._require_completed(ret)
        return await self._apply(repo, sale, ret)

    async def _apply(self, repo: SalesRepository, sale: SaleRecord, ret: ReturnRecord) -> ReconcileOutcome:
        clamped = await self.apply_return_items(repo, sale, ret)
        await repo.mark_return_reconciled(ret.id)

        total_returned = await repo.sum_refunds_for_sale(sale.id)
        await self.write_monetary(repo, sale, total_returned)

        logger.info(
            "return_reconciled",
            sale_id=sale.id,
            total=str(sale.total),
            total_returned=str(sale.total_returned),
            adjusted_total=str(sale.adjusted_total),
        )
        return ReconcileOutcome(
            sale_id=sale.id,
            return_id=ret.id,
            applied=True,
            total=sale.total,
            total_returned=sale.total_returned,
            adjusted_total=sale.adjusted_total,
            item_quantities={item.id: item.qty for item in sale.items},
            clamped_items=clamped,
        )

    async def lock_sale(self, repo: SalesRepository, sale_id: str) -> SaleRecord:
        """对销售行加锁并加载；只有 Completada 的销售可以对账"""
        sale = await repo.load_sale(sale_id, lock=True)
        if sale is None:
            raise InvalidPrecondition("SALE_NOT_FOUND", f"Sale {sale_id} not found")
        if sale.status_name != self.completed_status:
            raise InvalidPrecondition(
                "SALE_NOT_COMPLETED",
                f"Sale {sale_id} has status {sale.status_name}"
            )
        return sale

    async def apply_return_items(
        self,
        repo: SalesRepository,
        sale: SaleRecord,
        ret: ReturnRecord
    ) -> List[int]:
        """
        按退货明细扣减销售明细数量（下限为 0），同时更新内存中的 sale 记录

        Returns:
            触发 0 下限截断的销售明细 ID
        """
        returned_by_item: Dict[int, int] = defaultdict(int)
        for return_item in ret.items:
            returned_by_item[return_item.sale_item_id] += return_item.qty_returned

        clamped = []
        for sale_item_id, qty_returned in returned_by_item.items():
            item = sale.get_item(sale_item_id)
            if item is None:
                raise InvalidPrecondition(
                    "SALE_ITEM_NOT_FOUND",
                    f"Sale item {sale_item_id} referenced by return {ret.id} does not belong to sale {sale.id}"
                )

            remaining = item.qty - qty_returned
            if remaining < 0:
                # 上游退货数量超过剩余数量
                logger.warning(
                    "sale_item_qty_clamped",
                    sale_id=sale.id,
                    sale_item_id=sale_item_id,
                    current_qty=item.qty,
                    qty_returned=qty_returned,
                )
                clamped.append(sale_item_id)
                remaining = 0

            await repo.update_sale_item_qty(sale_item_id, remaining)
            logger.debug("sale_item_qty_updated", sale_item_id=sale_item_id, before=item.qty, after=remaining)
            item.qty = remaining

        return clamped

    async def write_monetary(self, repo: SalesRepository, sale: SaleRecord, total_returned: Decimal) -> None:
        """写入 total_returned 与 adjusted_total = total - total_returned"""
        adjusted_total = money_sub(sale.total, total_returned)
        if total_returned < ZERO or adjusted_total < ZERO:
            raise InvariantViolation(
                "TOTAL_RETURNED_OUT_OF_RANGE",
                f"Sale {sale.id}: total_returned {total_returned} outside [0, {sale.total}]",
                sale_id=sale.id,
            )

        await repo.update_sale_monetary(sale.id, total_returned, adjusted_total)
        sale.total_returned = total_returned
        sale.adjusted_total = adjusted_total

    async def _load_return(self, repo: SalesRepository, return_id: str) -> ReturnRecord:
        ret = await repo.load_return(return_id)
        if ret is None:
            raise InvalidPrecondition("RETURN_NOT_FOUND", f"Return {return_id} not found")
        return ret

    def _require_completed(self, ret: ReturnRecord) -> None:
        if ret.status_name != self.completed_status:
            raise InvalidPrecondition(
                "RETURN_NOT_COMPLETED",
                f"Return {ret.id} has status {ret.status_name}"
            )
        if not ret.items:
            raise InvalidPrecondition("RETURN_HAS_NO_ITEMS", f"Return {ret.id} has no items")
