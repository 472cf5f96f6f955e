"""
单笔销售 / 退货检查（只读）
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from pos_core.repositories import ReturnRecord, SaleRecord, SalesRepository
from pos_core.utils.datetime_utils import utc_to_local
from pos_core.utils.errors import InvalidPrecondition
from pos_core.utils.logger import LogContext, get_logger
from pos_core.utils.money import format_money, money_close, money_sum
from .base import BaseService

logger = get_logger(__name__)


@dataclass
class SaleInspection:
    sale: SaleRecord
    returns: List[ReturnRecord] = field(default_factory=list)
    tolerance: Decimal = Decimal("0.01")

    @property
    def invariant_holds(self) -> bool:
        """|total - total_returned - adjusted_total| < 0.01"""
        return money_close(self.sale.discrepancy, 0, self.tolerance)

    @property
    def refunds_total(self) -> Decimal:
        return money_sum(ret.total_refund for ret in self.returns)

    @property
    def refunds_match(self) -> bool:
        """total_returned 与已完成退货退款之和一致"""
        return money_close(self.sale.total_returned, self.refunds_total, self.tolerance)


@dataclass
class ReturnInspection:
    ret: ReturnRecord
    sale: Optional[SaleRecord]


class SaleInspector(BaseService):
    """检查器"""

    async def inspect_sale(self, sale_id: Optional[str] = None) -> SaleInspection:
        """sale_id 为空时选取最近一笔有已完成退货的销售"""
        with LogContext(operation="inspect", sale_id=sale_id):
            return await self.execute_with_session(self._inspect_sale_tx, sale_id)

    async def inspect_return(self, return_id: str) -> ReturnInspection:
        with LogContext(operation="inspect_return", return_id=return_id):
            return await self.execute_with_session(self._inspect_return_tx, return_id)

    async def _inspect_sale_tx(self, repo: SalesRepository, sale_id: Optional[str]) -> SaleInspection:
        if sale_id is None:
            sale_id = await repo.find_sale_with_completed_returns()
            if sale_id is None:
                raise InvalidPrecondition("NO_SALE_WITH_RETURNS", "No sale has a completed return")

        sale = await repo.load_sale(sale_id)
        if sale is None:
            raise InvalidPrecondition("SALE_NOT_FOUND", f"Sale {sale_id} not found")

        returns = await repo.load_completed_returns(sale_id)
        inspection = SaleInspection(sale=sale, returns=returns, tolerance=self.settings.money_tolerance)
        if not inspection.invariant_holds:
            logger.error("sale_invariant_violated", sale_id=sale.id, discrepancy=str(sale.discrepancy))
        return inspection

    async def _inspect_return_tx(self, repo: SalesRepository, return_id: str) -> ReturnInspection:
        ret = await repo.load_return(return_id)
        if ret is None:
            raise InvalidPrecondition("RETURN_NOT_FOUND", f"Return {return_id} not found")
        sale = await repo.load_sale(ret.sale_id)
        return ReturnInspection(ret=ret, sale=sale)


def render_sale_inspection(inspection: SaleInspection, timezone_name: str, symbol: str = "Q") -> List[str]:
    sale = inspection.sale
    lines = [
        f"销售 {sale.id}",
        f"  客户:     {sale.customer or '-'}",
        f"  状态:     {sale.status_name}",
        f"  支付方式: {sale.payment_method or '-'}",
        f"  日期:     {utc_to_local(sale.date, timezone_name)} ({timezone_name})",
        "",
        "💰 金额",
        f"  原始总额: {format_money(sale.total, symbol)}",
        f"  已退款:   {format_money(sale.total_returned, symbol)}",
        f"  调整后:   {format_money(sale.adjusted_total, symbol)}",
        "",
        "📦 明细",
    ]
    for item in sale.items:
        lines.append(
            f"  - {item.product_name or item.product_id}  数量 {item.qty}"
            f"  单价 {format_money(item.price, symbol)}  小计 {format_money(item.line_subtotal, symbol)}"
        )

    if inspection.returns:
        lines.append("")
        lines.append(f"🔄 已完成退货 ({len(inspection.returns)})")
        for idx, ret in enumerate(inspection.returns, start=1):
            lines.append(
                f"  {idx}. {ret.id}  {utc_to_local(ret.return_date, timezone_name)}"
                f"  退款 {format_money(ret.total_refund, symbol)}  已对账 {'是' if ret.reconciled else '否'}"
            )
            for item in ret.items:
                lines.append(
                    f"     - {item.product_name or item.product_id}  退回 {item.qty_returned}"
                    f"  退款 {format_money(item.refund_amount, symbol)}"
                )
    else:
        lines.append("")
        lines.append("✅ 没有已完成的退货")

    lines.append("")
    lines.append(f"📊 {sale.total} - {sale.total_returned} = {sale.adjusted_total}")
    lines.append(f"{'✅' if inspection.invariant_holds else '❌'} 金额不变量成立: {inspection.invariant_holds}")
    lines.append(
        f"{'✅' if inspection.refunds_match else '⚠️ '} 已退款与退货合计一致:"
        f" {format_money(inspection.refunds_total, symbol)}"
    )
    return lines


def render_return_inspection(inspection: ReturnInspection, timezone_name: str, symbol: str = "Q") -> List[str]:
    ret = inspection.ret
    lines = [
        f"退货 {ret.id}",
        f"  日期:     {utc_to_local(ret.return_date, timezone_name)}",
        f"  状态:     {ret.status_name}",
        f"  退款合计: {format_money(ret.total_refund, symbol)}",
        f"  已对账:   {'是' if ret.reconciled else '否'}",
    ]

    sale = inspection.sale
    if sale is not None:
        lines.extend([
            "",
            f"关联销售 {sale.id}",
            f"  总额:   {format_money(sale.total, symbol)}",
            f"  已退款: {format_money(sale.total_returned, symbol)}",
            f"  调整后: {format_money(sale.adjusted_total, symbol)}",
        ])
    else:
        lines.append(f"❌ 关联销售 {ret.sale_id} 不存在")

    lines.append("")
    lines.append("退货明细")
    for item in ret.items:
        lines.append(f"  - {item.product_name or item.product_id}")
        lines.append(f"    退回数量: {item.qty_returned}  退款: {format_money(item.refund_amount, symbol)}")
        lines.append(f"    销售明细: {item.sale_item_id}")
        sale_item = sale.get_item(item.sale_item_id) if sale is not None else None
        if sale_item is not None:
            lines.append(f"    销售明细当前数量: {sale_item.qty}")
    return lines
