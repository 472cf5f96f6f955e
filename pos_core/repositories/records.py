"""
仓储层返回的纯数据记录
服务层只依赖这些记录，不直接接触 ORM 对象
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pos_core.utils.money import ZERO, line_subtotal, money_sub


@dataclass
class SaleItemRecord:
    """销售明细"""
    id: int
    sale_id: str
    product_id: str
    price: Decimal
    qty: int
    product_name: Optional[str] = None

    @property
    def line_subtotal(self) -> Decimal:
        """当前（扣除退货后）数量对应的小计"""
        return line_subtotal(self.price, self.qty)


@dataclass
class SaleRecord:
    """销售及其明细"""
    id: str
    date: datetime
    status_name: str
    total: Decimal
    total_returned: Decimal
    adjusted_total: Decimal
    items_count: int = 0
    customer: Optional[str] = None
    payment_method: Optional[str] = None
    items: List[SaleItemRecord] = field(default_factory=list)

    def get_item(self, item_id: int) -> Optional[SaleItemRecord]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    @property
    def discrepancy(self) -> Decimal:
        """total - total_returned - adjusted_total，正常应为 0"""
        return money_sub(money_sub(self.total, self.total_returned), self.adjusted_total)


@dataclass
class ReturnItemRecord:
    """退货明细"""
    id: int
    return_id: str
    sale_item_id: int
    product_id: str
    qty_returned: int
    refund_amount: Decimal
    product_name: Optional[str] = None


@dataclass
class ReturnRecord:
    """退货单及其明细"""
    id: str
    sale_id: str
    status_name: str
    return_date: datetime
    total_refund: Decimal
    reconciled: bool = False
    reason: Optional[str] = None
    items: List[ReturnItemRecord] = field(default_factory=list)


@dataclass(frozen=True)
class AggregateTotals:
    """单条聚合查询的结果"""
    sales_count: int = 0
    gross: Decimal = ZERO
    returned: Decimal = ZERO
    net: Decimal = ZERO
    units: int = 0
    average_ticket: Decimal = ZERO
