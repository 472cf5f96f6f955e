"""
销售/退货仓储接口
一个仓储实例绑定到一个数据库事务；事务边界由 unit of work 工厂控制
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import AsyncContextManager, Callable, List, Optional

from pos_core.utils.datetime_utils import DateRange
from .records import AggregateTotals, ReturnRecord, SaleItemRecord, SaleRecord


class SalesRepository(ABC):
    """销售对账所需的最小存储接口"""

    # 写侧：对账 / 回填

    @abstractmethod
    async def load_sale(self, sale_id: str, lock: bool = False) -> Optional[SaleRecord]:
        """加载销售及明细；lock=True 时对销售行加行锁（SELECT ... FOR UPDATE）"""

    @abstractmethod
    async def load_return(self, return_id: str) -> Optional[ReturnRecord]:
        """加载退货单及明细"""

    @abstractmethod
    async def load_completed_returns(self, sale_id: str) -> List[ReturnRecord]:
        """按 return_date 升序返回某销售的所有已完成退货"""

    @abstractmethod
    async def update_sale_item_qty(self, sale_item_id: int, qty: int) -> None:
        ...

    @abstractmethod
    async def update_sale_monetary(
        self,
        sale_id: str,
        total_returned: Decimal,
        adjusted_total: Decimal
    ) -> None:
        ...

    @abstractmethod
    async def sum_refunds_for_sale(self, sale_id: str) -> Decimal:
        """某销售所有已完成退货的 total_refund 之和"""

    @abstractmethod
    async def mark_return_reconciled(self, return_id: str, reconciled: bool = True) -> None:
        ...

    @abstractmethod
    async def set_return_status(self, return_id: str, status_name: str) -> None:
        """修改退货状态；状态名不存在时抛 InvalidPrecondition"""

    @abstractmethod
    async def list_sale_ids_with_completed_returns(self) -> List[str]:
        ...

    @abstractmethod
    async def find_sale_with_completed_returns(self) -> Optional[str]:
        """最近一笔有已完成退货的销售 ID，没有则返回 None"""

    # 读侧：交叉核对

    @abstractmethod
    async def list_completed_sales(self, date_range: DateRange) -> List[SaleRecord]:
        """区间内已完成销售（不含明细）"""

    @abstractmethod
    async def list_completed_sale_items(self, date_range: DateRange) -> List[SaleItemRecord]:
        ...

    @abstractmethod
    async def aggregate_completed_sales(self, date_range: DateRange) -> AggregateTotals:
        """一条聚合查询汇总 total / total_returned / adjusted_total"""


# async with uow() as repo: ...  正常退出提交，异常回滚
UnitOfWorkFactory = Callable[[], AsyncContextManager[SalesRepository]]
