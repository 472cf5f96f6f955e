"""
基于 SQLAlchemy AsyncSession 的仓储实现
"""
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from pos_core.database import DatabaseManager
from pos_core.models import (
    Return, ReturnItem, ReturnStatus, Sale, SaleItem, SaleStatus
)
from pos_core.utils.datetime_utils import DateRange, utcnow
from pos_core.utils.errors import InvalidPrecondition, StorageError
from pos_core.utils.logger import get_logger
from pos_core.utils.money import to_money
from .base import SalesRepository, UnitOfWorkFactory
from .records import (
    AggregateTotals, ReturnItemRecord, ReturnRecord,
    SaleItemRecord, SaleRecord
)

logger = get_logger(__name__)

# serialization_failure / deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def _sale_item_record(item: SaleItem) -> SaleItemRecord:
    return SaleItemRecord(
        id=item.id,
        sale_id=item.sale_id,
        product_id=item.product_id,
        price=to_money(item.price),
        qty=item.qty,
        product_name=item.product.name if "product" in item.__dict__ and item.product else None,
    )


def _sale_record(sale: Sale, status_name: str, with_items: bool = True) -> SaleRecord:
    return SaleRecord(
        id=sale.id,
        date=sale.date,
        status_name=status_name,
        total=to_money(sale.total),
        total_returned=to_money(sale.total_returned),
        adjusted_total=to_money(sale.adjusted_total),
        items_count=sale.items or 0,
        customer=sale.customer,
        payment_method=sale.payment_method.name if with_items and sale.payment_method else None,
        items=[_sale_item_record(item) for item in sale.sale_items] if with_items else [],
    )


def _return_record(ret: Return) -> ReturnRecord:
    return ReturnRecord(
        id=ret.id,
        sale_id=ret.sale_id,
        status_name=ret.status.name,
        return_date=ret.return_date,
        total_refund=to_money(ret.total_refund),
        reconciled=bool(ret.reconciled),
        reason=ret.reason,
        items=[
            ReturnItemRecord(
                id=item.id,
                return_id=item.return_id,
                sale_item_id=item.sale_item_id,
                product_id=item.product_id,
                qty_returned=item.qty_returned,
                refund_amount=to_money(item.refund_amount),
                product_name=item.product.name if item.product else None,
            )
            for item in ret.return_items
        ],
    )


class SqlSalesRepository(SalesRepository):
    """PostgreSQL 仓储"""

    def __init__(self, session: AsyncSession, completed_status_name: str = "Completada"):
        self.session = session
        self.completed_status_name = completed_status_name

    def _return_query(self):
        return (
            select(Return)
            .options(
                selectinload(Return.status),
                selectinload(Return.return_items).selectinload(ReturnItem.product),
            )
            .execution_options(populate_existing=True)
        )

    async def load_sale(self, sale_id: str, lock: bool = False) -> Optional[SaleRecord]:
        stmt = (
            select(Sale)
            .options(
                selectinload(Sale.status),
                selectinload(Sale.payment_method),
                selectinload(Sale.sale_items).selectinload(SaleItem.product),
            )
            .where(Sale.id == sale_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update(of=Sale)

        result = await self.session.execute(stmt)
        sale = result.scalar_one_or_none()
        if sale is None:
            return None
        return _sale_record(sale, sale.status.name)

    async def load_return(self, return_id: str) -> Optional[ReturnRecord]:
        result = await self.session.execute(self._return_query().where(Return.id == return_id))
        ret = result.scalar_one_or_none()
        return _return_record(ret) if ret else None

    async def load_completed_returns(self, sale_id: str) -> List[ReturnRecord]:
        stmt = (
            self._return_query()
            .join(Return.status)
            .where(
                Return.sale_id == sale_id,
                ReturnStatus.name == self.completed_status_name,
            )
            .order_by(Return.return_date, Return.id)
        )
        result = await self.session.execute(stmt)
        return [_return_record(ret) for ret in result.scalars().all()]

    async def update_sale_item_qty(self, sale_item_id: int, qty: int) -> None:
        await self.session.execute(
            update(SaleItem).where(SaleItem.id == sale_item_id).values(qty=qty)
        )

    async def update_sale_monetary(
        self,
        sale_id: str,
        total_returned: Decimal,
        adjusted_total: Decimal
    ) -> None:
        await self.session.execute(
            update(Sale)
            .where(Sale.id == sale_id)
            .values(total_returned=total_returned, adjusted_total=adjusted_total)
        )

    async def sum_refunds_for_sale(self, sale_id: str) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(Return.total_refund), 0))
            .join(Return.status)
            .where(
                Return.sale_id == sale_id,
                ReturnStatus.name == self.completed_status_name,
            )
        )
        return to_money(result.scalar_one())

    async def mark_return_reconciled(self, return_id: str, reconciled: bool = True) -> None:
        await self.session.execute(
            update(Return).where(Return.id == return_id).values(reconciled=reconciled)
        )

    async def set_return_status(self, return_id: str, status_name: str) -> None:
        result = await self.session.execute(
            select(ReturnStatus.id).where(ReturnStatus.name == status_name)
        )
        status_id = result.scalar_one_or_none()
        if status_id is None:
            raise InvalidPrecondition("RETURN_STATUS_UNKNOWN", f'Return status "{status_name}" not found')

        await self.session.execute(
            update(Return)
            .where(Return.id == return_id)
            .values(status_id=status_id, processed_at=utcnow())
        )

    async def list_sale_ids_with_completed_returns(self) -> List[str]:
        result = await self.session.execute(
            select(Return.sale_id)
            .join(Return.status)
            .where(ReturnStatus.name == self.completed_status_name)
            .group_by(Return.sale_id)
            .order_by(func.min(Return.return_date))
        )
        return list(result.scalars().all())

    async def find_sale_with_completed_returns(self) -> Optional[str]:
        result = await self.session.execute(
            select(Return.sale_id)
            .join(Return.status)
            .where(ReturnStatus.name == self.completed_status_name)
            .order_by(Return.return_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def _completed_in_range(self, stmt, date_range: DateRange):
        return stmt.where(
            SaleStatus.name == self.completed_status_name,
            Sale.date >= date_range.start,
            Sale.date < date_range.end,
        )

    async def list_completed_sales(self, date_range: DateRange) -> List[SaleRecord]:
        stmt = self._completed_in_range(
            select(Sale).join(Sale.status), date_range
        ).order_by(Sale.date, Sale.id)
        result = await self.session.execute(stmt)
        return [
            _sale_record(sale, self.completed_status_name, with_items=False)
            for sale in result.scalars().all()
        ]

    async def list_completed_sale_items(self, date_range: DateRange) -> List[SaleItemRecord]:
        stmt = self._completed_in_range(
            select(SaleItem).join(SaleItem.sale).join(Sale.status), date_range
        ).order_by(SaleItem.id)
        result = await self.session.execute(stmt)
        return [_sale_item_record(item) for item in result.scalars().all()]

    async def aggregate_completed_sales(self, date_range: DateRange) -> AggregateTotals:
        stmt = self._completed_in_range(
            select(
                func.count(Sale.id),
                func.coalesce(func.sum(Sale.total), 0),
                func.coalesce(func.sum(Sale.total_returned), 0),
                func.coalesce(func.sum(Sale.adjusted_total), 0),
                func.coalesce(func.sum(Sale.items), 0),
                func.coalesce(func.avg(Sale.adjusted_total), 0),
            ).select_from(Sale).join(Sale.status),
            date_range,
        )
        result = await self.session.execute(stmt)
        count, gross, returned, net, units, average = result.one()
        return AggregateTotals(
            sales_count=int(count),
            gross=to_money(gross),
            returned=to_money(returned),
            net=to_money(net),
            units=int(units),
            average_ticket=to_money(average),
        )


def _translate_db_error(exc: DBAPIError) -> StorageError:
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    retryable = sqlstate in RETRYABLE_SQLSTATES
    message = str(orig) if orig is not None else str(exc)
    return StorageError(
        code="SERIALIZATION_CONFLICT" if retryable else "DATABASE_ERROR",
        detail=message.splitlines()[0] if message else type(exc).__name__,
        retryable=retryable,
        sqlstate=sqlstate,
    )


def sql_unit_of_work(db_manager: DatabaseManager) -> UnitOfWorkFactory:
    """为 DatabaseManager 构造 unit of work 工厂；每次进入都是一个新事务"""
    completed_status_name = db_manager.settings.completed_status_name

    @asynccontextmanager
    async def unit_of_work() -> AsyncGenerator[SalesRepository, None]:
        try:
            async with db_manager.get_transaction() as session:
                yield SqlSalesRepository(session, completed_status_name)
        except DBAPIError as e:
            raise _translate_db_error(e) from e

    return unit_of_work
