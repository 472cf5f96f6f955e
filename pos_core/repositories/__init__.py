"""
仓储层
"""
from .base import SalesRepository, UnitOfWorkFactory
from .records import (
    AggregateTotals, ReturnItemRecord, ReturnRecord,
    SaleItemRecord, SaleRecord
)
from .sql import SqlSalesRepository, sql_unit_of_work

__all__ = [
    "SalesRepository",
    "UnitOfWorkFactory",
    "AggregateTotals",
    "ReturnItemRecord",
    "ReturnRecord",
    "SaleItemRecord",
    "SaleRecord",
    "SqlSalesRepository",
    "sql_unit_of_work",
]
