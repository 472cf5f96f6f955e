"""
数据模型包
"""
from .base import Base
from .sales import SaleStatus, PaymentMethod, Product, Sale, SaleItem
from .returns import ReturnStatus, ReturnStatusName, Return, ReturnItem

__all__ = [
    "Base",
    "SaleStatus",
    "PaymentMethod",
    "Product",
    "Sale",
    "SaleItem",
    "ReturnStatus",
    "ReturnStatusName",
    "Return",
    "ReturnItem",
]
