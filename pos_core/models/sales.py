"""
销售相关数据模型
金额字段 NUMERIC(12,2)；total - total_returned = adjusted_total
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    Integer, String, Text, DateTime,
    CheckConstraint, Index, ForeignKey, func
)
from sqlalchemy.dialects.postgresql import NUMERIC, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class SaleStatus(Base):
    """销售状态字典（名称为西班牙语，如 Completada）"""
    __tablename__ = "sale_statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)


class PaymentMethod(Base):
    """支付方式"""
    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)


class Product(Base):
    """商品（只读，仅用于展示名称）"""
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class Sale(Base):
    """销售表"""
    __tablename__ = "sales"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    customer: Mapped[Optional[str]] = mapped_column(Text, comment="客户名称")
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="销售时间（UTC）"
    )
    status_id: Mapped[int] = mapped_column(ForeignKey("sale_statuses.id"), nullable=False)
    payment_method_id: Mapped[Optional[int]] = mapped_column(ForeignKey("payment_methods.id"))

    # 金额（必须使用 Decimal）
    total: Mapped[Decimal] = mapped_column(
        NUMERIC(12, 2),
        CheckConstraint("total >= 0"),
        nullable=False,
        comment="销售时的总额"
    )
    total_returned: Mapped[Decimal] = mapped_column(
        NUMERIC(12, 2),
        CheckConstraint("total_returned >= 0"),
        nullable=False,
        default=Decimal("0"),
        comment="已完成退货的累计退款"
    )
    adjusted_total: Mapped[Decimal] = mapped_column(
        NUMERIC(12, 2),
        CheckConstraint("adjusted_total >= 0"),
        nullable=False,
        comment="扣除退款后的净额"
    )
    items: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="销售件数")

    __table_args__ = (
        Index("ix_sales_date_status", "date", "status_id"),
    )

    status: Mapped["SaleStatus"] = relationship("SaleStatus")
    payment_method: Mapped[Optional["PaymentMethod"]] = relationship("PaymentMethod")
    sale_items: Mapped[List["SaleItem"]] = relationship(
        "SaleItem", back_populates="sale", order_by="SaleItem.id"
    )


class SaleItem(Base):
    """销售明细；qty 为扣除退货后的剩余数量，price 在销售后冻结"""
    __tablename__ = "sale_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("sales.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("products.id"), nullable=False)
    price: Mapped[Decimal] = mapped_column(
        NUMERIC(12, 2),
        CheckConstraint("price >= 0"),
        nullable=False
    )
    qty: Mapped[int] = mapped_column(Integer, CheckConstraint("qty >= 0"), nullable=False)

    sale: Mapped["Sale"] = relationship("Sale", back_populates="sale_items")
    product: Mapped["Product"] = relationship("Product")
