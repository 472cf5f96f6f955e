"""
退货数据模型
只有状态进入 Completada 的退货才会影响销售金额
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    Boolean, Integer, String, Text, DateTime,
    CheckConstraint, ForeignKey, func
)
from sqlalchemy.dialects.postgresql import NUMERIC, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class ReturnStatusName:
    """退货状态名称（外部接口的一部分）"""
    PENDING = "Pendiente"
    APPROVED = "Aprobada"
    REJECTED = "Rechazada"
    COMPLETED = "Completada"


class ReturnStatus(Base):
    """退货状态字典"""
    __tablename__ = "return_statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)


class Return(Base):
    """退货单"""
    __tablename__ = "returns"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    sale_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("sales.id"), nullable=False, index=True)
    status_id: Mapped[int] = mapped_column(ForeignKey("return_statuses.id"), nullable=False, index=True)
    return_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    reason: Mapped[Optional[str]] = mapped_column(Text)
    total_refund: Mapped[Decimal] = mapped_column(
        NUMERIC(12, 2),
        CheckConstraint("total_refund >= 0"),
        nullable=False
    )
    # 是否已把本退货应用到销售（幂等标记）
    reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    status: Mapped["ReturnStatus"] = relationship("ReturnStatus")
    return_items: Mapped[List["ReturnItem"]] = relationship(
        "ReturnItem", back_populates="return_", order_by="ReturnItem.id"
    )


class ReturnItem(Base):
    """退货明细，引用一条销售明细"""
    __tablename__ = "return_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    return_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("returns.id"), nullable=False, index=True)
    sale_item_id: Mapped[int] = mapped_column(ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("products.id"), nullable=False)
    qty_returned: Mapped[int] = mapped_column(Integer, CheckConstraint("qty_returned > 0"), nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(
        NUMERIC(12, 2),
        CheckConstraint("refund_amount >= 0"),
        nullable=False
    )

    return_: Mapped["Return"] = relationship("Return", back_populates="return_items")
    product: Mapped["Product"] = relationship("Product")
