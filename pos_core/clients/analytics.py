"""
Analytics API 客户端
GET /analytics/summary?year=<int>，交叉核对时用来比对每月 ventasNetas
"""
from decimal import Decimal
from typing import List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pos_core.utils.errors import ExternalServiceError
from pos_core.utils.logger import get_logger
from pos_core.utils.money import TOLERANCE, ZERO, money_close, money_sub, to_money

logger = get_logger(__name__)


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AnalyticsTotals(_ApiModel):
    total_sales: Decimal = Field(alias="totalSales")  # 净额
    total_sales_gross: Optional[Decimal] = Field(default=None, alias="totalSalesGross")
    total_returns: Decimal = Field(default=ZERO, alias="totalReturns")
    total_cost: Decimal = Field(default=ZERO, alias="totalCost")
    total_profit: Decimal = Field(default=ZERO, alias="totalProfit")
    products_count: int = Field(default=0, alias="productsCount")
    stock_rotation: Decimal = Field(default=ZERO, alias="stockRotation")


class MonthlyRow(_ApiModel):
    month: int
    ventas: Decimal = ZERO  # 毛额
    devoluciones: Decimal = ZERO
    ventas_netas: Optional[Decimal] = Field(default=None, alias="ventasNetas")
    costo: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        """旧版本接口没有 ventasNetas 时退回 ventas - devoluciones"""
        if self.ventas_netas is not None:
            return to_money(self.ventas_netas)
        return money_sub(self.ventas, self.devoluciones)


class TopProduct(_ApiModel):
    name: str
    category: Optional[str] = None
    ventas: Decimal = ZERO  # 件数
    revenue: Decimal = ZERO


class CategoryPerformance(_ApiModel):
    category: str
    revenue: Decimal = ZERO
    percentage: Decimal = ZERO


class AnalyticsSummary(_ApiModel):
    year: Union[int, str, None] = None
    totals: AnalyticsTotals
    monthly: List[MonthlyRow] = Field(default_factory=list)
    top_products: List[TopProduct] = Field(default_factory=list, alias="topProducts")
    category_performance: List[CategoryPerformance] = Field(default_factory=list, alias="categoryPerformance")

    def month(self, month: int) -> Optional[MonthlyRow]:
        for row in self.monthly:
            if row.month == month:
                return row
        return None

    def totals_consistent(self, tolerance: Decimal = TOLERANCE) -> bool:
        """totalSalesGross - totalReturns 应等于 totalSales"""
        gross = self.totals.total_sales_gross
        if gross is None:
            gross = self.totals.total_sales
        expected = money_sub(gross, self.totals.total_returns)
        return money_close(expected, self.totals.total_sales, tolerance)


class AnalyticsClient:
    """Analytics API 客户端"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def fetch_summary(self, year: int) -> AnalyticsSummary:
        """
        获取年度汇总

        Raises:
            ExternalServiceError: 网络错误、非 2xx 响应或响应结构不符
        """
        url = f"{self.base_url}/analytics/summary"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, params={"year": year})
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                "ANALYTICS_HTTP_ERROR",
                f"GET {url}?year={year} returned {e.response.status_code}",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceError("ANALYTICS_UNAVAILABLE", f"GET {url}?year={year} failed: {e}") from e

        try:
            summary = AnalyticsSummary.model_validate(payload)
        except ValidationError as e:
            raise ExternalServiceError("ANALYTICS_BAD_RESPONSE", str(e).splitlines()[0]) from e

        logger.debug("analytics_summary_fetched", year=year, months=len(summary.monthly))
        return summary
