"""
收入交叉核对服务

同一区间的净收入用三种独立方式计算：
- M1 权威口径：Σ sale.adjusted_total
- M2 明细重建：Σ(price × qty) - Σ sale.total_returned（qty 为退货后剩余数量）
- M3 聚合查询：一条 SQL 汇总 total / total_returned / adjusted_total
M1 ≠ M3 说明存储不一致（致命）；M1 ≠ M2 只提示，常见原因见 GROSS_DRIFT_CAUSES。
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from pos_core.clients import AnalyticsSummary
from pos_core.repositories import AggregateTotals, SaleRecord, SalesRepository
from pos_core.utils.datetime_utils import DateRange, month_range_utc
from pos_core.utils.errors import ConsistencyDrift
from pos_core.utils.logger import LogContext, get_logger
from pos_core.utils.money import TOLERANCE, format_money, money_close, money_sub, money_sum
from .base import BaseService

logger = get_logger(__name__)

GROSS_DRIFT_CAUSES = (
    "销售级折扣未分摊到明细",
    "销售创建后明细被修改",
    "原始计算的舍入误差",
)


@dataclass(frozen=True)
class MethodTotals:
    gross: Decimal
    returned: Decimal
    net: Decimal


@dataclass
class CrossCheckReport:
    """单个区间的核对结果"""
    label: str
    date_range: DateRange
    m1: MethodTotals
    m2: MethodTotals
    m3: AggregateTotals
    sales: List[SaleRecord] = field(default_factory=list)
    api_net: Optional[Decimal] = None
    tolerance: Decimal = TOLERANCE

    @property
    def m1_m2_agree(self) -> bool:
        return money_close(self.m1.net, self.m2.net, self.tolerance)

    @property
    def m1_m3_agree(self) -> bool:
        return money_close(self.m1.net, self.m3.net, self.tolerance)

    @property
    def m1_api_agree(self) -> Optional[bool]:
        if self.api_net is None:
            return None
        return money_close(self.m1.net, self.api_net, self.tolerance)

    @property
    def gross_drift(self) -> Decimal:
        """sale.total 与明细小计之差"""
        return money_sub(self.m1.gross, self.m2.gross)

    @property
    def fatal(self) -> bool:
        return not self.m1_m3_agree or self.m1_api_agree is False

    def drift_messages(self) -> List[str]:
        messages = []
        if not self.m1_m3_agree:
            messages.append(f"{self.label}: M1 {self.m1.net} != M3 {self.m3.net}")
        if self.m1_api_agree is False:
            messages.append(f"{self.label}: M1 {self.m1.net} != API {self.api_net}")
        return messages


def raise_for_drift(reports: List[CrossCheckReport]) -> None:
    """任一区间存在致命差异时抛 ConsistencyDrift"""
    messages = [message for report in reports for message in report.drift_messages()]
    if messages:
        raise ConsistencyDrift("REVENUE_DRIFT", "; ".join(messages), ranges=len(messages))


class RevenueCrossCheck(BaseService):
    """收入交叉核对"""

    async def check_month(
        self,
        year: int,
        month: int,
        analytics: Optional[AnalyticsSummary] = None
    ) -> CrossCheckReport:
        date_range = month_range_utc(year, month, self.settings.business_timezone)
        api_net = None
        if analytics is not None:
            row = analytics.month(month)
            api_net = row.net if row is not None else None
        return await self.check_range(date_range, date_range.label(self.settings.business_timezone), api_net)

    async def check_year(
        self,
        year: int,
        analytics: Optional[AnalyticsSummary] = None
    ) -> List[CrossCheckReport]:
        """逐月核对，每个月使用独立的事务"""
        return [await self.check_month(year, month, analytics) for month in range(1, 13)]

    async def check_range(
        self,
        date_range: DateRange,
        label: str,
        api_net: Optional[Decimal] = None
    ) -> CrossCheckReport:
        with LogContext(operation="cross_check"):
            report = await self.execute_with_session(self._check_tx, date_range, label)
        report.api_net = api_net

        if not report.m1_m3_agree:
            logger.error("revenue_m1_m3_mismatch", range=label, m1=str(report.m1.net), m3=str(report.m3.net))
        if not report.m1_m2_agree:
            logger.warning("revenue_m1_m2_mismatch", range=label, m1=str(report.m1.net), m2=str(report.m2.net))
        if report.m1_api_agree is False:
            logger.error("revenue_api_mismatch", range=label, m1=str(report.m1.net), api=str(api_net))
        return report

    async def _check_tx(self, repo: SalesRepository, date_range: DateRange, label: str) -> CrossCheckReport:
        sales = await repo.list_completed_sales(date_range)
        m1 = MethodTotals(
            gross=money_sum(sale.total for sale in sales),
            returned=money_sum(sale.total_returned for sale in sales),
            net=money_sum(sale.adjusted_total for sale in sales),
        )

        items = await repo.list_completed_sale_items(date_range)
        m2_gross = money_sum(item.line_subtotal for item in items)
        m2 = MethodTotals(gross=m2_gross, returned=m1.returned, net=money_sub(m2_gross, m1.returned))

        m3 = await repo.aggregate_completed_sales(date_range)

        return CrossCheckReport(
            label=label,
            date_range=date_range,
            m1=m1,
            m2=m2,
            m3=m3,
            sales=sales,
            tolerance=self.settings.money_tolerance,
        )


def render_cross_check(report: CrossCheckReport, symbol: str = "Q") -> List[str]:
    """运维输出"""
    def mark(ok: Optional[bool]) -> str:
        return "✅" if ok else "❌"

    lines = [
        f"━━━ {report.label} ━━━ [{report.date_range.start.isoformat()}, {report.date_range.end.isoformat()})",
        f"  M1 sale.adjusted_total:   毛额 {format_money(report.m1.gross, symbol)}  退款 {format_money(report.m1.returned, symbol)}  净额 {format_money(report.m1.net, symbol)}",
        f"  M2 明细重建:              毛额 {format_money(report.m2.gross, symbol)}  退款 {format_money(report.m2.returned, symbol)}  净额 {format_money(report.m2.net, symbol)}  {mark(report.m1_m2_agree)}",
        f"  M3 聚合查询:              毛额 {format_money(report.m3.gross, symbol)}  退款 {format_money(report.m3.returned, symbol)}  净额 {format_money(report.m3.net, symbol)}  {mark(report.m1_m3_agree)}",
        f"     销售笔数 {report.m3.sales_count}  件数 {report.m3.units}  客单价 {format_money(report.m3.average_ticket, symbol)}",
    ]
    if report.api_net is not None:
        lines.append(f"  API ventasNetas:          净额 {format_money(report.api_net, symbol)}  {mark(report.m1_api_agree)}")

    if not money_close(report.m1.gross, report.m2.gross, report.tolerance):
        lines.append(f"  ⚠️  sale.total 与明细小计相差 {format_money(report.gross_drift, symbol)}，可能原因：")
        lines.extend(f"     • {cause}" for cause in GROSS_DRIFT_CAUSES)

    for sale in report.sales:
        lines.append(
            f"    {sale.id[:8]}… | 总额 {format_money(sale.total, symbol)}"
            f" | 退款 {format_money(sale.total_returned, symbol)} | 净额 {format_money(sale.adjusted_total, symbol)}"
        )
    return lines
