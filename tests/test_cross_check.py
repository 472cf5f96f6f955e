"""
收入交叉核对测试
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pos_core.clients import AnalyticsSummary
from pos_core.repositories import AggregateTotals
from pos_core.services import (
    CrossCheckReport, RevenueCrossCheck, SaleReconciler, raise_for_drift, render_cross_check
)
from pos_core.services.cross_check import MethodTotals
from pos_core.utils.datetime_utils import month_range_utc
from pos_core.utils.errors import ConsistencyDrift


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def november_store(store):
    """2025-11 三笔已完成销售，adjusted_total 合计 7061.80"""
    store.add_sale("sale-a", "3000.00", [("1500.00", 2)], date=_utc(2025, 11, 3, 20, 0))
    store.add_sale("sale-b", "2400.00", [("1200.00", 2)], date=_utc(2025, 11, 14, 22, 30))
    store.add_sale("sale-c", "1661.80", [("830.90", 2)], date=_utc(2025, 11, 28, 17, 15))
    return store


async def test_month_with_api_drift(november_store, settings, sample_summary_payload):
    analytics = AnalyticsSummary.model_validate(sample_summary_payload)

    report = await RevenueCrossCheck(november_store.uow, settings).check_month(2025, 11, analytics)

    assert report.m1.net == Decimal("7061.80")
    assert report.m3.net == Decimal("7061.80")
    assert report.api_net == Decimal("7089.60")
    assert report.m1_m3_agree
    assert report.m1_m2_agree
    assert report.m1_api_agree is False
    assert report.fatal

    with pytest.raises(ConsistencyDrift) as exc_info:
        raise_for_drift([report])
    assert exc_info.value.code == "REVENUE_DRIFT"
    assert "API" in exc_info.value.detail


async def test_month_without_api_is_not_fatal(november_store, settings):
    report = await RevenueCrossCheck(november_store.uow, settings).check_month(2025, 11)

    assert report.api_net is None
    assert report.m1_api_agree is None
    assert not report.fatal
    assert report.m3.sales_count == 3
    assert report.m3.units == 6
    raise_for_drift([report])


async def test_month_boundaries_follow_business_timezone(store, settings):
    # 危地马拉 11-01 00:00 = 06:00Z；12-01 00:00 = 12-01 06:00Z
    store.add_sale("sale-first", "10.00", [("10.00", 1)], date=_utc(2025, 11, 1, 6, 0))
    store.add_sale("sale-last", "20.00", [("20.00", 1)], date=_utc(2025, 12, 1, 5, 59))
    store.add_sale("sale-october", "40.00", [("40.00", 1)], date=_utc(2025, 11, 1, 5, 59))
    store.add_sale("sale-december", "80.00", [("80.00", 1)], date=_utc(2025, 12, 1, 6, 0))

    report = await RevenueCrossCheck(store.uow, settings).check_month(2025, 11)

    assert [sale.id for sale in report.sales] == ["sale-first", "sale-last"]
    assert report.m1.net == Decimal("30.00")


async def test_only_completed_sales_are_counted(november_store, settings):
    november_store.add_sale("sale-void", "500.00", [("500.00", 1)], date=_utc(2025, 11, 10), status_name="Anulada")

    report = await RevenueCrossCheck(november_store.uow, settings).check_month(2025, 11)

    assert report.m1.net == Decimal("7061.80")
    assert report.m3.sales_count == 3


async def test_m1_equals_m3_after_reconciliation(november_store, settings):
    november_store.add_return("ret-b", "sale-b", "1200.00", [(2, 1, "1200.00")])
    await SaleReconciler(november_store.uow, settings).reconcile_return_completion("ret-b")

    report = await RevenueCrossCheck(november_store.uow, settings).check_month(2025, 11)

    assert report.m1.net == Decimal("5861.80")
    assert report.m1.returned == Decimal("1200.00")
    assert report.m1_m3_agree


async def test_gross_drift_is_reported_but_not_fatal(store, settings):
    # 销售级折扣：sale.total 小于明细小计
    store.add_sale("sale-discount", "90.00", [("50.00", 2)], date=_utc(2025, 11, 5, 18, 0))

    report = await RevenueCrossCheck(store.uow, settings).check_month(2025, 11)

    assert not report.m1_m2_agree
    assert report.gross_drift == Decimal("-10.00")
    assert not report.fatal
    assert any("可能原因" in line for line in render_cross_check(report))


async def test_check_year_covers_every_month(november_store, settings, sample_summary_payload):
    analytics = AnalyticsSummary.model_validate(sample_summary_payload)

    reports = await RevenueCrossCheck(november_store.uow, settings).check_year(2025, analytics)

    assert [report.label for report in reports] == [f"2025-{month:02d}" for month in range(1, 13)]
    assert all(report.m1_m3_agree for report in reports)
    assert reports[9].api_net == Decimal("0.00")
    assert reports[9].m1_api_agree is True
    assert reports[0].api_net is None
    assert [report.label for report in reports if report.fatal] == ["2025-11"]


def test_m1_m3_mismatch_is_fatal():
    date_range = month_range_utc(2025, 11, "America/Guatemala")
    totals = MethodTotals(gross=Decimal("100.00"), returned=Decimal("0.00"), net=Decimal("100.00"))
    report = CrossCheckReport(
        label="2025-11",
        date_range=date_range,
        m1=totals,
        m2=totals,
        m3=AggregateTotals(sales_count=1, gross=Decimal("100.00"), net=Decimal("99.98")),
    )

    assert not report.m1_m3_agree
    assert report.fatal
    assert report.drift_messages() == ["2025-11: M1 100.00 != M3 99.98"]


def test_tolerance_is_strict():
    date_range = month_range_utc(2025, 11, "America/Guatemala")
    totals = MethodTotals(gross=Decimal("100.00"), returned=Decimal("0.00"), net=Decimal("100.00"))
    report = CrossCheckReport(
        label="2025-11",
        date_range=date_range,
        m1=totals,
        m2=totals,
        m3=AggregateTotals(sales_count=1, gross=Decimal("100.00"), net=Decimal("100.00")),
        api_net=Decimal("100.01"),
    )

    assert report.m1_api_agree is False


async def test_render_lists_every_sale(november_store, settings):
    report = await RevenueCrossCheck(november_store.uow, settings).check_month(2025, 11)

    lines = render_cross_check(report)

    assert lines[0].startswith("━━━ 2025-11")
    assert sum(1 for line in lines if "sale-" in line) == 3
    assert any("Q 7,061.80" in line for line in lines)
