"""
历史退货回填测试
"""
from datetime import datetime, timezone
from decimal import Decimal

from pos_core.services import HistoricalBackfiller, SaleReconciler


def _virgin_store(store):
    """销售字段还停留在退货前：total_returned=0，adjusted_total=total，数量未扣减"""
    store.add_sale("sale-5", "200.00", [("40.00", 5)])
    store.add_return("ret-5", "sale-5", "80.00", [(1, 2, "80.00")])
    return store


async def test_backfill_virgin_database(store, settings):
    _virgin_store(store)

    summary = await HistoricalBackfiller(store.uow, settings).run()

    sale = store.sale("sale-5")
    assert sale.total_returned == Decimal("80.00")
    assert sale.adjusted_total == Decimal("120.00")
    assert store.item_qty("sale-5", 1) == 3
    assert store.returns["ret-5"].reconciled is True
    assert summary.sales_seen == 1
    assert summary.sales_updated == ["sale-5"]
    assert summary.returns_processed == 1
    assert summary.ok


async def test_backfill_after_reconcile_is_noop(store, settings):
    _virgin_store(store)
    await SaleReconciler(store.uow, settings).reconcile_return_completion("ret-5")
    before = store.snapshot()

    summary = await HistoricalBackfiller(store.uow, settings).run()

    assert store.snapshot() == before
    assert summary.sales_updated == []
    assert list(summary.sales_skipped) == ["sale-5"]
    assert summary.ok


async def test_backfill_twice_is_noop(store, settings):
    _virgin_store(store)
    backfiller = HistoricalBackfiller(store.uow, settings)
    await backfiller.run()
    before = store.snapshot()

    summary = await backfiller.run()

    assert store.snapshot() == before
    assert summary.sales_updated == []
    assert summary.returns_processed == 0


async def test_backfill_applies_returns_in_chronological_order(store, settings):
    store.add_sale("sale-1", "150.00", [("50.00", 3)])
    store.add_return(
        "ret-late", "sale-1", "50.00", [(1, 1, "50.00")],
        return_date=datetime(2025, 11, 25, 15, 0, tzinfo=timezone.utc),
    )
    store.add_return(
        "ret-early", "sale-1", "50.00", [(1, 1, "50.00")],
        return_date=datetime(2025, 11, 18, 15, 0, tzinfo=timezone.utc),
    )

    summary = await HistoricalBackfiller(store.uow, settings).run()

    sale = store.sale("sale-1")
    assert summary.returns_processed == 2
    assert sale.total_returned == Decimal("100.00")
    assert sale.adjusted_total == Decimal("50.00")
    assert store.item_qty("sale-1", 1) == 1
    assert all(ret.reconciled for ret in store.returns.values())


async def test_backfill_ignores_non_completed_returns(store, settings):
    _virgin_store(store)
    store.add_return("ret-pending", "sale-5", "40.00", [(1, 1, "40.00")], status_name="Pendiente")

    await HistoricalBackfiller(store.uow, settings).run()

    assert store.sale("sale-5").total_returned == Decimal("80.00")
    assert store.item_qty("sale-5", 1) == 3
    assert store.returns["ret-pending"].reconciled is False


async def test_backfill_clamps_over_return_to_zero(store, settings):
    store.add_sale("sale-1", "50.00", [("50.00", 1)])
    store.add_return("ret-1", "sale-1", "50.00", [(1, 2, "50.00")])

    summary = await HistoricalBackfiller(store.uow, settings).run()

    sale = store.sale("sale-1")
    assert store.item_qty("sale-1", 1) == 0
    assert sale.total_returned == Decimal("50.00")
    assert sale.adjusted_total == Decimal("0.00")
    assert summary.sales_updated == ["sale-1"]
    assert summary.ok


async def test_backfill_skips_sale_with_decremented_quantities(store, settings):
    # 下单 5 件，明细已被扣到 3 件，但 total_returned 仍为 0
    store.add_sale("sale-2", "200.00", [("40.00", 3)])
    store.sales["sale-2"].items_count = 5
    store.add_return("ret-2", "sale-2", "80.00", [(1, 2, "80.00")])
    before = store.snapshot()

    summary = await HistoricalBackfiller(store.uow, settings).run()

    assert store.snapshot() == before
    assert store.item_qty("sale-2", 1) == 3
    assert summary.sales_updated == []
    assert "item quantities" in summary.sales_skipped["sale-2"]
    assert store.returns["ret-2"].reconciled is False


async def test_backfill_skips_non_completed_sale(store, settings):
    store.add_sale("sale-1", "100.00", [("50.00", 2)], status_name="Anulada")
    store.add_return("ret-1", "sale-1", "50.00", [(1, 1, "50.00")])

    summary = await HistoricalBackfiller(store.uow, settings).run()

    assert "Anulada" in summary.sales_skipped["sale-1"]
    assert store.sale("sale-1").total_returned == Decimal("0.00")


async def test_backfill_failure_is_isolated_per_sale(store, settings):
    _virgin_store(store)
    store.add_sale("sale-broken", "100.00", [("50.00", 2)])
    store.add_return(
        "ret-broken", "sale-broken", "50.00", [(999, 1, "50.00")],
        return_date=datetime(2025, 11, 10, 15, 0, tzinfo=timezone.utc),
    )

    summary = await HistoricalBackfiller(store.uow, settings).run()

    assert summary.sales_seen == 2
    assert summary.sales_updated == ["sale-5"]
    assert "SALE_ITEM_NOT_FOUND" in summary.sales_failed["sale-broken"]
    assert not summary.ok
    assert store.sale("sale-broken").total_returned == Decimal("0.00")
    assert store.returns["ret-broken"].reconciled is False
    assert store.sale("sale-5").adjusted_total == Decimal("120.00")


async def test_backfill_keeps_invariant_for_every_sale(store, settings):
    _virgin_store(store)
    store.add_sale("sale-2", "300.00", [("100.00", 2), ("50.00", 2)])
    store.add_return("ret-2a", "sale-2", "100.00", [(2, 1, "100.00")])
    store.add_return("ret-2b", "sale-2", "50.00", [(3, 1, "50.00")])

    await HistoricalBackfiller(store.uow, settings).run()

    for sale in store.sales.values():
        assert abs(sale.total - sale.total_returned - sale.adjusted_total) < Decimal("0.01")
        assert all(item.qty >= 0 for item in sale.items)
    assert store.sale("sale-2").adjusted_total == Decimal("150.00")
