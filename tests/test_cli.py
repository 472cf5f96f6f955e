"""
运维命令测试：输出与退出码
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from pos_core.cli import build_parser, run_command


async def _run(argv, settings, store, transport=None):
    args = build_parser().parse_args(argv)
    return await run_command(args, settings, uow=store.uow, transport=transport)


def _analytics_transport(payload):
    return httpx.MockTransport(lambda request: httpx.Response(200, json=payload))


@pytest.fixture
def november_store(store):
    store.add_sale("sale-a", "3000.00", [("1500.00", 2)], date=datetime(2025, 11, 3, 20, 0, tzinfo=timezone.utc))
    store.add_sale("sale-b", "2400.00", [("1200.00", 2)], date=datetime(2025, 11, 14, 22, 30, tzinfo=timezone.utc))
    store.add_sale("sale-c", "1661.80", [("830.90", 2)], date=datetime(2025, 11, 28, 17, 15, tzinfo=timezone.utc))
    return store


def test_parser_rejects_unknown_status():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["set-status", "ret-1", "Enviada"])


def test_parser_rejects_invalid_month():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["cross-check", "2025", "13"])


async def test_reconcile_command(full_return_store, settings, capsys):
    exit_code = await _run(["reconcile", "ret-full"], settings, full_return_store)

    assert exit_code == 0
    assert "已应用到销售 sale-full" in capsys.readouterr().out
    assert full_return_store.sale("sale-full").adjusted_total == Decimal("0.00")


async def test_reconcile_missing_return(store, settings, capsys):
    exit_code = await _run(["reconcile", "missing"], settings, store)

    assert exit_code == 1
    err = capsys.readouterr().err
    assert "[RETURN_NOT_FOUND]" in err
    assert len(err.strip().splitlines()) == 1


async def test_reconcile_twice_reports_noop(full_return_store, settings, capsys):
    await _run(["reconcile", "ret-full"], settings, full_return_store)
    capsys.readouterr()

    exit_code = await _run(["reconcile", "ret-full"], settings, full_return_store)

    assert exit_code == 0
    assert "已对账过" in capsys.readouterr().out


async def test_unexpected_error_exit_code(settings, capsys):
    @asynccontextmanager
    async def broken_uow():
        raise RuntimeError("connection pool exhausted")
        yield

    args = build_parser().parse_args(["reconcile", "ret-1"])
    exit_code = await run_command(args, settings, uow=broken_uow)

    assert exit_code == 2
    assert "RuntimeError" in capsys.readouterr().err


async def test_set_status_and_complete(store, settings, capsys):
    store.add_sale("sale-1", "100.00", [("50.00", 2)])
    store.add_return("ret-1", "sale-1", "50.00", [(1, 1, "50.00")], status_name="Pendiente")

    assert await _run(["set-status", "ret-1", "Aprobada"], settings, store) == 0
    assert "Aprobada" in capsys.readouterr().out
    assert store.sale("sale-1").total_returned == Decimal("0.00")

    assert await _run(["complete", "ret-1"], settings, store) == 0
    assert store.sale("sale-1").adjusted_total == Decimal("50.00")

    assert await _run(["set-status", "ret-1", "Pendiente"], settings, store) == 1
    assert "[RETURN_STATUS_TERMINAL]" in capsys.readouterr().err


async def test_backfill_command(store, settings, capsys):
    store.add_sale("sale-5", "200.00", [("40.00", 5)])
    store.add_return("ret-5", "sale-5", "80.00", [(1, 2, "80.00")])

    assert await _run(["backfill"], settings, store) == 0
    assert store.sale("sale-5").adjusted_total == Decimal("120.00")
    assert "回填完成" in capsys.readouterr().out


async def test_backfill_command_with_failed_sale(store, settings):
    store.add_sale("sale-1", "100.00", [("50.00", 2)])
    store.add_return("ret-1", "sale-1", "50.00", [(999, 1, "50.00")])

    assert await _run(["backfill"], settings, store) == 1


async def test_inspect_command(full_return_store, settings, capsys):
    assert await _run(["inspect"], settings, full_return_store) == 0
    assert "销售 sale-full" in capsys.readouterr().out


async def test_inspect_broken_sale(store, settings):
    store.add_sale("sale-1", "100.00", [("50.00", 2)], total_returned="50.00", adjusted_total="100.00")

    assert await _run(["inspect", "sale-1"], settings, store) == 1


async def test_inspect_return_command(full_return_store, settings, capsys):
    assert await _run(["inspect-return", "ret-full"], settings, full_return_store) == 0
    assert "关联销售 sale-full" in capsys.readouterr().out


async def test_cross_check_with_api_drift(november_store, settings, sample_summary_payload, capsys):
    exit_code = await _run(
        ["cross-check", "2025", "11", "--api-url", "http://analytics.test"],
        settings,
        november_store,
        transport=_analytics_transport(sample_summary_payload),
    )

    assert exit_code == 1
    captured = capsys.readouterr()
    assert "Q 7,061.80" in captured.out
    assert "Q 7,089.60" in captured.out
    assert "[REVENUE_DRIFT]" in captured.err


async def test_cross_check_matching_api(november_store, settings, sample_summary_payload):
    sample_summary_payload["monthly"][1]["ventasNetas"] = 7061.80

    exit_code = await _run(
        ["cross-check", "2025", "11", "--api-url", "http://analytics.test"],
        settings,
        november_store,
        transport=_analytics_transport(sample_summary_payload),
    )

    assert exit_code == 0


async def test_cross_check_without_api(november_store, settings):
    settings.analytics_base_url = "http://analytics.test"

    assert await _run(["cross-check", "2025", "11", "--no-api"], settings, november_store) == 0


async def test_cross_check_whole_year(november_store, settings, sample_summary_payload, capsys):
    exit_code = await _run(
        ["cross-check", "2025", "--api-url", "http://analytics.test"],
        settings,
        november_store,
        transport=_analytics_transport(sample_summary_payload),
    )

    assert exit_code == 1
    out = capsys.readouterr().out
    assert "2025-11" in out
    assert "━━━ 2025-03" not in out


async def test_cross_check_api_unavailable(november_store, settings, capsys):
    transport = httpx.MockTransport(lambda request: httpx.Response(502))

    exit_code = await _run(
        ["cross-check", "2025", "11", "--api-url", "http://analytics.test"],
        settings,
        november_store,
        transport=transport,
    )

    assert exit_code == 1
    assert "[ANALYTICS_HTTP_ERROR]" in capsys.readouterr().err
