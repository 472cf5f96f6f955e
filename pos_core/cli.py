"""
运维命令入口

使用方式：
pos-recon reconcile <return-id>          # 把一张已完成退货应用到销售
pos-recon complete <return-id>           # 退货 -> Completada 并对账
pos-recon set-status <return-id> <状态>  # 例如 Aprobada / Rechazada
pos-recon backfill                       # 回填历史退货
pos-recon inspect [sale-id]              # 检查单笔销售（省略时取最近有退货的销售）
pos-recon inspect-return <return-id>
pos-recon cross-check <year> [month] [--api-url URL | --no-api]
"""
import argparse
import asyncio
from typing import List, Optional

import httpx

from pos_core.clients import AnalyticsClient, AnalyticsSummary
from pos_core.config import Settings, get_settings
from pos_core.database import open_database
from pos_core.models import ReturnStatusName
from pos_core.repositories import UnitOfWorkFactory, sql_unit_of_work
from pos_core.services import (
    HistoricalBackfiller, ReconcileOutcome, RevenueCrossCheck, SaleInspector, SaleReconciler,
    raise_for_drift, render_cross_check, render_return_inspection, render_sale_inspection
)
from pos_core.utils.errors import EXIT_FAILURE, EXIT_OK, handle_errors
from pos_core.utils.logger import get_logger, setup_logging
from pos_core.utils.money import currency_symbol, format_money

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pos-recon", description="销售退货对账运维工具")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile = subparsers.add_parser("reconcile", help="把已完成的退货应用到其销售")
    reconcile.add_argument("return_id")

    complete = subparsers.add_parser("complete", help="把退货标记为 Completada 并对账")
    complete.add_argument("return_id")

    set_status = subparsers.add_parser("set-status", help="修改退货状态")
    set_status.add_argument("return_id")
    set_status.add_argument(
        "status",
        choices=[
            ReturnStatusName.PENDING,
            ReturnStatusName.APPROVED,
            ReturnStatusName.REJECTED,
            ReturnStatusName.COMPLETED,
        ],
    )

    subparsers.add_parser("backfill", help="按已完成退货回填历史销售")

    inspect = subparsers.add_parser("inspect", help="检查单笔销售的金额不变量")
    inspect.add_argument("sale_id", nargs="?")

    inspect_return = subparsers.add_parser("inspect-return", help="查看退货及其关联销售")
    inspect_return.add_argument("return_id")

    cross_check = subparsers.add_parser("cross-check", help="三种口径核对月度净收入")
    cross_check.add_argument("year", type=int)
    cross_check.add_argument("month", type=int, nargs="?", choices=range(1, 13), metavar="month")
    api = cross_check.add_mutually_exclusive_group()
    api.add_argument("--api-url", help="Analytics API 根地址，默认取 POS__ANALYTICS_BASE_URL")
    api.add_argument("--no-api", action="store_true", help="不比对 Analytics API")

    return parser


def _print(lines: List[str]) -> None:
    for line in lines:
        print(line)


def _outcome_lines(outcome: ReconcileOutcome, symbol: str) -> List[str]:
    if not outcome.applied:
        return [f"退货 {outcome.return_id} 已对账过，未做修改"]

    lines = [
        f"✓ 退货 {outcome.return_id} 已应用到销售 {outcome.sale_id}",
        f"  总额:   {format_money(outcome.total, symbol)}",
        f"  已退款: {format_money(outcome.total_returned, symbol)}",
        f"  调整后: {format_money(outcome.adjusted_total, symbol)}",
    ]
    for sale_item_id, qty in sorted(outcome.item_quantities.items()):
        suffix = "  (截断为 0)" if sale_item_id in outcome.clamped_items else ""
        lines.append(f"  销售明细 {sale_item_id}: 剩余数量 {qty}{suffix}")
    return lines


async def _cmd_reconcile(args, settings: Settings, uow: UnitOfWorkFactory, transport) -> int:
    outcome = await SaleReconciler(uow, settings).reconcile_return_completion(args.return_id)
    _print(_outcome_lines(outcome, currency_symbol(settings.currency)))
    return EXIT_OK


async def _cmd_complete(args, settings: Settings, uow: UnitOfWorkFactory, transport) -> int:
    outcome = await SaleReconciler(uow, settings).transition_return(
        args.return_id, settings.completed_status_name
    )
    _print(_outcome_lines(outcome, currency_symbol(settings.currency)))
    return EXIT_OK


async def _cmd_set_status(args, settings: Settings, uow: UnitOfWorkFactory, transport) -> int:
    outcome = await SaleReconciler(uow, settings).transition_return(args.return_id, args.status)
    if outcome is None:
        print(f"✓ 退货 {args.return_id} 状态已改为 {args.status}")
    else:
        _print(_outcome_lines(outcome, currency_symbol(settings.currency)))
    return EXIT_OK


async def _cmd_backfill(args, settings: Settings, uow: UnitOfWorkFactory, transport) -> int:
    summary = await HistoricalBackfiller(uow, settings).run()

    lines = [
        "回填完成",
        f"  涉及销售:     {summary.sales_seen}",
        f"  处理退货:     {summary.returns_processed}",
        f"  更新销售:     {len(summary.sales_updated)}",
        f"  跳过销售:     {len(summary.sales_skipped)}",
        f"  失败销售:     {len(summary.sales_failed)}",
    ]
    lines.extend(f"  ⚠️  跳过 {sale_id}: {reason}" for sale_id, reason in summary.sales_skipped.items())
    lines.extend(f"  ❌ 失败 {sale_id}: {error}" for sale_id, error in summary.sales_failed.items())
    _print(lines)
    return EXIT_OK if summary.ok else EXIT_FAILURE


async def _cmd_inspect(args, settings: Settings, uow: UnitOfWorkFactory, transport) -> int:
    inspection = await SaleInspector(uow, settings).inspect_sale(args.sale_id)
    _print(render_sale_inspection(inspection, settings.business_timezone, currency_symbol(settings.currency)))
    return EXIT_OK if inspection.invariant_holds else EXIT_FAILURE


async def _cmd_inspect_return(args, settings: Settings, uow: UnitOfWorkFactory, transport) -> int:
    inspection = await SaleInspector(uow, settings).inspect_return(args.return_id)
    _print(render_return_inspection(inspection, settings.business_timezone, currency_symbol(settings.currency)))
    return EXIT_OK


async def _cmd_cross_check(args, settings: Settings, uow: UnitOfWorkFactory, transport) -> int:
    symbol = currency_symbol(settings.currency)
    api_url = None if args.no_api else (args.api_url or settings.analytics_base_url)

    analytics: Optional[AnalyticsSummary] = None
    if api_url:
        client = AnalyticsClient(api_url, timeout=settings.analytics_timeout, transport=transport)
        analytics = await client.fetch_summary(args.year)
        consistent = analytics.totals_consistent(settings.money_tolerance)
        print(
            f"{'✅' if consistent else '⚠️ '} API {args.year}: totalSalesGross - totalReturns = totalSales"
            f" ({format_money(analytics.totals.total_sales, symbol)})"
        )

    checker = RevenueCrossCheck(uow, settings)
    if args.month is not None:
        reports = [await checker.check_month(args.year, args.month, analytics)]
    else:
        reports = await checker.check_year(args.year, analytics)

    for report in reports:
        if args.month is None and report.m3.sales_count == 0 and not report.api_net:
            continue
        _print(render_cross_check(report, symbol))

    raise_for_drift(reports)
    return EXIT_OK


COMMANDS = {
    "reconcile": _cmd_reconcile,
    "complete": _cmd_complete,
    "set-status": _cmd_set_status,
    "backfill": _cmd_backfill,
    "inspect": _cmd_inspect,
    "inspect-return": _cmd_inspect_return,
    "cross-check": _cmd_cross_check,
}


@handle_errors(logger)
async def run_command(
    args: argparse.Namespace,
    settings: Settings,
    uow: Optional[UnitOfWorkFactory] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> int:
    """执行一条命令并返回退出码；未传入 uow 时打开数据库，命令结束后释放"""
    command = COMMANDS[args.command]
    if uow is not None:
        return await command(args, settings, uow, transport)

    async with open_database(settings) as db_manager:
        return await command(args, settings, sql_unit_of_work(db_manager), transport)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    return asyncio.run(run_command(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
