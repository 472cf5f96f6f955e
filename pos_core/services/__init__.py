"""
对账服务模块
"""
from .base import BaseService
from .reconciler import SaleReconciler, ReconcileOutcome
from .backfill import HistoricalBackfiller, BackfillSummary
from .cross_check import RevenueCrossCheck, CrossCheckReport, raise_for_drift, render_cross_check
from .inspector import (
    SaleInspector, SaleInspection, ReturnInspection,
    render_sale_inspection, render_return_inspection
)

__all__ = [
    "BaseService",
    "SaleReconciler",
    "ReconcileOutcome",
    "HistoricalBackfiller",
    "BackfillSummary",
    "RevenueCrossCheck",
    "CrossCheckReport",
    "raise_for_drift",
    "render_cross_check",
    "SaleInspector",
    "SaleInspection",
    "ReturnInspection",
    "render_sale_inspection",
    "render_return_inspection",
]
