"""
外部服务客户端
"""
from .analytics import AnalyticsClient, AnalyticsSummary, MonthlyRow

__all__ = ["AnalyticsClient", "AnalyticsSummary", "MonthlyRow"]
