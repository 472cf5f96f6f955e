"""
Pytest 配置和 fixtures
"""
import pytest

from pos_core.config import Settings

from fakes import FakeStore


@pytest.fixture
def settings():
    """测试配置：不读 .env，重试不等待"""
    return Settings(
        _env_file=None,
        retry_backoff_base=0,
        reconcile_max_retries=3,
        analytics_base_url=None,
    )


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def uow(store):
    return store.uow


@pytest.fixture
def full_return_store(store):
    """单笔全额退货：total 100.00，50.00 × 2，退 2 件退款 100.00"""
    store.add_sale("sale-full", "100.00", [("50.00", 2)])
    store.add_return("ret-full", "sale-full", "100.00", [(1, 2, "100.00")])
    return store


@pytest.fixture
def partial_return_store(store):
    """部分退货：total 150.00，50.00 × 3，退 1 件退款 50.00"""
    store.add_sale("sale-partial", "150.00", [("50.00", 3)])
    store.add_return("ret-partial-1", "sale-partial", "50.00", [(1, 1, "50.00")])
    return store


@pytest.fixture
def sample_summary_payload():
    """Analytics API /analytics/summary 响应示例"""
    return {
        "year": 2025,
        "totals": {
            "totalSales": 7089.60,
            "totalSalesGross": 7289.60,
            "totalReturns": 200.00,
            "totalCost": 4100.00,
            "totalProfit": 2989.60,
            "productsCount": 42,
            "stockRotation": 1.8,
        },
        "monthly": [
            {"month": 10, "ventas": 0, "devoluciones": 0, "ventasNetas": 0, "costo": 0},
            {"month": 11, "ventas": 7289.60, "devoluciones": 200.00, "ventasNetas": 7089.60, "costo": 4100.00},
        ],
        "topProducts": [
            {"name": "Camisa Azul", "category": "Ropa", "ventas": 12, "revenue": 1800.00},
        ],
        "categoryPerformance": [
            {"category": "Ropa", "revenue": 1800.00, "percentage": 25.39},
        ],
    }
