"""
金额工具
所有金额使用两位小数的 Decimal；舍入规则统一为 ROUND_HALF_EVEN（银行家舍入）
"""
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Iterable, Optional, Union

MoneyLike = Union[Decimal, int, str, float, None]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
ROUNDING = ROUND_HALF_EVEN

# 金额比较的绝对容差
TOLERANCE = Decimal("0.01")


def to_money(value: MoneyLike) -> Decimal:
    """
    转换为两位小数的 Decimal

    float 先转成 str 再构造，避免二进制浮点误差进入计算；None 视为 0。
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUNDING)


def money_sum(values: Iterable[MoneyLike]) -> Decimal:
    """金额求和"""
    total = ZERO
    for value in values:
        total += to_money(value)
    return to_money(total)


def money_sub(a: MoneyLike, b: MoneyLike) -> Decimal:
    return to_money(to_money(a) - to_money(b))


def line_subtotal(price: MoneyLike, qty: int) -> Decimal:
    """单价 × 数量，结果按统一舍入规则保留两位小数"""
    return to_money(to_money(price) * qty)


def money_close(a: MoneyLike, b: MoneyLike, tolerance: Optional[Decimal] = None) -> bool:
    """两个金额之差的绝对值是否严格小于容差"""
    tolerance = TOLERANCE if tolerance is None else tolerance
    return abs(to_money(a) - to_money(b)) < tolerance


def format_money(value: MoneyLike, symbol: str = "Q") -> str:
    """运维输出用的金额格式：Q 1,234.50"""
    return f"{symbol} {to_money(value):,.2f}"


CURRENCY_SYMBOLS = {
    "GTQ": "Q",
    "USD": "$",
}


def currency_symbol(code: str) -> str:
    return CURRENCY_SYMBOLS.get(code.upper(), code)
