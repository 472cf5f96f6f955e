"""
时间处理工具模块
数据库中的时间一律为 UTC；运维输入的年月按业务时区（America/Guatemala）解释
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class DateRange:
    """半开区间 [start, end)，两端都是 UTC timezone-aware datetime"""
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) < self.end

    def label(self, timezone_name: str) -> str:
        """按业务时区显示的月份标签，例如 2025-11"""
        return self.start.astimezone(ZoneInfo(timezone_name)).strftime("%Y-%m")


def utcnow() -> datetime:
    """返回当前UTC时间（timezone-aware）"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    确保datetime是UTC时区

    如果datetime是其他时区，转换为UTC
    如果datetime是naive，假定为UTC并添加时区
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def month_range_utc(year: int, month: int, timezone_name: str) -> DateRange:
    """
    把业务时区的一个自然月转换为 UTC 半开区间

    区间起点是该时区当月 1 日 00:00，终点（不含）是下月 1 日 00:00，
    两者都按该时区的当时偏移换算成 UTC。

    Args:
        year: 年份
        month: 月份（1-12）
        timezone_name: 时区名称（如 "America/Guatemala"）

    Returns:
        DateRange: [start_utc, end_utc)

    Raises:
        ValueError: 月份不在 1-12

    Example:
        >>> r = month_range_utc(2025, 11, "America/Guatemala")
        >>> # r.start: 2025-11-01 06:00:00+00:00 (危地马拉 11-01 00:00)
        >>> # r.end:   2025-12-01 06:00:00+00:00 (危地马拉 12-01 00:00)
    """
    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month}")

    tz = ZoneInfo(timezone_name)
    next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)

    start_local = datetime(year, month, 1, tzinfo=tz)
    end_local = datetime(next_year, next_month, 1, tzinfo=tz)

    return DateRange(
        start=start_local.astimezone(timezone.utc),
        end=end_local.astimezone(timezone.utc),
    )


def utc_to_local(utc_datetime: Optional[datetime], timezone_name: str) -> Optional[str]:
    """将UTC时间转换为指定时区的 'YYYY-MM-DD HH:MM' 字符串"""
    if utc_datetime is None:
        return None

    local_dt = ensure_utc(utc_datetime).astimezone(ZoneInfo(timezone_name))
    return local_dt.strftime("%Y-%m-%d %H:%M")
