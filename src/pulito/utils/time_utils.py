"""
时间解析工具模块
提供统一的 ISO 时间字符串解析与生成功能，内部统一使用带时区的 UTC 时间
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """获取当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


def parse_iso_timestamp(iso_str: str) -> Optional[datetime]:
    """解析 ISO 时间字符串

    统一处理 'Z' 和 +00:00 格式的时间字符串，无时区信息的按 UTC 处理

    Args:
        iso_str: ISO 时间字符串

    Returns:
        datetime 对象，解析失败返回 None
    """
    if not iso_str:
        return None

    try:
        iso_str = iso_str.replace('Z', '+00:00')
        parsed = datetime.fromisoformat(iso_str)
    except (ValueError, TypeError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_iso(value: datetime) -> str:
    """将 datetime 格式化为 ISO 字符串 (UTC +00:00)"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


__all__ = ['utc_now', 'parse_iso_timestamp', 'format_iso']
