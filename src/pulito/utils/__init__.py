"""
Utils 模块初始化
"""
from .time_utils import parse_iso_timestamp, format_iso, utc_now
from .format_utils import format_days, format_size

__all__ = [
    'parse_iso_timestamp', 'format_iso', 'utc_now',
    'format_size', 'format_days'
]
