"""
格式化工具
"""


def format_size(size_bytes: int) -> str:
    """Format size in human readable format"""
    if not size_bytes:
        return '0 B'

    units = ['B', 'KB', 'MB', 'GB', 'TB']
    size = float(size_bytes)
    unit_index = 0

    while abs(size) >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    return f'{size:.2f} {units[unit_index]}'


def format_days(days: float) -> str:
    """格式化剩余天数，无穷大显示为 'never'"""
    if days == float('inf'):
        return 'never'
    return f'{days:.1f} days'
