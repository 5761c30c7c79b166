"""
日志配置模块
提供统一的日志记录功能，输出到文件和控制台
各子系统使用带标签的专用记录函数，例如 [扫描:START]、[TRASH:MOVE]
"""
import logging
import os
from datetime import datetime
from typing import Optional, List, Any


APP_NAME = 'Pulito'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _join_extra(message_parts: List[str], kwargs: dict):
    if kwargs:
        extra_info = ", ".join(f"{k}={v}" for k, v in kwargs.items())
        message_parts.append(extra_info)


def log_scan_event(logger: logging.Logger, action: str, target: str,
                   count: Optional[int] = None, size: Optional[str] = None,
                   **kwargs):
    """记录扫描事件的专用函数

    Args:
        logger: 日志记录器
        action: 动作类型，如 'START', 'CATEGORY', 'COMPLETE', 'TIMEOUT'
        target: 扫描目标
        count: 项目数量
        size: 大小信息
        **kwargs: 其他附加信息
    """
    message_parts = [f"[扫描:{action}]", f"目标: {target}"]

    if count is not None:
        message_parts.append(f"项目数: {count}")

    if size is not None:
        message_parts.append(f"大小: {size}")

    _join_extra(message_parts, kwargs)

    if action in ('FAILED', 'TIMEOUT'):
        logger.warning(" ".join(message_parts))
    else:
        logger.info(" ".join(message_parts))


def log_clean_event(logger: logging.Logger, action: str, target: str,
                    items: Optional[List[str]] = None, deleted: Optional[int] = None,
                    freed: Optional[str] = None, **kwargs):
    """记录清理事件的专用函数

    Args:
        logger: 日志记录器
        action: 动作类型，如 'START', 'ITEM_DELETED', 'COMPLETE'
        target: 清理目标
        items: 清理的项目列表
        deleted: 删除的数量
        freed: 释放的空间
        **kwargs: 其他附加信息
    """
    message_parts = [f"[清理:{action}]", f"目标: {target}"]

    if deleted is not None:
        message_parts.append(f"删除: {deleted} 项")

    if freed is not None:
        message_parts.append(f"释放: {freed}")

    if items:
        sample = ", ".join(items[:3])  # 只显示前3个
        if len(items) > 3:
            sample += f"... (共 {len(items)} 项)"
        message_parts.append(f"项目: [{sample}]")

    _join_extra(message_parts, kwargs)

    if action in ('ITEM_FAILED', 'ERROR'):
        logger.warning(" ".join(message_parts))
    else:
        logger.info(" ".join(message_parts))


def log_trash_event(logger: logging.Logger, action: str, item_id: str,
                    path: Optional[str] = None, size: Optional[int] = None,
                    **kwargs):
    """记录回收站事件的专用函数

    Args:
        logger: 日志记录器
        action: 动作类型，如 'MOVE', 'RESTORE', 'PURGE', 'EVICT', 'SWEEP'
        item_id: 回收站条目 ID
        path: 原始路径
        size: 大小（字节）
        **kwargs: 其他附加信息
    """
    message_parts = [f"[TRASH:{action}]", f"ID: {item_id}"]

    if path:
        message_parts.append(f"路径: {path}")

    if size is not None:
        message_parts.append(f"大小: {size} 字节")

    _join_extra(message_parts, kwargs)

    if action in ('CAPACITY', 'ERROR'):
        logger.warning(" ".join(message_parts))
    else:
        logger.info(" ".join(message_parts))


def log_performance(logger: logging.Logger, operation: str, duration_ms: int,
                    **kwargs):
    """记录性能数据的专用函数

    Args:
        logger: 日志记录器
        operation: 操作名称
        duration_ms: 耗时（毫秒）
        **kwargs: 其他附加信息
    """
    message_parts = ["[性能]", f"操作: {operation}", f"耗时: {duration_ms}ms"]

    _join_extra(message_parts, kwargs)

    duration_category = (
        "快速" if duration_ms < 100 else
        "正常" if duration_ms < 1000 else
        "较慢" if duration_ms < 5000 else
        "慢"
    )
    message_parts.append(f"评级: {duration_category}")

    logger.info(" ".join(message_parts))


def log_database_event(logger: logging.Logger, action: str, table: str,
                       rows: Optional[int] = None, error: Optional[str] = None,
                       **kwargs):
    """记录数据库事件的专用函数

    Args:
        logger: 日志记录器
        action: 动作类型，如 'QUERY', 'INSERT', 'UPDATE', 'DELETE'
        table: 表名
        rows: 影响行数
        error: 错误信息
        **kwargs: 其他附加信息
    """
    message_parts = [f"[数据库:{action}]", f"表: {table}"]

    if rows is not None:
        message_parts.append(f"影响行数: {rows}")

    if error:
        message_parts.append(f"错误: {error}")

    _join_extra(message_parts, kwargs)

    if action == 'ERROR' or error:
        logger.error(" ".join(message_parts))
    else:
        logger.debug(" ".join(message_parts))


def log_config_event(logger: logging.Logger, action: str, key: str,
                     value: Optional[Any] = None, **kwargs):
    """记录配置事件的专用函数

    Args:
        logger: 日志记录器
        action: 动作类型，如 'READ', 'WRITE', 'CLAMP', 'REJECT'
        key: 配置键
        value: 配置值
        **kwargs: 其他附加信息
    """
    message_parts = [f"[配置:{action}]", f"键: {key}"]

    if value is not None:
        # 限制值长度，避免过长
        str_value = str(value)
        if len(str_value) > 100:
            str_value = str_value[:100] + "..."
        message_parts.append(f"值: {str_value}")

    _join_extra(message_parts, kwargs)

    if action in ('CLAMP', 'REJECT'):
        logger.warning(" ".join(message_parts))
    else:
        logger.debug(" ".join(message_parts))


def log_scheduler_event(logger: logging.Logger, action: str, task_type: str,
                        next_run: Optional[str] = None, **kwargs):
    """记录调度器事件的专用函数

    Args:
        logger: 日志记录器
        action: 动作类型，如 'STARTED', 'TRIGGERED', 'STOPPED'
        task_type: 任务类型
        next_run: 下次运行时间
        **kwargs: 其他附加信息
    """
    message_parts = [f"[调度器:{action}]", f"任务: {task_type}"]

    if next_run:
        message_parts.append(f"下次运行: {next_run}")

    _join_extra(message_parts, kwargs)

    logger.info(" ".join(message_parts))


def log_file_operation(logger: logging.Logger, action: str, path: str,
                       size: Optional[int] = None, error: Optional[str] = None,
                       **kwargs):
    """记录文件操作的专用函数

    Args:
        logger: 日志记录器
        action: 动作类型，如 'READ', 'MOVE', 'DELETE', 'SKIP'
        path: 文件路径
        size: 文件大小
        error: 错误信息
        **kwargs: 其他附加信息
    """
    # 限制路径长度
    display_path = path
    if len(display_path) > 150:
        display_path = "..." + display_path[-150:]

    message_parts = [f"[文件:{action}]", f"路径: {display_path}"]

    if size is not None:
        message_parts.append(f"大小: {size} 字节")

    if error:
        message_parts.append(f"错误: {error}")

    _join_extra(message_parts, kwargs)

    # 文件操作较多，统一使用 DEBUG
    logger.debug(" ".join(message_parts))


def setup_logger(
    name: str = APP_NAME,
    log_file: str = None,
    level: int = logging.INFO,
    console_level: int = logging.INFO
) -> logging.Logger:
    """配置日志记录器

    Args:
        name: 日志记录器名称
        log_file: 日志文件路径，如果为 None 则只输出到控制台
        level: 文件日志级别
        console_level: 控制台日志级别

    Returns:
        configured Logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(min(level, console_level))
    logger.handlers.clear()  # 清除已有的处理器

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
        except OSError as e:
            # 日志目录不可写时只输出到控制台
            logger.warning(f"[LOGGER] 无法写入日志文件 {log_file}: {e}")
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


def get_default_log_path() -> str:
    """获取默认日志文件路径

    优先使用 PULITO_LOG_DIR，其次 XDG_DATA_HOME，最后 ~/.local/share

    Returns:
        日志文件路径
    """
    log_dir = os.getenv('PULITO_LOG_DIR')
    if not log_dir:
        data_home = os.getenv('XDG_DATA_HOME') or os.path.join(
            os.path.expanduser('~'), '.local', 'share'
        )
        log_dir = os.path.join(data_home, 'pulito', 'logs')

    # 按日期创建日志文件
    today = datetime.now().strftime('%Y-%m-%d')
    return os.path.join(log_dir, f'pulito_{today}.log')


def get_logger(name: str = APP_NAME) -> logging.Logger:
    """获取日志记录器（使用默认配置）

    Args:
        name: 日志记录器名称

    Returns:
        configured Logger instance
    """
    logger = logging.getLogger(name)

    # 如果还没有配置处理器，则进行配置
    if not logger.handlers:
        setup_logger(
            name=name,
            log_file=get_default_log_path(),
            level=logging.INFO,
            console_level=logging.DEBUG
        )
        logger.propagate = False

    return logger
