"""
Pulito - Linux 系统清理核心

扫描 - 风险分级 - 可恢复清理 引擎
"""

__version__ = '0.4.0'
