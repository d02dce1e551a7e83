"""
Operational event logging for sync and import runs.
"""

from app.infrastructure.audit.system_log import SystemLogWriter, system_log

__all__ = ["SystemLogWriter", "system_log"]
